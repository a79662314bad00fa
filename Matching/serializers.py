from rest_framework import serializers

from Matching.models import (
    INTEREST_LEVELS,
    AlgorithmConfig,
    Developer,
    FeedbackEvent,
    LanguageSkill,
    Project,
    ProjectLanguage,
    ProjectTopic,
    Recommendation,
    TopicInterest,
)


class LanguageSkillSerializer(serializers.ModelSerializer):
    class Meta:
        model = LanguageSkill
        fields = ("name", "proficiency_level")


class TopicInterestSerializer(serializers.ModelSerializer):
    class Meta:
        model = TopicInterest
        fields = ("name", "interest_level")


class DeveloperSerializer(serializers.ModelSerializer):
    languages = LanguageSkillSerializer(many=True, read_only=True)
    topics = TopicInterestSerializer(many=True, read_only=True)

    class Meta:
        model = Developer
        fields = "__all__"


class ProjectLanguageSerializer(serializers.ModelSerializer):
    class Meta:
        model = ProjectLanguage
        fields = ("name", "required_level", "is_primary")


class ProjectTopicSerializer(serializers.ModelSerializer):
    class Meta:
        model = ProjectTopic
        fields = ("name", "is_primary")


class ProjectSerializer(serializers.ModelSerializer):
    languages = ProjectLanguageSerializer(many=True, read_only=True)
    topics = ProjectTopicSerializer(many=True, read_only=True)

    class Meta:
        model = Project
        fields = (
            "id", "title", "description", "owner", "status", "difficulty_level",
            "maximum_members", "current_members", "created_at", "languages", "topics",
        )


class RecommendationSerializer(serializers.ModelSerializer):
    project = ProjectSerializer(read_only=True)

    class Meta:
        model = Recommendation
        fields = "__all__"


# Free-form input: names are normalized by the service, not by choices here.
class SkillEntrySerializer(serializers.Serializer):
    name = serializers.CharField(max_length=64)
    proficiency_level = serializers.CharField(max_length=32, required=False, default="beginner")


class TopicEntrySerializer(serializers.Serializer):
    name = serializers.CharField(max_length=64)
    interest_level = serializers.ChoiceField(choices=INTEREST_LEVELS, required=False, default="medium")


class SkillProfileSerializer(serializers.Serializer):
    languages = SkillEntrySerializer(many=True)
    topics = TopicEntrySerializer(many=True, required=False, default=list)


class FeedbackSerializer(serializers.Serializer):
    """
    Either ``recommendation_id`` (an action on a recommendation) or
    ``developer_id`` + ``project_id`` (an action reached some other way).
    """

    recommendation_id = serializers.IntegerField(required=False)
    developer_id = serializers.IntegerField(required=False)
    project_id = serializers.IntegerField(required=False)
    action_taken = serializers.ChoiceField(choices=Recommendation.ACTIONS)
    feedback_score = serializers.IntegerField(required=False, allow_null=True, min_value=1, max_value=5)
    source = serializers.ChoiceField(choices=FeedbackEvent.SOURCES, required=False, default="manual")

    def validate(self, attrs):
        if attrs.get("recommendation_id") is None and (
            attrs.get("developer_id") is None or attrs.get("project_id") is None
        ):
            raise serializers.ValidationError("Provide recommendation_id, or developer_id and project_id")
        return attrs


class FeedbackEventSerializer(serializers.ModelSerializer):
    class Meta:
        model = FeedbackEvent
        fields = "__all__"


class AlgorithmConfigSerializer(serializers.ModelSerializer):
    class Meta:
        model = AlgorithmConfig
        fields = "__all__"
        read_only_fields = ("version", "is_active", "approved_by", "created_at")

    def validate(self, attrs):
        weights = [attrs.get(f, 0) for f in ("language_weight", "topic_weight", "difficulty_weight")]
        if any(w < 0 for w in weights):
            raise serializers.ValidationError("Weights must be non-negative")
        if {"language_weight", "topic_weight", "difficulty_weight"} <= set(attrs) and sum(weights) <= 0:
            raise serializers.ValidationError("Weights must not all be zero")
        if "pass_threshold" in attrs and not 0 <= attrs["pass_threshold"] <= 100:
            raise serializers.ValidationError({"pass_threshold": "Must be between 0 and 100"})
        return attrs


class WeightsSerializer(serializers.Serializer):
    language = serializers.FloatField(min_value=0)
    topic = serializers.FloatField(min_value=0)
    difficulty = serializers.FloatField(min_value=0)


class ApplyWeightsSerializer(serializers.Serializer):
    weights = WeightsSerializer()
    notes = serializers.CharField(required=False, allow_blank=True, default="")
