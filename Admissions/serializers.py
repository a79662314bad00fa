from django.db import transaction
from rest_framework import serializers

from Admissions.challenges import spec_for_attempt
from Admissions.models import Challenge, ChallengeAttempt, ChallengeTestCase
from Matching.normalize import normalize_language, normalize_level
from SkillGate.errors import ChallengeLocked


class ChallengeTestCaseSerializer(serializers.ModelSerializer):
    class Meta:
        model = ChallengeTestCase
        fields = ("id", "position", "input", "expected_output", "weight", "comparison", "tolerance")
        read_only_fields = ("id", "position")
        extra_kwargs = {"weight": {"min_value": 1}}


class ChallengeSerializer(serializers.ModelSerializer):
    """
    Owner-facing challenge, expected outputs included. Writes take the test
    cases as a list in order and replace the stored ones wholesale.
    """

    test_cases = ChallengeTestCaseSerializer(many=True, required=False)

    class Meta:
        model = Challenge
        fields = (
            "id", "title", "description", "project", "language", "difficulty_level", "starter_code",
            "time_limit_minutes", "pass_threshold", "is_active", "created_at", "test_cases",
        )
        read_only_fields = ("id", "created_at")
        extra_kwargs = {"project": {"required": True, "allow_null": False}}

    def validate_language(self, value):
        language = normalize_language(value)
        if language is None:
            raise serializers.ValidationError(f"Unknown language '{value}'")
        return language

    def to_internal_value(self, data):
        # accept easy/medium/hard as well as the stored levels
        if hasattr(data, "get") and data.get("difficulty_level"):
            data = data.copy()
            data["difficulty_level"] = normalize_level(data["difficulty_level"]) or data["difficulty_level"]
        return super().to_internal_value(data)

    def validate_pass_threshold(self, value):
        if value is not None and not 0 <= value <= 100:
            raise serializers.ValidationError("Pass threshold must be between 0 and 100")
        return value

    def validate(self, attrs):
        if "test_cases" in attrs:
            has_tests = bool(attrs["test_cases"])
        else:
            has_tests = self.instance is not None and self.instance.test_cases.exists()
        is_active = attrs.get("is_active", self.instance.is_active if self.instance else True)
        if is_active and not has_tests:
            raise serializers.ValidationError({"test_cases": "An active challenge needs at least one test case"})
        return attrs

    @staticmethod
    def _write_tests(challenge, tests):
        for position, test in enumerate(tests):
            ChallengeTestCase.objects.create(challenge=challenge, position=position, **test)

    @transaction.atomic
    def create(self, validated_data):
        tests = validated_data.pop("test_cases", [])
        challenge = Challenge.objects.create(**validated_data)
        self._write_tests(challenge, tests)
        return challenge

    @transaction.atomic
    def update(self, instance, validated_data):
        tests = validated_data.pop("test_cases", None)
        if tests is not None and instance.is_referenced():
            raise ChallengeLocked(f"Challenge {instance.pk} is referenced by an attempt and cannot change")
        for k, v in validated_data.items():
            setattr(instance, k, v)
        instance.save()

        if tests is not None:
            instance.test_cases.all().delete()
            self._write_tests(instance, tests)
        return instance


class ChallengeSummarySerializer(serializers.ModelSerializer):
    """What anyone may see of a challenge: no test cases."""

    test_count = serializers.SerializerMethodField()

    class Meta:
        model = Challenge
        fields = (
            "id", "title", "description", "project", "language", "difficulty_level", "starter_code",
            "time_limit_minutes", "pass_threshold", "is_active", "created_at", "test_count",
        )
        read_only_fields = fields

    def get_test_count(self, obj):
        return len(obj.test_cases.all())


class ChallengeAttemptSerializer(serializers.ModelSerializer):
    """Candidate-facing view: never includes expected outputs."""

    challenge = serializers.SerializerMethodField()
    deadline_at = serializers.DateTimeField(read_only=True)

    class Meta:
        model = ChallengeAttempt
        fields = (
            "id", "developer", "project", "challenge_kind", "challenge", "state",
            "time_limit_minutes", "pass_threshold", "issued_at", "started_at", "deadline_at",
            "submitted_at", "finalized_at", "draft_code", "draft_saved_at", "submitted_code",
            "score", "passed_tests", "total_tests", "test_results", "evaluation_fault",
            "feedback", "next_attempt_at", "membership_granted", "admission_note",
        )
        read_only_fields = fields

    def get_challenge(self, obj):
        view = spec_for_attempt(obj).public_view()
        view["time_limit_minutes"] = obj.time_limit_minutes
        view["pass_threshold"] = obj.pass_threshold
        return view


class DeveloperRequestSerializer(serializers.Serializer):
    developer_id = serializers.IntegerField()


class ActivationSerializer(DeveloperRequestSerializer):
    is_active = serializers.BooleanField(default=True)


class AttemptListSerializer(DeveloperRequestSerializer):
    project = serializers.IntegerField(required=False)
    state = serializers.ChoiceField(choices=[s for s, _ in ChallengeAttempt.STATES], required=False)


class CodeSerializer(serializers.Serializer):
    developer_id = serializers.IntegerField(required=False)
    code = serializers.CharField(allow_blank=True, trim_whitespace=False, required=False, default="")


class AttemptRequestSerializer(serializers.Serializer):
    developer_id = serializers.IntegerField(required=False)
