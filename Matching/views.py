import logging

from rest_framework import mixins, status, viewsets
from rest_framework.decorators import action
from rest_framework.permissions import IsAdminUser
from rest_framework.views import APIView

from Matching.analytics import apply_weight_suggestion, effectiveness_metrics, suggest_weight_adjustments
from Matching.feedback import record_feedback, record_project_event
from Matching.models import AlgorithmConfig, Developer
from Matching.profiles import replace_skill_profile
from Matching.recommender import recommend_projects
from Matching.serializers import (
    AlgorithmConfigSerializer,
    ApplyWeightsSerializer,
    DeveloperSerializer,
    FeedbackEventSerializer,
    FeedbackSerializer,
    ProjectSerializer,
    RecommendationSerializer,
    SkillProfileSerializer,
)
from SkillGate.errors import ServiceError
from SkillGate.utils import create_response, error_response


def _approver(request) -> str:
    user = getattr(request, "user", None)
    return getattr(user, "username", "") or ""


class DeveloperViewSet(viewsets.ModelViewSet):
    queryset = Developer.objects.all().prefetch_related("languages", "topics").order_by("-id")
    serializer_class = DeveloperSerializer

    @action(detail=True, methods=["get"])
    def recommendations(self, request, pk=None):
        """
        Query: ?limit=<n>&persist=<true|false>
        """
        developer = self.get_object()
        try:
            limit = request.query_params.get("limit")
            limit = int(limit) if limit else None
            if limit is not None and limit <= 0:
                raise ValueError("limit must be positive")
        except ValueError:
            return create_response(False, "limit must be a positive integer", status_code=status.HTTP_400_BAD_REQUEST)
        persist = request.query_params.get("persist", "true").lower() not in ("false", "0", "no")

        try:
            results = recommend_projects(developer, limit=limit, persist=persist)
        except Exception as e:
            logging.exception("Recommendation run failed")
            return create_response(False, str(e), status_code=status.HTTP_500_INTERNAL_SERVER_ERROR)

        body = [
            {
                "recommendation_id": r.recommendation.id if r.recommendation else None,
                "project": ProjectSerializer(r.project).data,
                "score": r.score,
                "breakdown": r.breakdown,
            }
            for r in results
        ]
        return create_response(True, f"{len(body)} recommendation(s)", body)

    @action(detail=True, methods=["get", "put"])
    def skill_profile(self, request, pk=None):
        """
        PUT body: { "languages": [{"name": "py", "proficiency_level": "advanced"}],
                    "topics": [{"name": "web dev", "interest_level": "high"}] }
        """
        developer = self.get_object()
        if request.method == "GET":
            return create_response(True, "Skill profile", DeveloperSerializer(developer).data)

        serializer = SkillProfileSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        try:
            replace_skill_profile(
                developer,
                serializer.validated_data["languages"],
                serializer.validated_data["topics"],
            )
        except ServiceError as e:
            return error_response(e)

        developer = self.get_queryset().get(pk=developer.pk)
        return create_response(True, "Skill profile updated", DeveloperSerializer(developer).data)

    @action(detail=True, methods=["get"], url_path="recommendation_history")
    def recommendation_history(self, request, pk=None):
        developer = self.get_object()
        recs = developer.recommendations.select_related("project").order_by("-recommended_at", "-id")[:100]
        return create_response(True, "Recommendation history", RecommendationSerializer(recs, many=True).data)


class FeedbackView(APIView):
    def post(self, request):
        serializer = FeedbackSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        try:
            if data.get("recommendation_id") is not None:
                rec = record_feedback(data["recommendation_id"], data["action_taken"], data.get("feedback_score"))
                return create_response(True, "Feedback recorded", RecommendationSerializer(rec).data)

            event = record_project_event(
                data["developer_id"],
                data["project_id"],
                data["action_taken"],
                source=data["source"],
                feedback_score=data.get("feedback_score"),
            )
            return create_response(
                True, "Event recorded", FeedbackEventSerializer(event).data, status_code=status.HTTP_201_CREATED
            )
        except ServiceError as e:
            return error_response(e)


class AnalyticsViewSet(viewsets.ViewSet):
    @action(detail=False, methods=["get"])
    def effectiveness(self, request):
        """
        Query: ?type=recommendation|assessment|all&timeframe=30d
        """
        try:
            metrics = effectiveness_metrics(
                request.query_params.get("type", "recommendation"),
                request.query_params.get("timeframe", "30d"),
            )
        except ServiceError as e:
            return error_response(e)
        return create_response(True, "Effectiveness metrics", metrics)

    @action(detail=False, methods=["get", "post"], permission_classes=[IsAdminUser])
    def weight_suggestions(self, request):
        """
        GET: suggested weights for ?timeframe=30d.
        POST: { "weights": {"language": .., "topic": .., "difficulty": ..}, "notes": "" }
        activates them as a new config version.
        """
        if request.method == "GET":
            try:
                suggestion = suggest_weight_adjustments(request.query_params.get("timeframe", "30d"))
            except ServiceError as e:
                return error_response(e)
            return create_response(True, "Weight suggestions", suggestion)

        serializer = ApplyWeightsSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        try:
            config = apply_weight_suggestion(
                serializer.validated_data["weights"],
                approved_by=_approver(request),
                notes=serializer.validated_data["notes"],
            )
        except ServiceError as e:
            return error_response(e)
        return create_response(
            True, "New algorithm version activated", AlgorithmConfigSerializer(config).data,
            status_code=status.HTTP_201_CREATED,
        )


class AlgorithmConfigViewSet(
    mixins.ListModelMixin, mixins.RetrieveModelMixin, mixins.CreateModelMixin, viewsets.GenericViewSet
):
    """
    Versions are append-only: creating one derives it from the active
    version with the posted fields changed, and activates it.
    """

    queryset = AlgorithmConfig.objects.all()
    serializer_class = AlgorithmConfigSerializer
    permission_classes = [IsAdminUser]

    def create(self, request, *args, **kwargs):
        serializer = self.get_serializer(data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)
        changes = dict(serializer.validated_data)
        notes = changes.pop("notes", "")

        current = AlgorithmConfig.objects.current()
        merged = {**current.weights}
        merged.update({k[: -len("_weight")]: v for k, v in changes.items() if k.endswith("_weight")})
        if sum(merged.values()) <= 0:
            return create_response(False, "Weights must not all be zero", status_code=status.HTTP_400_BAD_REQUEST)

        config = current.new_version(approved_by=_approver(request), notes=notes, **changes)
        logging.info("AlgorithmConfig v%s created by %s", config.version, config.approved_by)
        return create_response(
            True, "New algorithm version activated", self.get_serializer(config).data,
            status_code=status.HTTP_201_CREATED,
        )

    @action(detail=False, methods=["get"])
    def active(self, request):
        return create_response(True, "Active algorithm version", self.get_serializer(AlgorithmConfig.objects.current()).data)
