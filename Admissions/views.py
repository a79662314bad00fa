import logging

from rest_framework import mixins, status, viewsets
from rest_framework.decorators import action

from Admissions.agents.challenge_agent import ai_suggest_challenges_for_project, save_drafts
from Admissions.issuer import can_attempt, issue_challenge
from Admissions.lifecycle import (
    abandon_attempt,
    attempt_history,
    attempt_stats,
    get_attempt,
    save_draft,
    start_attempt,
    submit_attempt,
)
from Admissions.models import Challenge, ChallengeAttempt
from Admissions.serializers import (
    ActivationSerializer,
    AttemptListSerializer,
    AttemptRequestSerializer,
    ChallengeAttemptSerializer,
    ChallengeSerializer,
    ChallengeSummarySerializer,
    CodeSerializer,
    DeveloperRequestSerializer,
)
from Matching.models import Project
from Matching.normalize import normalize_language, normalize_level
from SkillGate.errors import ServiceError
from SkillGate.utils import create_response, error_response


class ProjectAdmissionViewSet(viewsets.GenericViewSet):
    queryset = Project.objects.all().prefetch_related("languages", "topics")
    serializer_class = DeveloperRequestSerializer

    @action(detail=True, methods=["get"])
    def can_attempt(self, request, pk=None):
        """
        Query: ?developer_id=<id>
        """
        serializer = DeveloperRequestSerializer(data=request.query_params)
        serializer.is_valid(raise_exception=True)
        try:
            result = can_attempt(serializer.validated_data["developer_id"], pk)
        except ServiceError as e:
            return error_response(e)
        return create_response(True, result["reason"] or "ok", result)

    @action(detail=True, methods=["post"])
    def challenge(self, request, pk=None):
        """
        Body: { "developer_id": <id> }
        201 with a new attempt, 200 with the open one.
        """
        serializer = DeveloperRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        try:
            issued = issue_challenge(serializer.validated_data["developer_id"], pk)
        except ServiceError as e:
            return error_response(e)

        if issued.reused:
            return create_response(True, "Attempt already in progress", issued.as_dict())
        return create_response(True, "Challenge issued", issued.as_dict(), status_code=status.HTTP_201_CREATED)

    @action(detail=True, methods=["post"])
    def challenge_suggestions(self, request, pk=None):
        """
        Body: { "developer_id": <owner id>, "save": false }
        Drafts are returned for review; with save=true they are stored
        as inactive challenges.
        """
        project = self.get_object()
        serializer = DeveloperRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        if serializer.validated_data["developer_id"] != project.owner_id:
            return create_response(
                False, "Only the project owner can request challenge drafts", status_code=status.HTTP_403_FORBIDDEN
            )

        suggestions = ai_suggest_challenges_for_project(project)
        if not suggestions.get("challenges"):
            return create_response(
                False, "No challenge suggestions available", suggestions, status_code=status.HTTP_502_BAD_GATEWAY
            )

        save = str(request.data.get("save", "false")).lower() in ("true", "1", "yes")
        if save:
            try:
                saved = save_drafts(project, suggestions["challenges"])
            except Exception as e:
                logging.exception("Saving challenge drafts failed")
                return create_response(False, str(e), status_code=status.HTTP_500_INTERNAL_SERVER_ERROR)
            suggestions["saved"] = ChallengeSerializer(saved, many=True).data
        return create_response(True, "Challenge suggestions", suggestions)


class ChallengeAttemptViewSet(mixins.RetrieveModelMixin, viewsets.GenericViewSet):
    """
    Every call may pass ``developer_id``; when given, the attempt must
    belong to that developer.
    """

    queryset = ChallengeAttempt.objects.all()
    serializer_class = ChallengeAttemptSerializer

    def _developer_id(self, request):
        data = request.query_params.dict()
        if isinstance(request.data, dict):
            data.update(request.data)
        serializer = AttemptRequestSerializer(data=data)
        serializer.is_valid(raise_exception=True)
        return serializer.validated_data.get("developer_id")

    def _respond(self, attempt, message, status_code=status.HTTP_200_OK):
        return create_response(True, message, ChallengeAttemptSerializer(attempt).data, status_code=status_code)

    def retrieve(self, request, *args, **kwargs):
        developer_id = self._developer_id(request)
        try:
            attempt = get_attempt(kwargs["pk"], developer_id=developer_id)
        except ServiceError as e:
            return error_response(e)
        return self._respond(attempt, "Attempt")

    @action(detail=True, methods=["post"])
    def start(self, request, pk=None):
        developer_id = self._developer_id(request)
        try:
            attempt = start_attempt(pk, developer_id=developer_id)
        except ServiceError as e:
            return error_response(e)
        return self._respond(attempt, "Attempt started")

    @action(detail=True, methods=["post"])
    def draft(self, request, pk=None):
        """
        Body: { "developer_id": <id>, "code": "..." }
        """
        serializer = CodeSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        try:
            attempt = save_draft(pk, data["code"], developer_id=data.get("developer_id"))
        except ServiceError as e:
            return error_response(e)
        return self._respond(attempt, "Draft saved")

    @action(detail=True, methods=["post"])
    def submit(self, request, pk=None):
        """
        Body: { "developer_id": <id>, "code": "..." }
        Returns status, score, passed/total tests and whether the developer
        joined the project.
        """
        serializer = CodeSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        try:
            outcome = submit_attempt(pk, data["code"], developer_id=data.get("developer_id"))
        except ServiceError as e:
            return error_response(e)
        message = "Challenge passed" if outcome.status == "passed" else f"Challenge {outcome.status}"
        return create_response(True, message, outcome.as_dict())

    @action(detail=True, methods=["post"])
    def abandon(self, request, pk=None):
        developer_id = self._developer_id(request)
        try:
            attempt = abandon_attempt(pk, developer_id=developer_id)
        except ServiceError as e:
            return error_response(e)
        return self._respond(attempt, "Attempt abandoned")

    def list(self, request, *args, **kwargs):
        """
        Query: ?developer_id=<id>[&project=<id>][&state=<state>]
        """
        serializer = AttemptListSerializer(data=request.query_params)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        attempts = attempt_history(data["developer_id"], project_id=data.get("project"), state=data.get("state"))
        return create_response(True, "Attempts", ChallengeAttemptSerializer(attempts, many=True).data)

    @action(detail=False, methods=["get"])
    def stats(self, request):
        """
        Query: ?developer_id=<id>
        """
        serializer = DeveloperRequestSerializer(data=request.query_params)
        serializer.is_valid(raise_exception=True)
        return create_response(True, "Attempt statistics", attempt_stats(serializer.validated_data["developer_id"]))


class ChallengeViewSet(viewsets.ModelViewSet):
    """
    Challenge authoring for project owners.

    Reads are open but show test cases only when ``developer_id`` is the
    owner of the challenge's project. Writes require the owner's
    ``developer_id`` (body, or query string for DELETE). A challenge that
    an attempt references keeps its content; only ``is_active`` may change.

    List filters: ?language=, ?project=, ?difficulty=, ?active=true|false
    """

    queryset = Challenge.objects.all().select_related("project").prefetch_related("test_cases").order_by("-id")
    serializer_class = ChallengeSerializer

    def get_queryset(self):
        qs = super().get_queryset()
        if self.action != "list":
            return qs
        params = self.request.query_params
        if params.get("language"):
            qs = qs.filter(language=normalize_language(params["language"]) or params["language"])
        if params.get("project"):
            qs = qs.filter(project_id=params["project"])
        if params.get("difficulty"):
            qs = qs.filter(difficulty_level=normalize_level(params["difficulty"]) or params["difficulty"])
        if params.get("active") in ("true", "false"):
            qs = qs.filter(is_active=params["active"] == "true")
        return qs

    def _developer_id(self, request, required=True):
        data = request.query_params.dict()
        if isinstance(request.data, dict):
            data.update(request.data)
        serializer = (DeveloperRequestSerializer if required else AttemptRequestSerializer)(data=data)
        serializer.is_valid(raise_exception=True)
        return serializer.validated_data.get("developer_id")

    @staticmethod
    def _owns(project, developer_id):
        return project is not None and project.owner_id == developer_id

    @staticmethod
    def _forbidden():
        return create_response(
            False, "Only the project owner can manage its challenges", status_code=status.HTTP_403_FORBIDDEN
        )

    def list(self, request, *args, **kwargs):
        if not request.query_params.get("project", "0").isdigit():
            return create_response(False, "project must be an integer", status_code=status.HTTP_400_BAD_REQUEST)
        return create_response(True, "Challenges", ChallengeSummarySerializer(self.get_queryset(), many=True).data)

    def retrieve(self, request, *args, **kwargs):
        challenge = self.get_object()
        if self._owns(challenge.project, self._developer_id(request, required=False)):
            return create_response(True, "Challenge", ChallengeSerializer(challenge).data)
        return create_response(True, "Challenge", ChallengeSummarySerializer(challenge).data)

    def create(self, request, *args, **kwargs):
        developer_id = self._developer_id(request)
        serializer = ChallengeSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        if not self._owns(serializer.validated_data["project"], developer_id):
            return self._forbidden()
        challenge = serializer.save()
        logging.info("Developer %s created challenge %s for project %s", developer_id, challenge.id,
                     challenge.project_id)
        return create_response(True, "Challenge created", ChallengeSerializer(challenge).data,
                               status_code=status.HTTP_201_CREATED)

    def update(self, request, *args, **kwargs):
        partial = kwargs.pop("partial", False)
        challenge = self.get_object()
        developer_id = self._developer_id(request)
        if not self._owns(challenge.project, developer_id):
            return self._forbidden()

        serializer = ChallengeSerializer(challenge, data=request.data, partial=partial)
        serializer.is_valid(raise_exception=True)
        if not self._owns(serializer.validated_data.get("project", challenge.project), developer_id):
            return self._forbidden()
        try:
            challenge = serializer.save()
        except ServiceError as e:
            return error_response(e)
        if getattr(challenge, "_prefetched_objects_cache", None):
            challenge._prefetched_objects_cache = {}
        return create_response(True, "Challenge updated", ChallengeSerializer(challenge).data)

    def destroy(self, request, *args, **kwargs):
        challenge = self.get_object()
        if not self._owns(challenge.project, self._developer_id(request)):
            return self._forbidden()
        challenge_id = challenge.id
        try:
            challenge.delete()
        except ServiceError as e:
            return error_response(e)
        return create_response(True, "Challenge deleted", {"id": challenge_id})

    @action(detail=True, methods=["post"])
    def activate(self, request, pk=None):
        """
        Body: { "developer_id": <owner id>, "is_active": true }
        """
        challenge = self.get_object()
        serializer = ActivationSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        if not self._owns(challenge.project, data["developer_id"]):
            return self._forbidden()
        if data["is_active"] and not challenge.test_cases.exists():
            return create_response(
                False, "An active challenge needs at least one test case", status_code=status.HTTP_400_BAD_REQUEST
            )

        challenge.is_active = data["is_active"]
        challenge.save(update_fields=["is_active"])
        message = "Challenge activated" if challenge.is_active else "Challenge deactivated"
        return create_response(True, message, ChallengeSummarySerializer(challenge).data)
