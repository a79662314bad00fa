import logging
from typing import Optional

from django.db import transaction
from django.utils.timezone import now as tz_now

from Matching.models import Developer, FeedbackEvent, Project, Recommendation
from SkillGate.errors import NotFound, ValidationError

# An observed action never downgrades a stronger one already recorded.
ACTION_RANK = {"viewed": 0, "ignored": 1, "applied": 2, "joined": 3}
EVENT_SOURCES = {s for s, _ in FeedbackEvent.SOURCES}


def _validate(action_taken: str, feedback_score: Optional[int]) -> None:
    if action_taken not in ACTION_RANK:
        raise ValidationError(
            f"Invalid action '{action_taken}'", allowed=sorted(ACTION_RANK, key=ACTION_RANK.get)
        )
    if feedback_score is not None and not (1 <= int(feedback_score) <= 5):
        raise ValidationError("feedback_score must be between 1 and 5")


def _apply_action(rec: Recommendation, action_taken: str, feedback_score: Optional[int], now) -> None:
    fields = []
    if rec.action_taken is None or ACTION_RANK[action_taken] >= ACTION_RANK[rec.action_taken]:
        rec.action_taken = action_taken
        rec.acted_at = now
        fields += ["action_taken", "acted_at"]
    if feedback_score is not None:
        rec.feedback_score = int(feedback_score)
        fields.append("feedback_score")
    if fields:
        rec.save(update_fields=fields)


def current_recommendation(developer_id, project_id) -> Optional[Recommendation]:
    return (
        Recommendation.objects.select_for_update()
        .filter(developer_id=developer_id, project_id=project_id, superseded=False)
        .order_by("-recommended_at", "-id")
        .first()
    )


def record_feedback(recommendation_id, action_taken: str, feedback_score: Optional[int] = None, now=None) -> Recommendation:
    """
    Record an action observed on a recommendation. The row keeps the strongest
    action seen; every call is also appended to the event log.
    """
    _validate(action_taken, feedback_score)
    now = now or tz_now()

    with transaction.atomic():
        rec = Recommendation.objects.select_for_update().filter(pk=recommendation_id).first()
        if rec is None:
            raise NotFound(f"Recommendation {recommendation_id} not found")
        _apply_action(rec, action_taken, feedback_score, now)
        FeedbackEvent.objects.create(
            developer_id=rec.developer_id,
            project_id=rec.project_id,
            recommendation=rec,
            action_taken=action_taken,
            feedback_score=feedback_score,
            source="recommendation",
            created_at=now,
        )

    logging.info("Recommendation %s: %s", rec.id, action_taken)
    return rec


def record_project_event(
    developer_id,
    project_id,
    action_taken: str,
    source: str = "manual",
    feedback_score: Optional[int] = None,
    now=None,
) -> FeedbackEvent:
    """
    Record an action on a project reached outside the recommendation list
    (search, manual join, admission). If the pair has a live recommendation
    the event is linked to it and the action folded in.
    """
    _validate(action_taken, feedback_score)
    if source not in EVENT_SOURCES:
        raise ValidationError(f"Invalid source '{source}'", allowed=sorted(EVENT_SOURCES))
    if not Developer.objects.filter(pk=developer_id).exists():
        raise NotFound(f"Developer {developer_id} not found")
    if not Project.objects.filter(pk=project_id).exists():
        raise NotFound(f"Project {project_id} not found")
    now = now or tz_now()

    with transaction.atomic():
        rec = current_recommendation(developer_id, project_id)
        if rec is not None:
            _apply_action(rec, action_taken, feedback_score, now)
        return FeedbackEvent.objects.create(
            developer_id=developer_id,
            project_id=project_id,
            recommendation=rec,
            action_taken=action_taken,
            feedback_score=feedback_score,
            source=source,
            created_at=now,
        )


def record_admission_outcome(developer_id, project_id, now=None) -> FeedbackEvent:
    """A passed challenge is a join."""
    return record_project_event(developer_id, project_id, "joined", source="admission", now=now)
