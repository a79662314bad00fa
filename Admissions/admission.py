"""
Admission controller: turns a finalized attempt into a membership or a
cooldown, plus the gating checks shared with challenge issuance.
"""
import logging
from datetime import timedelta
from typing import Dict, Optional

from django.db import transaction
from django.db.models import F
from django.utils.timezone import now as tz_now

from Admissions.models import ChallengeAttempt
from Matching.feedback import record_admission_outcome
from Matching.models import AlgorithmConfig, Project, ProjectMembership
from SkillGate.errors import ValidationError

PERSISTENCE_ALERT_TIERS = (
    (
        15,
        'You\'ve made {count} attempts at "{title}" - that shows incredible persistence! Sometimes it helps '
        "to step back and approach the problem from a different angle. Consider reaching out to the community "
        "for tips, or exploring similar but simpler projects to build your confidence.",
    ),
    (
        10,
        'We notice you\'ve been persistently trying to join "{title}". Your determination is admirable! You '
        "might want to take a short break, review some coding tutorials, or try some easier projects first.",
    ),
    (
        7,
        'It seems like you\'re having a hard time with the "{title}" challenge. Coding challenges can be '
        "tricky! Consider reviewing the requirements again; this project might be more advanced than your "
        "current skill level.",
    ),
)


def persistence_alert(failed_count: int, project_title: str) -> Optional[Dict]:
    for threshold, template in PERSISTENCE_ALERT_TIERS:
        if failed_count >= threshold:
            return {
                "should_show": True,
                "attempt_count": failed_count,
                "message": template.format(count=failed_count, title=project_title),
            }
    return None


def failed_attempt_count(developer_id, project_id) -> int:
    return ChallengeAttempt.objects.filter(
        developer_id=developer_id, project_id=project_id, state__in=("failed", "expired")
    ).count()


def is_member(developer_id, project: Project) -> bool:
    if project.owner_id == int(developer_id):
        return True
    return ProjectMembership.objects.filter(
        project=project, developer_id=developer_id, status="active"
    ).exists()


def active_cooldown(developer_id, project_id, now) -> Optional[ChallengeAttempt]:
    """The latest attempt whose cooldown has not expired yet, if any."""
    return (
        ChallengeAttempt.objects.filter(
            developer_id=developer_id, project_id=project_id, next_attempt_at__gt=now
        )
        .order_by("-next_attempt_at")
        .first()
    )


def recruiting_refusal(project: Project) -> Optional[str]:
    if project.status != "recruiting":
        return "project_not_recruiting"
    if project.current_members >= project.maximum_members:
        return "project_full"
    return None


def after_evaluation(attempt: ChallengeAttempt, now=None, config: Optional[AlgorithmConfig] = None) -> bool:
    """
    Apply the admission decision for a finalized attempt and return whether
    the developer is now a project member.

    Passed grants an active ``member`` membership, unless the project filled
    up or stopped recruiting in the meantime. Failed and expired attempts get
    ``next_attempt_at = now + cooldown``. Safe to call more than once: the
    membership is keyed by (project, developer) and the cooldown is written
    once.
    """
    if not attempt.is_terminal:
        raise ValidationError("Attempt is not finalized", attempt_id=attempt.id, state=attempt.state)
    now = now or tz_now()

    with transaction.atomic():
        if attempt.state == "passed":
            return _admit(attempt, now)

        if attempt.state in ("failed", "expired") and attempt.next_attempt_at is None:
            config = config or AlgorithmConfig.objects.current()
            attempt.next_attempt_at = now + timedelta(minutes=config.cooldown_minutes)
            attempt.save(update_fields=["next_attempt_at"])
            logging.info(
                "Attempt %s %s with score %s; developer %s may retry project %s at %s",
                attempt.id, attempt.state, attempt.score, attempt.developer_id, attempt.project_id,
                attempt.next_attempt_at,
            )
        return False


def _admit(attempt: ChallengeAttempt, now) -> bool:
    project = Project.objects.select_for_update().get(pk=attempt.project_id)

    if is_member(attempt.developer_id, project):
        if not attempt.membership_granted and project.owner_id != attempt.developer_id:
            attempt.membership_granted = True
            attempt.save(update_fields=["membership_granted"])
        return True

    refusal = recruiting_refusal(project)
    if refusal:
        attempt.admission_note = refusal
        attempt.save(update_fields=["admission_note"])
        logging.warning(
            "Attempt %s passed but developer %s was not admitted to project %s: %s",
            attempt.id, attempt.developer_id, project.id, refusal,
        )
        return False

    membership, created = ProjectMembership.objects.get_or_create(
        project=project,
        developer_id=attempt.developer_id,
        defaults={"role": "member", "status": "active", "joined_at": now},
    )
    if not created and membership.status != "active":
        membership.status = "active"
        membership.joined_at = now
        membership.save(update_fields=["status", "joined_at"])
        created = True
    if created:
        Project.objects.filter(pk=project.pk).update(current_members=F("current_members") + 1)
        record_admission_outcome(attempt.developer_id, project.id, now=now)

    attempt.membership_granted = True
    attempt.admission_note = ""
    attempt.save(update_fields=["membership_granted", "admission_note"])
    logging.info("Developer %s joined project %s via attempt %s", attempt.developer_id, project.id, attempt.id)
    return True

