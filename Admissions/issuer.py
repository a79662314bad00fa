import logging
from dataclasses import dataclass
from typing import Dict

from django.utils.timezone import now as tz_now

from Admissions.admission import (
    active_cooldown,
    failed_attempt_count,
    is_member,
    persistence_alert,
    recruiting_refusal,
)
from Admissions.challenges import EPHEMERAL, ChallengeSpec, select_challenge, spec_for_attempt
from Admissions.lifecycle import reconcile_open_attempts
from Admissions.locks import admission_lock
from Admissions.models import ChallengeAttempt
from Matching.models import AlgorithmConfig, Developer, Project
from SkillGate.errors import AlreadyMember, AttemptInCooldown, AttemptInProgress, NotFound, ValidationError


@dataclass
class IssuedChallenge:
    attempt: ChallengeAttempt
    challenge: ChallengeSpec
    reused: bool = False

    def as_dict(self) -> Dict:
        a = self.attempt
        challenge = self.challenge.public_view()
        challenge["time_limit_minutes"] = a.time_limit_minutes
        challenge["pass_threshold"] = a.pass_threshold
        return {
            "attempt_id": a.id,
            "state": a.state,
            "reused": self.reused,
            "issued_at": a.issued_at,
            "started_at": a.started_at,
            "deadline_at": a.deadline_at,
            "draft_code": a.draft_code,
            "challenge": challenge,
        }


def _get_pair(developer_id, project_id):
    developer = Developer.objects.filter(pk=developer_id).first()
    if developer is None:
        raise NotFound(f"Developer {developer_id} not found")
    project = Project.objects.prefetch_related("languages").filter(pk=project_id).first()
    if project is None:
        raise NotFound(f"Project {project_id} not found")
    return developer, project


def _issue_locked(developer: Developer, project: Project, now) -> IssuedChallenge:
    if is_member(developer.id, project):
        raise AlreadyMember("You are already a member of this project", project_id=project.id)

    open_attempt = ChallengeAttempt.objects.filter(
        developer=developer, project=project, state__in=ChallengeAttempt.OPEN_STATES
    ).first()
    if open_attempt is not None:
        raise AttemptInProgress(open_attempt)

    cooling = active_cooldown(developer.id, project.id, now)
    if cooling is not None:
        raise AttemptInCooldown(cooling.next_attempt_at)

    refusal = recruiting_refusal(project)
    if refusal:
        raise ValidationError("This project is not accepting new members", reason=refusal)

    config = AlgorithmConfig.objects.current()
    attempt_number = ChallengeAttempt.objects.filter(developer=developer, project=project).count() + 1
    challenge, spec = select_challenge(project, developer.id, attempt_number)

    attempt = ChallengeAttempt.objects.create(
        developer=developer,
        project=project,
        challenge=challenge,
        challenge_kind=spec.kind,
        ephemeral_challenge=spec.snapshot() if spec.kind == EPHEMERAL else None,
        time_limit_minutes=spec.time_limit_minutes,
        pass_threshold=spec.pass_threshold if spec.pass_threshold is not None else config.pass_threshold,
        issued_at=now,
    )
    logging.info(
        "Issued %s challenge '%s' to developer %s for project %s (attempt %s)",
        spec.kind, spec.title, developer.id, project.id, attempt.id,
    )
    return IssuedChallenge(attempt=attempt, challenge=spec)


def issue_challenge(developer_id, project_id, now=None) -> IssuedChallenge:
    """
    Issue a challenge for the pair, or hand back the open attempt if one
    exists. Raises ``AlreadyMember``, ``AttemptInCooldown`` (carrying
    ``next_attempt_at``), ``NotFound`` or ``ValidationError``.
    """
    now = now or tz_now()
    developer, project = _get_pair(developer_id, project_id)
    if is_member(developer.id, project):
        raise AlreadyMember("You are already a member of this project", project_id=project.id)

    # settle lapsed attempts first so their outcome commits on its own
    reconcile_open_attempts(developer.id, project.id, now=now)

    try:
        with admission_lock(developer.id, project.id):
            return _issue_locked(developer, project, now)
    except AttemptInProgress as e:
        logging.info("Developer %s already has attempt %s open for project %s", developer.id, e.attempt.id, project.id)
        return IssuedChallenge(attempt=e.attempt, challenge=spec_for_attempt(e.attempt), reused=True)


def can_attempt(developer_id, project_id, now=None) -> Dict:
    """
    Whether the developer may request a challenge for the project now.
    Returns ``can_attempt``, ``reason``, ``next_attempt_at``, the open
    ``attempt_id`` if any, and a persistence ``alert`` after repeated failures.
    """
    now = now or tz_now()
    developer, project = _get_pair(developer_id, project_id)
    result = {"can_attempt": False, "reason": None, "next_attempt_at": None, "attempt_id": None, "alert": None}

    if is_member(developer.id, project):
        result["reason"] = "already_member"
        return result

    reconcile_open_attempts(developer.id, project.id, now=now)
    result["alert"] = persistence_alert(failed_attempt_count(developer.id, project.id), project.title)

    open_attempt = ChallengeAttempt.objects.filter(
        developer=developer, project=project, state__in=ChallengeAttempt.OPEN_STATES
    ).first()
    if open_attempt is not None:
        # the open attempt can be resumed
        result.update(can_attempt=True, reason="attempt_in_progress", attempt_id=open_attempt.id)
        return result

    cooling = active_cooldown(developer.id, project.id, now)
    if cooling is not None:
        result.update(reason="attempt_in_cooldown", next_attempt_at=cooling.next_attempt_at)
        return result

    refusal = recruiting_refusal(project)
    if refusal:
        result["reason"] = refusal
        return result

    result["can_attempt"] = True
    return result
