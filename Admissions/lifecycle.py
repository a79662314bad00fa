"""
Attempt lifecycle.

    issued -> started -> submitted -> passed | failed
    started --(time limit lapsed)--> expired
    issued | started --(cancel)--> abandoned

The server clock is authoritative. An attempt whose timer has lapsed is
auto-submitted with its last saved draft the next time anything touches it
(request or sweep); a late explicit submission is scored as expired.

Every state change for a (developer, project) pair happens under
``admission_lock``. Submission evaluates while holding that lock but outside
any database transaction, then commits the submitted code, score, terminal
state and admission decision together. ``submitted`` is therefore never
persisted on its own and no reader sees a submission without its score.
"""
import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Dict, List, Optional

from django.conf import settings
from django.db import transaction
from django.db.models import Avg, Count, Max
from django.utils.timezone import now as tz_now

from Admissions.admission import after_evaluation, failed_attempt_count, persistence_alert
from Admissions.challenges import spec_for_attempt
from Admissions.evaluator import EvaluationResult, feedback_for, run_evaluation
from Admissions.locks import admission_lock
from Admissions.models import ChallengeAttempt
from Matching.models import AlgorithmConfig
from SkillGate.errors import AttemptAlreadyFinalized, NotFound, ValidationError

MAX_CODE_LENGTH = 100_000


@dataclass
class SubmissionOutcome:
    attempt: ChallengeAttempt
    project_joined: bool
    alert: Optional[Dict] = None

    @property
    def status(self) -> str:
        return self.attempt.state

    def as_dict(self) -> Dict:
        a = self.attempt
        return {
            "attempt_id": a.id,
            "status": a.state,
            "score": a.score,
            "passed_tests": a.passed_tests,
            "total_tests": a.total_tests,
            "project_joined": self.project_joined,
            "feedback": a.feedback,
            "next_attempt_at": a.next_attempt_at,
            "admission_note": a.admission_note,
            "alert": self.alert,
        }


def _check_code(code: Optional[str]) -> str:
    code = code or ""
    if len(code) > MAX_CODE_LENGTH:
        raise ValidationError(f"Code must be at most {MAX_CODE_LENGTH} characters")
    return code


def _load(attempt_id, developer_id=None) -> ChallengeAttempt:
    qs = ChallengeAttempt.objects.filter(pk=attempt_id)
    if developer_id is not None:
        qs = qs.filter(developer_id=developer_id)
    attempt = qs.first()
    if attempt is None:
        raise NotFound(f"Attempt {attempt_id} not found")
    return attempt


def _raise_if_finalized(attempt: ChallengeAttempt) -> None:
    if attempt.state == "submitted" or attempt.is_terminal:
        raise AttemptAlreadyFinalized("Attempt is already finalized", attempt_id=attempt.id, state=attempt.state)


def _issued_ttl_lapsed(attempt: ChallengeAttempt, now) -> bool:
    ttl = settings.ISSUED_ATTEMPT_TTL_MINUTES
    return attempt.state == "issued" and ttl > 0 and now > attempt.issued_at + timedelta(minutes=ttl)


def needs_reconcile(attempt: ChallengeAttempt, now) -> bool:
    return attempt.has_lapsed(now) or _issued_ttl_lapsed(attempt, now)


def _finalize(attempt: ChallengeAttempt, code: str, now, expired: bool, runner=None) -> bool:
    """
    Evaluate and write the terminal state. Caller holds the pair lock and
    must not be inside a transaction, so other pairs keep moving while the
    sandbox runs.
    """
    spec = spec_for_attempt(attempt)
    result: EvaluationResult = run_evaluation(spec, code, runner)

    attempt.submitted_code = code
    attempt.submitted_at = now
    attempt.score = result.score
    attempt.passed_tests = result.passed_tests
    attempt.total_tests = result.total_tests
    attempt.test_results = result.results_as_dicts()
    attempt.evaluation_fault = result.fault
    attempt.state = "expired" if expired else result.status(attempt.pass_threshold)
    attempt.feedback = feedback_for(result, attempt.pass_threshold)
    if expired:
        attempt.feedback = "Time limit exceeded; your last saved code was scored. " + attempt.feedback
    attempt.finalized_at = now
    with transaction.atomic():
        attempt.save(update_fields=[
            "submitted_code", "submitted_at", "score", "passed_tests", "total_tests", "test_results",
            "evaluation_fault", "state", "feedback", "finalized_at",
        ])
        joined = after_evaluation(attempt, now=now)
    logging.info(
        "Attempt %s finalized as %s (score %s, %s/%s tests)",
        attempt.id, attempt.state, attempt.score, attempt.passed_tests, attempt.total_tests,
    )
    return joined


def _abandon(attempt: ChallengeAttempt, now, reason: str) -> None:
    cooldown = attempt.state == "started"
    attempt.state = "abandoned"
    attempt.finalized_at = now
    attempt.feedback = reason
    fields = ["state", "finalized_at", "feedback"]
    if cooldown:
        config = AlgorithmConfig.objects.current()
        attempt.next_attempt_at = now + timedelta(minutes=config.cooldown_minutes)
        fields.append("next_attempt_at")
    attempt.save(update_fields=fields)
    logging.info("Attempt %s abandoned (%s)", attempt.id, reason)


def reconcile_locked(attempt: ChallengeAttempt, now, runner=None) -> ChallengeAttempt:
    """
    Bring an open attempt in line with the clock. Caller holds the pair lock.
    """
    if attempt.has_lapsed(now):
        logging.info("Attempt %s passed its deadline; auto-submitting the saved draft", attempt.id)
        _finalize(attempt, attempt.draft_code, now, expired=True, runner=runner)
    elif _issued_ttl_lapsed(attempt, now):
        _abandon(attempt, now, "Challenge was never started")
    return attempt


def reconcile_pair_locked(developer_id, project_id, now, runner=None) -> Optional[ChallengeAttempt]:
    """Reconcile the pair's open attempt, returning it if it is still open."""
    attempt = ChallengeAttempt.objects.filter(
        developer_id=developer_id, project_id=project_id, state__in=ChallengeAttempt.OPEN_STATES
    ).first()
    if attempt is None:
        return None
    reconcile_locked(attempt, now, runner)
    return None if attempt.is_terminal else attempt


def reconcile_open_attempts(developer_id, project_id, now=None, runner=None) -> None:
    now = now or tz_now()
    open_attempt = ChallengeAttempt.objects.filter(
        developer_id=developer_id, project_id=project_id, state__in=ChallengeAttempt.OPEN_STATES
    ).first()
    if open_attempt is None or not needs_reconcile(open_attempt, now):
        return
    with admission_lock(developer_id, project_id):
        reconcile_pair_locked(developer_id, project_id, now, runner)


def get_attempt(attempt_id, developer_id=None, now=None) -> ChallengeAttempt:
    now = now or tz_now()
    attempt = _load(attempt_id, developer_id)
    if needs_reconcile(attempt, now):
        with admission_lock(attempt.developer_id, attempt.project_id):
            attempt = ChallengeAttempt.objects.get(pk=attempt.pk)
            reconcile_locked(attempt, now)
    return attempt


def start_attempt(attempt_id, developer_id=None, now=None) -> ChallengeAttempt:
    """
    Start the timer. Starting an already started attempt is a no-op and does
    not reset the clock.
    """
    now = now or tz_now()
    attempt = _load(attempt_id, developer_id)
    with admission_lock(attempt.developer_id, attempt.project_id):
        attempt = ChallengeAttempt.objects.get(pk=attempt.pk)
        reconcile_locked(attempt, now)
        if attempt.state == "issued":
            attempt.state = "started"
            attempt.started_at = now
            attempt.save(update_fields=["state", "started_at"])
            logging.info("Attempt %s started; deadline %s", attempt.id, attempt.deadline_at)
    _raise_if_finalized(attempt)
    return attempt


def save_draft(attempt_id, code, developer_id=None, now=None) -> ChallengeAttempt:
    now = now or tz_now()
    code = _check_code(code)
    attempt = _load(attempt_id, developer_id)
    with admission_lock(attempt.developer_id, attempt.project_id):
        attempt = ChallengeAttempt.objects.get(pk=attempt.pk)
        reconcile_locked(attempt, now)
        if not attempt.is_terminal:
            attempt.draft_code = code
            attempt.draft_saved_at = now
            attempt.save(update_fields=["draft_code", "draft_saved_at"])
    _raise_if_finalized(attempt)
    return attempt


def submit_attempt(attempt_id, code, developer_id=None, now=None, runner=None) -> SubmissionOutcome:
    """
    Evaluate the submission and finalize the attempt. A submission after the
    deadline is scored as ``expired`` and never admits. Evaluation is
    write-once: a second submission raises ``AttemptAlreadyFinalized``.
    """
    now = now or tz_now()
    code = _check_code(code)
    attempt = _load(attempt_id, developer_id)

    joined = False
    with admission_lock(attempt.developer_id, attempt.project_id):
        attempt = ChallengeAttempt.objects.get(pk=attempt.pk)
        _raise_if_finalized(attempt)
        if attempt.state == "issued":
            if not _issued_ttl_lapsed(attempt, now):
                raise ValidationError("Start the attempt before submitting", attempt_id=attempt.id)
            _abandon(attempt, now, "Challenge was never started")
        else:
            expired = attempt.has_lapsed(now)
            if expired and not code.strip():
                code = attempt.draft_code
            joined = _finalize(attempt, code, now, expired=expired, runner=runner)

    if attempt.state == "abandoned":
        _raise_if_finalized(attempt)

    alert = None
    if attempt.state != "passed":
        alert = persistence_alert(failed_attempt_count(attempt.developer_id, attempt.project_id), attempt.project.title)
    return SubmissionOutcome(attempt=attempt, project_joined=joined, alert=alert)


def abandon_attempt(attempt_id, developer_id=None, now=None) -> ChallengeAttempt:
    """
    Cancel an open attempt. Abandoning before the timer starts is free;
    abandoning a running attempt starts the normal cooldown.
    """
    now = now or tz_now()
    attempt = _load(attempt_id, developer_id)
    with admission_lock(attempt.developer_id, attempt.project_id):
        attempt = ChallengeAttempt.objects.get(pk=attempt.pk)
        reconcile_locked(attempt, now)
        abandoned = not attempt.is_terminal
        if abandoned:
            _abandon(attempt, now, "Abandoned by the developer")
    if not abandoned:
        _raise_if_finalized(attempt)
    return attempt


def sweep_lapsed_attempts(now=None) -> Dict[str, int]:
    """
    Reconcile every open attempt whose timer or issued TTL has lapsed.
    Returns counts by resulting state.
    """
    now = now or tz_now()
    counts: Dict[str, int] = {}

    candidates = list(
        ChallengeAttempt.objects.filter(state="started", time_limit_minutes__isnull=False)
    )
    ttl = settings.ISSUED_ATTEMPT_TTL_MINUTES
    if ttl > 0:
        candidates += list(
            ChallengeAttempt.objects.filter(state="issued", issued_at__lt=now - timedelta(minutes=ttl))
        )

    for attempt in candidates:
        if not needs_reconcile(attempt, now):
            continue
        with admission_lock(attempt.developer_id, attempt.project_id):
            attempt = ChallengeAttempt.objects.get(pk=attempt.pk)
            reconcile_locked(attempt, now)
        if attempt.is_terminal:
            counts[attempt.state] = counts.get(attempt.state, 0) + 1

    if counts:
        logging.info("Swept lapsed attempts: %s", counts)
    return counts


def attempt_history(developer_id, project_id=None, state=None, now=None) -> List[ChallengeAttempt]:
    """A developer's attempts, newest first, lapsed ones reconciled first."""
    now = now or tz_now()
    qs = ChallengeAttempt.objects.filter(developer_id=developer_id)
    if project_id is not None:
        qs = qs.filter(project_id=project_id)

    for attempt in qs.filter(state__in=ChallengeAttempt.OPEN_STATES):
        if needs_reconcile(attempt, now):
            reconcile_open_attempts(attempt.developer_id, attempt.project_id, now=now)

    if state:
        qs = qs.filter(state=state)
    return list(qs.select_related("challenge", "project").order_by("-issued_at", "-id"))


def attempt_stats(developer_id) -> Dict:
    attempts = ChallengeAttempt.objects.filter(developer_id=developer_id)
    by_state = {s: 0 for s, _ in ChallengeAttempt.STATES}
    for row in attempts.values("state").annotate(n=Count("id")):
        by_state[row["state"]] = row["n"]

    graded = by_state["passed"] + by_state["failed"] + by_state["expired"]
    scores = attempts.filter(score__isnull=False).aggregate(average=Avg("score"), best=Max("score"))
    return {
        "total_attempts": sum(by_state.values()),
        "by_state": by_state,
        "pass_rate": round(by_state["passed"] / graded, 4) if graded else 0.0,
        "average_score": round(scores["average"], 2) if scores["average"] is not None else None,
        "best_score": scores["best"],
        "projects_attempted": attempts.values("project").distinct().count(),
        "projects_joined": attempts.filter(membership_granted=True).values("project").distinct().count(),
    }
