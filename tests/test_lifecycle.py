import logging
from datetime import timedelta

import pytest
from django.utils.timezone import now as tz_now

from Admissions.issuer import issue_challenge
from Admissions.lifecycle import (
    abandon_attempt,
    get_attempt,
    save_draft,
    start_attempt,
    submit_attempt,
    sweep_lapsed_attempts,
)
from Admissions.models import AttemptLock, Challenge, ChallengeAttempt
from Matching.models import ProjectMembership
from SkillGate.errors import (
    AttemptAlreadyFinalized,
    AttemptBusy,
    ChallengeLocked,
    NotFound,
    SandboxUnavailable,
    ValidationError,
)

pytestmark = pytest.mark.django_db


@pytest.fixture
def started(make_developer, make_project, make_challenge, t0):
    """A started attempt on a 30 minute, five-test challenge."""
    dev = make_developer()
    project = make_project()
    make_challenge(project=project, time_limit_minutes=30)
    attempt = issue_challenge(dev.id, project.id, now=t0).attempt
    return start_attempt(attempt.id, now=t0)


def test_start_sets_clock_once(started, t0):
    assert started.state == "started"
    assert started.deadline_at == t0 + timedelta(minutes=30)

    again = start_attempt(started.id, now=t0 + timedelta(minutes=10))
    assert again.started_at == t0


def test_submit_before_start_is_rejected(make_developer, make_project, answer_runner, passing, t0):
    answer_runner(answers=passing(5))
    dev = make_developer()
    attempt = issue_challenge(dev.id, make_project().id, now=t0).attempt
    with pytest.raises(ValidationError):
        submit_attempt(attempt.id, "code", now=t0)


def test_passing_submission_finalizes_and_joins(started, answer_runner, passing, t0):
    answer_runner(answers=passing(4))
    outcome = submit_attempt(started.id, "print(input())", now=t0 + timedelta(minutes=5))

    body = outcome.as_dict()
    assert body["status"] == "passed"
    assert (body["score"], body["passed_tests"], body["total_tests"]) == (80, 4, 5)
    assert body["project_joined"] is True
    stored = ChallengeAttempt.objects.get(pk=started.id)
    assert stored.state == "passed"
    assert stored.submitted_code == "print(input())"
    assert stored.finalized_at == t0 + timedelta(minutes=5)


def test_failing_submission_sets_cooldown(started, answer_runner, passing, t0):
    answer_runner(answers=passing(3))
    submitted_at = t0 + timedelta(minutes=5)
    outcome = submit_attempt(started.id, "code", now=submitted_at)

    assert outcome.status == "failed"
    assert outcome.attempt.score == 60
    assert outcome.project_joined is False
    assert outcome.attempt.next_attempt_at == submitted_at + timedelta(minutes=60)
    assert not ProjectMembership.objects.filter(developer_id=started.developer_id).exists()


def test_second_submission_is_rejected(started, answer_runner, passing, t0):
    answer_runner(answers=passing(5))
    submit_attempt(started.id, "code", now=t0 + timedelta(minutes=1))
    with pytest.raises(AttemptAlreadyFinalized):
        submit_attempt(started.id, "better code", now=t0 + timedelta(minutes=2))
    assert ChallengeAttempt.objects.get(pk=started.id).submitted_code == "code"


def test_late_submission_is_scored_as_expired(started, answer_runner, passing, t0):
    answer_runner(answers=passing(5))
    late = t0 + timedelta(minutes=31)
    outcome = submit_attempt(started.id, "late code", now=late)

    assert outcome.status == "expired"
    assert outcome.attempt.score == 100
    assert outcome.attempt.submitted_code == "late code"
    assert outcome.project_joined is False
    assert outcome.attempt.next_attempt_at == late + timedelta(minutes=60)


def test_lapsed_attempt_is_auto_submitted_with_draft_on_read(started, answer_runner, passing, t0):
    answer_runner(answers=passing(2))
    save_draft(started.id, "draft code", now=t0 + timedelta(minutes=10))

    attempt = get_attempt(started.id, now=t0 + timedelta(minutes=45))

    assert attempt.state == "expired"
    assert attempt.submitted_code == "draft code"
    assert attempt.score == 40


def test_empty_draft_is_a_valid_failing_submission(started, answer_runner, passing, t0):
    runner = answer_runner(answers=passing(5))
    counts = sweep_lapsed_attempts(now=t0 + timedelta(hours=1))

    attempt = ChallengeAttempt.objects.get(pk=started.id)
    assert counts == {"expired": 1}
    assert attempt.score == 0
    assert runner.calls == []


def test_sweep_abandons_stale_issued_attempts(make_developer, make_project, settings, t0):
    settings.ISSUED_ATTEMPT_TTL_MINUTES = 60
    attempt = issue_challenge(make_developer().id, make_project().id, now=t0).attempt

    assert sweep_lapsed_attempts(now=t0 + timedelta(minutes=30)) == {}
    assert sweep_lapsed_attempts(now=t0 + timedelta(minutes=61)) == {"abandoned": 1}

    attempt.refresh_from_db()
    assert attempt.state == "abandoned"
    assert attempt.next_attempt_at is None


def test_abandon_issued_has_no_cooldown(make_developer, make_project, t0):
    dev = make_developer()
    project = make_project()
    attempt = issue_challenge(dev.id, project.id, now=t0).attempt

    abandoned = abandon_attempt(attempt.id, now=t0)
    assert abandoned.state == "abandoned"
    assert abandoned.next_attempt_at is None
    assert issue_challenge(dev.id, project.id, now=t0).reused is False


def test_abandon_started_sets_cooldown(started, t0):
    abandoned = abandon_attempt(started.id, now=t0 + timedelta(minutes=3))
    assert abandoned.next_attempt_at == t0 + timedelta(minutes=63)
    with pytest.raises(AttemptAlreadyFinalized):
        abandon_attempt(started.id, now=t0 + timedelta(minutes=4))


def test_sandbox_outage_finalizes_as_failed_zero(started, answer_runner, passing, t0):
    answer_runner(answers=passing(5), faults=100, fault_exc=SandboxUnavailable("down"))
    outcome = submit_attempt(started.id, "code", now=t0 + timedelta(minutes=1))

    assert outcome.status == "failed"
    assert outcome.attempt.score == 0
    assert outcome.attempt.evaluation_fault is True


def test_attempts_are_scoped_to_their_developer(started, t0):
    with pytest.raises(NotFound):
        get_attempt(started.id, developer_id=started.developer_id + 1000, now=t0)


def test_referenced_challenge_is_immutable(started):
    challenge = Challenge.objects.get(pk=started.challenge_id)
    challenge.title = "Changed"
    with pytest.raises(ChallengeLocked):
        challenge.save()
    with pytest.raises(ChallengeLocked):
        challenge.delete()
    with pytest.raises(ChallengeLocked):
        challenge.test_cases.first().delete()


def test_pair_lease_held_elsewhere_reports_busy(started, settings, t0):
    settings.ADMISSION_LOCK_WAIT_SECONDS = 0.1
    pair = {"developer_id": started.developer_id, "project_id": started.project_id}
    AttemptLock.objects.filter(**pair).update(holder="other-process", held_until=tz_now() + timedelta(minutes=5))

    with pytest.raises(AttemptBusy):
        save_draft(started.id, "print(1)", now=t0 + timedelta(minutes=1))
    assert ChallengeAttempt.objects.get(pk=started.pk).draft_code == ""

    # a lease left behind by a crashed holder lapses
    AttemptLock.objects.filter(**pair).update(held_until=tz_now() - timedelta(seconds=1))
    assert save_draft(started.id, "print(1)", now=t0 + timedelta(minutes=1)).draft_code == "print(1)"
    assert AttemptLock.objects.get(**pair).holder == ""


def test_finalized_attempt_records_submission_with_score(started, answer_runner, passing, t0):
    answer_runner(answers=passing(2))
    submit_attempt(started.id, "print(input())", now=t0 + timedelta(minutes=5))

    attempt = ChallengeAttempt.objects.get(pk=started.pk)
    assert attempt.state == "failed"
    assert (attempt.submitted_code, attempt.submitted_at) == ("print(input())", t0 + timedelta(minutes=5))
    assert attempt.score == 40


def test_lifecycle_logs_through_the_root_logger(started, answer_runner, passing, t0, caplog):
    answer_runner(answers=passing(5))
    with caplog.at_level(logging.INFO):
        submit_attempt(started.id, "print(input())", now=t0 + timedelta(minutes=5))

    finalized = [r for r in caplog.records if "finalized as passed" in r.getMessage()]
    joined = [r for r in caplog.records if "joined project" in r.getMessage()]
    assert [r.name for r in finalized + joined] == ["root", "root"]
