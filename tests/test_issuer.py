from datetime import timedelta

import pytest
from django.db import IntegrityError, transaction

from Admissions.issuer import can_attempt, issue_challenge
from Admissions.models import ChallengeAttempt
from Matching.models import AlgorithmConfig, ProjectMembership
from SkillGate.errors import AlreadyMember, AttemptInCooldown, NotFound, ValidationError

pytestmark = pytest.mark.django_db


def test_second_issue_returns_the_same_attempt(make_developer, make_project, t0):
    dev = make_developer()
    project = make_project()

    first = issue_challenge(dev.id, project.id, now=t0)
    second = issue_challenge(dev.id, project.id, now=t0 + timedelta(seconds=1))

    assert first.reused is False
    assert second.reused is True
    assert second.attempt.id == first.attempt.id
    assert ChallengeAttempt.objects.filter(developer=dev, project=project).count() == 1


def test_issue_hides_expected_outputs(make_developer, make_project, make_challenge, t0):
    dev = make_developer()
    project = make_project()
    make_challenge(project=project, time_limit_minutes=30)

    body = issue_challenge(dev.id, project.id, now=t0).as_dict()

    assert body["challenge"]["test_count"] == 5
    assert "test_cases" not in body["challenge"]
    assert body["challenge"]["time_limit_minutes"] == 30
    assert body["state"] == "issued"


def test_project_bound_challenge_is_preferred(make_developer, make_project, make_challenge, t0):
    dev = make_developer()
    project = make_project()
    make_challenge(project=None, title="General")
    bound = make_challenge(project=project, title="Bound")

    issued = issue_challenge(dev.id, project.id, now=t0)
    assert issued.attempt.challenge_id == bound.id
    assert issued.challenge.kind == "persistent"


def test_inactive_or_testless_challenges_are_skipped(make_developer, make_project, make_challenge, t0):
    dev = make_developer()
    project = make_project()
    make_challenge(project=project, is_active=False)
    make_challenge(project=project, tests=[])

    issued = issue_challenge(dev.id, project.id, now=t0)
    assert issued.attempt.challenge is None
    assert issued.attempt.challenge_kind == "ephemeral"
    assert len(issued.attempt.ephemeral_challenge["test_cases"]) == 5
    assert issued.challenge.language == "Python"


def test_ephemeral_challenge_uses_primary_language(make_developer, make_project, t0):
    dev = make_developer()
    project = make_project(languages=[("Go", "beginner", False), ("Rust", "beginner", True)])
    issued = issue_challenge(dev.id, project.id, now=t0)
    assert issued.challenge.language == "Rust"
    assert issued.challenge.starter_code.startswith("use std::io")


def test_threshold_comes_from_config_unless_challenge_sets_one(make_developer, make_project, make_challenge, t0):
    AlgorithmConfig.objects.current().new_version(pass_threshold=80)
    dev = make_developer()
    plain = make_project()
    strict = make_project()
    make_challenge(project=strict, pass_threshold=90)

    assert issue_challenge(dev.id, plain.id, now=t0).attempt.pass_threshold == 80
    assert issue_challenge(dev.id, strict.id, now=t0).attempt.pass_threshold == 90


def test_members_and_owners_cannot_issue(make_developer, make_project, t0):
    dev = make_developer()
    project = make_project()
    ProjectMembership.objects.create(project=project, developer=dev)

    with pytest.raises(AlreadyMember):
        issue_challenge(dev.id, project.id, now=t0)
    with pytest.raises(AlreadyMember):
        issue_challenge(project.owner_id, project.id, now=t0)


def test_cooldown_blocks_issue_and_reports_retry_time(make_developer, make_project, t0):
    dev = make_developer()
    project = make_project()
    retry_at = t0 + timedelta(minutes=30)
    ChallengeAttempt.objects.create(developer=dev, project=project, state="failed", next_attempt_at=retry_at)

    with pytest.raises(AttemptInCooldown) as exc:
        issue_challenge(dev.id, project.id, now=t0)
    assert exc.value.next_attempt_at == retry_at
    assert exc.value.body()["next_attempt_at"] == retry_at

    assert issue_challenge(dev.id, project.id, now=retry_at).reused is False


def test_full_or_closed_projects_refuse(make_developer, make_project, t0):
    dev = make_developer()
    with pytest.raises(ValidationError):
        issue_challenge(dev.id, make_project(maximum_members=1, current_members=1).id, now=t0)
    with pytest.raises(ValidationError):
        issue_challenge(dev.id, make_project(status="completed").id, now=t0)


def test_project_without_languages_cannot_issue(make_developer, make_project, t0):
    dev = make_developer()
    with pytest.raises(ValidationError):
        issue_challenge(dev.id, make_project(languages=()).id, now=t0)


def test_unknown_ids_are_not_found(make_developer, make_project, t0):
    dev = make_developer()
    with pytest.raises(NotFound):
        issue_challenge(dev.id, 987654, now=t0)
    with pytest.raises(NotFound):
        issue_challenge(987654, make_project().id, now=t0)


def test_database_rejects_a_second_open_attempt(make_developer, make_project):
    dev = make_developer()
    project = make_project()
    ChallengeAttempt.objects.create(developer=dev, project=project, state="started")
    with pytest.raises(IntegrityError):
        with transaction.atomic():
            ChallengeAttempt.objects.create(developer=dev, project=project, state="issued")


def test_can_attempt_reports_each_reason(make_developer, make_project, t0):
    dev = make_developer()
    project = make_project()

    assert can_attempt(dev.id, project.id, now=t0)["can_attempt"] is True

    issued = issue_challenge(dev.id, project.id, now=t0)
    status = can_attempt(dev.id, project.id, now=t0)
    assert status["reason"] == "attempt_in_progress"
    assert status["attempt_id"] == issued.attempt.id

    assert can_attempt(project.owner_id, project.id, now=t0)["reason"] == "already_member"


def test_persistence_alert_after_seven_failures(make_developer, make_project, t0):
    dev = make_developer()
    project = make_project(title="Rocket")
    for _ in range(7):
        ChallengeAttempt.objects.create(developer=dev, project=project, state="failed")

    alert = can_attempt(dev.id, project.id, now=t0)["alert"]
    assert alert["attempt_count"] == 7
    assert "Rocket" in alert["message"]
