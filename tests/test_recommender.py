from datetime import timedelta

import pytest

from Matching.models import AlgorithmConfig, ProjectMembership, Recommendation
from Matching.profiles import (
    ProjectProfile,
    RequiredLanguage,
    RequiredTopic,
    SkillProfile,
    load_skill_profile,
    project_profile,
)
from Matching.recommender import (
    compute_fit_score,
    difficulty_fit,
    proficiency_credit,
    rank_projects,
    recommend_projects,
)


def _project(project_id=1, created_at=None, **kwargs):
    defaults = dict(
        owner_id=99,
        difficulty_level="intermediate",
        maximum_members=5,
        current_members=1,
        created_at=created_at,
        languages=(
            RequiredLanguage("Python"),
            RequiredLanguage("JavaScript"),
            RequiredLanguage("Go"),
            RequiredLanguage("Rust"),
        ),
        topics=(RequiredTopic("Web Development"), RequiredTopic("Databases")),
    )
    defaults.update(kwargs)
    return ProjectProfile(project_id=project_id, **defaults)


def test_more_overlap_scores_strictly_higher():
    config = AlgorithmConfig()
    project = _project()
    strong = SkillProfile(
        developer_id=1,
        experience_level="intermediate",
        languages=(("Python", "advanced"), ("JavaScript", "advanced"), ("Go", "advanced")),
        topics=(("Web Development", "high"),),
    )
    weak = SkillProfile(
        developer_id=2,
        experience_level="intermediate",
        languages=(("Python", "advanced"),),
        topics=(),
    )

    strong_score, strong_breakdown = compute_fit_score(strong, project, config)
    weak_score, weak_breakdown = compute_fit_score(weak, project, config)

    assert strong_score > weak_score
    assert strong_breakdown["language"] == pytest.approx(0.75)
    assert weak_breakdown["language"] == pytest.approx(0.25)
    assert weak_breakdown["topic"] == 0.0
    assert [m["name"] for m in strong_breakdown["matched_languages"]] == ["Python", "JavaScript", "Go"]


def test_score_is_bounded_and_perfect_match_is_100():
    config = AlgorithmConfig()
    project = _project(languages=(RequiredLanguage("Python", "intermediate", True),), topics=(RequiredTopic("Data Science"),))
    profile = SkillProfile(1, "intermediate", (("Python", "expert"),), (("Data Science", "high"),))
    score, _ = compute_fit_score(profile, project, config)
    assert score == 100.0


def test_proficiency_gap_reduces_credit():
    assert proficiency_credit("advanced", "intermediate") == 1.0
    assert proficiency_credit("beginner", "advanced") == pytest.approx(0.4)
    assert proficiency_credit("beginner", "expert") == pytest.approx(0.1)


def test_difficulty_fit_penalizes_under_more_than_over():
    under = difficulty_fit("beginner", "advanced", 0.35)
    over = difficulty_fit("expert", "intermediate", 0.35)
    assert difficulty_fit("advanced", "advanced", 0.35) == 1.0
    assert under == pytest.approx(0.3)
    assert over == pytest.approx(0.65)
    assert under < over


def test_zero_weights_are_rejected():
    config = AlgorithmConfig(language_weight=0, topic_weight=0, difficulty_weight=0)
    with pytest.raises(ValueError):
        compute_fit_score(SkillProfile(1, "beginner"), _project(), config)


def test_ties_break_by_recency(t0):
    config = AlgorithmConfig()
    profile = SkillProfile(1, "intermediate", (("Python", "advanced"),), ())
    older = _project(project_id=1, created_at=t0 - timedelta(days=3))
    newer = _project(project_id=2, created_at=t0)

    ranked = rank_projects(profile, [older, newer], config)
    assert [p.project_id for p, _, _ in ranked] == [2, 1]
    assert ranked[0][1] == ranked[1][1]


def test_min_score_filters(t0):
    config = AlgorithmConfig(min_score=99)
    profile = SkillProfile(1, "intermediate", (("Python", "advanced"),), ())
    assert rank_projects(profile, [_project(created_at=t0)], config) == []


@pytest.mark.django_db
def test_recommendations_skip_owned_joined_and_full_projects(make_developer, make_project):
    dev = make_developer(languages=[("Python", "advanced")])
    open_project = make_project()
    make_project(owner=dev)
    joined = make_project()
    ProjectMembership.objects.create(project=joined, developer=dev)
    make_project(maximum_members=2, current_members=2)
    make_project(status="closed")

    results = recommend_projects(dev, persist=False)
    assert [r.project.id for r in results] == [open_project.id]


@pytest.mark.django_db
def test_rerun_inside_window_updates_row_in_place(make_developer, make_project, t0):
    dev = make_developer(languages=[("Python", "advanced")])
    project = make_project()

    first = recommend_projects(dev, now=t0)[0].recommendation
    second = recommend_projects(dev, now=t0 + timedelta(minutes=5))[0].recommendation

    assert first.id == second.id
    assert Recommendation.objects.filter(developer=dev, project=project).count() == 1
    assert second.refreshed_at == t0 + timedelta(minutes=5)


@pytest.mark.django_db
def test_rerun_after_window_supersedes_old_row(make_developer, make_project, t0):
    dev = make_developer(languages=[("Python", "advanced")])
    make_project()

    first = recommend_projects(dev, now=t0)[0].recommendation
    later = recommend_projects(dev, now=t0 + timedelta(hours=2))[0].recommendation

    first.refresh_from_db()
    assert later.id != first.id
    assert first.superseded is True
    assert later.superseded is False
    assert later.algorithm_version == AlgorithmConfig.objects.current().version


@pytest.mark.django_db
def test_stored_difficulty_labels_are_normalized(make_developer, make_project):
    # rows written outside the API may carry easy/medium/hard labels
    hard = make_project(difficulty_level="hard")
    easy = make_project(difficulty_level="Easy")
    dev = make_developer(level="senior")

    assert project_profile(hard).difficulty_level == "advanced"
    assert project_profile(easy).difficulty_level == "beginner"
    profile = load_skill_profile(dev)
    assert profile.experience_level == "advanced"

    _, breakdown = compute_fit_score(profile, project_profile(hard), AlgorithmConfig())
    assert breakdown["difficulty"] == 1.0
