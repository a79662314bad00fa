import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Dict, List, Optional, Sequence, Tuple

from django.conf import settings
from django.db import transaction
from django.db.models import F
from django.utils.timezone import now as tz_now

from Matching.models import LEVEL_RANK, AlgorithmConfig, Developer, Project, Recommendation
from Matching.profiles import ProjectProfile, SkillProfile, load_skill_profile, project_profile

PROFICIENCY_GAP_PENALTY = 0.3
OVERQUALIFIED_FACTOR = 0.5
INTEREST_FACTOR = {"low": 0.6, "medium": 0.8, "high": 1.0}


@dataclass
class RecommendedProject:
    project: Project
    score: float
    breakdown: Dict
    recommendation: Optional[Recommendation] = None


def proficiency_credit(user_level: str, required_level: str) -> float:
    """
    1.0 when the user meets the required level, minus 0.3 per missing level.
    """
    user_rank = LEVEL_RANK.get(user_level, 0)
    required_rank = LEVEL_RANK.get(required_level, 0)
    if user_rank >= required_rank:
        return 1.0
    return max(0.0, 1.0 - (required_rank - user_rank) * PROFICIENCY_GAP_PENALTY)


def language_match(profile: SkillProfile, project: ProjectProfile, primary_boost: float) -> Tuple[float, List[Dict]]:
    """
    Weighted fraction (0–1) of the project's required languages the user knows.
    """
    if not project.languages:
        return 0.0, []

    known = profile.language_map()
    total_weight = 0.0
    credit = 0.0
    matched: List[Dict] = []

    for req in project.languages:
        weight = primary_boost if req.is_primary else 1.0
        total_weight += weight

        level = known.get(req.name.strip().lower())
        if level is None:
            continue
        c = proficiency_credit(level, req.required_level)
        credit += c * weight
        matched.append({
            "name": req.name,
            "user_proficiency": level,
            "required_level": req.required_level,
            "is_primary": req.is_primary,
            "credit": round(c, 3),
        })

    return (credit / total_weight if total_weight > 0 else 0.0), matched


def topic_match(profile: SkillProfile, project: ProjectProfile, primary_boost: float) -> Tuple[float, List[Dict]]:
    if not project.topics:
        return 0.0, []

    interests = profile.topic_map()
    total_weight = 0.0
    credit = 0.0
    matched: List[Dict] = []

    for req in project.topics:
        weight = primary_boost if req.is_primary else 1.0
        total_weight += weight

        interest = interests.get(req.name.strip().lower())
        if interest is None:
            continue
        c = INTEREST_FACTOR.get(interest, INTEREST_FACTOR["medium"])
        credit += c * weight
        matched.append({"name": req.name, "user_interest": interest, "is_primary": req.is_primary})

    return (credit / total_weight if total_weight > 0 else 0.0), matched


def difficulty_fit(experience_level: str, difficulty_level: str, penalty: float) -> float:
    """
    1.0 on an exact level match; under-qualification costs `penalty` per level,
    over-qualification half of that.
    """
    user_rank = LEVEL_RANK.get(experience_level, 1)
    project_rank = LEVEL_RANK.get(difficulty_level, 2)
    gap = project_rank - user_rank
    if gap > 0:
        return max(0.0, 1.0 - gap * penalty)
    return max(0.0, 1.0 + gap * penalty * OVERQUALIFIED_FACTOR)


def compute_fit_score(profile: SkillProfile, project: ProjectProfile, config: AlgorithmConfig) -> Tuple[float, Dict]:
    """
    Compute the 0-100 recommendation score and its breakdown.
    """
    lang_score, matched_languages = language_match(profile, project, config.primary_boost)
    topic_score, matched_topics = topic_match(profile, project, config.primary_boost)
    diff_score = difficulty_fit(profile.experience_level, project.difficulty_level, config.difficulty_penalty)

    weights = config.weights
    total_weight = sum(weights.values())
    if total_weight <= 0:
        raise ValueError("Algorithm weights must not all be zero")

    final = 100.0 * (
        weights["language"] * lang_score
        + weights["topic"] * topic_score
        + weights["difficulty"] * diff_score
    ) / total_weight

    breakdown = {
        "language": round(lang_score, 4),
        "topic": round(topic_score, 4),
        "difficulty": round(diff_score, 4),
        "matched_languages": matched_languages,
        "matched_topics": matched_topics,
        "weights": {k: round(v, 4) for k, v in weights.items()},
        "final": round(final, 2),
    }
    return round(final, 2), breakdown


def rank_projects(
    profile: SkillProfile,
    projects: Sequence[ProjectProfile],
    config: AlgorithmConfig,
) -> List[Tuple[ProjectProfile, float, Dict]]:
    """
    Score every project and order by score, then by recency (newer first).
    """
    scored: List[Tuple[ProjectProfile, float, Dict]] = []
    for project in projects:
        fit, breakdown = compute_fit_score(profile, project, config)
        if fit >= config.min_score:
            scored.append((project, fit, breakdown))

    scored.sort(
        key=lambda t: (
            t[1],
            t[0].created_at.timestamp() if t[0].created_at else 0.0,
            t[0].project_id,
        ),
        reverse=True,
    )
    return scored


def candidate_projects(developer: Developer):
    """
    Projects still recruiting that the developer neither owns nor belongs to.
    """
    return (
        Project.objects.filter(status="recruiting", current_members__lt=F("maximum_members"))
        .exclude(owner=developer)
        .exclude(memberships__developer=developer)
        .prefetch_related("languages", "topics")
    )


def recommend_projects(
    developer: Developer,
    config: Optional[AlgorithmConfig] = None,
    limit: Optional[int] = None,
    persist: bool = True,
    now=None,
) -> List[RecommendedProject]:
    config = config or AlgorithmConfig.objects.current()
    limit = limit or config.recommendation_limit
    now = now or tz_now()

    profile = load_skill_profile(developer)
    projects = {p.id: p for p in candidate_projects(developer)}
    ranked = rank_projects(profile, [project_profile(p) for p in projects.values()], config)[:limit]

    results = [RecommendedProject(projects[pp.project_id], fit, breakdown) for pp, fit, breakdown in ranked]
    if persist and results:
        store_recommendations(developer, results, config, now)

    logging.info("Recommended %d project(s) to developer %s (config v%s)", len(results), developer.id, config.version)
    return results


def store_recommendations(developer: Developer, results: List[RecommendedProject], config: AlgorithmConfig, now) -> None:
    """
    Persist one row per (developer, project). A row recommended within the
    refresh window is updated in place; an older one is marked superseded and
    a new row appended.
    """
    window_start = now - timedelta(minutes=settings.RECOMMENDATION_REFRESH_MINUTES)

    with transaction.atomic():
        for item in results:
            b = item.breakdown
            values = {
                "recommendation_score": item.score,
                "language_score": b["language"],
                "topic_score": b["topic"],
                "difficulty_score": b["difficulty"],
                "match_factors": {
                    "matched_languages": b["matched_languages"],
                    "matched_topics": b["matched_topics"],
                    "weights": b["weights"],
                },
                "algorithm_version": config.version,
                "refreshed_at": now,
            }

            current = (
                Recommendation.objects.select_for_update()
                .filter(developer=developer, project=item.project, superseded=False)
                .order_by("-recommended_at", "-id")
                .first()
            )

            if current is not None and current.recommended_at >= window_start:
                for k, v in values.items():
                    setattr(current, k, v)
                current.save(update_fields=list(values.keys()))
                item.recommendation = current
                continue

            if current is not None:
                current.superseded = True
                current.save(update_fields=["superseded"])

            item.recommendation = Recommendation.objects.create(
                developer=developer,
                project=item.project,
                recommended_at=now,
                **values,
            )
