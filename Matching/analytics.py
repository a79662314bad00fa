"""
Read-only effectiveness analytics over a time window.

Recommendation matrix (per recommendation row recommended in the window):

    TP  recommended and joined (action ``joined``, or a membership created
        after the recommendation)
    FP  recommended and ignored
    FN  joined without ever being recommended (search, manual or admission
        joins, and member memberships, for pairs with no recommendation)
    TN  ignored outside the recommendation list, for unrecommended pairs

Rows with no decisive action yet are reported as ``pending``.

Assessment matrix (per finalized attempt in the window): predicted success is
a recommendation score at or above ``high_confidence_score``; actual success
is a passed attempt.

Nothing here writes, except ``apply_weight_suggestion`` which an
administrator calls explicitly.
"""
import logging
import re
from datetime import timedelta
from typing import Dict, Iterable, List, Optional, Tuple

from django.utils.timezone import now as tz_now

from Admissions.models import ChallengeAttempt
from Matching.models import AlgorithmConfig, FeedbackEvent, ProjectMembership, Recommendation
from SkillGate.errors import ValidationError

METRIC_TYPES = ("recommendation", "assessment", "all")
COMPONENTS = ("language", "topic", "difficulty")
MEDIUM_CONFIDENCE_SCORE = 50.0

_TIMEFRAME = re.compile(r"^\s*(\d+)\s*([a-z]+)\s*$", re.IGNORECASE)
_UNITS = {
    "h": 1 / 24, "hour": 1 / 24, "hours": 1 / 24,
    "d": 1, "day": 1, "days": 1,
    "w": 7, "week": 7, "weeks": 7,
    "m": 30, "month": 30, "months": 30,
}


def parse_timeframe(value: Optional[str], default: str = "30d") -> timedelta:
    """Parse '24h', '30d', '2w', '3m' or '30 days' into a timedelta."""
    match = _TIMEFRAME.match(value or default)
    if not match or match.group(2).lower() not in _UNITS:
        raise ValidationError(f"Invalid timeframe '{value}'", example="30d")
    amount = int(match.group(1))
    if amount <= 0:
        raise ValidationError(f"Invalid timeframe '{value}'", example="30d")
    return timedelta(days=amount * _UNITS[match.group(2).lower()])


def confidence_band(score: float, config: AlgorithmConfig) -> str:
    if score >= config.high_confidence_score:
        return "high"
    if score >= MEDIUM_CONFIDENCE_SCORE:
        return "medium"
    return "low"


def _ratio(num: float, den: float) -> float:
    return round(num / den, 4) if den else 0.0


def _derived(tp: int, fp: int, fn: int, tn: int) -> Dict[str, float]:
    precision = _ratio(tp, tp + fp)
    recall = _ratio(tp, tp + fn)
    f1 = round(2 * precision * recall / (precision + recall), 4) if precision + recall else 0.0
    return {
        "precision": precision,
        "recall": recall,
        "accuracy": _ratio(tp + tn, tp + fp + fn + tn),
        "f1_score": f1,
    }


def _member_joins(until) -> Dict[Tuple[int, int], object]:
    return {
        (m.developer_id, m.project_id): m.joined_at
        for m in ProjectMembership.objects.filter(role="member", joined_at__lte=until)
    }


def _is_joined(rec: Recommendation, joins: Dict[Tuple[int, int], object]) -> bool:
    if rec.action_taken == "joined":
        return True
    joined_at = joins.get((rec.developer_id, rec.project_id))
    return joined_at is not None and joined_at >= rec.recommended_at


def classify_recommendations(since, until) -> Tuple[List[Recommendation], List[Recommendation], List[Recommendation]]:
    """Split the window's recommendations into (joined, ignored, pending)."""
    joins = _member_joins(until)
    joined, ignored, pending = [], [], []
    for rec in Recommendation.objects.filter(recommended_at__gte=since, recommended_at__lte=until):
        if _is_joined(rec, joins):
            joined.append(rec)
        elif rec.action_taken == "ignored":
            ignored.append(rec)
        else:
            pending.append(rec)
    return joined, ignored, pending


def recommendation_matrix(since, until, config: AlgorithmConfig) -> Dict:
    joined, ignored, pending = classify_recommendations(since, until)

    recommended_pairs = set(
        Recommendation.objects.filter(recommended_at__lte=until).values_list("developer_id", "project_id")
    )
    outside_events = FeedbackEvent.objects.filter(created_at__gte=since, created_at__lte=until).exclude(
        source="recommendation"
    )

    missed = {
        pair for pair in outside_events.filter(action_taken="joined").values_list("developer_id", "project_id")
        if pair not in recommended_pairs
    }
    missed.update(
        pair for pair in ProjectMembership.objects.filter(
            role="member", joined_at__gte=since, joined_at__lte=until
        ).values_list("developer_id", "project_id")
        if pair not in recommended_pairs
    )
    passed_over = {
        pair for pair in outside_events.filter(action_taken="ignored").values_list("developer_id", "project_id")
        if pair not in recommended_pairs
    }

    tp, fp, fn, tn = len(joined), len(ignored), len(missed), len(passed_over)

    by_confidence = {band: {"total": 0, "joined": 0, "ignored": 0} for band in ("high", "medium", "low")}
    for outcome, recs in (("joined", joined), ("ignored", ignored), (None, pending)):
        for rec in recs:
            bucket = by_confidence[confidence_band(rec.recommendation_score, config)]
            bucket["total"] += 1
            if outcome:
                bucket[outcome] += 1
    for bucket in by_confidence.values():
        bucket["join_rate"] = _ratio(bucket["joined"], bucket["total"])

    return {
        "true_positive": tp,
        "false_positive": fp,
        "false_negative": fn,
        "true_negative": tn,
        "pending": len(pending),
        "total_recommendations": tp + fp + len(pending),
        **_derived(tp, fp, fn, tn),
        "by_confidence": by_confidence,
    }


def _latest_recommendation_scores(pairs: Iterable[Tuple[int, int]], until) -> Dict[Tuple[int, int], List]:
    developer_ids = {d for d, _ in pairs}
    scores: Dict[Tuple[int, int], List] = {}
    recs = Recommendation.objects.filter(developer_id__in=developer_ids, recommended_at__lte=until).order_by(
        "recommended_at", "id"
    )
    for rec in recs:
        scores.setdefault((rec.developer_id, rec.project_id), []).append((rec.recommended_at, rec.recommendation_score))
    return scores


def assessment_matrix(since, until, config: AlgorithmConfig) -> Dict:
    attempts = list(
        ChallengeAttempt.objects.filter(
            state__in=("passed", "failed", "expired"), finalized_at__gte=since, finalized_at__lte=until
        )
    )
    history = _latest_recommendation_scores({(a.developer_id, a.project_id) for a in attempts}, until)

    tp = fp = fn = tn = unscored = 0
    for attempt in attempts:
        prior = [score for at, score in history.get((attempt.developer_id, attempt.project_id), []) if at <= attempt.issued_at]
        actual = attempt.state == "passed"
        if not prior:
            unscored += 1
            continue
        predicted = prior[-1] >= config.high_confidence_score
        if predicted and actual:
            tp += 1
        elif predicted:
            fp += 1
        elif actual:
            fn += 1
        else:
            tn += 1

    scores = [a.score for a in attempts if a.score is not None]
    passed = sum(1 for a in attempts if a.state == "passed")
    return {
        "true_positive": tp,
        "false_positive": fp,
        "false_negative": fn,
        "true_negative": tn,
        "unscored": unscored,
        "total_attempts": len(attempts),
        "pass_rate": _ratio(passed, len(attempts)),
        "average_score": round(sum(scores) / len(scores), 2) if scores else 0.0,
        "evaluation_faults": sum(1 for a in attempts if a.evaluation_fault),
        **_derived(tp, fp, fn, tn),
    }


def effectiveness_metrics(metric_type: str = "recommendation", timeframe: str = "30d", now=None) -> Dict:
    if metric_type not in METRIC_TYPES:
        raise ValidationError(f"Invalid metric type '{metric_type}'", allowed=list(METRIC_TYPES))
    until = now or tz_now()
    since = until - parse_timeframe(timeframe)
    config = AlgorithmConfig.objects.current()

    result = {
        "type": metric_type,
        "timeframe": timeframe,
        "since": since,
        "until": until,
        "algorithm_version": config.version,
    }
    if metric_type in ("recommendation", "all"):
        result["recommendation"] = recommendation_matrix(since, until, config)
    if metric_type in ("assessment", "all"):
        result["assessment"] = assessment_matrix(since, until, config)
    return result


def _mean(values: List[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def suggest_weight_adjustments(timeframe: str = "30d", now=None, config: Optional[AlgorithmConfig] = None) -> Dict:
    """
    Propose new scorer weights. A component whose score is higher on joined
    recommendations than on ignored ones gains weight in proportion to the
    gap and the learning rate; the total weight is preserved. Suggestions are
    never applied automatically.
    """
    until = now or tz_now()
    since = until - parse_timeframe(timeframe)
    config = config or AlgorithmConfig.objects.current()
    joined, ignored, _ = classify_recommendations(since, until)

    samples = len(joined) + len(ignored)
    base = {
        "algorithm_version": config.version,
        "samples": samples,
        "required_samples": config.min_feedback_samples,
        "current_weights": config.weights,
    }
    if samples < config.min_feedback_samples or not joined or not ignored:
        return {"status": "insufficient_data", **base}

    fields = {"language": "language_score", "topic": "topic_score", "difficulty": "difficulty_score"}
    deltas = {
        c: round(
            _mean([getattr(r, fields[c]) for r in joined]) - _mean([getattr(r, fields[c]) for r in ignored]), 4
        )
        for c in COMPONENTS
    }

    current = config.weights
    raw = {c: current[c] * max(0.0, 1.0 + config.learning_rate * deltas[c]) for c in COMPONENTS}
    raw_total = sum(raw.values())
    old_total = sum(current.values())
    if raw_total <= 0:
        return {"status": "insufficient_data", **base}

    suggested = {c: round(raw[c] * old_total / raw_total, 4) for c in COMPONENTS}
    return {"status": "ok", **base, "deltas": deltas, "suggested_weights": suggested}


def apply_weight_suggestion(weights: Dict[str, float], approved_by: str, notes: str = "",
                            config: Optional[AlgorithmConfig] = None) -> AlgorithmConfig:
    """Write suggested weights as a new active config version."""
    missing = [c for c in COMPONENTS if c not in weights]
    if missing:
        raise ValidationError("Missing weights", missing=missing)
    try:
        values = {c: float(weights[c]) for c in COMPONENTS}
    except (TypeError, ValueError):
        raise ValidationError("Weights must be numbers") from None
    if any(v < 0 for v in values.values()) or sum(values.values()) <= 0:
        raise ValidationError("Weights must be non-negative and not all zero")

    config = config or AlgorithmConfig.objects.current()
    new = config.new_version(
        approved_by=approved_by,
        notes=notes or "Applied weight suggestion",
        language_weight=values["language"],
        topic_weight=values["topic"],
        difficulty_weight=values["difficulty"],
    )
    logging.info("AlgorithmConfig v%s activated by %s with weights %s", new.version, approved_by, values)
    return new
