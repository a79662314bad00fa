# Admissions/agents/challenge_agent.py
import json
import logging
from typing import Any, Dict, List

from django.db import transaction

from Admissions.agents.challenge_prompts import CHALLENGE_PROMPT, CHALLENGE_SYSTEM
from Admissions.challenges import starter_code_for
from Admissions.models import Challenge, ChallengeTestCase
from Admissions.utils import generate_response_with_groq
from Matching.models import LEVEL_RANK, Project
from Matching.normalize import normalize_level

MAX_DRAFTS = 2
MAX_TEST_CASES = 10


def _coerce_int(value: Any, default: int, low: int = 1, high: int = 10**6) -> int:
    try:
        return max(low, min(high, int(value)))
    except (TypeError, ValueError):
        return default


def _strip_fences(s: str) -> str:
    t = s.strip()
    if t.startswith("```"):
        # remove ```json or ``` then trailing ```
        parts = t.split("```")
        if len(parts) >= 3:
            body = parts[1]
            return body[4:].strip() if body.startswith("json") else body.strip()
        return t.strip("`").strip()
    return t


def project_payload(project: Project) -> Dict[str, Any]:
    return {
        "title": project.title,
        "description": project.description,
        "difficulty_level": project.difficulty_level,
        "languages": [
            {"name": pl.name, "required_level": pl.required_level, "is_primary": pl.is_primary}
            for pl in project.languages.all()
        ],
        "topics": [pt.name for pt in project.topics.all()],
    }


def _clean_tests(raw: Any) -> List[Dict[str, Any]]:
    tests = []
    if not isinstance(raw, list):
        return tests
    for t in raw[:MAX_TEST_CASES]:
        if not isinstance(t, dict) or "expected_output" not in t:
            continue
        tests.append({
            "input": str(t.get("input") or ""),
            "expected_output": str(t.get("expected_output")),
            "weight": _coerce_int(t.get("weight", 1), 1, high=100),
        })
    return tests


def _clean_challenge(c: Dict[str, Any], languages: List[str], fallback_level: str) -> Dict[str, Any]:
    language = c.get("language") if c.get("language") in languages else (languages[0] if languages else "")
    level = normalize_level(str(c.get("difficulty") or "")) or fallback_level
    return {
        "title": str(c.get("title") or "Untitled challenge").strip()[:160],
        "description": str(c.get("description") or "")[:4000],
        "language": language,
        "difficulty_level": level if level in LEVEL_RANK else fallback_level,
        "time_limit_minutes": _coerce_int(c.get("time_limit", 60), 60, high=24 * 60),
        "starter_code": str(c.get("starter_code") or starter_code_for(language)),
        "test_cases": _clean_tests(c.get("test_cases")),
    }


def ai_suggest_challenges_for_project(project: Project) -> Dict[str, Any]:
    """
    Ask the LLM for draft challenges and normalize whatever comes back into:
    { "challenges": [...], "rationale": "..." }
    Drafts without test cases are dropped. Returns {} on failure.
    """
    payload = project_payload(project)
    languages = [lang["name"] for lang in payload["languages"]]
    try:
        prompt = CHALLENGE_PROMPT.format(project_json=json.dumps(payload, ensure_ascii=False, indent=2))
        messages = [
            {"role": "system", "content": CHALLENGE_SYSTEM},
            {"role": "user", "content": prompt},
        ]
        data, _usage = generate_response_with_groq(messages, response_format="json")
    except (ValueError, json.JSONDecodeError) as e:
        logging.warning("Challenge suggestions unavailable: %s", e)
        return {}
    except Exception:
        logging.warning("Challenge suggestion call failed", exc_info=True)
        return {}

    if isinstance(data, str):
        try:
            data = json.loads(_strip_fences(data))
        except json.JSONDecodeError:
            return {}

    # Sometimes wrapped like {"content": {...}} or {"data": {...}}
    for key in ("content", "data", "body", "result"):
        if isinstance(data, dict) and isinstance(data.get(key), dict):
            data = data[key]
    if not isinstance(data, dict):
        return {}

    raw = data.get("challenges") if isinstance(data.get("challenges"), list) else []
    challenges = [_clean_challenge(c, languages, project.difficulty_level) for c in raw if isinstance(c, dict)]
    return {
        "challenges": [c for c in challenges if c["test_cases"] and c["language"]][:MAX_DRAFTS],
        "rationale": str(data.get("rationale") or ""),
    }


@transaction.atomic
def save_drafts(project: Project, drafts: List[Dict[str, Any]]) -> List[Challenge]:
    """Store drafts as inactive project challenges for the owner to review."""
    saved = []
    for d in drafts:
        challenge = Challenge.objects.create(
            project=project,
            title=d["title"],
            description=d["description"],
            language=d["language"],
            difficulty_level=d["difficulty_level"],
            starter_code=d["starter_code"],
            time_limit_minutes=d["time_limit_minutes"],
            is_active=False,
        )
        ChallengeTestCase.objects.bulk_create(
            ChallengeTestCase(challenge=challenge, position=i, **t) for i, t in enumerate(d["test_cases"])
        )
        saved.append(challenge)
    return saved
