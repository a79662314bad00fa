import json

import pytest

from Admissions.agents import challenge_agent
from Admissions.agents.challenge_agent import ai_suggest_challenges_for_project, save_drafts
from Admissions.models import Challenge

pytestmark = pytest.mark.django_db

DRAFT = {
    "title": "Sum a list",
    "description": "Read integers and print their sum",
    "language": "Python",
    "difficulty": "medium",
    "time_limit": "45",
    "test_cases": [
        {"input": "1 2 3", "expected_output": "6", "weight": "2"},
        {"input": "5", "expected_output": 5},
        {"input": "no expected output"},
    ],
}


@pytest.fixture
def llm(monkeypatch):
    """Replace the Groq call with a canned reply."""
    sent = []

    def install(reply=None, exc=None):
        def fake(messages, response_format=None, **kwargs):
            sent.append(messages)
            if exc:
                raise exc
            return reply, {}

        monkeypatch.setattr(challenge_agent, "generate_response_with_groq", fake)
        return sent

    return install


def test_drafts_are_normalized(llm, make_project):
    project = make_project(title="Budget app")
    sent = llm({"challenges": [DRAFT, {"title": "No tests", "language": "Python"}], "rationale": "basics"})

    result = ai_suggest_challenges_for_project(project)

    assert result["rationale"] == "basics"
    assert len(result["challenges"]) == 1
    draft = result["challenges"][0]
    assert draft["difficulty_level"] == "intermediate"
    assert draft["time_limit_minutes"] == 45
    assert draft["test_cases"] == [
        {"input": "1 2 3", "expected_output": "6", "weight": 2},
        {"input": "5", "expected_output": "5", "weight": 1},
    ]
    assert draft["starter_code"]
    assert "Budget app" in sent[0][1]["content"]


def test_fenced_and_wrapped_replies_are_unpacked(llm, make_project):
    llm("```json\n" + json.dumps({"data": {"challenges": [DRAFT]}}) + "\n```")
    result = ai_suggest_challenges_for_project(make_project())
    assert [c["title"] for c in result["challenges"]] == ["Sum a list"]


def test_unknown_language_falls_back_to_project_language(llm, make_project):
    project = make_project(languages=[("Go", "beginner", True)])
    llm({"challenges": [{**DRAFT, "language": "Fortran"}]})
    assert ai_suggest_challenges_for_project(project)["challenges"][0]["language"] == "Go"


def test_llm_failure_returns_empty(llm, make_project):
    llm(exc=ValueError("API key is missing"))
    assert ai_suggest_challenges_for_project(make_project()) == {}

    llm(exc=RuntimeError("boom"))
    assert ai_suggest_challenges_for_project(make_project()) == {}

    llm("not json at all")
    assert ai_suggest_challenges_for_project(make_project()) == {}


def test_saved_drafts_are_inactive(llm, make_project):
    project = make_project()
    llm({"challenges": [DRAFT]})
    drafts = ai_suggest_challenges_for_project(project)["challenges"]

    saved = save_drafts(project, drafts)

    challenge = Challenge.objects.get(pk=saved[0].pk)
    assert challenge.is_active is False
    assert challenge.project_id == project.id
    assert [t.expected_output for t in challenge.test_cases.all()] == ["6", "5"]
