from datetime import datetime, timezone as dt_timezone
from itertools import count

import pytest

from Admissions.models import Challenge, ChallengeTestCase
from Admissions.sandbox import RunResult, SandboxRunner
from Matching.models import Developer, LanguageSkill, Project, ProjectLanguage, ProjectTopic, TopicInterest

T0 = datetime(2026, 3, 2, 9, 0, tzinfo=dt_timezone.utc)

_seq = count(1)


class AnswerRunner(SandboxRunner):
    """
    Stand-in sandbox: ignores the code and answers each stdin from a table.
    Inputs listed in ``slow`` time out; ``faults`` transient errors are
    raised before the first successful run.
    """

    name = "answers"

    def __init__(self, answers=None, slow=(), faults=0, fault_exc=None):
        self.answers = dict(answers or {})
        self.slow = set(slow)
        self.faults = faults
        self.fault_exc = fault_exc
        self.calls = []

    def run(self, language, source, stdin, timeout, memory_mb):
        self.calls.append(stdin)
        if self.faults:
            self.faults -= 1
            raise self.fault_exc
        if stdin in self.slow:
            return RunResult(stdout="", stderr="Time limit exceeded", exit_code=None, timed_out=True)
        return RunResult(stdout=self.answers.get(stdin, "wrong") + "\n", exit_code=0)


@pytest.fixture
def fast_retries(settings):
    settings.EVALUATION_RETRY_DELAY = 0
    settings.EVALUATION_MAX_RETRIES = 3
    return settings


@pytest.fixture
def use_runner(monkeypatch, fast_retries):
    """Route evaluation through the given runner."""

    def install(runner):
        monkeypatch.setattr("Admissions.evaluator.get_sandbox", lambda: runner)
        return runner

    return install


@pytest.fixture
def make_developer(db):
    def make(level="intermediate", languages=(), topics=(), **kwargs):
        n = next(_seq)
        dev = Developer.objects.create(
            full_name=kwargs.pop("full_name", f"Dev {n}"),
            email=kwargs.pop("email", f"dev{n}@example.com"),
            experience_level=level,
            **kwargs,
        )
        for i, (name, proficiency) in enumerate(languages):
            LanguageSkill.objects.create(developer=dev, name=name, proficiency_level=proficiency, position=i)
        for name, interest in topics:
            TopicInterest.objects.create(developer=dev, name=name, interest_level=interest)
        return dev

    return make


@pytest.fixture
def make_project(db, make_developer):
    def make(owner=None, languages=(("Python", "beginner", True),), topics=(), **kwargs):
        owner = owner or make_developer()
        n = next(_seq)
        project = Project.objects.create(
            title=kwargs.pop("title", f"Project {n}"),
            owner=owner,
            **kwargs,
        )
        for name, level, primary in languages:
            ProjectLanguage.objects.create(project=project, name=name, required_level=level, is_primary=primary)
        for name, primary in topics:
            ProjectTopic.objects.create(project=project, name=name, is_primary=primary)
        return project

    return make


@pytest.fixture
def make_challenge(db):
    def make(project=None, language="Python", tests=None, **kwargs):
        challenge = Challenge.objects.create(
            title=kwargs.pop("title", "Echo"),
            description=kwargs.pop("description", "Print the input back"),
            project=project,
            language=language,
            **kwargs,
        )
        for i, test in enumerate(tests if tests is not None else [(str(k), str(k)) for k in range(1, 6)]):
            inp, expected = test[0], test[1]
            weight = test[2] if len(test) > 2 else 1
            ChallengeTestCase.objects.create(
                challenge=challenge, position=i, input=inp, expected_output=expected, weight=weight
            )
        return challenge

    return make


def answers_passing(n, total=5):
    """Answer table for the default five echo tests with the first ``n`` right."""
    return {str(k): (str(k) if k <= n else "nope") for k in range(1, total + 1)}


@pytest.fixture
def passing():
    return answers_passing


@pytest.fixture
def t0():
    return T0


@pytest.fixture
def answer_runner(use_runner):
    """Build an AnswerRunner and install it as the evaluation sandbox."""

    def make(**kwargs):
        return use_runner(AnswerRunner(**kwargs))

    return make


@pytest.fixture
def runner_cls():
    return AnswerRunner
