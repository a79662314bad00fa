"""
Evaluation engine.

``evaluate`` runs a submission against every test case of a ``ChallengeSpec``
in order and scores it by weight. It touches neither the database nor the
clock, so identical (challenge, code) input always yields an identical result.
"""
import logging
import math
from concurrent.futures import ThreadPoolExecutor
from dataclasses import asdict, dataclass, field
from threading import Lock
from typing import Dict, List, Optional

from django.conf import settings

from Admissions.challenges import CaseSpec, ChallengeSpec
from Admissions.sandbox import SandboxRunner, get_sandbox
from Admissions.utils import retry_sandbox_call
from SkillGate.errors import EvaluationSandboxFault, SandboxUnavailable

PASSED = "passed"
FAILED = "failed"

MAX_ERROR_EXCERPT = 500


@dataclass
class CaseResult:
    position: int
    passed: bool
    weight: int
    timed_out: bool = False
    error: str = ""


@dataclass
class EvaluationResult:
    score: int
    passed_tests: int
    total_tests: int
    results: List[CaseResult] = field(default_factory=list)
    fault: bool = False
    fault_message: str = ""

    def status(self, threshold: int) -> str:
        return status_for(self.score, threshold)

    def results_as_dicts(self) -> List[Dict]:
        return [asdict(r) for r in self.results]


def status_for(score: int, threshold: int) -> str:
    return PASSED if score >= threshold else FAILED


def weighted_score(passed_weight: int, total_weight: int) -> int:
    """Percentage of weight passed, rounded half up to an integer."""
    if total_weight <= 0:
        return 0
    return (200 * passed_weight + total_weight) // (2 * total_weight)


def _normalize_output(text: str) -> str:
    lines = (text or "").replace("\r\n", "\n").replace("\r", "\n").split("\n")
    return "\n".join(line.rstrip() for line in lines).strip("\n")


def _tokens_match(actual: str, expected: str, tolerance: float) -> bool:
    if actual == expected:
        return True
    try:
        a = float(actual)
        b = float(expected)
    except ValueError:
        return False
    if math.isnan(a) or math.isnan(b):
        return False
    diff = abs(a - b)
    return diff <= tolerance or diff <= tolerance * max(abs(a), abs(b))


def outputs_match(actual: str, test: CaseSpec) -> bool:
    """
    Exact mode ignores line-ending style, trailing whitespace and surrounding
    blank lines. Tolerant mode compares whitespace-separated tokens, allowing
    numeric tokens to differ by ``tolerance`` (absolute or relative).
    """
    if test.comparison == "tolerant":
        got = (actual or "").split()
        want = (test.expected_output or "").split()
        return len(got) == len(want) and all(_tokens_match(g, w, test.tolerance) for g, w in zip(got, want))
    return _normalize_output(actual) == _normalize_output(test.expected_output)


def evaluate(
    spec: ChallengeSpec,
    code: str,
    runner: Optional[SandboxRunner] = None,
    timeout: Optional[float] = None,
    memory_mb: Optional[int] = None,
) -> EvaluationResult:
    """
    Run ``code`` against ``spec``'s test cases. A test that times out, exits
    non-zero or prints the wrong answer fails. Empty code fails every test
    without being run.

    Raises ``SandboxUnavailable`` on transient infrastructure trouble and
    ``EvaluationSandboxFault`` when the code can never be run.
    """
    tests = spec.test_cases
    total_weight = spec.total_weight
    if not tests or total_weight <= 0:
        return EvaluationResult(score=0, passed_tests=0, total_tests=len(tests))

    if not (code or "").strip():
        results = [CaseResult(i, False, t.weight, error="Empty submission") for i, t in enumerate(tests)]
        return EvaluationResult(score=0, passed_tests=0, total_tests=len(tests), results=results)

    runner = runner or get_sandbox()
    timeout = settings.SANDBOX_TEST_TIMEOUT_SECONDS if timeout is None else timeout
    memory_mb = settings.SANDBOX_MEMORY_LIMIT_MB if memory_mb is None else memory_mb

    results: List[CaseResult] = []
    passed_weight = 0
    for position, test in enumerate(tests):
        run = runner.run(spec.language, code, test.input, timeout, memory_mb)
        if run.timed_out:
            results.append(CaseResult(position, False, test.weight, timed_out=True, error="Time limit exceeded"))
            continue

        ok = run.exit_code == 0 and outputs_match(run.stdout, test)
        error = "" if ok else (run.stderr or "")[:MAX_ERROR_EXCERPT]
        if ok:
            passed_weight += test.weight
        results.append(CaseResult(position, ok, test.weight, error=error))

    passed_tests = sum(1 for r in results if r.passed)
    return EvaluationResult(
        score=weighted_score(passed_weight, total_weight),
        passed_tests=passed_tests,
        total_tests=len(tests),
        results=results,
    )


def evaluate_with_retry(spec: ChallengeSpec, code: str, runner: Optional[SandboxRunner] = None) -> EvaluationResult:
    """
    ``evaluate`` with bounded retries on transient sandbox faults. A fault that
    survives the retries, or one that can never succeed, becomes a failed
    result with score 0 rather than an exception.
    """
    try:
        return retry_sandbox_call(evaluate, spec, code, runner=runner)
    except (SandboxUnavailable, EvaluationSandboxFault) as e:
        logging.warning("Evaluation of '%s' faulted: %s", spec.title, e)
        return EvaluationResult(
            score=0,
            passed_tests=0,
            total_tests=len(spec.test_cases),
            results=[CaseResult(i, False, t.weight, error="Evaluation fault") for i, t in enumerate(spec.test_cases)],
            fault=True,
            fault_message=str(e),
        )


_pool = None
_pool_guard = Lock()


def _executor() -> ThreadPoolExecutor:
    global _pool
    with _pool_guard:
        if _pool is None:
            _pool = ThreadPoolExecutor(
                max_workers=max(1, settings.EVALUATION_MAX_WORKERS), thread_name_prefix="evaluation"
            )
        return _pool


def run_evaluation(spec: ChallengeSpec, code: str, runner: Optional[SandboxRunner] = None) -> EvaluationResult:
    """Evaluate on the bounded worker pool and wait for the result."""
    return _executor().submit(evaluate_with_retry, spec, code, runner).result()


def feedback_for(result: EvaluationResult, threshold: int) -> str:
    if result.fault:
        return "We could not run your solution because of an evaluation error. The attempt was scored 0."
    summary = f"Passed {result.passed_tests} of {result.total_tests} tests (score {result.score}%)."
    if result.score >= 80:
        return f"Excellent work! {summary}"
    if result.score >= threshold:
        return f"Good job, your solution meets the requirements. {summary}"
    if result.score >= 50:
        return f"Your solution is partly correct but needs improvement. {summary}"
    if result.score > 0:
        return f"Your solution needs significant improvement. Review the requirements and edge cases. {summary}"
    return f"Your solution appears incomplete or incorrect. Review the challenge and try again. {summary}"
