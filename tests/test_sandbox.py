import base64
import json
import os
import shutil
import sys
import time

import httpx
import pytest

from Admissions.challenges import CaseSpec, ChallengeSpec
from Admissions.evaluator import evaluate
from Admissions.sandbox import MAX_CAPTURED_OUTPUT, Judge0Sandbox, LocalProcessSandbox, get_sandbox
from SkillGate.errors import EvaluationSandboxFault, SandboxUnavailable

posix_only = pytest.mark.skipif(sys.platform == "win32", reason="needs POSIX sessions and rlimits")


def _b64(s):
    return base64.b64encode(s.encode()).decode()


def _judge0(handler, **kwargs):
    client = httpx.Client(transport=httpx.MockTransport(handler))
    return Judge0Sandbox(base_url="https://judge0.test", api_key="k", host="judge0.test", client=client, **kwargs)


def test_judge0_sends_base64_and_decodes_output():
    seen = {}

    def handler(request):
        seen["url"] = request.url
        seen["headers"] = request.headers
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"status": {"id": 3}, "stdout": _b64("42\n"), "time": "0.01"})

    result = _judge0(handler).run("Python", "print(42)", "in", 2.0, 128)

    assert result.stdout == "42\n"
    assert result.exit_code == 0
    assert result.timed_out is False
    assert seen["body"]["language_id"] == 71
    assert base64.b64decode(seen["body"]["source_code"]).decode() == "print(42)"
    assert seen["body"]["memory_limit"] == 128 * 1024
    assert seen["url"].params["wait"] == "true"
    assert "exit_code" in seen["url"].params["fields"].split(",")
    assert seen["headers"]["X-RapidAPI-Key"] == "k"


def test_judge0_accepted_submission_passes_evaluation():
    # a default Judge0 response body: status and output, no exit_code
    def handler(request):
        stdin = base64.b64decode(json.loads(request.content)["stdin"]).decode()
        return httpx.Response(200, json={"status": {"id": 3, "description": "Accepted"}, "stdout": _b64(stdin + "\n")})

    spec = ChallengeSpec(
        kind="persistent", title="Echo", description="", language="Python", starter_code="",
        time_limit_minutes=30, pass_threshold=70, test_cases=(CaseSpec("1", "1"), CaseSpec("2", "2")),
    )
    result = evaluate(spec, "print(input())", runner=_judge0(handler))

    assert (result.score, result.passed_tests) == (100, 2)


def test_judge0_runtime_error_without_exit_code_fails():
    def handler(request):
        return httpx.Response(200, json={"status": {"id": 11}, "stdout": _b64("6"), "stderr": _b64("boom")})

    result = _judge0(handler).run("Python", "print(6); raise SystemExit(1)", "", 1.0, 0)
    assert result.exit_code == 1
    assert result.stderr == "boom"


def test_judge0_reported_exit_code_is_kept():
    def handler(request):
        return httpx.Response(200, json={"status": {"id": 11}, "exit_code": 3})

    assert _judge0(handler).run("Python", "raise SystemExit(3)", "", 1.0, 0).exit_code == 3


def test_judge0_time_limit_status_is_a_timeout():
    def handler(request):
        return httpx.Response(200, json={"status": {"id": 5}, "stdout": None})

    result = _judge0(handler).run("Java", "class Main {}", "", 1.0, 0)
    assert result.timed_out is True
    assert result.exit_code is None


def test_judge0_internal_error_is_transient():
    def handler(request):
        return httpx.Response(200, json={"status": {"id": 13}, "message": "worker died"})

    with pytest.raises(SandboxUnavailable):
        _judge0(handler).run("Python", "print(1)", "", 1.0, 0)


def test_judge0_polls_until_finished():
    seen = []
    responses = iter([
        httpx.Response(201, json={"token": "abc", "status": {"id": 1}}),
        httpx.Response(200, json={"token": "abc", "status": {"id": 2}}),
        httpx.Response(200, json={"token": "abc", "status": {"id": 3}, "stdout": _b64("ok")}),
    ])

    def handler(request):
        seen.append(request.url)
        return next(responses)

    assert _judge0(handler, poll_interval=0).run("Go", "package main", "", 1.0, 0).stdout == "ok"
    assert seen[-1].path == "/submissions/abc"
    assert "exit_code" in seen[-1].params["fields"]


def test_judge0_server_errors_are_transient():
    def handler(request):
        return httpx.Response(503)

    with pytest.raises(SandboxUnavailable):
        _judge0(handler).run("Python", "print(1)", "", 1.0, 0)


def test_judge0_non_json_body_is_transient():
    def handler(request):
        return httpx.Response(200, text="<html>Bad gateway</html>", headers={"Content-Type": "text/html"})

    with pytest.raises(SandboxUnavailable):
        _judge0(handler).run("Python", "print(1)", "", 1.0, 0)

    with pytest.raises(SandboxUnavailable):
        _judge0(lambda r: httpx.Response(200, json=["not", "an", "object"])).run("Python", "print(1)", "", 1.0, 0)


def test_judge0_transport_errors_are_transient():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(SandboxUnavailable):
        _judge0(handler).run("Python", "print(1)", "", 1.0, 0)


def test_judge0_rejects_unmapped_language():
    with pytest.raises(EvaluationSandboxFault):
        _judge0(lambda r: httpx.Response(200)).run("COBOL", "", "", 1.0, 0)


def test_judge0_runners_share_one_http_client(settings):
    settings.EVALUATION_SANDBOX = "judge0"
    first, second = get_sandbox(), get_sandbox()
    assert isinstance(first, Judge0Sandbox)
    assert first.client is second.client
    assert Judge0Sandbox().client is first.client


def test_local_sandbox_rejects_unsupported_language():
    with pytest.raises(EvaluationSandboxFault):
        LocalProcessSandbox().run("Rust", "fn main() {}", "", 1.0, 0)


def test_local_sandbox_runs_python():
    code = "import sys\nprint(sum(int(x) for x in sys.stdin.read().split()))\n"
    result = LocalProcessSandbox().run("Python", code, "1 2 3", 10.0, 0)
    assert result.exit_code == 0
    assert result.stdout.strip() == "6"


def test_local_sandbox_reports_nonzero_exit():
    result = LocalProcessSandbox().run("Python", "import sys\nprint('6')\nsys.exit(2)\n", "", 10.0, 0)
    assert result.exit_code == 2
    assert result.stdout.strip() == "6"


def test_local_sandbox_times_out():
    result = LocalProcessSandbox().run("Python", "while True:\n    pass\n", "", 0.5, 0)
    assert result.timed_out is True


@posix_only
def test_local_sandbox_applies_rlimits(settings, tmp_path):
    settings.SANDBOX_MAX_OUTPUT_KB = 8
    settings.SANDBOX_MAX_PROCESSES = 4
    cmd = LocalProcessSandbox().command("Python", str(tmp_path / "solution.py"), 2.5, 64)

    limits = dict(spec.split("=") for spec in cmd[5].split(","))
    assert limits == {
        "RLIMIT_NPROC": "4",
        "RLIMIT_AS": str(64 * 1024 * 1024),
        "RLIMIT_CPU": "4",
        "RLIMIT_FSIZE": str(8 * 1024),
    }
    assert cmd[-2:] == ["-I", str(tmp_path / "solution.py")]


@posix_only
def test_local_sandbox_bounds_output_flood(settings):
    settings.SANDBOX_MAX_OUTPUT_KB = 256
    code = "import sys\nwhile True:\n    sys.stdout.write('x' * 65536)\n"
    started = time.monotonic()

    result = LocalProcessSandbox().run("Python", code, "", 5.0, 0)

    assert len(result.stdout) <= MAX_CAPTURED_OUTPUT
    assert result.timed_out or result.exit_code != 0
    assert time.monotonic() - started < 10


@posix_only
def test_local_sandbox_kills_forked_children(tmp_path):
    marker = tmp_path / "escaped"
    code = (
        "import os, sys, time\n"
        "path = sys.stdin.read().strip()\n"
        "try:\n"
        "    pid = os.fork()\n"
        "except OSError:\n"
        "    sys.exit(3)\n"
        "if pid == 0:\n"
        "    time.sleep(1.0)\n"
        "    open(path, 'w').write('still running')\n"
        "    os._exit(0)\n"
        "print('parent done')\n"
    )

    LocalProcessSandbox().run("Python", code, str(marker), 5.0, 0)
    time.sleep(2.0)

    assert not os.path.exists(marker)


@pytest.mark.skipif(shutil.which("node") is None, reason="node is not installed")
def test_local_sandbox_runs_javascript():
    code = "const d = require('fs').readFileSync(0, 'utf8'); console.log(d.trim().split(' ').reverse().join(' '));"
    result = LocalProcessSandbox().run("JavaScript", code, "a b", 10.0, 0)
    assert result.stdout.strip() == "b a"


def test_get_sandbox_follows_settings(settings):
    settings.EVALUATION_SANDBOX = "local"
    assert isinstance(get_sandbox(), LocalProcessSandbox)
    with pytest.raises(EvaluationSandboxFault):
        get_sandbox("nope")
