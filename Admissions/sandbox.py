"""
Execution backends for candidate code.

A runner executes one program against one stdin and reports what happened.
Infrastructure trouble that may clear on retry raises ``SandboxUnavailable``;
anything that can never succeed (e.g. an unsupported language) raises
``EvaluationSandboxFault``. A program that exceeds its time budget is not an
error: the result comes back with ``timed_out=True``.
"""
import base64
import math
import os
import shutil
import signal
import subprocess
import sys
import tempfile
import time
from dataclasses import dataclass
from threading import Lock
from typing import Dict, List, Optional

import httpx
from django.conf import settings

from SkillGate.errors import EvaluationSandboxFault, SandboxUnavailable

try:
    import resource
except ImportError:  # not available on Windows
    resource = None

MAX_CAPTURED_OUTPUT = 64 * 1024

# Runs in the child ahead of the interpreter: applies "NAME=value,..." rlimits, then execs it.
LIMIT_LAUNCHER = """\
import os, resource, sys
for spec in filter(None, sys.argv[1].split(",")):
    name, value = spec.split("=")
    which = getattr(resource, name)
    hard = resource.getrlimit(which)[1]
    limit = int(value) if hard == resource.RLIM_INFINITY else min(int(value), hard)
    resource.setrlimit(which, (limit, limit))
os.execvp(sys.argv[2], sys.argv[2:])
"""


@dataclass
class RunResult:
    stdout: str = ""
    stderr: str = ""
    exit_code: Optional[int] = 0
    timed_out: bool = False
    duration_ms: float = 0.0


class SandboxRunner:
    name = "base"

    def run(self, language: str, source: str, stdin: str, timeout: float, memory_mb: int) -> RunResult:
        raise NotImplementedError


def _clip(text: str) -> str:
    return text if len(text) <= MAX_CAPTURED_OUTPUT else text[:MAX_CAPTURED_OUTPUT]


def _read_capped(stream) -> str:
    stream.seek(0)
    return stream.read(MAX_CAPTURED_OUTPUT).decode("utf-8", "replace")


def _kill_group(proc: subprocess.Popen) -> None:
    """Kill the child and anything it forked."""
    try:
        if resource is not None:
            os.killpg(proc.pid, signal.SIGKILL)
        elif proc.poll() is None:
            proc.kill()
    except (ProcessLookupError, PermissionError):
        pass


class LocalProcessSandbox(SandboxRunner):
    """
    Runs code in a child process inside a throwaway directory with a wall-clock
    timeout and a stripped environment.

    On POSIX the child gets its own session, so it and every process it forks
    are killed together once the run ends. It also runs under rlimits: CPU
    seconds, file size (which bounds what it can write to its captured output)
    and, for Python, address space and process count. ``RLIMIT_NPROC`` counts
    every process of the server's user and is not enforced for root; the
    session kill still reaps whatever was forked. Output goes to unnamed
    temporary files and at most ``MAX_CAPTURED_OUTPUT`` bytes of each stream
    are read back.
    """

    name = "local"

    def _python(self, path: str, memory_mb: int):
        limits = {"RLIMIT_NPROC": settings.SANDBOX_MAX_PROCESSES}
        if memory_mb:
            limits["RLIMIT_AS"] = memory_mb * 1024 * 1024
        return [sys.executable, "-I", path], limits

    def _javascript(self, path: str, memory_mb: int):
        # V8 reserves far more address space than it uses and needs its own threads,
        # so cap the heap instead of RLIMIT_AS and leave RLIMIT_NPROC alone
        cmd = ["node"]
        if memory_mb:
            cmd.append(f"--max-old-space-size={memory_mb}")
        return cmd + [path], {}

    LANGUAGES: Dict[str, tuple] = {
        "Python": ("solution.py", "_python"),
        "JavaScript": ("solution.js", "_javascript"),
    }

    def command(self, language: str, path: str, timeout: float, memory_mb: int) -> List[str]:
        builder = self.LANGUAGES[language][1]
        cmd, limits = getattr(self, builder)(path, memory_mb)
        if shutil.which(cmd[0]) is None:
            raise SandboxUnavailable(f"Interpreter for {language} not found: {cmd[0]}")
        if resource is None:
            return cmd

        limits["RLIMIT_CPU"] = math.ceil(timeout) + 1
        limits["RLIMIT_FSIZE"] = settings.SANDBOX_MAX_OUTPUT_KB * 1024
        spec = ",".join(f"{name}={int(value)}" for name, value in limits.items() if value)
        return [sys.executable, "-I", "-S", "-c", LIMIT_LAUNCHER, spec] + cmd

    def run(self, language, source, stdin, timeout, memory_mb):
        if language not in self.LANGUAGES:
            raise EvaluationSandboxFault(f"The local sandbox cannot run {language}", language=language)
        filename = self.LANGUAGES[language][0]

        with tempfile.TemporaryDirectory(prefix="skillgate-") as workdir, \
                tempfile.TemporaryFile() as out, tempfile.TemporaryFile() as err:
            path = os.path.join(workdir, filename)
            with open(path, "w", encoding="utf-8") as f:
                f.write(source)

            cmd = self.command(language, path, timeout, memory_mb)
            env = {"PATH": os.environ.get("PATH", ""), "PYTHONHASHSEED": "0", "LANG": "C.UTF-8"}
            started = time.monotonic()
            timed_out = False
            try:
                proc = subprocess.Popen(
                    cmd,
                    stdin=subprocess.PIPE,
                    stdout=out,
                    stderr=err,
                    cwd=workdir,
                    env=env,
                    start_new_session=resource is not None,
                )
            except OSError as e:
                raise SandboxUnavailable(f"Could not start {language} process: {e}") from e

            with proc:
                try:
                    proc.communicate(input=(stdin or "").encode("utf-8"), timeout=timeout)
                except subprocess.TimeoutExpired:
                    timed_out = True
                finally:
                    _kill_group(proc)

            if timed_out:
                return RunResult(
                    stdout=_read_capped(out),
                    stderr="Time limit exceeded",
                    exit_code=None,
                    timed_out=True,
                    duration_ms=timeout * 1000.0,
                )
            return RunResult(
                stdout=_read_capped(out),
                stderr=_read_capped(err),
                exit_code=proc.returncode,
                timed_out=False,
                duration_ms=(time.monotonic() - started) * 1000.0,
            )


_client_lock = Lock()
_http_client: Optional[httpx.Client] = None


def shared_http_client() -> httpx.Client:
    """One pooled client for every Judge0 runner in the process."""
    global _http_client
    with _client_lock:
        if _http_client is None:
            _http_client = httpx.Client(timeout=15.0)
        return _http_client


class Judge0Sandbox(SandboxRunner):
    """
    Runs code on a Judge0 instance (self-hosted or RapidAPI).
    """

    name = "judge0"

    LANGUAGE_IDS = {
        "C": 50,
        "C++": 54,
        "C#": 51,
        "Go": 60,
        "Java": 62,
        "JavaScript": 63,
        "PHP": 68,
        "Python": 71,
        "Ruby": 72,
        "Rust": 73,
        "TypeScript": 74,
        "Kotlin": 78,
        "Swift": 83,
    }
    FIELDS = "token,stdout,stderr,compile_output,message,exit_code,status,time,memory"
    PENDING_STATUSES = (1, 2)
    ACCEPTED_STATUS = 3
    TIME_LIMIT_STATUS = 5
    INTERNAL_ERROR_STATUS = 13

    def __init__(self, base_url=None, api_key=None, host=None, client: Optional[httpx.Client] = None,
                 max_polls: int = 30, poll_interval: float = 1.0):
        self.base_url = (base_url or settings.JUDGE0_URL).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.JUDGE0_KEY
        self.host = host or settings.JUDGE0_HOST
        self.client = client or shared_http_client()
        self.max_polls = max_polls
        self.poll_interval = poll_interval

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["X-RapidAPI-Key"] = self.api_key
            headers["X-RapidAPI-Host"] = self.host
        return headers

    @staticmethod
    def _b64(text: str) -> str:
        return base64.b64encode((text or "").encode("utf-8")).decode("ascii")

    @staticmethod
    def _unb64(value: Optional[str]) -> str:
        if not value:
            return ""
        return base64.b64decode(value).decode("utf-8", "replace")

    def _request(self, method: str, url: str, **kwargs) -> Dict:
        try:
            response = self.client.request(method, url, headers=self._headers(), **kwargs)
        except httpx.HTTPError as e:
            raise SandboxUnavailable(f"Judge0 request failed: {e}") from e

        if response.status_code == 429 or response.status_code >= 500:
            raise SandboxUnavailable(f"Judge0 returned HTTP {response.status_code}")
        if response.status_code >= 400:
            raise EvaluationSandboxFault(f"Judge0 rejected the submission (HTTP {response.status_code})")
        try:
            data = response.json()
        except ValueError as e:
            raise SandboxUnavailable(f"Judge0 returned a non-JSON body (HTTP {response.status_code})") from e
        if not isinstance(data, dict):
            raise SandboxUnavailable("Judge0 returned an unexpected payload")
        return data

    def run(self, language, source, stdin, timeout, memory_mb):
        language_id = self.LANGUAGE_IDS.get(language)
        if language_id is None:
            raise EvaluationSandboxFault(f"Judge0 has no mapping for {language}", language=language)

        payload = {
            "source_code": self._b64(source),
            "language_id": language_id,
            "stdin": self._b64(stdin),
            "cpu_time_limit": timeout,
            "wall_time_limit": timeout,
        }
        if memory_mb:
            payload["memory_limit"] = memory_mb * 1024

        result = self._request(
            "POST",
            f"{self.base_url}/submissions",
            params={"base64_encoded": "true", "wait": "true", "fields": self.FIELDS},
            json=payload,
        )

        polls = 0
        while result.get("status", {}).get("id") in self.PENDING_STATUSES or "status" not in result:
            token = result.get("token")
            if not token or polls >= self.max_polls:
                raise SandboxUnavailable("Judge0 did not finish the submission in time")
            time.sleep(self.poll_interval)
            polls += 1
            result = self._request(
                "GET",
                f"{self.base_url}/submissions/{token}",
                params={"base64_encoded": "true", "fields": self.FIELDS},
            )

        status_id = result["status"]["id"]
        if status_id == self.INTERNAL_ERROR_STATUS:
            raise SandboxUnavailable(f"Judge0 internal error: {result.get('message') or 'unknown'}")

        timed_out = status_id == self.TIME_LIMIT_STATUS
        # Judge0 leaves exit_code out unless asked for it, and some builds omit it anyway
        exit_code = result.get("exit_code")
        if exit_code is None and not timed_out:
            exit_code = 0 if status_id == self.ACCEPTED_STATUS else 1

        stderr = self._unb64(result.get("stderr")) or self._unb64(result.get("compile_output"))
        return RunResult(
            stdout=_clip(self._unb64(result.get("stdout"))),
            stderr=_clip(stderr),
            exit_code=exit_code,
            timed_out=timed_out,
            duration_ms=float(result.get("time") or 0) * 1000.0,
        )


SANDBOXES = {
    LocalProcessSandbox.name: LocalProcessSandbox,
    Judge0Sandbox.name: Judge0Sandbox,
}


def get_sandbox(name: Optional[str] = None) -> SandboxRunner:
    name = name or settings.EVALUATION_SANDBOX
    try:
        return SANDBOXES[name]()
    except KeyError:
        raise EvaluationSandboxFault(f"Unknown sandbox backend: {name}") from None


def supported_languages(name: Optional[str] = None) -> List[str]:
    runner_cls = SANDBOXES.get(name or settings.EVALUATION_SANDBOX)
    if runner_cls is LocalProcessSandbox:
        return list(LocalProcessSandbox.LANGUAGES)
    if runner_cls is Judge0Sandbox:
        return list(Judge0Sandbox.LANGUAGE_IDS)
    return []
