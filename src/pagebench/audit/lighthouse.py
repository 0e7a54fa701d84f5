"""Lighthouse invocation.

Runs the Lighthouse CLI against an already running browser (``--port``)
and parses the JSON result from stdout.  A run that produces no usable
result, or whose result carries a ``runtimeError``, is reported as a
transient failure in :class:`AuditOutcome`; only a missing executable
is raised.
"""

from __future__ import annotations

import json
import logging
import os
import shlex
import signal
import subprocess
import time
from dataclasses import dataclass
from typing import Any

from pagebench.audit.config import ThrottlingProfile
from pagebench.audit.errors import AuditToolError

log = logging.getLogger("pagebench")


# ---------------------------------------------------------------------------
# AuditOutcome
# ---------------------------------------------------------------------------


@dataclass
class AuditOutcome:
    """Result of one Lighthouse invocation."""

    lhr: dict[str, Any] | None = None  # parsed Lighthouse result
    report: str = ""  # raw report text, written as-is
    runtime_error: str = ""  # "" when the run is usable
    duration_s: float = 0.0

    @property
    def ok(self) -> bool:
        return self.lhr is not None and not self.runtime_error

    @classmethod
    def failed(cls, reason: str, duration_s: float = 0.0) -> AuditOutcome:
        return cls(runtime_error=reason, duration_s=duration_s)


# ---------------------------------------------------------------------------
# Command construction
# ---------------------------------------------------------------------------


def _flag_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return f"{value:g}" if isinstance(value, float) else str(value)


def build_command(
    url: str,
    profile: ThrottlingProfile,
    *,
    port: int,
    lighthouse_command: str = "lighthouse",
) -> list[str]:
    """Build the Lighthouse CLI argument list for one audit."""
    cmd = shlex.split(lighthouse_command)
    cmd += [
        url,
        f"--port={port}",
        "--output=json",
        "--output-path=stdout",
        "--only-categories=performance",
        f"--form-factor={profile.form_factor}",
        "--disable-full-page-screenshot",
        "--quiet",
    ]
    for key, value in profile.throttling.to_lighthouse().items():
        cmd.append(f"--throttling.{key}={_flag_value(value)}")
    for key, value in profile.emulation.to_lighthouse().items():
        cmd.append(f"--screenEmulation.{key}={_flag_value(value)}")
    return cmd


# ---------------------------------------------------------------------------
# Invocation
# ---------------------------------------------------------------------------


def parse_output(stdout: str) -> AuditOutcome:
    """Interpret Lighthouse's stdout.

    Empty or invalid JSON means "no result".  A result with a
    ``runtimeError`` is kept in ``lhr`` but marked as failed.
    """
    if not stdout.strip():
        return AuditOutcome.failed("no result")
    try:
        lhr = json.loads(stdout)
    except json.JSONDecodeError as exc:
        return AuditOutcome.failed(f"invalid JSON output: {exc}")
    if not isinstance(lhr, dict):
        return AuditOutcome.failed("no result")

    runtime_error = lhr.get("runtimeError")
    if runtime_error:
        if isinstance(runtime_error, dict):
            code = runtime_error.get("code", "")
            message = runtime_error.get("message", "")
            reason = f"{code}: {message}" if code else message or "runtime error"
        else:
            reason = str(runtime_error)
        return AuditOutcome(lhr=lhr, report=stdout, runtime_error=reason)

    return AuditOutcome(lhr=lhr, report=stdout)


def run_lighthouse(
    url: str,
    profile: ThrottlingProfile,
    *,
    port: int,
    lighthouse_command: str = "lighthouse",
    timeout: int = 300,
) -> AuditOutcome:
    """Run one performance audit of *url* under *profile*.

    Raises:
        AuditToolError: If the Lighthouse executable cannot be started.
    """
    cmd = build_command(url, profile, port=port, lighthouse_command=lighthouse_command)
    log.debug("Running: %s", shlex.join(cmd))

    start = time.monotonic()
    try:
        proc = subprocess.Popen(
            cmd,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            start_new_session=True,
        )
    except OSError as exc:
        raise AuditToolError(f"Cannot run Lighthouse ({cmd[0]}): {exc}") from exc

    try:
        stdout, stderr = proc.communicate(timeout=timeout)
    except subprocess.TimeoutExpired:
        _kill_process_group(proc.pid)
        proc.communicate()
        return AuditOutcome.failed(
            f"timed out after {timeout}s", duration_s=time.monotonic() - start
        )
    duration = time.monotonic() - start

    outcome = parse_output(stdout)
    outcome.duration_s = duration
    if proc.returncode != 0 and outcome.lhr is None:
        tail = stderr.strip().splitlines()[-1:] if stderr else []
        detail = f": {tail[0]}" if tail else ""
        outcome.runtime_error = f"lighthouse exited with {proc.returncode}{detail}"
    return outcome


def _kill_process_group(pid: int) -> None:
    """Attempt to kill the entire process group on timeout."""
    try:
        os.killpg(os.getpgid(pid), signal.SIGKILL)
    except (ProcessLookupError, PermissionError, OSError):
        pass
