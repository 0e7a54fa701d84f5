"""Headless browser lifecycle.

One Chrome process serves the whole batch.  Lighthouse connects to it
through the DevTools port; audits never run concurrently against it.
"""

from __future__ import annotations

import contextlib
import logging
import os
import shutil
import socket
import subprocess
import tempfile
import time
from pathlib import Path
from typing import Iterator, Sequence

import requests

from pagebench.audit.errors import BrowserLaunchError

log = logging.getLogger("pagebench")

CHROME_CANDIDATES = (
    "google-chrome",
    "google-chrome-stable",
    "chromium",
    "chromium-browser",
    "chrome",
)

_DEFAULT_FLAGS = (
    "--no-first-run",
    "--no-default-browser-check",
    "--disable-extensions",
    "--disable-background-networking",
    "--disable-sync",
)


def find_chrome(explicit: str | None = None) -> str:
    """Locate a Chrome/Chromium executable.

    Resolution order: *explicit*, ``$CHROME_PATH``, then the first of
    :data:`CHROME_CANDIDATES` found on ``PATH``.

    Raises:
        BrowserLaunchError: If nothing suitable is found.
    """
    for candidate in (explicit, os.environ.get("CHROME_PATH")):
        if candidate:
            resolved = shutil.which(candidate) or (candidate if Path(candidate).is_file() else None)
            if resolved is None:
                raise BrowserLaunchError(f"Chrome executable not found: {candidate}")
            return resolved
    for name in CHROME_CANDIDATES:
        resolved = shutil.which(name)
        if resolved:
            return resolved
    raise BrowserLaunchError(
        "No Chrome/Chromium executable found. Use --chrome-path or set CHROME_PATH."
    )


def free_port() -> int:
    """Ask the OS for an unused local TCP port."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return int(sock.getsockname()[1])


class BrowserProcess:
    """A running headless browser with a DevTools port."""

    def __init__(
        self,
        executable: str,
        *,
        port: int,
        flags: Sequence[str] = ("--headless",),
    ) -> None:
        self.executable = executable
        self.port = port
        self.flags = tuple(flags)
        self.version = ""
        self._proc: subprocess.Popen[bytes] | None = None
        self._profile_dir: str | None = None

    @property
    def running(self) -> bool:
        return self._proc is not None and self._proc.poll() is None

    def command(self) -> list[str]:
        return [
            self.executable,
            *self.flags,
            *_DEFAULT_FLAGS,
            f"--remote-debugging-port={self.port}",
            f"--user-data-dir={self._profile_dir}",
            "about:blank",
        ]

    def start(self, *, ready_timeout: float = 30.0) -> None:
        """Launch the browser and wait until DevTools answers.

        Raises:
            BrowserLaunchError: If the process cannot start, exits early,
                or DevTools does not respond within *ready_timeout*.
        """
        self._profile_dir = tempfile.mkdtemp(prefix="pagebench-chrome-")
        cmd = self.command()
        log.debug("Launching browser: %s", " ".join(cmd))
        try:
            self._proc = subprocess.Popen(
                cmd,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                start_new_session=True,
            )
        except OSError as exc:
            self._cleanup_profile()
            raise BrowserLaunchError(f"Cannot start {self.executable}: {exc}") from exc

        try:
            self.version = self._wait_ready(ready_timeout)
        except BrowserLaunchError:
            self.stop()
            raise
        log.info("Browser ready on port %d (%s)", self.port, self.version or "unknown version")

    def _wait_ready(self, timeout: float) -> str:
        url = f"http://127.0.0.1:{self.port}/json/version"
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            if self._proc is not None and self._proc.poll() is not None:
                raise BrowserLaunchError(
                    f"Browser exited during startup (exit {self._proc.returncode})"
                )
            try:
                resp = requests.get(url, timeout=2)
            except requests.RequestException:
                time.sleep(0.25)
                continue
            if resp.status_code == 200:
                try:
                    return str(resp.json().get("Browser", ""))
                except ValueError:
                    return ""
            time.sleep(0.25)
        raise BrowserLaunchError(
            f"Browser DevTools did not respond on port {self.port} within {timeout:.0f}s"
        )

    def stop(self, *, grace: float = 5.0) -> None:
        """Terminate the browser and remove its temporary profile."""
        proc, self._proc = self._proc, None
        if proc is not None and proc.poll() is None:
            proc.terminate()
            try:
                proc.wait(timeout=grace)
            except subprocess.TimeoutExpired:
                proc.kill()
                proc.wait()
            log.debug("Browser on port %d stopped", self.port)
        self._cleanup_profile()

    def _cleanup_profile(self) -> None:
        if self._profile_dir:
            shutil.rmtree(self._profile_dir, ignore_errors=True)
            self._profile_dir = None


@contextlib.contextmanager
def launch_browser(
    chrome_path: str | None = None,
    *,
    flags: Sequence[str] = ("--headless",),
    port: int | None = None,
) -> Iterator[BrowserProcess]:
    """Run a headless browser for the duration of the ``with`` block."""
    browser = BrowserProcess(find_chrome(chrome_path), port=port or free_port(), flags=flags)
    browser.start()
    try:
        yield browser
    finally:
        browser.stop()
