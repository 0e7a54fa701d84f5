"""Exceptions raised by the audit subsystem.

Transient measurement failures are not exceptions: the audit operation
reports them through :class:`~pagebench.audit.lighthouse.AuditOutcome`
and the runner retries.  Everything here aborts the batch.
"""

from __future__ import annotations


class AuditError(Exception):
    """Base class for fatal audit errors."""


class AuditToolError(AuditError):
    """The Lighthouse executable could not be run at all."""


class BrowserLaunchError(AuditError):
    """The headless browser did not start or never became reachable."""


class RetryLimitExceeded(AuditError):
    """A run failed more consecutive times than ``max_retries`` allows."""

    def __init__(self, url: str, profile: str, attempts: int, last_error: str) -> None:
        self.url = url
        self.profile = profile
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            f"{url} [{profile}]: giving up after {attempts} failed attempts "
            f"(last error: {last_error})"
        )


class CsvSchemaError(AuditError):
    """A run's metric set does not match the columns fixed by the first run."""

    def __init__(self, path: str, missing: list[str], extra: list[str]) -> None:
        self.path = path
        self.missing = missing
        self.extra = extra
        parts = []
        if missing:
            parts.append(f"missing {', '.join(missing)}")
        if extra:
            parts.append(f"unexpected {', '.join(extra)}")
        super().__init__(f"CSV columns of {path} do not match this run: {'; '.join(parts)}")
