"""Audit configuration and throttling profile catalog.

Handles:
- The built-in catalog of named throttling profiles.
- Loading batch profiles from YAML files.
- Merging CLI options with profile values.
- Validating the final configuration before execution.
"""

from __future__ import annotations

import logging
import posixpath
from dataclasses import asdict, dataclass, field, replace
from pathlib import Path
from typing import Any, Iterator
from urllib.parse import urlsplit

import yaml

log = logging.getLogger("pagebench")


# ---------------------------------------------------------------------------
# Throttling profiles
# ---------------------------------------------------------------------------

# DevTools network throttling needs these adjustments to approximate real
# network conditions (https://crbug.com/721112).
DEVTOOLS_RTT_ADJUSTMENT_FACTOR = 3.75
DEVTOOLS_THROUGHPUT_ADJUSTMENT_FACTOR = 0.9


@dataclass(frozen=True)
class NetworkThrottling:
    """Simulated network and CPU constraints.

    A value of 0 for the request latency or the up/down throughput
    means "unset" to Lighthouse.
    """

    rtt_ms: float
    throughput_kbps: float
    cpu_slowdown_multiplier: float = 1.0
    request_latency_ms: float = 0.0
    download_throughput_kbps: float = 0.0
    upload_throughput_kbps: float = 0.0

    def to_lighthouse(self) -> dict[str, float]:
        """Key names as Lighthouse's ``throttling`` settings spell them."""
        return {
            "rttMs": self.rtt_ms,
            "throughputKbps": self.throughput_kbps,
            "cpuSlowdownMultiplier": self.cpu_slowdown_multiplier,
            "requestLatencyMs": self.request_latency_ms,
            "downloadThroughputKbps": self.download_throughput_kbps,
            "uploadThroughputKbps": self.upload_throughput_kbps,
        }


@dataclass(frozen=True)
class ScreenEmulation:
    """Viewport and device emulation parameters."""

    mobile: bool
    width: int
    height: int
    device_scale_factor: float
    disabled: bool = False

    def to_lighthouse(self) -> dict[str, Any]:
        """Key names as Lighthouse's ``screenEmulation`` settings spell them."""
        return {
            "mobile": self.mobile,
            "width": self.width,
            "height": self.height,
            "deviceScaleFactor": self.device_scale_factor,
            "disabled": self.disabled,
        }


@dataclass(frozen=True)
class ThrottlingProfile:
    """A named bundle of throttling and matching screen emulation."""

    name: str
    throttling: NetworkThrottling
    emulation: ScreenEmulation
    description: str = ""

    @property
    def form_factor(self) -> str:
        return "mobile" if self.emulation.mobile else "desktop"

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-compatible dict."""
        d: dict[str, Any] = {
            "name": self.name,
            "throttling": asdict(self.throttling),
            "emulation": asdict(self.emulation),
        }
        if self.description:
            d["description"] = self.description
        return d


# Adapted from Chrome DevTools' emulated_devices/module.json.
DESKTOP_EMULATION = ScreenEmulation(mobile=False, width=1350, height=940, device_scale_factor=1)
MOTO_G_POWER_EMULATION = ScreenEmulation(
    mobile=True, width=412, height=823, device_scale_factor=1.75
)

THROTTLING_PROFILES: dict[str, ThrottlingProfile] = {
    p.name: p
    for p in (
        ThrottlingProfile(
            name="desktop-dense-4g",
            description="Broadband-like desktop connection",
            throttling=NetworkThrottling(
                rtt_ms=40,
                throughput_kbps=10 * 1024,
                cpu_slowdown_multiplier=1,
            ),
            emulation=DESKTOP_EMULATION,
        ),
        ThrottlingProfile(
            name="mobile-slow-4g",
            description="WebPageTest 'Fast 3G', roughly the 75th percentile of 4G",
            throttling=NetworkThrottling(
                rtt_ms=150,
                throughput_kbps=1.6 * 1024,
                cpu_slowdown_multiplier=4,
                request_latency_ms=150 * DEVTOOLS_RTT_ADJUSTMENT_FACTOR,
                download_throughput_kbps=1.6 * 1024 * DEVTOOLS_THROUGHPUT_ADJUSTMENT_FACTOR,
                upload_throughput_kbps=750 * DEVTOOLS_THROUGHPUT_ADJUSTMENT_FACTOR,
            ),
            emulation=MOTO_G_POWER_EMULATION,
        ),
        ThrottlingProfile(
            name="mobile-regular-3g",
            description="Chrome UX report 3G (HTTP RTT 300-1400ms, <700kbps)",
            throttling=NetworkThrottling(
                rtt_ms=300,
                throughput_kbps=700,
                cpu_slowdown_multiplier=4,
                request_latency_ms=300 * DEVTOOLS_RTT_ADJUSTMENT_FACTOR,
                download_throughput_kbps=700 * DEVTOOLS_THROUGHPUT_ADJUSTMENT_FACTOR,
                upload_throughput_kbps=700 * DEVTOOLS_THROUGHPUT_ADJUSTMENT_FACTOR,
            ),
            emulation=MOTO_G_POWER_EMULATION,
        ),
    )
}


def get_profile(name: str) -> ThrottlingProfile:
    """Look up a built-in throttling profile by name.

    Raises:
        ValueError: If no profile has that name.
    """
    try:
        return THROTTLING_PROFILES[name]
    except KeyError:
        raise ValueError(
            f"Unknown throttling profile '{name}'. "
            f"Available: {', '.join(THROTTLING_PROFILES)}"
        ) from None


def profile_from_dict(name: str, data: dict[str, Any]) -> ThrottlingProfile:
    """Build a custom throttling profile from a YAML mapping.

    ``base`` names a built-in profile to start from; ``throttling`` and
    ``emulation`` override individual fields (snake_case keys)::

        mobile-slow-cpu:
          base: mobile-slow-4g
          throttling:
            cpu_slowdown_multiplier: 6
    """
    if not isinstance(data, dict):
        raise ValueError(f"Throttling profile '{name}' must be a mapping")

    base = get_profile(data["base"]) if data.get("base") else None
    throttling_data = data.get("throttling") or {}
    emulation_data = data.get("emulation") or {}

    try:
        if base is not None:
            throttling = replace(base.throttling, **throttling_data)
            emulation = replace(base.emulation, **emulation_data)
        else:
            throttling = NetworkThrottling(**throttling_data)
            emulation = ScreenEmulation(**emulation_data)
    except TypeError as exc:
        raise ValueError(f"Invalid throttling profile '{name}': {exc}") from exc

    return ThrottlingProfile(
        name=name,
        throttling=throttling,
        emulation=emulation,
        description=data.get("description", base.description if base else ""),
    )


# ---------------------------------------------------------------------------
# AuditConfig
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AuditConfig:
    """Resolved, immutable configuration for a batch of audits."""

    targets: tuple[str, ...] = ()  # base URLs, e.g. http://localhost:3000
    pages: tuple[str, ...] = ("",)  # paths appended to every target
    profiles: tuple[ThrottlingProfile, ...] = tuple(THROTTLING_PROFILES.values())

    # Run control
    runs_per_page: int = 10
    max_retries: int | None = None  # None = retry transient failures forever
    retry_delay_s: float = 0.0
    audit_timeout: int = 300  # per Lighthouse invocation, seconds

    # Output
    reports_dir: Path = field(default_factory=lambda: Path("reports"))
    api_delay_ms: int = 500  # label of the backend delay under test

    # External tools
    chrome_path: str | None = None
    chrome_flags: tuple[str, ...] = ("--headless",)
    lighthouse_command: str = "lighthouse"

    cli_args: tuple[str, ...] = ()

    def page_urls(self) -> Iterator[tuple[str, str]]:
        """Yield ``(target, page_url)`` in target-major order."""
        for target in self.targets:
            base = target.rstrip("/")
            for page in self.pages:
                yield target, f"{base}/{page.lstrip('/')}"

    def combinations(self) -> Iterator[tuple[str, ThrottlingProfile]]:
        """Yield ``(page_url, profile)``: target, then page, then profile."""
        for _, url in self.page_urls():
            for profile in self.profiles:
                yield url, profile

    @property
    def total_combinations(self) -> int:
        return len(self.targets) * len(self.pages) * len(self.profiles)

    def combination_dir(self, url: str, profile: ThrottlingProfile) -> Path:
        """``<reports>/<delay>ms/<host>-<port>/<page-path>/<profile>``."""
        parts = urlsplit(url)
        host_dir = f"{parts.hostname or ''}-{parts.port or ''}"
        page_path = _page_dir(parts.path)
        base = self.reports_dir / f"{self.api_delay_ms}ms" / host_dir
        if page_path:
            base = base / page_path
        return base / profile.name

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-compatible dict (for batch_meta.json)."""
        return {
            "targets": list(self.targets),
            "pages": list(self.pages),
            "profiles": [p.to_dict() for p in self.profiles],
            "runs_per_page": self.runs_per_page,
            "max_retries": self.max_retries,
            "retry_delay_s": self.retry_delay_s,
            "audit_timeout": self.audit_timeout,
            "reports_dir": str(self.reports_dir),
            "api_delay_ms": self.api_delay_ms,
            "chrome_flags": list(self.chrome_flags),
            "lighthouse_command": self.lighthouse_command,
        }


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


@dataclass
class ValidationError:
    """A single configuration validation error."""

    field: str
    message: str
    severity: str = "error"  # "error" or "warning"


def validate_config(config: AuditConfig) -> list[ValidationError]:
    """Validate an audit configuration.

    Returns a list of validation errors.  Empty list means valid.
    """
    errors: list[ValidationError] = []

    if not config.targets:
        errors.append(
            ValidationError(
                field="targets",
                message="No targets defined. Use --target or a profile's 'targets' list.",
            )
        )
    for target in config.targets:
        parts = urlsplit(target)
        if parts.scheme not in ("http", "https") or not parts.hostname:
            errors.append(
                ValidationError(
                    field="targets",
                    message=f"Target must be an http(s) URL with a host: '{target}'",
                )
            )

    if not config.pages:
        errors.append(
            ValidationError(field="pages", message="No pages defined (use '' for the root).")
        )
    for page in config.pages:
        if _climbs_above_root(page):
            errors.append(
                ValidationError(
                    field="pages",
                    message=f"Page path climbs above the target root: '{page}'",
                )
            )

    if not config.profiles:
        errors.append(
            ValidationError(field="profiles", message="No throttling profiles selected.")
        )
    names = [p.name for p in config.profiles]
    for name in names:
        # Profile names become directory names.
        if name in ("", ".", "..") or "/" in name or "\\" in name:
            errors.append(
                ValidationError(
                    field="profiles",
                    message=f"Throttling profile name is not a valid directory name: '{name}'",
                )
            )
    duplicates = sorted({n for n in names if names.count(n) > 1})
    if duplicates:
        errors.append(
            ValidationError(
                field="profiles",
                message=f"Duplicate throttling profile names: {', '.join(duplicates)}",
            )
        )

    if config.runs_per_page < 1:
        errors.append(
            ValidationError(
                field="runs_per_page",
                message=f"Need at least 1 run per page (got {config.runs_per_page}).",
            )
        )

    if config.max_retries is None:
        errors.append(
            ValidationError(
                field="max_retries",
                message=(
                    "Transient audit failures are retried without limit. "
                    "Set --max-retries to bound a persistently failing page."
                ),
                severity="warning",
            )
        )
    elif config.max_retries < 0:
        errors.append(
            ValidationError(
                field="max_retries",
                message=f"max_retries cannot be negative (got {config.max_retries}).",
            )
        )

    if config.retry_delay_s < 0:
        errors.append(
            ValidationError(
                field="retry_delay_s",
                message=f"Retry delay cannot be negative (got {config.retry_delay_s}).",
            )
        )

    if config.audit_timeout <= 0:
        errors.append(
            ValidationError(
                field="audit_timeout",
                message=f"Timeout must be positive (got {config.audit_timeout}).",
            )
        )

    return errors


def _page_dir(path: str) -> str:
    """Relative directory for a URL path, with dot-segments resolved.

    Resolution happens against the root, so the result never climbs
    above it: ``/../../tmp/x`` becomes ``tmp/x``.
    """
    return posixpath.normpath("/" + path).strip("/")


def _climbs_above_root(page: str) -> bool:
    path = urlsplit(page).path.lstrip("/")
    return bool(path) and posixpath.normpath(path).split("/")[0] == ".."


# ---------------------------------------------------------------------------
# YAML profile loading
# ---------------------------------------------------------------------------


def load_profile(profile_path: Path) -> dict[str, Any]:
    """Load a batch profile from a YAML file.

    Profile format::

        targets:
          - http://localhost:5173
          - http://localhost:3000
        pages: ["", "products/42"]
        runs_per_page: 10
        api_delay_ms: 500
        max_retries: 20

        throttling:
          - desktop-dense-4g          # built-in, by name
          - mobile-slow-4g
          - name: mobile-slow-cpu     # custom
            base: mobile-slow-4g
            throttling:
              cpu_slowdown_multiplier: 6

    Returns:
        The parsed YAML as a dict.
    """
    if not profile_path.exists():
        raise FileNotFoundError(f"Profile not found: {profile_path}")

    try:
        data = yaml.safe_load(profile_path.read_text())
    except yaml.YAMLError as exc:
        raise ValueError(f"Invalid YAML in profile {profile_path}: {exc}") from exc

    if not isinstance(data, dict):
        raise ValueError(f"Profile must be a YAML mapping, got {type(data).__name__}")

    return data


def _profiles_from_data(items: Any) -> tuple[ThrottlingProfile, ...]:
    if not isinstance(items, list):
        raise ValueError("Profile 'throttling' must be a list of names or mappings")
    profiles = []
    for item in items:
        if isinstance(item, str):
            profiles.append(get_profile(item))
        elif isinstance(item, dict) and item.get("name"):
            body = {k: v for k, v in item.items() if k != "name"}
            profiles.append(profile_from_dict(item["name"], body))
        else:
            raise ValueError(f"Invalid throttling entry: {item!r}")
    return tuple(profiles)


def config_from_profile(
    profile_data: dict[str, Any],
    *,
    cli_overrides: dict[str, Any] | None = None,
) -> AuditConfig:
    """Build an AuditConfig from a parsed YAML profile.

    CLI overrides take precedence over profile values.  Keys match
    AuditConfig field names; ``None`` and empty values mean "not given".
    Throttling profiles given on the CLI are names from the catalog.
    """
    cli = cli_overrides or {}

    def pick(key: str, default: Any) -> Any:
        value = cli.get(key)
        if value is not None and value != ():
            return value
        return profile_data.get(key, default)

    defaults = AuditConfig()

    if cli.get("profiles"):
        profiles = tuple(get_profile(name) for name in cli["profiles"])
    elif "throttling" in profile_data:
        profiles = _profiles_from_data(profile_data["throttling"])
    else:
        profiles = defaults.profiles

    chrome_flags = pick("chrome_flags", defaults.chrome_flags)

    return AuditConfig(
        targets=tuple(pick("targets", ())),
        pages=tuple(pick("pages", defaults.pages)),
        profiles=profiles,
        runs_per_page=int(pick("runs_per_page", defaults.runs_per_page)),
        max_retries=pick("max_retries", defaults.max_retries),
        retry_delay_s=float(pick("retry_delay_s", defaults.retry_delay_s)),
        audit_timeout=int(pick("audit_timeout", defaults.audit_timeout)),
        reports_dir=Path(pick("reports_dir", defaults.reports_dir)),
        api_delay_ms=int(pick("api_delay_ms", defaults.api_delay_ms)),
        chrome_path=pick("chrome_path", defaults.chrome_path),
        chrome_flags=tuple(chrome_flags),
        lighthouse_command=pick("lighthouse_command", defaults.lighthouse_command),
        cli_args=tuple(cli.get("cli_args") or ()),
    )
