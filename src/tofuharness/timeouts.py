"""
Timeout guard — refuse to start a test that cannot finish its teardown.

A test that creates cloud resources and is killed by the run deadline
never reaches its cleanup, and the resources are orphaned. The guard
compares the time left before the configured run deadline with the
minimum a test declares, and skips the test up front when it would not
fit. Skipping (not failing) lets quick runs pass over the slow suites.

Durations use Go's notation so the same values work across tooling:
``90s``, ``15m``, ``1h30m``, ``1.5h``. A bare number is seconds and
``0`` means no deadline.
"""

from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass
from typing import Callable, Optional, Union

import pytest

logger = logging.getLogger(__name__)

MINUTE = 60.0

# Minimum run timeouts per resource family, in seconds.
DEFAULT_TEST_TIMEOUT = 10 * MINUTE
VPC_TEST_TIMEOUT = 15 * MINUTE
GKE_TEST_TIMEOUT = 30 * MINUTE
# VPC (~5m) + GKE (~15m) + app layer (~10m) + cleanup (~10m)
E2E_TEST_TIMEOUT = 45 * MINUTE

PROFILES: dict[str, float] = {
    "default": DEFAULT_TEST_TIMEOUT,
    "vpc": VPC_TEST_TIMEOUT,
    "gke": GKE_TEST_TIMEOUT,
    "e2e": E2E_TEST_TIMEOUT,
}

# Used when nothing is configured, or the configured value is garbage.
FALLBACK_TIMEOUT = DEFAULT_TEST_TIMEOUT

_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": MINUTE,
    "h": 60 * MINUTE,
}
_PART_RE = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)")
_NUMBER_RE = re.compile(r"\d+(?:\.\d*)?|\.\d+")

Minimum = Union[str, float, int]


def parse_duration(text: Union[str, float, int]) -> float:
    """Parse a duration into seconds.

    Args:
        text: Go-style duration ('1h30m'), bare seconds ('600'), or a number.

    Returns:
        float: Seconds.

    Raises:
        ValueError: If the text is not a valid non-negative duration.
    """
    if isinstance(text, (int, float)):
        if text < 0:
            raise ValueError(f"negative duration: {text}")
        return float(text)

    value = text.strip()
    if not value:
        raise ValueError("empty duration")
    if _NUMBER_RE.fullmatch(value):
        return float(value)

    total = 0.0
    pos = 0
    for match in _PART_RE.finditer(value):
        if match.start() != pos:
            break
        total += float(match.group(1)) * _UNITS[match.group(2)]
        pos = match.end()
    if pos != len(value):
        raise ValueError(f"invalid duration: {text!r}")
    return total


def format_duration(seconds: float) -> str:
    """Render seconds the way Go prints a time.Duration ('1h30m0s')."""
    if seconds <= 0:
        return "0s"
    whole = int(seconds)
    frac = seconds - whole
    hours, rest = divmod(whole, 3600)
    minutes, secs = divmod(rest, 60)
    sec_text = f"{secs + frac:g}s" if frac else f"{secs}s"
    if hours:
        return f"{hours}h{minutes}m{sec_text}"
    if minutes:
        return f"{minutes}m{sec_text}"
    return sec_text


def resolve_minimum(value: Minimum) -> float:
    """Turn a profile name or duration into seconds.

    Raises:
        ValueError: Unknown profile and not a duration.
    """
    if isinstance(value, str) and value.strip().lower() in PROFILES:
        return PROFILES[value.strip().lower()]
    return parse_duration(value)


def resolve_configured_timeout(*candidates: Optional[str]) -> float:
    """Pick the run timeout from candidates in priority order.

    The first non-empty candidate wins. An unparsable winner falls back to
    the 10 minute default with a warning, so a typo cannot silently turn
    the guard off.

    Returns:
        float: Seconds; 0 means unlimited.
    """
    for candidate in candidates:
        if candidate is None or str(candidate).strip() == "":
            continue
        try:
            return parse_duration(str(candidate))
        except ValueError:
            logger.warning(
                "Unparsable run timeout %r; assuming %s",
                candidate, format_duration(FALLBACK_TIMEOUT),
            )
            return FALLBACK_TIMEOUT
    return FALLBACK_TIMEOUT


@dataclass
class TimeoutCheck:
    """Outcome of comparing the remaining run time with a minimum.

    Attributes:
        configured: Whole-run timeout in seconds (0 = unlimited).
        elapsed: Seconds since the run started.
        remaining: Seconds left before the deadline (None = unlimited).
        minimum: Seconds the test needs, teardown included.
    """

    configured: float
    elapsed: float
    remaining: Optional[float]
    minimum: float

    @property
    def sufficient(self) -> bool:
        """Whether the test fits before the deadline."""
        return self.remaining is None or self.remaining >= self.minimum

    @property
    def message(self) -> str:
        """Explanation suitable for a skip reason."""
        if self.sufficient:
            if self.remaining is None:
                return "no run timeout configured"
            return (
                f"{format_duration(self.remaining)} remaining covers the "
                f"required {format_duration(self.minimum)}"
            )
        need = format_duration(self.minimum)
        return (
            f"Skipping: test timeout ({format_duration(self.configured)}, "
            f"{format_duration(self.remaining or 0)} remaining) is less than "
            f"minimum required ({need}). Run with --harness-timeout={need} or "
            f"higher. Example: pytest --run-integration --harness-timeout={need} tests/"
        )

    def to_dict(self) -> dict:
        """Serialize to dict."""
        return {
            "configured_s": self.configured,
            "elapsed_s": round(self.elapsed, 2),
            "remaining_s": None if self.remaining is None else round(self.remaining, 2),
            "minimum_s": self.minimum,
            "sufficient": self.sufficient,
        }


class TimeoutGuard:
    """Tracks the run deadline.

    Args:
        configured: Whole-run timeout in seconds; 0 or None = unlimited.
        started_at: Monotonic timestamp of the run start (default: now).
        clock: Monotonic clock, injectable for tests.
    """

    def __init__(
        self,
        configured: Optional[float] = None,
        started_at: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.configured = float(configured or 0)
        self._clock = clock
        self.started_at = clock() if started_at is None else started_at

    @property
    def unlimited(self) -> bool:
        return self.configured <= 0

    def elapsed(self) -> float:
        return max(0.0, self._clock() - self.started_at)

    def remaining(self) -> Optional[float]:
        """Seconds until the deadline, or None when unlimited."""
        if self.unlimited:
            return None
        return max(0.0, self.configured - self.elapsed())

    def check(self, minimum: Minimum) -> TimeoutCheck:
        """Evaluate whether a test needing ``minimum`` fits."""
        return TimeoutCheck(
            configured=self.configured,
            elapsed=self.elapsed(),
            remaining=self.remaining(),
            minimum=resolve_minimum(minimum),
        )

    def require(self, minimum: Minimum) -> TimeoutCheck:
        """Skip the current test if ``minimum`` does not fit.

        Call before creating any resource.
        """
        result = self.check(minimum)
        if not result.sufficient:
            logger.info(result.message)
            pytest.skip(result.message)
        return result


_session_guard: Optional[TimeoutGuard] = None


def install_session_guard(guard: Optional[TimeoutGuard]) -> Optional[TimeoutGuard]:
    """Set the guard used by require_minimum_timeout (done by the plugin).

    Returns:
        The guard it replaces, so a nested session can restore it.
    """
    global _session_guard
    previous = _session_guard
    _session_guard = guard
    return previous


def current_guard() -> TimeoutGuard:
    """The session guard, or one built from TOFU_HARNESS_TIMEOUT."""
    global _session_guard
    if _session_guard is None:
        from .config import load_config

        config = load_config()
        _session_guard = TimeoutGuard(resolve_configured_timeout(config.timeout))
    return _session_guard


def require_minimum_timeout(minimum: Minimum, guard: Optional[TimeoutGuard] = None) -> TimeoutCheck:
    """Skip the calling test unless ``minimum`` fits in the remaining run time.

    Args:
        minimum: Profile name ('gke') or duration ('30m', 1800).
        guard: Guard to consult (default: the session guard).
    """
    return (guard or current_guard()).require(minimum)
