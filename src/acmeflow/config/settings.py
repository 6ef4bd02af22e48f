"""Typed, frozen dataclasses for every configuration section.

This module is the **single source of truth** for default values.
JSON Schema defaults exist only for documentation -- these builders
are what the application actually reads.

Access pattern::

    from acmeflow.config import get_config

    polling = get_config().settings.polling
    print(polling.interval_seconds, polling.timeout_seconds)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

# ---------------------------------------------------------------------------
# Polling
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PollingSettings:
    """Authorization polling interval and bound."""

    interval_seconds: float
    timeout_seconds: float


def _build_polling(data: dict | None) -> PollingSettings:
    d = data or {}
    return PollingSettings(
        interval_seconds=d.get("interval_seconds", 3),
        timeout_seconds=d.get("timeout_seconds", 30),
    )


# ---------------------------------------------------------------------------
# Order
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class OrderSettings:
    """Authorization fan-out and finalize polling."""

    parallel_authorizations: bool
    max_workers: int
    finalize_interval_seconds: float
    finalize_timeout_seconds: float


def _build_order(data: dict | None) -> OrderSettings:
    d = data or {}
    return OrderSettings(
        parallel_authorizations=d.get("parallel_authorizations", False),
        max_workers=d.get("max_workers", 4),
        finalize_interval_seconds=d.get("finalize_interval_seconds", 3),
        finalize_timeout_seconds=d.get("finalize_timeout_seconds", 60),
    )


# ---------------------------------------------------------------------------
# Challenges
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ChallengeSettings:
    """Enabled challenge types and the publisher used for the preferred one."""

    enabled: tuple[str, ...]
    preferred_type: str
    publisher: str
    publisher_config: dict[str, Any]


def _build_challenges(data: dict | None) -> ChallengeSettings:
    d = data or {}
    return ChallengeSettings(
        enabled=tuple(d.get("enabled", ["http-01", "dns-01", "tls-sni-02"])),
        preferred_type=d.get("preferred_type", "http-01"),
        publisher=d.get("publisher", "webroot_http"),
        publisher_config=dict(d.get("publisher_config") or {}),
    )


# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LoggingSettings:
    """Application logging configuration (level, format)."""

    level: str
    format: str


def _build_logging(data: dict | None) -> LoggingSettings:
    d = data or {}
    return LoggingSettings(
        level=d.get("level", "INFO"),
        format=d.get("format", "text"),
    )


# ---------------------------------------------------------------------------
# Root settings aggregate
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AcmeflowSettings:
    polling: PollingSettings
    order: OrderSettings
    challenges: ChallengeSettings
    logging: LoggingSettings


def build_settings(data: dict) -> AcmeflowSettings:
    """Build the full typed settings tree from raw config data.

    Called once during :class:`AcmeflowConfig` initialization after
    schema validation and environment-variable resolution.
    """
    return AcmeflowSettings(
        polling=_build_polling(data.get("polling")),
        order=_build_order(data.get("order")),
        challenges=_build_challenges(data.get("challenges")),
        logging=_build_logging(data.get("logging")),
    )
