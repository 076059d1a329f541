"""Deterministic provider failure classification for the retry policy."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

PROVIDER_FAILURE_CLASSIFIER_VERSION = 1


class FailureClass(str, Enum):
    TRANSIENT = "transient"
    CONFIGURATION = "configuration"
    BAD_REQUEST = "bad_request"
    SAFETY = "safety"
    PERMANENT = "permanent"
    UNKNOWN = "unknown"


_SAFETY_PATTERNS: tuple[str, ...] = (
    "blocked due to safety settings",
    "prompt blocked",
    "response blocked",
)
_CONFIGURATION_PATTERNS: tuple[str, ...] = (
    "api key not configured",
    "api key not found",
    "invalid api key",
    "api key invalid",
    "authentication failed",
    "unauthorized",
    "forbidden",
    "no capability provider",
    "status 401",
    "status 403",
)
_BAD_REQUEST_PATTERNS: tuple[str, ...] = (
    "bad request",
    "invalid parameter",
    "query format incorrect",
    "invalid input",
    "status 400",
    "status 422",
)
_TRANSIENT_PATTERNS: tuple[str, ...] = (
    "network error",
    "socket hang up",
    "timeout",
    "timed out",
    "etimedout",
    "econnreset",
    "connection reset",
    "service unavailable",
    "temporarily unavailable",
    "rate limit",
    "too many requests",
    "status 429",
    "status 500",
    "status 502",
    "status 503",
    "status 504",
)


@dataclass(slots=True, frozen=True)
class ProviderFailureClassification:
    """Normalized failure classification result."""

    failure_class: FailureClass
    matched_rule: str
    matched_pattern: str | None

    def to_event_details(self) -> dict[str, object]:
        return {
            "classifier_version": PROVIDER_FAILURE_CLASSIFIER_VERSION,
            "failure_class": self.failure_class.value,
            "matched_rule": self.matched_rule,
            "matched_pattern": self.matched_pattern,
        }


def classify_provider_failure(
    message: str,
    *,
    transient_hint: bool | None = None,
) -> ProviderFailureClassification:
    """Map an error message (plus optional transport hint) onto a failure class.

    Safety and configuration markers win over transient ones, so a 401 wrapped
    in a retrying transport is still treated as a configuration problem.
    """

    text = message.lower()
    rules: tuple[tuple[str, FailureClass, tuple[str, ...]], ...] = (
        ("safety_pattern", FailureClass.SAFETY, _SAFETY_PATTERNS),
        ("configuration_pattern", FailureClass.CONFIGURATION, _CONFIGURATION_PATTERNS),
        ("bad_request_pattern", FailureClass.BAD_REQUEST, _BAD_REQUEST_PATTERNS),
        ("transient_pattern", FailureClass.TRANSIENT, _TRANSIENT_PATTERNS),
    )
    for rule, failure_class, patterns in rules:
        matched = _first_match(text, patterns)
        if matched is not None:
            return ProviderFailureClassification(
                failure_class=failure_class,
                matched_rule=rule,
                matched_pattern=matched,
            )

    if transient_hint is True:
        return ProviderFailureClassification(
            failure_class=FailureClass.TRANSIENT,
            matched_rule="transient_hint",
            matched_pattern=None,
        )
    if transient_hint is False:
        return ProviderFailureClassification(
            failure_class=FailureClass.PERMANENT,
            matched_rule="permanent_hint",
            matched_pattern=None,
        )
    return ProviderFailureClassification(
        failure_class=FailureClass.UNKNOWN,
        matched_rule="fallback_unknown",
        matched_pattern=None,
    )


def _first_match(text: str, patterns: tuple[str, ...]) -> str | None:
    for pattern in patterns:
        if pattern in text:
            return pattern
    return None
