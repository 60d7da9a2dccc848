"""Errors a solve request can end in.

Every failure the orchestrator reports is an ``ApiError``.  The response
mapper turns each subclass into a distinct ``error_kind`` so clients can tell
"could not evaluate the request" apart from "evaluated, no solution".
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class InvalidInput:
    """One rejected request value and the reason it was rejected."""

    input: str
    error: str


class ApiError(Exception):
    """Base class for all errors surfaced by ``POST /solve``."""


class ValidationError(ApiError):
    """The request is malformed; no cache or solver work was done."""

    def __init__(self, subject: str, details: list[InvalidInput]) -> None:
        self.subject = subject
        self.details = details
        super().__init__(f"invalid {subject}")


class MetadataError(ApiError):
    """Repodata for one of the required (channel, platform) pairs is unavailable."""

    def __init__(self, url: str, reason: str) -> None:
        self.url = url
        self.reason = reason
        super().__init__(f"error fetching repodata.json from {url}: {reason}")


class SolverError(ApiError):
    """The inputs are well formed but no consistent package set exists."""

    def __init__(self, explanations: list[str]) -> None:
        self.explanations = explanations
        super().__init__("no solution found for the specified dependencies")


class InternalError(ApiError):
    """Something that should not happen, e.g. limiter misuse or a solver crash."""
