"""Error taxonomy for the OpenAPI tool proxy."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List, Sequence, Tuple


class ProxyError(Exception):
    """Base class for every error raised by the proxy."""

    kind = "ProxyError"

    def render(self) -> str:
        return f"{self.kind}: {self}"


# Startup errors. These abort initialization.


class SpecMalformed(ProxyError):
    kind = "SpecMalformed"


@dataclass(frozen=True)
class Violation:
    pointer: str
    message: str

    def __str__(self) -> str:
        return f"{self.pointer or '/'}: {self.message}"


class SpecInvalid(ProxyError):
    kind = "SpecInvalid"

    def __init__(self, violations: Sequence[Violation]) -> None:
        self.violations: Tuple[Violation, ...] = tuple(violations)
        lines = "\n".join(f"  {violation}" for violation in self.violations)
        super().__init__(f"{len(self.violations)} violation(s)\n{lines}")


class ConfigInvalid(ProxyError):
    kind = "ConfigInvalid"

    def __init__(self, message: str, fields: Iterable[str] = ()) -> None:
        self.fields: Tuple[str, ...] = tuple(fields)
        super().__init__(message)


# Per-call errors. All but TransportFailure become error results.


class UnknownTool(ProxyError):
    kind = "UnknownTool"

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"no tool named {name!r}")


class InvalidArguments(ProxyError):
    kind = "InvalidArguments"

    def __init__(self, fields: Sequence[str], problems: Sequence[str]) -> None:
        self.fields: List[str] = list(fields)
        self.problems: List[str] = list(problems)
        super().__init__("; ".join(self.problems))


class UpstreamError(ProxyError):
    kind = "UpstreamError"

    def __init__(self, status: int, message: str) -> None:
        self.status = status
        self.message = message
        super().__init__(f"HTTP {status}: {message}")


class TransportFailure(ProxyError):
    kind = "TransportFailure"

    def __init__(
        self,
        method: str,
        url: str,
        attempts: int,
        reason: str,
        unknown_outcome: bool = False,
    ) -> None:
        self.method = method
        self.url = url
        self.attempts = attempts
        self.reason = reason
        self.unknown_outcome = unknown_outcome
        detail = f"{method} {url} failed after {attempts} attempt(s): {reason}"
        if unknown_outcome:
            detail += " (unknown outcome: the request may have been processed upstream)"
        super().__init__(detail)
