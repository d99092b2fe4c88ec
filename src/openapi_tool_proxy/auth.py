"""Credential resolution for outbound API calls."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Dict, Mapping, Optional, Tuple

from .errors import ConfigInvalid
from .logging import mask_secret, redact_headers


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuthConfig:
    token: Optional[str] = None
    header_set: Optional[Mapping[str, str]] = None
    base_url: Optional[str] = None
    fixed_headers: Mapping[str, str] = field(default_factory=dict)
    overridable_headers: Tuple[str, ...] = ()
    required_headers: Tuple[str, ...] = ("Authorization",)
    token_prefixes: Tuple[str, ...] = ()


class AuthResolver:
    """Resolves an ``AuthConfig`` into the frozen header map sent on every call.

    Resolution happens once, in the constructor; a configuration with both or
    neither of ``token`` and ``header_set`` is rejected with ``ConfigInvalid``.
    """

    def __init__(self, config: AuthConfig) -> None:
        self.config = config
        self._overridable = frozenset(name.lower() for name in config.overridable_headers)
        self._headers = MappingProxyType(self._resolve(config))
        self._protected = frozenset(
            name.lower() for name in self._headers if name.lower() not in self._overridable
        )
        logger.info("Resolved auth headers: %s", redact_headers(self._headers))

    @property
    def headers(self) -> Mapping[str, str]:
        return self._headers

    @property
    def base_url(self) -> Optional[str]:
        return self.config.base_url

    def is_protected(self, header_name: str) -> bool:
        return header_name.lower() in self._protected

    def _resolve(self, config: AuthConfig) -> Dict[str, str]:
        has_token = config.token is not None
        has_headers = config.header_set is not None
        if has_token and has_headers:
            raise ConfigInvalid(
                "Supply either a token or a header set, not both", fields=("token", "header_set")
            )
        if not has_token and not has_headers:
            raise ConfigInvalid(
                "No credentials configured: supply a token or a header set",
                fields=("token", "header_set"),
            )

        if has_token:
            base = {"Authorization": f"Bearer {self._validate_token(config)}"}
        else:
            base = self._validate_header_set(config)

        headers = dict(base)
        for name, value in config.fixed_headers.items():
            existing = self._find(headers, name)
            if existing is not None and name.lower() in self._overridable:
                continue
            if existing is not None:
                if headers[existing] != value:
                    logger.warning("Fixed header %s replaces configured value", name)
                del headers[existing]
            headers[name] = value
        return headers

    def _validate_token(self, config: AuthConfig) -> str:
        token = (config.token or "").strip()
        if not token:
            raise ConfigInvalid("Token is empty", fields=("token",))
        if config.token_prefixes and not token.startswith(config.token_prefixes):
            raise ConfigInvalid(
                f"Invalid token format. Expected a token starting with "
                f"{' or '.join(repr(prefix) for prefix in config.token_prefixes)}, "
                f"got: {mask_secret(token)}",
                fields=("token",),
            )
        logger.info("Using bearer token %s", mask_secret(token))
        return token

    def _validate_header_set(self, config: AuthConfig) -> Dict[str, str]:
        header_set = dict(config.header_set or {})
        invalid = sorted(
            str(name)
            for name, value in header_set.items()
            if not isinstance(name, str) or not isinstance(value, str) or not value.strip()
        )
        if invalid:
            raise ConfigInvalid(
                f"Header values must be non-empty strings: {', '.join(invalid)}",
                fields=invalid,
            )
        missing = [name for name in config.required_headers if self._find(header_set, name) is None]
        if missing:
            raise ConfigInvalid(
                f"Header set is missing required header(s): {', '.join(missing)}",
                fields=missing,
            )
        return header_set

    @staticmethod
    def _find(headers: Mapping[str, str], name: str) -> Optional[str]:
        lowered = name.lower()
        for key in headers:
            if key.lower() == lowered:
                return key
        return None
