"""Configuration for the OpenAPI tool proxy."""

from __future__ import annotations

import json
from functools import lru_cache
from typing import Dict, Optional, Set, Tuple

from pydantic import Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from .auth import AuthConfig
from .errors import ConfigInvalid


def _split(value: Optional[str]) -> Tuple[str, ...]:
    if not value:
        return ()
    return tuple(item.strip() for item in value.split(",") if item.strip())


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="", case_sensitive=False)

    service_name: str = Field(default="Notion API")
    service_version: str = Field(default="1.9.0")

    openapi_spec_path: str = Field(default="openapi.json")

    notion_token: Optional[str] = Field(default=None)
    openapi_mcp_headers: Optional[str] = Field(default=None)
    base_url: Optional[str] = Field(default=None)

    api_version_header: str = Field(default="Notion-Version")
    api_version: str = Field(default="2022-06-28")
    token_prefixes: str = Field(default="")
    overridable_headers: str = Field(default="")

    request_timeout_seconds: float = Field(default=30, gt=0)
    max_retries: int = Field(default=2, ge=0)
    retry_backoff_seconds: float = Field(default=0.5, ge=0)
    retry_backoff_max_seconds: float = Field(default=6, ge=0)

    operation_allowlist: Optional[str] = Field(default=None)

    transport: str = Field(default="stdio")
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8000)

    log_level: str = Field(default="INFO")

    def header_set(self) -> Optional[Dict[str, str]]:
        if self.openapi_mcp_headers is None:
            return None
        try:
            headers = json.loads(self.openapi_mcp_headers)
        except json.JSONDecodeError as exc:
            raise ConfigInvalid(
                f"OPENAPI_MCP_HEADERS is not valid JSON: {exc.msg}",
                fields=("openapi_mcp_headers",),
            ) from exc
        if not isinstance(headers, dict):
            raise ConfigInvalid(
                "OPENAPI_MCP_HEADERS must be a JSON object of header names to values",
                fields=("openapi_mcp_headers",),
            )
        return headers

    def fixed_headers(self) -> Dict[str, str]:
        if not self.api_version_header or not self.api_version:
            return {}
        return {self.api_version_header: self.api_version}

    def auth_config(self) -> AuthConfig:
        return AuthConfig(
            token=self.notion_token,
            header_set=self.header_set(),
            base_url=self.base_url,
            fixed_headers=self.fixed_headers(),
            overridable_headers=_split(self.overridable_headers),
            token_prefixes=_split(self.token_prefixes),
        )

    def operation_allowlist_set(self) -> Set[str]:
        return set(_split(self.operation_allowlist))


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    try:
        return Settings()
    except ValidationError as exc:
        fields = [".".join(str(part) for part in error["loc"]) for error in exc.errors()]
        problems = [f"{field}: {error['msg']}" for field, error in zip(fields, exc.errors())]
        raise ConfigInvalid(
            "Invalid environment configuration: " + "; ".join(problems),
            fields=dict.fromkeys(fields),
        ) from exc
