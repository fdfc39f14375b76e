"""Application configuration for the relay and the call client."""
from __future__ import annotations

from functools import lru_cache
from typing import Annotated

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

DEFAULT_STUN_SERVERS = [
    "stun:stun.l.google.com:19302",
    "stun:stun1.l.google.com:19302",
    "stun:stun2.l.google.com:19302",
    "stun:stun3.l.google.com:19302",
    "stun:stun4.l.google.com:19302",
]


def ws_to_http(ws_url: str) -> str:
    """Map a ws:// or wss:// URL onto its http(s) counterpart."""

    if ws_url.startswith("wss:"):
        return "https:" + ws_url[len("wss:"):]
    if ws_url.startswith("ws:"):
        return "http:" + ws_url[len("ws:"):]
    return ws_url


class Settings(BaseSettings):
    """Runtime configuration."""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    app_env: str = Field(default="development")
    cors_allow_origins: Annotated[list[str], NoDecode] = Field(default_factory=lambda: ["*"])
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=3001)
    log_level: str = Field(default="INFO")

    relay_send_timeout: float = Field(default=5.0, gt=0)

    turn_key_id: str = Field(default="")
    turn_api_token: str = Field(default="")
    turn_api_base_url: str = Field(default="https://rtc.live.cloudflare.com/v1/turn/keys")
    turn_credential_ttl: int = Field(default=86400, ge=1)
    ice_request_timeout: float = Field(default=5.0, gt=0)
    stun_servers: Annotated[list[str], NoDecode] = Field(default_factory=lambda: list(DEFAULT_STUN_SERVERS))

    ws_url: str = Field(default="ws://localhost:3001/api/rtc/signaling")
    api_url: str = Field(default="")
    end_call_grace_seconds: float = Field(default=0.5, ge=0)

    @field_validator("cors_allow_origins", "stun_servers", mode="before")
    @classmethod
    def _split_csv(cls, value: object) -> object:
        """Allow comma-separated env values for list settings."""

        if isinstance(value, str):
            return [item.strip() for item in value.split(",") if item.strip()]
        return value

    @model_validator(mode="after")
    def _derive_api_url(self) -> "Settings":
        if not self.api_url:
            base = ws_to_http(self.ws_url)
            for suffix in ("/api/rtc/signaling", "/ws"):
                if base.endswith(suffix):
                    base = base[: -len(suffix)]
                    break
            self.api_url = base.rstrip("/")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return cached settings instance."""

    return Settings()


settings = get_settings()
