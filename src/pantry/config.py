"""Runtime settings loaded from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional

from .audit import AUDIT_HMAC_KEY_ENV, DEFAULT_AUDIT_PATH
from .catalog import PREMIUM_VENDOR_NAME, STANDARD_VENDOR_NAME
from .errors import ConfigError

VENDOR_URLS_ENV = "PANTRY_VENDOR_URLS"
PAYMENT_AGENT_URL_ENV = "PAYMENT_AGENT_URL"
WEBHOOK_URL_ENV = "WEBHOOK_URL"
PRIVATE_KEY_PATH_ENV = "PRIVATE_KEY_PATH"
PAYER_REF_ENV = "PANTRY_PAYER_REF"
PREFERENCES_PATH_ENV = "PANTRY_PREFERENCES_PATH"
AUDIT_PATH_ENV = "PANTRY_AUDIT_PATH"
HTTP_TIMEOUT_ENV = "PANTRY_HTTP_TIMEOUT"
POLL_INTERVAL_ENV = "PANTRY_POLL_INTERVAL"
PAYMENT_TIMEOUT_ENV = "PANTRY_PAYMENT_TIMEOUT"
MANDATE_TTL_ENV = "PANTRY_MANDATE_TTL"
SETTLEMENT_DELAY_ENV = "PANTRY_SETTLEMENT_DELAY"
SETTLEMENT_SUCCESS_RATE_ENV = "PANTRY_SETTLEMENT_SUCCESS_RATE"

DEFAULT_VENDOR_URLS = (
    f"{STANDARD_VENDOR_NAME}=http://localhost:4000,{PREMIUM_VENDOR_NAME}=http://localhost:4001"
)
DEFAULT_PAYMENT_AGENT_URL = "http://localhost:5000"
DEFAULT_PAYER_REF = "TEAM-OPS-001"


def parse_vendor_urls(raw: str) -> dict[str, str]:
    """Parse ``name=url,name=url``; a bare URL is named after its position."""
    vendors: dict[str, str] = {}
    for i, part in enumerate(p.strip() for p in raw.split(",")):
        if not part:
            continue
        name, sep, url = part.partition("=")
        if not sep:
            name, url = f"vendor-{i + 1}", part
        name, url = name.strip(), url.strip()
        if not name or not url.startswith(("http://", "https://")):
            raise ConfigError(f"Invalid vendor entry in {VENDOR_URLS_ENV}: {part!r}")
        vendors[name] = url
    if not vendors:
        raise ConfigError(f"{VENDOR_URLS_ENV} must name at least one vendor")
    return vendors


def _float(env: Mapping[str, str], name: str, default: float, minimum: float = 0.0) -> float:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from None
    if value < minimum:
        raise ConfigError(f"{name} must be >= {minimum:g}, got {raw!r}")
    return value


def _path(env: Mapping[str, str], name: str) -> Optional[Path]:
    raw = env.get(name)
    return Path(raw).expanduser() if raw else None


@dataclass
class Settings:
    vendor_urls: dict[str, str] = field(default_factory=lambda: parse_vendor_urls(DEFAULT_VENDOR_URLS))
    payment_agent_url: str = DEFAULT_PAYMENT_AGENT_URL
    webhook_url: Optional[str] = None
    private_key_path: Optional[Path] = None
    payer_ref: str = DEFAULT_PAYER_REF
    preferences_path: Optional[Path] = None
    audit_path: Path = DEFAULT_AUDIT_PATH
    audit_hmac_key: Optional[str] = None
    http_timeout: float = 10.0
    poll_interval: float = 2.0
    payment_timeout: float = 30.0
    mandate_ttl: float = 600.0
    settlement_delay: float = 2.0
    settlement_success_rate: float = 0.9

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> Settings:
        env = os.environ if env is None else env
        success_rate = _float(env, SETTLEMENT_SUCCESS_RATE_ENV, 0.9)
        if success_rate > 1.0:
            raise ConfigError(f"{SETTLEMENT_SUCCESS_RATE_ENV} must be between 0 and 1")
        return cls(
            vendor_urls=parse_vendor_urls(env.get(VENDOR_URLS_ENV) or DEFAULT_VENDOR_URLS),
            payment_agent_url=(env.get(PAYMENT_AGENT_URL_ENV) or DEFAULT_PAYMENT_AGENT_URL).rstrip("/"),
            webhook_url=env.get(WEBHOOK_URL_ENV) or None,
            private_key_path=_path(env, PRIVATE_KEY_PATH_ENV),
            payer_ref=env.get(PAYER_REF_ENV) or DEFAULT_PAYER_REF,
            preferences_path=_path(env, PREFERENCES_PATH_ENV),
            audit_path=_path(env, AUDIT_PATH_ENV) or DEFAULT_AUDIT_PATH,
            audit_hmac_key=env.get(AUDIT_HMAC_KEY_ENV) or None,
            http_timeout=_float(env, HTTP_TIMEOUT_ENV, 10.0, minimum=0.1),
            poll_interval=_float(env, POLL_INTERVAL_ENV, 2.0, minimum=0.01),
            payment_timeout=_float(env, PAYMENT_TIMEOUT_ENV, 30.0, minimum=0.1),
            mandate_ttl=_float(env, MANDATE_TTL_ENV, 600.0, minimum=1.0),
            settlement_delay=_float(env, SETTLEMENT_DELAY_ENV, 2.0),
            settlement_success_rate=success_rate,
        )
