# geoguard/settings.py
"""
Настройки geoguard-core.

Особенности:
- Pydantic v2 Settings с env-префиксом GEOGUARD_ и вложенным разделителем '__'
- Политика локаций задаётся плоскими env-ключами (CSV для списков стран,
  регионов, IP и CIDR) и конвертируется в неизменяемый PolicyConfig
- Логирование: text или JSON (structlog)
- Инварианты и самопроверка конфигурации

Примеры:
    GEOGUARD_ENVIRONMENT=prod
    GEOGUARD_POLICY__ENABLED=true
    GEOGUARD_POLICY__BLOCKED_COUNTRIES="CN,RU"
    GEOGUARD_POLICY__WHITELIST_CIDRS="10.0.0.0/8,192.168.1.10/32"
    GEOGUARD_POLICY__TIME_BASED_BLOCKING=true
    GEOGUARD_POLICY__ALLOWED_HOURS_START=22
    GEOGUARD_POLICY__ALLOWED_HOURS_END=6
    GEOGUARD_ADMIN__API_KEYS="k1,k2"
"""

from __future__ import annotations

import logging
import re
from enum import Enum
from functools import lru_cache
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigError
from .policy.config import PolicyConfig, TimeWindow, Whitelist

__all__ = [
    "Environment",
    "LoggingSettings",
    "LookupSettings",
    "AdminSettings",
    "PolicySettings",
    "AppSettings",
    "get_settings",
]


# ===========================
# Вспомогательные перечисления
# ===========================

class Environment(str, Enum):
    dev = "dev"
    staging = "staging"
    prod = "prod"
    test = "test"


SEMVER_RE = re.compile(r"^\d+\.\d+\.\d+(?:-[A-Za-z0-9\.-]+)?$")


def _split_csv(value: Union[str, List[str], None]) -> List[str]:
    if value is None:
        return []
    if isinstance(value, list):
        return [v.strip() for v in value if v and v.strip()]
    return [p.strip() for p in value.split(",") if p.strip()]


# ===========================
# Блоки настроек
# ===========================

class LoggingSettings(BaseModel):
    level: str = "INFO"
    json_logs: bool = True

    @property
    def level_numeric(self) -> int:
        return getattr(logging, self.level.upper(), logging.INFO)


class LookupSettings(BaseModel):
    # исходящий вызов геолокации: единственная точка ожидания в пайплайне
    timeout_seconds: float = Field(default=5.0, gt=0, le=60)


class AdminSettings(BaseModel):
    enabled: bool = True
    api_key_header: str = "X-API-Key"
    # CSV: env-строка без JSON
    api_keys: SecretStr = SecretStr("")

    def key_values(self) -> List[str]:
        return _split_csv(self.api_keys.get_secret_value())


class PolicySettings(BaseModel):
    """
    Плоские env-ключи политики. Списки задаются CSV-строками, чтобы env не требовал JSON.
    """
    enabled: bool = False
    blocked_countries: str = "CN,RU,KP,IR,SY"
    blocked_regions: str = ""
    allowed_countries: Optional[str] = None
    block_vpn: bool = False
    block_proxy: bool = False
    block_datacenter: bool = False
    risk_threshold: int = 70
    fail_open: bool = False
    whitelist_ips: str = ""
    whitelist_cidrs: str = ""
    time_based_blocking: bool = False
    blocking_timezone: str = "UTC"
    allowed_hours_start: int = 0
    allowed_hours_end: int = 24

    def to_policy(self) -> PolicyConfig:
        allowed = _split_csv(self.allowed_countries) if self.allowed_countries else None
        return PolicyConfig(
            enabled=self.enabled,
            blocked_countries=frozenset(_split_csv(self.blocked_countries)),
            blocked_regions=frozenset(_split_csv(self.blocked_regions)),
            allowed_countries=frozenset(allowed) if allowed else None,
            vpn_blocking=self.block_vpn,
            proxy_blocking=self.block_proxy,
            datacenter_blocking=self.block_datacenter,
            risk_threshold=self.risk_threshold,
            fail_open=self.fail_open,
            whitelist=Whitelist(
                ips=frozenset(_split_csv(self.whitelist_ips)),
                cidrs=frozenset(_split_csv(self.whitelist_cidrs)),
            ),
            time_window=TimeWindow(
                enabled=self.time_based_blocking,
                timezone=self.blocking_timezone or "UTC",
                start=self.allowed_hours_start,
                end=self.allowed_hours_end,
            ),
        )


# ===========================
# Основные настройки приложения
# ===========================

class AppSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="GEOGUARD_",
        env_file=".env",
        env_nested_delimiter="__",
        extra="ignore",
        case_sensitive=False,
    )

    app_name: str = "geoguard-core"
    environment: Environment = Environment.dev
    debug: bool = False
    version: str = "0.1.0"

    host: str = "0.0.0.0"
    port: int = 8080

    support_email: str = "support@example.com"
    request_id_header: str = "X-Request-ID"

    log: LoggingSettings = Field(default_factory=LoggingSettings)
    lookup: LookupSettings = Field(default_factory=LookupSettings)
    admin: AdminSettings = Field(default_factory=AdminSettings)
    policy: PolicySettings = Field(default_factory=PolicySettings)

    @field_validator("version")
    @classmethod
    def _semver(cls, v: str) -> str:
        if not SEMVER_RE.match(v):
            raise ValueError("version must be semantic version (e.g., 1.2.3 or 1.2.3-rc1)")
        return v

    @property
    def is_prod(self) -> bool:
        return self.environment == Environment.prod

    def verify(self) -> None:
        errors: List[str] = []
        if self.is_prod and self.admin.enabled and not self.admin.key_values():
            errors.append("admin API включен в prod, но admin.api_keys пуст")
        if self.is_prod and self.debug:
            errors.append("debug не допускается в prod")
        if errors:
            raise ConfigError("Некорректная конфигурация:\n - " + "\n - ".join(errors))

    def redacted_dict(self) -> Dict[str, Any]:
        data = self.model_dump(mode="json")
        data["admin"]["api_keys"] = "***" if self.admin.key_values() else ""
        return data


@lru_cache()
def get_settings() -> AppSettings:
    """Загружаем настройки один раз и проверяем инварианты."""
    settings = AppSettings()
    settings.verify()
    return settings
