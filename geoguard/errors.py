# geoguard/errors.py
from __future__ import annotations

__all__ = [
    "GeoguardError",
    "LookupFailure",
    "ConfigError",
]


class GeoguardError(Exception):
    """Базовое исключение geoguard-core."""


class LookupFailure(GeoguardError):
    """Geolocation collaborator failed, timed out or returned unusable data."""

    def __init__(self, message: str, *, ip: str | None = None) -> None:
        super().__init__(message)
        self.ip = ip


class ConfigError(GeoguardError, ValueError):
    """Invalid policy/application configuration supplied by an operator."""
