from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional


_USER_AGENT_ENV = "COLLECTOR_USER_AGENT"
_SC_URL_ENV = "SENSOR_COMMUNITY_URL"
_SC_COUNTRY_ENV = "SENSOR_COMMUNITY_COUNTRY"
_SC_EXCLUDED_ENV = "SENSOR_COMMUNITY_EXCLUDED_TYPES"
_SC_INTERVAL_ENV = "SENSOR_COMMUNITY_INTERVAL_SECONDS"
_LAT_MIN_ENV = "BBOX_LAT_MIN"
_LAT_MAX_ENV = "BBOX_LAT_MAX"
_LON_MIN_ENV = "BBOX_LON_MIN"
_LON_MAX_ENV = "BBOX_LON_MAX"
_NETATMO_URL_ENV = "NETATMO_URL"
_NETATMO_TOKEN_URL_ENV = "NETATMO_TOKEN_URL"
_NETATMO_ACCESS_ENV = "NETATMO_ACCESS_TOKEN"
_NETATMO_REFRESH_ENV = "NETATMO_REFRESH_TOKEN"
_NETATMO_CLIENT_ID_ENV = "NETATMO_CLIENT_ID"
_NETATMO_CLIENT_SECRET_ENV = "NETATMO_CLIENT_SECRET"
_NETATMO_INTERVAL_ENV = "NETATMO_INTERVAL_SECONDS"
_EXPORT_INTERVAL_ENV = "EXPORT_INTERVAL_SECONDS"
_EXPORT_DIR_ENV = "EXPORT_WORK_DIR"
_COLLECTION_NAME_ENV = "READINGS_COLLECTION_NAME"
_COLLECTION_PATH_ENV = "READINGS_PERSISTENCE_PATH"
_CONTAINER_NAME_ENV = "ARCHIVE_CONTAINER_NAME"
_CONTAINER_ROOT_ENV = "ARCHIVE_ROOT_PATH"
_HTTP_TIMEOUT_ENV = "HTTP_TIMEOUT_SECONDS"
_LOG_LEVEL_ENV = "LOG_LEVEL"

DEFAULT_USER_AGENT = "heat-island-collector/0.1 (environmental sensor research)"


class ConfigurationError(RuntimeError):
    """Raised when required configuration is missing at startup."""


@dataclass(frozen=True)
class Settings:
    user_agent: str
    sensor_community_url: str
    sensor_community_country: str
    sensor_community_excluded_types: tuple[str, ...]
    sensor_community_interval: float
    lat_min: float
    lat_max: float
    lon_min: float
    lon_max: float
    netatmo_url: str
    netatmo_token_url: str
    netatmo_access_token: Optional[str]
    netatmo_refresh_token: Optional[str]
    netatmo_client_id: Optional[str]
    netatmo_client_secret: Optional[str]
    netatmo_interval: float
    export_interval: float
    export_work_dir: str
    collection_name: str
    collection_persistence_path: Optional[str]
    archive_container_name: str
    archive_root_path: Optional[str]
    http_timeout: float
    log_level: str

    def require_netatmo_credentials(self) -> None:
        """Fail fast when any of the OAuth seed values is absent."""
        required = {
            _NETATMO_ACCESS_ENV: self.netatmo_access_token,
            _NETATMO_REFRESH_ENV: self.netatmo_refresh_token,
            _NETATMO_CLIENT_ID_ENV: self.netatmo_client_id,
            _NETATMO_CLIENT_SECRET_ENV: self.netatmo_client_secret,
        }
        missing = sorted(name for name, value in required.items() if not value)
        if missing:
            raise ConfigurationError(
                f"Missing required environment variables: {', '.join(missing)}"
            )


def _read_str_env(name: str, default: str) -> str:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    return candidate or default


def _read_optional_env(name: str, default: Optional[str]) -> Optional[str]:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    return candidate or None


def _read_float_env(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    try:
        return float(candidate)
    except ValueError:
        return default


def _read_interval(name: str, default: float) -> float:
    parsed = _read_float_env(name, default)
    return parsed if parsed > 0 else default


def _read_list_env(name: str, default: tuple[str, ...]) -> tuple[str, ...]:
    value = os.getenv(name)
    if value is None:
        return default
    return tuple(part.strip() for part in value.split(",") if part.strip())


def _read_log_level(default: str) -> str:
    value = os.getenv(_LOG_LEVEL_ENV)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    return candidate.upper()


@lru_cache
def get_settings() -> Settings:
    return Settings(
        user_agent=_read_str_env(_USER_AGENT_ENV, DEFAULT_USER_AGENT),
        sensor_community_url=_read_str_env(
            _SC_URL_ENV, "https://data.sensor.community/static/v2/data.json"
        ),
        sensor_community_country=_read_str_env(_SC_COUNTRY_ENV, "DE").upper(),
        sensor_community_excluded_types=_read_list_env(_SC_EXCLUDED_ENV, ("DHT22",)),
        sensor_community_interval=_read_interval(_SC_INTERVAL_ENV, 300.0),
        lat_min=_read_float_env(_LAT_MIN_ENV, 53.2),
        lat_max=_read_float_env(_LAT_MAX_ENV, 53.8),
        lon_min=_read_float_env(_LON_MIN_ENV, 9.6),
        lon_max=_read_float_env(_LON_MAX_ENV, 10.4),
        netatmo_url=_read_str_env(
            _NETATMO_URL_ENV, "https://api.netatmo.com/api/getpublicdata"
        ),
        netatmo_token_url=_read_str_env(
            _NETATMO_TOKEN_URL_ENV, "https://api.netatmo.com/oauth2/token"
        ),
        netatmo_access_token=_read_optional_env(_NETATMO_ACCESS_ENV, None),
        netatmo_refresh_token=_read_optional_env(_NETATMO_REFRESH_ENV, None),
        netatmo_client_id=_read_optional_env(_NETATMO_CLIENT_ID_ENV, None),
        netatmo_client_secret=_read_optional_env(_NETATMO_CLIENT_SECRET_ENV, None),
        netatmo_interval=_read_interval(_NETATMO_INTERVAL_ENV, 300.0),
        export_interval=_read_interval(_EXPORT_INTERVAL_ENV, 86400.0),
        export_work_dir=_read_str_env(_EXPORT_DIR_ENV, "./tmp/export"),
        collection_name=_read_str_env(_COLLECTION_NAME_ENV, "sensor_readings_timeseries"),
        collection_persistence_path=_read_optional_env(
            _COLLECTION_PATH_ENV, "./tmp/readings.json"
        ),
        archive_container_name=_read_str_env(_CONTAINER_NAME_ENV, "sensor-archive"),
        archive_root_path=_read_optional_env(_CONTAINER_ROOT_ENV, "./tmp/archive"),
        http_timeout=_read_interval(_HTTP_TIMEOUT_ENV, 30.0),
        log_level=_read_log_level("INFO"),
    )
