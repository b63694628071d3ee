"""
Service Configuration

One immutable Settings value is built at startup and handed to every
component. Values come from FABCHARGE_* environment variables.
"""

import os
from dataclasses import dataclass, replace
from typing import Mapping, Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

ENV_PREFIX = "FABCHARGE_"

DEFAULT_CHARGE_TEMPLATE = 'Formlabs print "{job_name}" on {device_name}'
DEFAULT_SURCHARGE_TEMPLATE = (
    'Material surcharge {material_name} ({volume_ml} ml) for "{job_name}" on {device_name}'
)


class ConfigError(ValueError):
    """Raised when the environment holds an invalid setting."""
    pass


def parse_resource_ids(raw: Optional[str]) -> Tuple[int, ...]:
    """Parse a comma-separated list of resource ids ("1322,1516")."""
    if not raw or not raw.strip():
        return ()
    try:
        return tuple(int(part) for part in raw.split(",") if part.strip())
    except ValueError:
        raise ConfigError(f"Invalid resource id list: {raw!r}")


def _load_zone(name: str) -> ZoneInfo:
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        raise ConfigError(f"Unknown timezone: {name}")


@dataclass(frozen=True)
class Settings:
    """Immutable service configuration."""

    # Usage store / billing (Fabman)
    fabman_api_url: str = "https://fabman.io/api/v1/"
    fabman_token: str = ""

    # Vendor (Formlabs)
    formlabs_api_url: str = "https://api.formlabs.com/developer/v1/"
    formlabs_token_url: str = "https://api.formlabs.com/developer/v1/o/token/"
    formlabs_client_id: str = ""
    formlabs_username: str = ""
    formlabs_password: str = ""

    # Webhook
    webhook_token: str = ""
    allowed_resources: Tuple[int, ...] = ()

    # Behaviour
    timezone: str = "Europe/Vienna"
    page_size: int = 100
    max_print_hours: float = 72.0
    http_timeout: float = 30.0
    update_max_attempts: int = 5
    update_backoff: float = 0.2
    billed_marker: str = "billed"
    charge_template: str = DEFAULT_CHARGE_TEMPLATE
    surcharge_template: str = DEFAULT_SURCHARGE_TEMPLATE

    # Logging
    log_level: str = "INFO"
    log_json: bool = False

    def __post_init__(self):
        if self.page_size <= 0:
            raise ConfigError("page_size must be positive")
        if self.update_max_attempts <= 0:
            raise ConfigError("update_max_attempts must be positive")
        if self.update_backoff < 0:
            raise ConfigError("update_backoff must not be negative")
        if self.http_timeout <= 0:
            raise ConfigError("http_timeout must be positive")
        if self.max_print_hours < 0:
            raise ConfigError("max_print_hours must not be negative")
        _load_zone(self.timezone)

    @property
    def tz(self) -> ZoneInfo:
        return _load_zone(self.timezone)

    def with_overrides(self, **changes) -> "Settings":
        """Return a copy with some fields replaced."""
        return replace(self, **changes)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        """Build settings from FABCHARGE_* environment variables."""
        env = os.environ if environ is None else environ

        def get(name: str, default: Optional[str] = None) -> Optional[str]:
            return env.get(ENV_PREFIX + name, default)

        def get_number(name: str, default, cast):
            raw = get(name)
            if raw is None or raw == "":
                return default
            try:
                return cast(raw)
            except ValueError:
                raise ConfigError(f"{ENV_PREFIX}{name} must be a number, got {raw!r}")

        formlabs_api_url = get("FORMLABS_API_URL", cls.formlabs_api_url)

        return cls(
            fabman_api_url=get("FABMAN_API_URL", cls.fabman_api_url),
            fabman_token=get("FABMAN_TOKEN", ""),
            formlabs_api_url=formlabs_api_url,
            formlabs_token_url=get(
                "FORMLABS_TOKEN_URL",
                formlabs_api_url.rstrip("/") + "/o/token/",
            ),
            formlabs_client_id=get("FORMLABS_CLIENT_ID", ""),
            formlabs_username=get("FORMLABS_USER", ""),
            formlabs_password=get("FORMLABS_PASSWORD", ""),
            webhook_token=get("WEBHOOK_TOKEN", ""),
            allowed_resources=parse_resource_ids(get("RESOURCES")),
            timezone=get("TIMEZONE", cls.timezone),
            page_size=get_number("PAGE_SIZE", cls.page_size, int),
            max_print_hours=get_number("MAX_PRINT_HOURS", cls.max_print_hours, float),
            http_timeout=get_number("HTTP_TIMEOUT", cls.http_timeout, float),
            update_max_attempts=get_number("UPDATE_MAX_ATTEMPTS", cls.update_max_attempts, int),
            update_backoff=get_number("UPDATE_BACKOFF", cls.update_backoff, float),
            billed_marker=get("BILLED_MARKER", cls.billed_marker),
            charge_template=get("CHARGE_TEMPLATE", cls.charge_template),
            surcharge_template=get("SURCHARGE_TEMPLATE", cls.surcharge_template),
            log_level=get("LOG_LEVEL", cls.log_level).upper(),
            log_json=get("LOG_JSON", "false").lower() in ("1", "true", "yes"),
        )
