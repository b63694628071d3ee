"""
FABCHARGE - Core Module

Domain entities, configuration, error taxonomy and shared plumbing for
reconciling Fabman resource logs against Formlabs print jobs.
"""

from .config import Settings, ConfigError
from .errors import (
    ReconciliationError,
    ValidationError,
    AuthError,
    FetchError,
    ConflictError,
    TimestampOrderError,
    BillingPostError,
    UsageStoreError,
)
from .models import (
    BillingMode,
    ChargeKind,
    ChargeLine,
    MaterialOverride,
    Notification,
    PrintJob,
    ResourcePricingConfig,
    UsageEvent,
)

__all__ = [
    "Settings",
    "ConfigError",
    "ReconciliationError",
    "ValidationError",
    "AuthError",
    "FetchError",
    "ConflictError",
    "TimestampOrderError",
    "BillingPostError",
    "UsageStoreError",
    "BillingMode",
    "ChargeKind",
    "ChargeLine",
    "MaterialOverride",
    "Notification",
    "PrintJob",
    "ResourcePricingConfig",
    "UsageEvent",
]
