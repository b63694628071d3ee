"""
Persistence Layer for fabcharge

Usage events live in the facility tracker; every write is an optimistic
read-modify-write guarded by the record's lockVersion.
"""

from .usage_store import UsageStore
from .activity import ActivityMutator, optimistic_update

__all__ = [
    "UsageStore",
    "ActivityMutator",
    "optimistic_update",
]
