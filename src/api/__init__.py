"""
FABCHARGE - API Module

Webhook endpoint feeding usage-event notifications into reconciliation.
"""

from .server import app, create_app

__all__ = ["app", "create_app"]
