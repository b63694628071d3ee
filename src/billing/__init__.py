"""
FABCHARGE - Billing Module

Pricing Engine: turns a finished print job into charge lines.
Charge Poster: posts those lines to the billing API.
"""

from .pricing import ChargeTemplates, compute_charges, resolve_unit_price, round_amount
from .charges import ChargePoster, ChargeReceipt

__all__ = [
    "ChargeTemplates",
    "compute_charges",
    "resolve_unit_price",
    "round_amount",
    "ChargePoster",
    "ChargeReceipt",
]
