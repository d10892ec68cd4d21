from __future__ import annotations

from decimal import Decimal

from .models import GstSettings

# Only these two prefixes are recognized; everything else falls into the subsidized band.
HSN_GENERAL_PREFIX = "3004"
HSN_FOOD_PREFIX = "2106"


def gst_rate(hsn_code: str | None, settings: GstSettings) -> Decimal:
    """GST band (percent) for an HSN code."""
    code = (hsn_code or "").strip()
    if code.startswith(HSN_GENERAL_PREFIX):
        return settings.general
    if code.startswith(HSN_FOOD_PREFIX):
        return settings.food
    return settings.subsidized


def split_tax(amount: Decimal, rate: Decimal) -> tuple[Decimal, Decimal]:
    """
    Split GST on `amount` at `rate` percent into equal (sgst, cgst) halves.
    No rounding is applied here; callers quantize at posting time.
    """
    half = Decimal(amount) * Decimal(rate) / Decimal(200)
    return half, half
