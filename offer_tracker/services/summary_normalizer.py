# offer_tracker/services/summary_normalizer.py
"""
Per-channel statistics from the ``Summary`` section of ANY_OFFER_CHANGED.

Most summary statistics arrive as a list of variants, one per condition and
(optionally) fulfillment channel, e.g.::

    "NumberOfOffers": [
        {"Condition": "new", "FulfillmentChannel": "Amazon", "OfferCount": 4},
        {"Condition": "new", "FulfillmentChannel": "Merchant", "OfferCount": 2},
        {"Condition": "used", "FulfillmentChannel": "Merchant", "OfferCount": 1}
    ]

For each channel the first "new" variant whose label matches the channel is
used; a variant without a label matches every channel. CompetitivePriceThreshold
is a single record and applies to every channel.
"""
from dataclasses import dataclass, fields
from decimal import Decimal
from typing import Any, Dict, Iterable, Optional

from offer_tracker.core.enums import FulfillmentChannel, NEW_CONDITION
from offer_tracker.schemas.payload import get_path

CHANNEL_INDEPENDENT_STATISTIC = 'CompetitivePriceThreshold'

DEFAULT_CHANNELS = (FulfillmentChannel.FBA, FulfillmentChannel.MERCHANT)

# ChannelSummary field -> (statistic name, path inside the selected variant)
STATISTIC_PATHS = {
    'num_offers': ('NumberOfOffers', 'OfferCount'),
    'lowest_price': ('LowestPrices', 'LandedPrice.Amount'),
    'buybox_price': ('BuyBoxPrices', 'LandedPrice.Amount'),
    'num_buybox_eligible_offers': ('NumberOfBuyBoxEligibleOffers', 'OfferCount'),
    'competitive_price_threshold': (CHANNEL_INDEPENDENT_STATISTIC, 'Amount'),
}

_INTEGER_FIELDS = {'num_offers', 'num_buybox_eligible_offers'}


@dataclass(frozen=True)
class ChannelSummary:
    """Summary values for one channel. ``None`` means the notification did not report it."""
    num_offers: Optional[int] = None
    lowest_price: Optional[Decimal] = None
    buybox_price: Optional[Decimal] = None
    num_buybox_eligible_offers: Optional[int] = None
    competitive_price_threshold: Optional[Decimal] = None

    def present_values(self) -> Dict[str, Any]:
        """Only the statistics that were reported, keyed by OfferSummary column."""
        values = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if value is not None:
                values[f.name] = value
        return values

    @property
    def is_empty(self) -> bool:
        return not self.present_values()


def _matches_channel(variant: Dict[str, Any], channel: FulfillmentChannel) -> bool:
    condition = get_path(variant, 'Condition')
    if condition is None or str(condition).lower() != NEW_CONDITION:
        return False
    label = get_path(variant, 'FulfillmentChannel')
    return label is None or label == channel.summary_label


def _select_variant(variants: Any, channel: FulfillmentChannel) -> Optional[Dict[str, Any]]:
    if not isinstance(variants, list):
        return None
    for variant in variants:
        if isinstance(variant, dict) and _matches_channel(variant, channel):
            return variant
    return None


def _coerce(field_name: str, value: Any):
    if value is None:
        return None
    try:
        if field_name in _INTEGER_FIELDS:
            return int(value)
        return Decimal(str(value))
    except (ValueError, TypeError, ArithmeticError):
        return None


def normalize_summary(
    summary: Optional[Dict[str, Any]],
    channels: Iterable[FulfillmentChannel] = DEFAULT_CHANNELS,
) -> Dict[FulfillmentChannel, ChannelSummary]:
    """
    Extract per-channel statistics from a notification summary.

    Args:
        summary: The ``Summary`` mapping (statistic name -> variants)
        channels: Channels to compute

    Returns:
        A ChannelSummary for every requested channel. Statistics with no
        matching "new" variant are None, never zero.
    """
    summary = summary or {}
    result = {}
    for channel in channels:
        values = {}
        for field_name, (statistic, value_path) in STATISTIC_PATHS.items():
            record = get_path(summary, statistic)
            if statistic != CHANNEL_INDEPENDENT_STATISTIC:
                record = _select_variant(record, channel)
            if not isinstance(record, dict):
                continue
            value = _coerce(field_name, get_path(record, value_path))
            if value is not None:
                values[field_name] = value
        result[channel] = ChannelSummary(**values)
    return result
