"""
Schema exports for the application.
"""

from .payload import get_path, first_path
from .notification import (
    NotificationEnvelope,
    OfferEntry,
    OfferChangedPayload,
    ListingStatusChange,
    ReportProcessingFinished,
    PricingHealthPayload,
)

__all__ = [
    'get_path',
    'first_path',
    'NotificationEnvelope',
    'OfferEntry',
    'OfferChangedPayload',
    'ListingStatusChange',
    'ReportProcessingFinished',
    'PricingHealthPayload',
]
