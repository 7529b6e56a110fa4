from .seller import Seller
from .subscription import Subscription
from .listing import Listing
from .offer import Offer
from .offer_summary import OfferSummary
from .buybox_activity import BuyboxActivity
from .notification import Notification
from .report import Report

# This ensures all models are registered with SQLAlchemy
__all__ = [
    'Seller',
    'Subscription',
    'Listing',
    'Offer',
    'OfferSummary',
    'BuyboxActivity',
    'Notification',
    'Report',
]
