# offer_tracker/models/offer.py
from decimal import Decimal
from typing import Optional

from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, Numeric, Index
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from offer_tracker.database import Base
from offer_tracker.core.enums import FulfillmentChannel


class Offer(Base):
    """
    One competing offer on a listing, valid as of the latest reconciliation pass.

    At most one row exists per (listing, merchant, channel). The whole set for a
    listing is replaced on every ANY_OFFER_CHANGED pass; PRICING_HEALTH only
    patches the own offer's prices.
    """
    __tablename__ = "offers"
    __table_args__ = (
        Index("ix_offers_listing_channel_rank", "listing_id", "is_fba", "rank"),
    )

    id = Column(Integer, primary_key=True, index=True)
    listing_id = Column(Integer, ForeignKey("listings.id", ondelete="CASCADE"), index=True, nullable=False)
    notification_id = Column(Integer, ForeignKey("notifications.id", ondelete="SET NULL"), nullable=True)

    merchant_id = Column(String, index=True, nullable=False)
    listing_price = Column(Numeric(10, 2), nullable=True)
    shipping_price = Column(Numeric(10, 2), nullable=True)
    rank = Column(Integer, nullable=True)  # 1-based within (listing, channel); null for patched own offers

    is_own_offer = Column(Boolean, default=False, nullable=False)
    is_fba = Column(Boolean, default=False, nullable=False)
    is_buybox_winner = Column(Boolean, default=False, nullable=False)
    is_buybox_eligible = Column(Boolean, default=False, nullable=False)

    # Shipping / availability
    ships_from_state = Column(String, nullable=True)
    ships_from_country = Column(String, nullable=True)
    shipping_maximum_hours = Column(Integer, nullable=True)
    shipping_minimum_hours = Column(Integer, nullable=True)
    shipping_available_date = Column(String, nullable=True)
    shipping_availability_type = Column(String, nullable=True)
    ships_domestically = Column(Boolean, nullable=True)
    is_offer_prime = Column(Boolean, nullable=True)
    is_offer_national_prime = Column(Boolean, nullable=True)

    sub_condition = Column(String, nullable=True)

    # Seller feedback as reported on the offer
    seller_feedback_count = Column(Integer, nullable=True)
    seller_positive_feedback_rating = Column(Numeric(5, 2), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    listing = relationship("Listing", back_populates="offers")

    @property
    def channel(self) -> FulfillmentChannel:
        return FulfillmentChannel.from_is_fba(self.is_fba)

    @property
    def landed_price(self) -> Optional[Decimal]:
        if self.listing_price is None:
            return None
        return Decimal(self.listing_price) + Decimal(self.shipping_price or 0)

    def __repr__(self):
        return (f"<Offer(id={self.id}, listing_id={self.listing_id}, merchant='{self.merchant_id}', "
                f"channel='{self.channel.value}', rank={self.rank}, winner={self.is_buybox_winner})>")
