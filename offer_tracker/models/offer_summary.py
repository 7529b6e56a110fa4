# offer_tracker/models/offer_summary.py
from sqlalchemy import Column, Integer, Boolean, DateTime, ForeignKey, Numeric, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from offer_tracker.database import Base


class OfferSummary(Base):
    """Aggregate offer statistics for one listing and fulfillment channel."""
    __tablename__ = "offer_summaries"
    __table_args__ = (UniqueConstraint("listing_id", "is_fba", name="uq_offer_summaries_listing_channel"),)

    id = Column(Integer, primary_key=True, index=True)
    listing_id = Column(Integer, ForeignKey("listings.id", ondelete="CASCADE"), index=True, nullable=False)
    is_fba = Column(Boolean, nullable=False)

    num_offers = Column(Integer, nullable=True)
    lowest_price = Column(Numeric(10, 2), nullable=True)
    buybox_price = Column(Numeric(10, 2), nullable=True)
    num_buybox_eligible_offers = Column(Integer, nullable=True)
    competitive_price_threshold = Column(Numeric(10, 2), nullable=True)

    # Event time of the notification that last contributed to this row
    event_time = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    listing = relationship("Listing", back_populates="offer_summaries")

    def __repr__(self):
        return f"<OfferSummary(listing_id={self.listing_id}, is_fba={self.is_fba}, num_offers={self.num_offers})>"
