# offer_tracker/models/buybox_activity.py
from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, Numeric
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from offer_tracker.database import Base


class BuyboxActivity(Base):
    """
    Immutable audit log of the tracked seller winning or losing the buybox.
    One row per detected transition per (listing, channel).
    """
    __tablename__ = "buybox_activity"

    id = Column(Integer, primary_key=True, index=True)
    listing_id = Column(Integer, ForeignKey("listings.id", ondelete="CASCADE"), index=True, nullable=False)
    notification_id = Column(Integer, ForeignKey("notifications.id", ondelete="SET NULL"), nullable=True)
    is_fba = Column(Boolean, nullable=False)

    event = Column(String, nullable=False)  # BuyboxEvent value
    old_price = Column(Numeric(10, 2), nullable=True)
    new_price = Column(Numeric(10, 2), nullable=True)
    event_time = Column(DateTime(timezone=True), index=True, nullable=True)

    # Consumed by the reporting side ("unviewed since last read")
    viewed = Column(Boolean, default=False, nullable=False, index=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    listing = relationship("Listing", back_populates="buybox_activity")

    def __repr__(self):
        return (f"<BuyboxActivity(listing_id={self.listing_id}, is_fba={self.is_fba}, event='{self.event}', "
                f"old={self.old_price}, new={self.new_price})>")
