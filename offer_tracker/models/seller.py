# offer_tracker/models/seller.py
from sqlalchemy import Column, Integer, String, DateTime, Numeric
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from offer_tracker.database import Base


class Seller(Base):
    """
    The tracked seller. Offers whose merchant id matches this seller's
    merchant id are flagged as own offers during reconciliation.
    """
    __tablename__ = "sellers"

    id = Column(Integer, primary_key=True, index=True)
    merchant_id = Column(String, unique=True, index=True, nullable=False)
    name = Column(String, nullable=True)

    # Updated opportunistically from ANY_OFFER_CHANGED own-offer entries
    positive_feedback_rating = Column(Numeric(5, 2), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    listings = relationship("Listing", back_populates="seller", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<Seller(id={self.id}, merchant_id='{self.merchant_id}')>"
