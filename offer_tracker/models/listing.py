# offer_tracker/models/listing.py
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from offer_tracker.database import Base


class Listing(Base):
    """
    A product (ASIN) the tracked seller watches.

    Owns its offers, offer summaries and buybox activity: deleting a listing
    deletes all of them.
    """
    __tablename__ = "listings"
    __table_args__ = (UniqueConstraint("seller_id", "asin", name="uq_listings_seller_asin"),)

    id = Column(Integer, primary_key=True, index=True)
    seller_id = Column(Integer, ForeignKey("sellers.id", ondelete="CASCADE"), index=True, nullable=False)
    asin = Column(String, index=True, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    seller = relationship("Seller", back_populates="listings")
    offers = relationship("Offer", back_populates="listing", cascade="all, delete-orphan")
    offer_summaries = relationship("OfferSummary", back_populates="listing", cascade="all, delete-orphan")
    buybox_activity = relationship("BuyboxActivity", back_populates="listing", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<Listing(id={self.id}, seller_id={self.seller_id}, asin='{self.asin}')>"
