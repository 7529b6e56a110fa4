# offer_tracker/models/subscription.py
from sqlalchemy import Column, Integer, String, DateTime
from sqlalchemy.sql import func
from offer_tracker.database import Base


class Subscription(Base):
    """An upstream notification subscription; resolves a message to its notification type."""
    __tablename__ = "subscriptions"

    id = Column(Integer, primary_key=True, index=True)
    amz_subscription_id = Column(String, unique=True, index=True, nullable=False)
    notification_type = Column(String, nullable=False)  # NotificationType value
    destination_id = Column(String, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    def __repr__(self):
        return f"<Subscription(id={self.id}, type='{self.notification_type}')>"
