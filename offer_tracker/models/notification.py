# offer_tracker/models/notification.py
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, JSON, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from offer_tracker.database import Base
from offer_tracker.core.enums import NotificationStatus


class Notification(Base):
    """
    Every notification received from the queue, recorded before dispatch.
    This table serves as a permanent audit log; rows are never deleted.
    """
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, index=True)
    subscription_id = Column(Integer, ForeignKey("subscriptions.id"), index=True, nullable=False)
    amz_notification_id = Column(String, index=True, nullable=True)

    # PROCESSING until a terminal status is written; a row stuck in
    # PROCESSING marks a deferred or failed pass.
    status = Column(String, default=NotificationStatus.PROCESSING.value, nullable=False, index=True)
    status_reason = Column(Text, nullable=True)

    event_time = Column(DateTime(timezone=True), nullable=True)
    payload = Column(JSON().with_variant(JSONB(), "postgresql"), nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    processed_at = Column(DateTime(timezone=True), nullable=True)

    subscription = relationship("Subscription")

    def __repr__(self):
        return f"<Notification(id={self.id}, amz_id='{self.amz_notification_id}', status='{self.status}')>"
