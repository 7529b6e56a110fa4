# offer_tracker/models/report.py
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from offer_tracker.database import Base
from offer_tracker.core.enums import ReportStatus


class Report(Base):
    """A requested upstream report, finished via REPORT_PROCESSING_FINISHED."""
    __tablename__ = "reports"

    id = Column(Integer, primary_key=True, index=True)
    amz_id = Column(String, unique=True, index=True, nullable=False)
    seller_id = Column(Integer, ForeignKey("sellers.id", ondelete="CASCADE"), index=True, nullable=False)
    type = Column(String, nullable=False)  # ReportType value
    status = Column(String, default=ReportStatus.IN_QUEUE.value, nullable=False)
    document_id = Column(String, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    seller = relationship("Seller")

    def __repr__(self):
        return f"<Report(id={self.id}, type='{self.type}', status='{self.status}')>"
