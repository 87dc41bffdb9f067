"""CheckResult model - rolling check history for targets."""
from sqlalchemy import Column, Integer, Float, String, DateTime, Index

from ..database import Base


class CheckResultRecord(Base):
    """Check result - rolling 24-hour history."""
    
    __tablename__ = "check_results"
    __table_args__ = (
        Index("ix_check_results_target_checked", "target_id", "checked_at"),
    )
    
    id = Column(Integer, primary_key=True, autoincrement=True)
    # No foreign key: history is evicted independently of target deletion
    target_id = Column(String, nullable=False)
    checked_at = Column(DateTime, nullable=False)
    status = Column(String, nullable=False)  # up, down
    response_time_ms = Column(Integer, default=0)
    uptime = Column(Float, nullable=False)
    status_code = Column(Integer, nullable=True)
    error_kind = Column(String, nullable=True)
    detail = Column(String, nullable=True)  # Error message or extra info
