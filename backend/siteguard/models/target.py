"""Target model - websites being monitored."""
from datetime import datetime
from sqlalchemy import Column, Integer, Float, String, DateTime, ForeignKey, LargeBinary
from sqlalchemy.orm import relationship

from ..database import Base


class TargetRecord(Base):
    """A monitored website with its live status fields."""
    
    __tablename__ = "targets"
    
    id = Column(String, primary_key=True)
    name = Column(String, nullable=False)
    url = Column(String, nullable=False)
    check_interval = Column(Integer, default=60)  # seconds
    status = Column(String, default="checking")  # checking, up, down
    uptime = Column(Float, default=100.0)
    response_time_ms = Column(Integer, default=0)
    last_checked = Column(DateTime, nullable=True)
    status_detail = Column(String, nullable=True)  # Human-readable reason for last status
    image_monitoring = Column(Integer, default=0)
    image_status = Column(String, nullable=True)  # same, changed, checking
    last_image_check = Column(DateTime, nullable=True)
    notify_email = Column(String, nullable=True)
    notify_phone = Column(String, nullable=True)
    ssl_expiry_days = Column(Integer, nullable=True)
    ssl_checked_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    
    # Relationships
    snapshots = relationship(
        "SnapshotRecord",
        back_populates="target",
        cascade="all, delete-orphan",
        order_by="SnapshotRecord.position",
        lazy="selectin",
    )


class SnapshotRecord(Base):
    """Reference image for visual monitoring, ordered per target."""
    
    __tablename__ = "reference_snapshots"
    
    id = Column(Integer, primary_key=True, autoincrement=True)
    target_id = Column(String, ForeignKey("targets.id", ondelete="CASCADE"), nullable=False)
    position = Column(Integer, nullable=False)
    label = Column(String, nullable=False)
    data = Column(LargeBinary, nullable=False)
    
    target = relationship("TargetRecord", back_populates="snapshots")
