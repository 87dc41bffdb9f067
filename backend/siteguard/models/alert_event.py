"""AlertEvent model - log of raised alerts."""
from datetime import datetime
from sqlalchemy import Column, String, DateTime

from ..database import Base


class AlertEventRecord(Base):
    """Record of an alert raised by a rule."""
    
    __tablename__ = "alert_events"
    
    id = Column(String, primary_key=True)
    rule_id = Column(String, nullable=False)
    target_id = Column(String, nullable=False)
    target_name = Column(String, nullable=False)
    kind = Column(String, nullable=False)
    message = Column(String, nullable=False)
    severity = Column(String, nullable=False)  # critical, warning, info
    status = Column(String, default="active")  # active, acknowledged, resolved
    created_at = Column(DateTime, default=datetime.utcnow, index=True)
