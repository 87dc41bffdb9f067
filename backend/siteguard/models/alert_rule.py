"""AlertRule model - user-defined alert conditions."""
from sqlalchemy import Column, Integer, String, DateTime

from ..database import Base


class AlertRuleRecord(Base):
    """Alert rule for a target."""
    
    __tablename__ = "alert_rules"
    
    id = Column(String, primary_key=True)
    # Plain column so a rule outliving its target is inert rather than an integrity error
    target_id = Column(String, nullable=False, index=True)
    name = Column(String, default="")
    kind = Column(String, nullable=False)  # downtime, response_time, ssl_expiry, visual_change
    threshold = Column(String, nullable=True)
    enabled = Column(Integer, default=1)
    email = Column(Integer, default=1)
    sms = Column(Integer, default=0)
    push = Column(Integer, default=0)
    recipients = Column(String, default="[]")  # JSON list
    trigger_count = Column(Integer, default=0)
    last_triggered = Column(DateTime, nullable=True)
