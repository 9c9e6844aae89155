from sqlalchemy import Column, Integer, String, DateTime, JSON
from worktime.database import Base


class AuditLog(Base):
    """Append-only trail of ledger-affecting administrative actions."""
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True)
    action = Column(String, nullable=False, index=True)
    entity_type = Column(String, nullable=False, index=True)
    entity_id = Column(String, nullable=True, index=True)
    user_id = Column(Integer, nullable=True)
    details = Column(JSON, nullable=True)
    before_state = Column(JSON, nullable=True)
    after_state = Column(JSON, nullable=True)
    request_id = Column(String, nullable=True)
    created_at = Column(DateTime, nullable=False, index=True)
