from sqlalchemy import Column, String, DateTime, Uuid
import uuid
from datetime import datetime
from app.db.session import Base


class Organization(Base):
    """Tenant record; every runtime row carries an org_id pointing here"""
    __tablename__ = "organizations"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
