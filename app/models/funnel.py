from sqlalchemy import Column, String, DateTime, ForeignKey, Integer, JSON, Uuid, Enum as SQLEnum
from sqlalchemy.orm import relationship
import uuid
import enum
from datetime import datetime
from app.db.session import Base


def enum_values(enum_cls):
    """Persist enum values ("active") rather than member names ("ACTIVE")"""
    return [member.value for member in enum_cls]


class FunnelStatus(str, enum.Enum):
    DRAFT = "draft"
    ACTIVE = "active"
    PAUSED = "paused"
    ARCHIVED = "archived"


class Funnel(Base):
    __tablename__ = "funnels"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    org_id = Column(Uuid, ForeignKey("organizations.id"), nullable=False, index=True)
    name = Column(String, nullable=False)
    slug = Column(String, nullable=True, unique=True)  # Optional unique slug for URL matching
    domain = Column(String, nullable=True)  # Domain for URL-based funnel detection
    status = Column(
        SQLEnum(FunnelStatus, name="funnel_status", values_callable=enum_values),
        default=FunnelStatus.DRAFT,
        nullable=False,
    )
    settings = Column(JSON, nullable=True)  # e.g. {"conversion_webhooks": ["https://..."]}
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    # Owned records go with the funnel
    pages = relationship("FunnelPage", cascade="all, delete-orphan")
    variants = relationship("FunnelVariant", cascade="all, delete-orphan")
    goals = relationship("FunnelGoal", cascade="all, delete-orphan")
    conditions = relationship("FunnelCondition", cascade="all, delete-orphan")
    sessions = relationship("FunnelSession", cascade="all, delete-orphan")
    analytics = relationship("FunnelAnalytics", cascade="all, delete-orphan")

    def conversion_webhooks(self) -> list:
        """Webhook URLs notified whenever a session in this funnel converts"""
        hooks = (self.settings or {}).get("conversion_webhooks") or []
        return [h for h in hooks if isinstance(h, str) and h.strip()]


class FunnelPage(Base):
    __tablename__ = "funnel_pages"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    org_id = Column(Uuid, ForeignKey("organizations.id"), nullable=False, index=True)
    funnel_id = Column(Uuid, ForeignKey("funnels.id", ondelete="CASCADE"), nullable=False, index=True)
    position = Column(Integer, nullable=False)  # Canonical order of the page in the funnel (1, 2, 3, ...)
    name = Column(String, nullable=False)
    slug = Column(String, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
