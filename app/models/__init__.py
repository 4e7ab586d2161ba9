from app.models.organization import Organization
from app.models.funnel import Funnel, FunnelPage, FunnelStatus
from app.models.variant import FunnelVariant, VariantStatus
from app.models.session import FunnelSession, SessionStatus
from app.models.event import FunnelEvent, EventType
from app.models.event_error import EventError
from app.models.condition import FunnelCondition, ConditionType, ConditionOperator
from app.models.goal import FunnelGoal, GoalType, GoalStatus
from app.models.analytics import FunnelAnalytics, AnalyticsPeriod
from app.models.outbound_task import OutboundTask, OutboundKind, OutboundStatus

__all__ = [
    "Organization", "Funnel", "FunnelPage", "FunnelStatus",
    "FunnelVariant", "VariantStatus", "FunnelSession", "SessionStatus",
    "FunnelEvent", "EventType", "EventError",
    "FunnelCondition", "ConditionType", "ConditionOperator",
    "FunnelGoal", "GoalType", "GoalStatus",
    "FunnelAnalytics", "AnalyticsPeriod",
    "OutboundTask", "OutboundKind", "OutboundStatus",
]
