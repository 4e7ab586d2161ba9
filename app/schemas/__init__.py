from app.schemas.funnel import Funnel, FunnelCreate, FunnelUpdate, Variant, Condition, Goal
from app.schemas.tracking import VisitorMeta, SessionOut, EventIn, EventOut, EventPayload
from app.schemas.analytics import AnalyticsBucket, FunnelInsights

__all__ = [
    "Funnel", "FunnelCreate", "FunnelUpdate", "Variant", "Condition", "Goal",
    "VisitorMeta", "SessionOut", "EventIn", "EventOut", "EventPayload",
    "AnalyticsBucket", "FunnelInsights",
]
