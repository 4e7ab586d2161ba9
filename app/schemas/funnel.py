from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError
from typing import List, Optional, Dict, Any, Type, Union, Literal, Annotated
from datetime import datetime
from uuid import UUID
import re

from app.models.funnel import FunnelStatus
from app.models.variant import VariantStatus
from app.models.condition import ConditionType
from app.models.goal import GoalType, GoalStatus


# Funnel schemas
class FunnelBase(BaseModel):
    name: str
    slug: Optional[str] = None
    domain: Optional[str] = None
    status: FunnelStatus = FunnelStatus.DRAFT
    settings: Optional[Dict[str, Any]] = None


class FunnelCreate(FunnelBase):
    pass


class FunnelUpdate(BaseModel):
    name: Optional[str] = None
    slug: Optional[str] = None
    domain: Optional[str] = None
    status: Optional[FunnelStatus] = None
    settings: Optional[Dict[str, Any]] = None


class FunnelPageBase(BaseModel):
    position: int
    name: str
    slug: Optional[str] = None


class FunnelPageCreate(FunnelPageBase):
    pass


class FunnelPageUpdate(BaseModel):
    position: Optional[int] = None
    name: Optional[str] = None
    slug: Optional[str] = None


class FunnelPage(FunnelPageBase):
    id: UUID
    org_id: UUID
    funnel_id: UUID
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class PageOrder(BaseModel):
    page_id: UUID
    position: int


class Funnel(FunnelBase):
    id: UUID
    org_id: UUID
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class FunnelWithPages(Funnel):
    pages: List[FunnelPage] = []


# Variant schemas
class VariantBase(BaseModel):
    name: str
    variant_key: str = Field(..., min_length=1, max_length=10)
    description: Optional[str] = None
    traffic_percentage: int = Field(50, ge=0, le=100)
    is_control: bool = False
    page_overrides: Optional[Dict[str, Any]] = None


class VariantCreate(VariantBase):
    pass


class VariantUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    traffic_percentage: Optional[int] = Field(None, ge=0, le=100)
    status: Optional[VariantStatus] = None
    page_overrides: Optional[Dict[str, Any]] = None


class Variant(VariantBase):
    id: UUID
    org_id: UUID
    funnel_id: UUID
    status: VariantStatus
    visitors: int
    conversions: int
    conversion_rate: float
    revenue: float
    declared_winner_at: Optional[datetime] = None
    created_at: datetime

    class Config:
        from_attributes = True


class DeclareWinnerRequest(BaseModel):
    variant_id: UUID


class DeclareWinnerResponse(BaseModel):
    winner: Variant
    others: List[Variant]


class ComparisonSummary(BaseModel):
    total_visitors: int
    total_conversions: int
    overall_conversion_rate: float
    best_performing: Optional[str] = None
    # Minimum-sample-size gate only; not a hypothesis test
    statistical_significance: bool
    significance_method: str


class VariantComparison(BaseModel):
    variants: List[Variant]
    summary: ComparisonSummary


# Condition rules: one shape per operator family
class _RuleBase(BaseModel):
    field: str = Field(..., min_length=1)
    field_type: Optional[str] = None  # contact, session, cart, custom


class ValueRule(_RuleBase):
    operator: Literal["equals", "not_equals", "contains", "not_contains"]
    value: Union[bool, int, float, str]


class NumericRule(_RuleBase):
    operator: Literal["greater_than", "less_than"]
    value: float


class ListRule(_RuleBase):
    operator: Literal["in_list", "not_in_list"]
    value: List[Union[int, float, str]]


class PresenceRule(_RuleBase):
    operator: Literal["is_empty", "is_not_empty"]
    value: Optional[Any] = None


class RegexRule(_RuleBase):
    operator: Literal["regex_match"]
    value: str

    @field_validator("value")
    @classmethod
    def pattern_compiles(cls, v: str) -> str:
        try:
            re.compile(v)
        except re.error as e:
            raise ValueError(f"Invalid regular expression: {e}")
        return v


Rule = Annotated[
    Union[ValueRule, NumericRule, ListRule, PresenceRule, RegexRule],
    Field(discriminator="operator"),
]


# Condition actions: one shape per action kind, plus a free-form escape hatch
class _ActionBase(BaseModel):
    order: int = 0


class NavigateToPageAction(_ActionBase):
    type: Literal["navigate_to_page"]
    page_id: UUID


class ShowElementAction(_ActionBase):
    type: Literal["show_element"]
    element_id: str


class HideElementAction(_ActionBase):
    type: Literal["hide_element"]
    element_id: str


class RedirectAction(_ActionBase):
    type: Literal["redirect"]
    url: str


class TriggerWebhookAction(_ActionBase):
    type: Literal["trigger_webhook"]
    url: str
    headers: Dict[str, str] = Field(default_factory=dict)
    payload: Dict[str, Any] = Field(default_factory=dict)


class SendEmailAction(_ActionBase):
    type: Literal["send_email"]
    to: str
    subject: str
    html_content: str = ""


class CustomAction(_ActionBase):
    type: Literal["custom"]
    config: Dict[str, Any] = Field(default_factory=dict)


Action = Annotated[
    Union[
        NavigateToPageAction,
        ShowElementAction,
        HideElementAction,
        RedirectAction,
        TriggerWebhookAction,
        SendEmailAction,
        CustomAction,
    ],
    Field(discriminator="type"),
]


class Targeting(BaseModel):
    segments: List[str] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    devices: List[str] = Field(default_factory=list)
    traffic_sources: List[str] = Field(default_factory=list)


class ConditionBase(BaseModel):
    name: str
    description: Optional[str] = None
    type: ConditionType = ConditionType.CONTENT_DISPLAY
    page_id: Optional[UUID] = None
    is_active: bool = True
    execution_order: int = 0
    rules: List[Rule] = Field(default_factory=list)
    logic_operator: Literal["AND", "OR"] = "AND"
    actions: List[Action] = Field(default_factory=list)
    else_actions: List[Action] = Field(default_factory=list)
    targeting: Optional[Targeting] = None


class ConditionCreate(ConditionBase):
    pass


class ConditionUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    type: Optional[ConditionType] = None
    page_id: Optional[UUID] = None
    is_active: Optional[bool] = None
    execution_order: Optional[int] = None
    rules: Optional[List[Rule]] = None
    logic_operator: Optional[Literal["AND", "OR"]] = None
    actions: Optional[List[Action]] = None
    else_actions: Optional[List[Action]] = None
    targeting: Optional[Targeting] = None


class Condition(BaseModel):
    # Stored payloads are returned as-is; they were validated on write
    id: UUID
    org_id: UUID
    funnel_id: UUID
    page_id: Optional[UUID] = None
    name: str
    description: Optional[str] = None
    type: ConditionType
    is_active: bool
    execution_order: int
    rules: List[Dict[str, Any]]
    logic_operator: str
    actions: List[Dict[str, Any]]
    else_actions: List[Dict[str, Any]]
    targeting: Optional[Dict[str, Any]] = None
    evaluation_count: int
    passed_count: int
    failed_count: int
    pass_rate: float
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


# Goal config: one shape per goal type
class PageVisitGoalConfig(BaseModel):
    target_page_id: UUID


class FormSubmissionGoalConfig(BaseModel):
    form_id: Optional[str] = None


class ButtonClickGoalConfig(BaseModel):
    button_id: Optional[str] = None


class TimeOnSiteGoalConfig(BaseModel):
    minimum_seconds: float = Field(..., ge=0)


class PurchaseGoalConfig(BaseModel):
    minimum_order_value: float = Field(0, ge=0)


class CustomEventGoalConfig(BaseModel):
    event_name: str = Field(..., min_length=1)


GOAL_CONFIG_MODELS: Dict[GoalType, Type[BaseModel]] = {
    GoalType.PAGE_VISIT: PageVisitGoalConfig,
    GoalType.FORM_SUBMISSION: FormSubmissionGoalConfig,
    GoalType.BUTTON_CLICK: ButtonClickGoalConfig,
    GoalType.TIME_ON_SITE: TimeOnSiteGoalConfig,
    GoalType.PURCHASE: PurchaseGoalConfig,
    GoalType.CUSTOM_EVENT: CustomEventGoalConfig,
}


def validate_goal_config(goal_type: GoalType, config: Dict[str, Any]) -> Dict[str, Any]:
    """Validate `config` against the shape for `goal_type` and return it normalized"""
    model = GOAL_CONFIG_MODELS[GoalType(goal_type)]
    return model.model_validate(config or {}).model_dump(mode="json", exclude_none=True)


# Goal schemas
class GoalBase(BaseModel):
    name: str
    description: Optional[str] = None
    type: GoalType
    status: GoalStatus = GoalStatus.ACTIVE
    is_primary: bool = False
    config: Dict[str, Any] = Field(default_factory=dict)
    value: float = Field(0, ge=0)


class GoalCreate(GoalBase):
    @model_validator(mode="after")
    def config_matches_type(self):
        try:
            self.config = validate_goal_config(self.type, self.config)
        except PydanticValidationError as e:
            raise ValueError(f"Invalid config for {self.type.value} goal: {e.errors(include_url=False)}")
        return self


class GoalUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    status: Optional[GoalStatus] = None
    is_primary: Optional[bool] = None
    config: Optional[Dict[str, Any]] = None
    value: Optional[float] = Field(None, ge=0)


class Goal(GoalBase):
    id: UUID
    org_id: UUID
    funnel_id: UUID
    completion_count: int
    completion_rate: float
    total_value: float
    average_time_to_complete: float
    created_at: datetime

    class Config:
        from_attributes = True
