"""Pydantic models and enums for the VentureForge plan pipeline.

Field names are snake_case in Python and camelCase on the wire, which is the
shape the model is asked to produce and the shape plans are persisted in.
"""

from __future__ import annotations

from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Union
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base model that speaks camelCase JSON."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_payload(self) -> Dict[str, Any]:
        """Dump using wire names, the form used in prompts and storage."""

        return self.model_dump(mode="json", by_alias=True)


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class Stage(str, Enum):
    """Enumerate the generation stages."""

    DISCOVER_OPPORTUNITIES = "discover_opportunities"
    RANK_OPPORTUNITIES = "rank_opportunities"
    ANALYZE_MARKET = "analyze_market_opportunity"
    GENERATE_STRUCTURE = "generate_business_structure"
    BUILD_STRATEGY = "build_business_strategy"
    BUILD_MODE_ADVICE = "generate_build_mode_advice"
    EXTRACT_TASKS = "extract_tasks"
    CHART_DATA = "generate_chart_data"
    EXECUTIVE_BRIEF = "generate_executive_brief"
    PRIORITIZE_VENTURES = "prioritize_ventures"

    @property
    def order(self) -> int:
        """Return the position of the stage in a full pipeline run."""
        return list(Stage).index(self) + 1


class PipelineState(str, Enum):
    """States of the plan pipeline orchestrator."""

    IDLE = "idle"
    DISCOVERING = "discovering"
    AWAITING_SELECTION = "awaiting_selection"
    ANALYZING = "analyzing"
    STRATEGIZING = "strategizing"
    ADVISING = "advising"
    AWAITING_BUILD_MODE = "awaiting_build_mode"
    FINALIZING = "finalizing"
    DONE = "done"
    ERROR = "error"
    CANCELLED = "cancelled"


class BuildMode(str, Enum):
    """How the venture will be built."""

    IN_HOUSE = "in-house"
    OUT_SOURCED = "out-sourced"


class TaskPriority(str, Enum):
    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"


class RoiPotential(str, Enum):
    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"


# ---------------------------------------------------------------------------
# Opportunities
# ---------------------------------------------------------------------------


class DiscoveredOpportunity(CamelModel):
    """A business opportunity as described by the model."""

    opportunity_name: str = Field(..., min_length=1, description="Name of the business opportunity.")
    description: str = Field(..., description="A short description of the business.")
    potential: str = Field(
        ...,
        description="An assessment of the opportunity's potential, considering financial upside and market size.",
    )
    risk: str = Field(
        ...,
        description="An assessment of the risks involved, including market, execution, and financial risks.",
    )
    quick_return: str = Field(
        ...,
        description="How quickly a return on investment can be expected (e.g., Short, Medium, Long term).",
    )
    priority: int = Field(
        ...,
        ge=1,
        le=10,
        description="A priority score from 1-10 synthesising potential, risk, and quick return.",
    )


class Opportunity(DiscoveredOpportunity):
    """A discovered opportunity with a stable identity."""

    id: str = Field(default_factory=lambda: uuid4().hex)


class RankedOpportunity(Opportunity):
    rank: int = Field(..., ge=1)
    rationale: str


class DiscoveryInput(CamelModel):
    """Unstructured material the discovery stage mines for opportunities."""

    user_interests: Optional[str] = Field(default=None, description="The user's interests and skills.")
    market_trends: Optional[str] = Field(default=None, description="Observed market trends.")
    context: Optional[str] = Field(default=None, description="Any pasted document, data, or notes.")

    @model_validator(mode="after")
    def _require_any_field(self) -> "DiscoveryInput":
        if not any((value or "").strip() for value in (self.user_interests, self.market_trends, self.context)):
            raise ValueError("Provide at least one of userInterests, marketTrends, or context.")
        return self


class DiscoveryResult(CamelModel):
    opportunities: List[DiscoveredOpportunity] = Field(
        ..., description="Promising business opportunities found in the material."
    )


DEFAULT_RANKING_FOCUS = "Maximum profit potential with minimal risk and fastest time-to-market."


class RankingInput(CamelModel):
    opportunities: List[Opportunity] = Field(..., min_length=1)
    focus: str = Field(default=DEFAULT_RANKING_FOCUS, min_length=1)


class RankingEntry(CamelModel):
    id: str = Field(..., description="The id of the ranked opportunity, copied verbatim from the input.")
    rank: int = Field(..., ge=1, description="The rank of the opportunity, where 1 is the best.")
    rationale: str = Field(..., description="The rationale for the assigned rank based on the strategic focus.")


class RankingResult(CamelModel):
    ranked_opportunities: List[RankingEntry] = Field(
        ..., description="One entry per input opportunity, ordered by rank."
    )


# ---------------------------------------------------------------------------
# Market analysis and organisation
# ---------------------------------------------------------------------------


class MarketAnalysisInput(CamelModel):
    opportunity_description: str = Field(
        ..., min_length=1, description="A detailed description of the market opportunity to analyze."
    )


class MarketAnalysis(CamelModel):
    demand_forecast: str = Field(..., description="A forecast of the demand for this market opportunity.")
    competitive_landscape: str = Field(
        ..., description="An analysis of the competitive landscape for this opportunity."
    )
    potential_revenue: str = Field(..., description="A projection of the potential revenue for this opportunity.")


class BusinessStructureInput(CamelModel):
    opportunity_name: str = Field(..., min_length=1, description="The name of the business opportunity.")
    opportunity_description: str = Field(
        ..., min_length=1, description="A detailed description of the business opportunity."
    )


class Okr(CamelModel):
    objective: str = Field(..., description="A qualitative company objective.")
    key_results: List[str] = Field(..., description="Measurable key results for the objective.")


class RoleDescription(CamelModel):
    role: str = Field(..., description="The title of the role (e.g., CEO, Legal Advisor).")
    description: str = Field(..., description="The role's responsibilities and strategic focus.")


class AIPersona(CamelModel):
    role: str = Field(..., description="The job title of the AI persona (e.g., Marketing Manager).")
    persona: str = Field(
        ..., description="The AI's personality, communication style, and how it executes its tasks."
    )


class Department(CamelModel):
    name: str = Field(..., description="The name of the department.")
    function: str = Field(..., description="The primary function and responsibilities of the department.")
    ai_integration: str = Field(
        ..., description="How the AI-Core automates and enhances this department's operations."
    )
    staff: List[AIPersona] = Field(..., description="AI personas that staff this department.")
    kpis: List[str] = Field(default_factory=list, description="Key performance indicators for the department.")


class ProjectPhase(CamelModel):
    phase_name: str = Field(..., description="The name of the project phase (e.g., Initiation, Development).")
    description: str = Field(..., description="The key activities and goals for this phase.")
    key_activities: List[str] = Field(..., description="Specific activities to complete in this phase.")


class ProjectManagementFramework(CamelModel):
    methodology: str = Field(..., description="The methodology being used (e.g., Agile, Prince-2).")
    phases: List[ProjectPhase] = Field(..., description="Ordered phases from initiation to sustainable growth.")


class BusinessStructure(CamelModel):
    commander: str = Field(
        ..., description="The central commander role responsible for strategy, vision, and final decisions."
    )
    okrs: List[Okr] = Field(default_factory=list, description="Company-level objectives and key results.")
    c_level_board: List[RoleDescription] = Field(..., description="The C-level executive board.")
    advisory_council: List[RoleDescription] = Field(
        ..., description="A council of AI advisors providing expert consultation to the leadership."
    )
    ai_core: str = Field(
        ..., description="The central AI system that integrates with all departments to orchestrate workflows."
    )
    departments: List[Department] = Field(..., description="Departments that form the AI-powered agency.")
    project_management_framework: ProjectManagementFramework


# ---------------------------------------------------------------------------
# Strategy and build-mode advice
# ---------------------------------------------------------------------------


class BusinessStrategy(CamelModel):
    marketing_tactics: str = Field(
        ..., description="A detailed marketing plan including multi-channel sales strategies."
    )
    operational_workflows: str = Field(
        ...,
        description=(
            "Operational workflows covering content production, quality checks, customer service, "
            "and financial transfer systems."
        ),
    )
    financial_forecasts: str = Field(..., description="Projected financial performance and key metrics.")


class StrategyInput(CamelModel):
    market_analysis: str = Field(
        ...,
        min_length=1,
        description="Market analysis report including demand, competitive landscape, and revenue projections.",
    )
    build_mode: Optional[BuildMode] = Field(
        default=None, description="The chosen build methodology, when one has been selected."
    )


class StrategyResult(CamelModel):
    business_strategy: BusinessStrategy


class BuildModeAnalysis(CamelModel):
    cost_benefit_analysis: str = Field(..., description="A detailed cost-benefit analysis of this build mode.")
    resource_metrics: str = Field(
        ..., description="Resource metrics such as team size, required capital, and time to market."
    )
    strategic_recommendation: str = Field(..., description="When and why to choose this mode.")


class BuildModeAdviceInput(CamelModel):
    business_strategy: BusinessStrategy


class BuildModeAdvice(CamelModel):
    in_house: BuildModeAnalysis
    out_sourced: BuildModeAnalysis


# ---------------------------------------------------------------------------
# Action plans (versioned)
# ---------------------------------------------------------------------------


class TaskV1(CamelModel):
    id: str = Field(..., min_length=1, description='A short, unique identifier for the task (e.g., "MKT-01").')
    title: str = Field(..., description="A short, descriptive title for the task.")
    description: str = Field(..., description="What the task entails.")
    category: str = Field(
        ..., description='The category of the task (e.g., "Marketing", "Operations", "Finance").'
    )
    completed: bool = Field(default=False, description="Whether the task has been completed.")


class Task(TaskV1):
    human_contribution: str = Field(
        ..., description='The human involvement required (e.g., "Observer/Approval", "Final strategic sign-off").'
    )
    priority: TaskPriority = Field(
        ..., description="Priority based on an Eisenhower Matrix of urgency and importance."
    )
    start_date: date = Field(..., description="Estimated start date in YYYY-MM-DD format.")
    end_date: date = Field(..., description="Estimated end date in YYYY-MM-DD format.")
    dependencies: List[str] = Field(default_factory=list, description="IDs of tasks this task depends on.")


class TaskCategoryV1(CamelModel):
    category_title: str = Field(..., description='The title of the task category (e.g., "Marketing").')
    tasks: List[TaskV1]


class TaskCategory(TaskCategoryV1):
    tasks: List[Task]


class CriticalPath(CamelModel):
    task_title: str = Field(..., description="The title of the task that is on the critical path.")
    time_estimate: str = Field(
        ..., description='The estimated time for the critical path task, in days or weeks (e.g., "2-3 days").'
    )


class BusinessModelCanvas(CamelModel):
    key_partners: List[str] = Field(..., description="Who are our Key Partners and key suppliers?")
    key_activities: List[str] = Field(..., description="What Key Activities do our Value Propositions require?")
    key_resources: List[str] = Field(..., description="What Key Resources do our Value Propositions require?")
    value_propositions: List[str] = Field(..., description="What value do we deliver to the customer?")
    customer_relationships: List[str] = Field(
        ..., description="What relationship does each Customer Segment expect us to maintain?"
    )
    channels: List[str] = Field(..., description="Through which Channels do our Customer Segments want to be reached?")
    customer_segments: List[str] = Field(..., description="For whom are we creating value?")
    cost_structure: List[str] = Field(..., description="The most important costs inherent in the business model.")
    revenue_streams: List[str] = Field(..., description="For what value are our customers willing to pay?")


class FinancialEstimate(CamelModel):
    item: str = Field(..., description="The name of the expenditure item.")
    amount: str = Field(..., description='The estimated cost (e.g., "$5,000 - $10,000").')
    justification: str = Field(..., description="A brief justification for the cost.")


class InvestmentOption(CamelModel):
    type: str = Field(..., description='The type of investment (e.g., "Seed Funding", "Bootstrapping").')
    description: str = Field(..., description="The investment option and its suitability.")
    amount: str = Field(..., description='The potential funding amount (e.g., "$50,000 - $150,000").')


class Financials(CamelModel):
    capex: List[FinancialEstimate] = Field(..., description="Estimated Capital Expenditures.")
    opex: List[FinancialEstimate] = Field(..., description="Estimated Operational Expenditures.")
    investment_options: List[InvestmentOption] = Field(
        default_factory=list, description="Potential investment options."
    )


class ActionPlanV1(CamelModel):
    """First task-extraction contract: categorised tasks and a critical path."""

    categories: List[TaskCategoryV1] = Field(
        ..., alias="actionPlan", description="A structured action plan with categories and tasks."
    )
    critical_path: CriticalPath

    def all_tasks(self) -> List[TaskV1]:
        return [task for category in self.categories for task in category.tasks]

    @classmethod
    def task_model(cls) -> type[TaskV1]:
        return TaskV1


class ActionPlanV2(ActionPlanV1):
    """Adds scheduling, ownership, and dependency fields to every task."""

    categories: List[TaskCategory] = Field(
        ..., alias="actionPlan", description="A structured action plan with categories and tasks."
    )

    @classmethod
    def task_model(cls) -> type[TaskV1]:
        return Task


class ActionPlan(ActionPlanV2):
    """Current task-extraction contract with canvas and financial estimates."""

    business_model_canvas: BusinessModelCanvas
    financials: Financials


AnyActionPlan = Union[ActionPlan, ActionPlanV2, ActionPlanV1]


class ExtractTasksInput(CamelModel):
    business_strategy: BusinessStrategy
    build_mode: BuildMode = Field(..., description="The build methodology used to generate the strategy.")


# ---------------------------------------------------------------------------
# Charts, briefs, and ventures
# ---------------------------------------------------------------------------


class ChartDataInput(CamelModel):
    financial_forecasts: str = Field(
        ..., min_length=1, description="Financial forecast text including revenue projections."
    )


class MonthlyRevenue(CamelModel):
    month: str = Field(..., description='The month abbreviation (e.g., "Jan", "Feb").')
    revenue: float = Field(..., description="Projected revenue for that month in whole dollars.")


class ChartData(CamelModel):
    chart_data: List[MonthlyRevenue] = Field(
        ..., description="The first 12 months of revenue projection data."
    )


class BriefActionPlan(CamelModel):
    critical_path: CriticalPath
    financials: Optional[Financials] = None


class ExecutiveBriefInput(CamelModel):
    opportunity_name: str = Field(..., min_length=1)
    opportunity_description: str
    market_analysis: MarketAnalysis
    business_strategy: BusinessStrategy
    action_plan: BriefActionPlan


class ExecutiveBrief(CamelModel):
    viability_score: float = Field(
        ..., ge=1, le=10, description="A 1-10 score of the overall viability of the business opportunity."
    )
    key_strengths: List[str] = Field(
        ..., min_length=3, max_length=3, description="The three most compelling strengths of the plan."
    )
    potential_risks: List[str] = Field(
        ..., min_length=3, max_length=3, description="The three most significant risks to be aware of."
    )
    time_to_breakeven: str = Field(
        ..., description='An estimated timeline to reach breakeven (e.g., "6-9 months", "1-2 years").'
    )
    roi_potential: RoiPotential = Field(..., description="A qualitative rating of the potential ROI.")
    strategic_recommendation: str = Field(
        ..., description="A one-sentence verdict or strategic recommendation for a top-level executive."
    )


class VentureInput(CamelModel):
    market_data: str = Field(
        ..., min_length=1, description="Market data including trends, gaps, and competitor analysis."
    )
    user_skills: str = Field(..., min_length=1, description="Skills that can be leveraged in a venture.")
    risk_tolerance: str = Field(..., min_length=1, description="Risk tolerance (e.g., High, Medium, Low).")


class VenturePriorities(CamelModel):
    prioritized_ventures: str = Field(
        ..., description="Prioritized online business ventures with the rationale for their ranking."
    )


# ---------------------------------------------------------------------------
# Integrity, snapshots, and progress
# ---------------------------------------------------------------------------


class DanglingReference(CamelModel):
    task_id: str
    missing_id: str


class IntegrityReport(CamelModel):
    """Advisory findings about cross references inside an action plan."""

    duplicate_task_ids: List[str] = Field(default_factory=list)
    dangling_dependencies: List[DanglingReference] = Field(default_factory=list)
    self_dependencies: List[str] = Field(default_factory=list)
    dependency_cycles: List[List[str]] = Field(default_factory=list)
    critical_path_resolved: bool = True
    time_estimate_well_formed: bool = True

    @property
    def is_clean(self) -> bool:
        return not (
            self.duplicate_task_ids
            or self.dangling_dependencies
            or self.self_dependencies
            or self.dependency_cycles
            or not self.critical_path_resolved
            or not self.time_estimate_well_formed
        )


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PlanSnapshot(CamelModel):
    """The aggregate plan persisted for one opportunity."""

    opportunity: Opportunity
    contract_version: str
    build_mode: Optional[BuildMode] = None
    analysis: Optional[MarketAnalysis] = None
    structure: Optional[BusinessStructure] = None
    strategy: Optional[BusinessStrategy] = None
    build_mode_advice: Optional[BuildModeAdvice] = None
    action_plan: Optional[AnyActionPlan] = Field(default=None, union_mode="left_to_right")
    chart_data: Optional[ChartData] = None
    executive_brief: Optional[ExecutiveBrief] = None
    integrity: Optional[IntegrityReport] = None
    version: int = 0
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)


class StageFailure(CamelModel):
    stage: Optional[Stage] = None
    kind: str
    message: str


class PipelineProgress(CamelModel):
    state: PipelineState
    opportunity_id: Optional[str] = None
    contract_version: str
    completed_stages: List[Stage] = Field(default_factory=list)
    build_mode: Optional[BuildMode] = None
    build_mode_advice: Optional[BuildModeAdvice] = None
    failure: Optional[StageFailure] = None
    rollback_state: Optional[PipelineState] = None


# ---------------------------------------------------------------------------
# HTTP payloads
# ---------------------------------------------------------------------------


class StageDefinition(CamelModel):
    """Expose metadata that describes a stage to the UI."""

    id: Stage
    label: str
    description: str
    build_mode_aware: bool


class DiscoveryRequest(DiscoveryInput):
    focus: str = Field(default=DEFAULT_RANKING_FOCUS, min_length=1)


class SessionResponse(CamelModel):
    session_id: str
    progress: PipelineProgress
    opportunities: List[RankedOpportunity] = Field(default_factory=list)


class SelectionRequest(CamelModel):
    opportunity_id: str


class BuildModeRequest(CamelModel):
    build_mode: BuildMode


class TaskUpdateRequest(CamelModel):
    completed: bool
