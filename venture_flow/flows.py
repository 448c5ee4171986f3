"""Stage functions: one prompt and one contract per generation step."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional

from .contracts import LATEST_CONTRACTS, StageContract
from .errors import EmptyOutputError, OutputValidationError
from .integrity import check_rank_permutation
from .llm import GenerationClient
from .prompts import (
    BUILD_MODE_ADVICE_PROMPT,
    CHART_DATA_PROMPT,
    DISCOVERY_PROMPT,
    EXECUTIVE_BRIEF_PROMPT,
    MARKET_ANALYSIS_PROMPT,
    RANKING_PROMPT,
    STRUCTURE_PROMPT,
    VENTURES_PROMPT,
    extract_tasks_prompt,
    strategy_prompt,
)
from .schemas import (
    ActionPlanV1,
    BuildModeAdvice,
    BusinessStrategy,
    BusinessStructure,
    ChartData,
    DiscoveryResult,
    ExecutiveBrief,
    MarketAnalysis,
    Opportunity,
    RankedOpportunity,
    RankingInput,
    RankingResult,
    Stage,
    StageDefinition,
    StrategyInput,
    StrategyResult,
    ExtractTasksInput,
    VenturePriorities,
)


def _contract(stage: Stage, contract: Optional[StageContract]) -> StageContract:
    return contract or LATEST_CONTRACTS.for_stage(stage)


def format_market_analysis(analysis: MarketAnalysis) -> str:
    """Flatten a market analysis into the text the strategy stage consumes."""

    return (
        f"Demand: {analysis.demand_forecast}, "
        f"Competition: {analysis.competitive_landscape}, "
        f"Revenue: {analysis.potential_revenue}"
    )


async def discover_opportunities(
    client: GenerationClient,
    payload: Any,
    *,
    contract: Optional[StageContract] = None,
) -> List[Opportunity]:
    """Mine unstructured material for opportunities and give each a fresh id."""

    contract = _contract(Stage.DISCOVER_OPPORTUNITIES, contract)
    result: DiscoveryResult = await client.generate(DISCOVERY_PROMPT, payload, contract)
    if not result.opportunities:
        raise EmptyOutputError("No opportunities were identified.", stage=contract.stage.value)
    return [Opportunity.model_validate(item.model_dump()) for item in result.opportunities]


async def rank_opportunities(
    client: GenerationClient,
    payload: Any,
    *,
    contract: Optional[StageContract] = None,
) -> List[RankedOpportunity]:
    """Rank opportunities against a focus; ranks must be a permutation of 1..N."""

    contract = _contract(Stage.RANK_OPPORTUNITIES, contract)
    request: RankingInput = client.validate_input(contract, payload)
    result: RankingResult = await client.generate(RANKING_PROMPT, request, contract)

    by_id = {opportunity.id: opportunity for opportunity in request.opportunities}
    returned_ids = [entry.id for entry in result.ranked_opportunities]
    problems = check_rank_permutation([entry.rank for entry in result.ranked_opportunities], len(by_id))
    unknown = sorted(set(returned_ids) - set(by_id))
    missing = sorted(set(by_id) - set(returned_ids))
    if unknown:
        problems.append(f"unknown opportunity ids {unknown}")
    if missing:
        problems.append(f"unranked opportunity ids {missing}")
    if problems:
        raise OutputValidationError(
            "Ranking is not a permutation of the input opportunities: " + "; ".join(problems),
            stage=contract.stage.value,
            errors=[{"loc": ["rankedOpportunities"], "msg": problem, "type": "ranking"} for problem in problems],
        )

    ranked = [
        RankedOpportunity(**by_id[entry.id].model_dump(), rank=entry.rank, rationale=entry.rationale)
        for entry in result.ranked_opportunities
    ]
    return sorted(ranked, key=lambda item: item.rank)


async def analyze_market_opportunity(
    client: GenerationClient,
    payload: Any,
    *,
    contract: Optional[StageContract] = None,
) -> MarketAnalysis:
    contract = _contract(Stage.ANALYZE_MARKET, contract)
    return await client.generate(MARKET_ANALYSIS_PROMPT, payload, contract)


async def generate_business_structure(
    client: GenerationClient,
    payload: Any,
    *,
    contract: Optional[StageContract] = None,
) -> BusinessStructure:
    contract = _contract(Stage.GENERATE_STRUCTURE, contract)
    return await client.generate(STRUCTURE_PROMPT, payload, contract)


async def build_business_strategy(
    client: GenerationClient,
    payload: Any,
    *,
    contract: Optional[StageContract] = None,
) -> BusinessStrategy:
    """Build a strategy, using the build-mode variant when a mode is given."""

    contract = _contract(Stage.BUILD_STRATEGY, contract)
    request: StrategyInput = client.validate_input(contract, payload)
    result: StrategyResult = await client.generate(strategy_prompt(request.build_mode), request, contract)
    return result.business_strategy


async def generate_build_mode_advice(
    client: GenerationClient,
    payload: Any,
    *,
    contract: Optional[StageContract] = None,
) -> BuildModeAdvice:
    contract = _contract(Stage.BUILD_MODE_ADVICE, contract)
    return await client.generate(BUILD_MODE_ADVICE_PROMPT, payload, contract)


async def extract_tasks(
    client: GenerationClient,
    payload: Any,
    *,
    contract: Optional[StageContract] = None,
) -> ActionPlanV1:
    """Turn a strategy into an action plan shaped by the pinned contract version."""

    contract = _contract(Stage.EXTRACT_TASKS, contract)
    request: ExtractTasksInput = client.validate_input(contract, payload)
    plan: ActionPlanV1 = await client.generate(extract_tasks_prompt(request.build_mode, contract), request, contract)
    if not plan.all_tasks():
        raise EmptyOutputError("The action plan contains no tasks.", stage=contract.stage.value)
    return plan


async def generate_chart_data(
    client: GenerationClient,
    payload: Any,
    *,
    contract: Optional[StageContract] = None,
) -> ChartData:
    contract = _contract(Stage.CHART_DATA, contract)
    return await client.generate(CHART_DATA_PROMPT, payload, contract)


async def generate_executive_brief(
    client: GenerationClient,
    payload: Any,
    *,
    contract: Optional[StageContract] = None,
) -> ExecutiveBrief:
    contract = _contract(Stage.EXECUTIVE_BRIEF, contract)
    return await client.generate(EXECUTIVE_BRIEF_PROMPT, payload, contract)


async def prioritize_ventures(
    client: GenerationClient,
    payload: Any,
    *,
    contract: Optional[StageContract] = None,
    options: Optional[Mapping[str, Any]] = None,
) -> VenturePriorities:
    """Prioritise venture types for a user's skills; *options* go to the provider verbatim."""

    contract = _contract(Stage.PRIORITIZE_VENTURES, contract)
    return await client.generate(VENTURES_PROMPT, payload, contract, options=options)


# ---------------------------------------------------------------------------
# Stage registry
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class StageInfo:
    """Runtime definition used by the registry below."""

    slug: Stage
    label: str
    description: str
    build_mode_aware: bool = False


STAGE_REGISTRY: Dict[Stage, StageInfo] = {
    Stage.DISCOVER_OPPORTUNITIES: StageInfo(
        slug=Stage.DISCOVER_OPPORTUNITIES,
        label="Discovery",
        description="Identify business opportunities in unstructured material.",
    ),
    Stage.RANK_OPPORTUNITIES: StageInfo(
        slug=Stage.RANK_OPPORTUNITIES,
        label="Ranking",
        description="Rank opportunities against a strategic focus.",
    ),
    Stage.ANALYZE_MARKET: StageInfo(
        slug=Stage.ANALYZE_MARKET,
        label="Market Analysis",
        description="Forecast demand, map competition, and project revenue.",
    ),
    Stage.GENERATE_STRUCTURE: StageInfo(
        slug=Stage.GENERATE_STRUCTURE,
        label="Organization",
        description="Design the AI-powered organizational structure.",
    ),
    Stage.BUILD_STRATEGY: StageInfo(
        slug=Stage.BUILD_STRATEGY,
        label="Strategy",
        description="Synthesize marketing, operations, and financial strategy.",
        build_mode_aware=True,
    ),
    Stage.BUILD_MODE_ADVICE: StageInfo(
        slug=Stage.BUILD_MODE_ADVICE,
        label="Build Mode Advice",
        description="Compare in-house and out-sourced execution.",
    ),
    Stage.EXTRACT_TASKS: StageInfo(
        slug=Stage.EXTRACT_TASKS,
        label="Action Plan",
        description="Extract tasks, canvas, and financial estimates for the chosen build mode.",
        build_mode_aware=True,
    ),
    Stage.CHART_DATA: StageInfo(
        slug=Stage.CHART_DATA,
        label="Revenue Chart",
        description="Extract twelve months of projected revenue.",
    ),
    Stage.EXECUTIVE_BRIEF: StageInfo(
        slug=Stage.EXECUTIVE_BRIEF,
        label="Executive Brief",
        description="Distill the plan into a scored investment brief.",
    ),
    Stage.PRIORITIZE_VENTURES: StageInfo(
        slug=Stage.PRIORITIZE_VENTURES,
        label="Venture Priorities",
        description="Prioritize venture types for a user's skills and risk tolerance.",
    ),
}


def list_stage_definitions() -> List[StageDefinition]:
    """Return UI-friendly descriptors for all stages."""

    return [
        StageDefinition(
            id=info.slug,
            label=info.label,
            description=info.description,
            build_mode_aware=info.build_mode_aware,
        )
        for info in sorted(STAGE_REGISTRY.values(), key=lambda item: item.slug.order)
    ]
