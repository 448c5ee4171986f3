"""Versioned input/output contracts for every generation stage."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Type

from pydantic import BaseModel

from .schemas import (
    ActionPlan,
    ActionPlanV1,
    ActionPlanV2,
    BuildModeAdvice,
    BuildModeAdviceInput,
    BusinessStructure,
    BusinessStructureInput,
    ChartData,
    ChartDataInput,
    DiscoveryInput,
    DiscoveryResult,
    ExecutiveBrief,
    ExecutiveBriefInput,
    ExtractTasksInput,
    MarketAnalysis,
    MarketAnalysisInput,
    RankingInput,
    RankingResult,
    Stage,
    StrategyInput,
    StrategyResult,
    VentureInput,
    VenturePriorities,
)


@dataclass(frozen=True)
class StageContract:
    """The input and output shapes a stage honours at a given version."""

    stage: Stage
    version: str
    input_model: Type[BaseModel]
    output_model: Type[BaseModel]

    @property
    def key(self) -> str:
        return f"{self.stage.value}@{self.version}"

    def carries(self, field_name: str) -> bool:
        """True when the output model declares *field_name*."""

        return field_name in self.output_model.model_fields


def _contract(stage: Stage, version: str, input_model: Type[BaseModel], output_model: Type[BaseModel]) -> StageContract:
    return StageContract(stage=stage, version=version, input_model=input_model, output_model=output_model)


CONTRACTS: Dict[str, StageContract] = {
    contract.key: contract
    for contract in (
        _contract(Stage.DISCOVER_OPPORTUNITIES, "v1", DiscoveryInput, DiscoveryResult),
        _contract(Stage.RANK_OPPORTUNITIES, "v1", RankingInput, RankingResult),
        _contract(Stage.ANALYZE_MARKET, "v1", MarketAnalysisInput, MarketAnalysis),
        _contract(Stage.GENERATE_STRUCTURE, "v1", BusinessStructureInput, BusinessStructure),
        _contract(Stage.BUILD_STRATEGY, "v1", StrategyInput, StrategyResult),
        _contract(Stage.BUILD_MODE_ADVICE, "v1", BuildModeAdviceInput, BuildModeAdvice),
        _contract(Stage.EXTRACT_TASKS, "v1", ExtractTasksInput, ActionPlanV1),
        _contract(Stage.EXTRACT_TASKS, "v2", ExtractTasksInput, ActionPlanV2),
        _contract(Stage.EXTRACT_TASKS, "v3", ExtractTasksInput, ActionPlan),
        _contract(Stage.CHART_DATA, "v1", ChartDataInput, ChartData),
        _contract(Stage.EXECUTIVE_BRIEF, "v1", ExecutiveBriefInput, ExecutiveBrief),
        _contract(Stage.PRIORITIZE_VENTURES, "v1", VentureInput, VenturePriorities),
    )
}


def get_contract(stage: Stage, version: str = "v1") -> StageContract:
    """Return the registered contract or raise ``KeyError``."""

    return CONTRACTS[f"{stage.value}@{version}"]


@dataclass(frozen=True)
class ContractSet:
    """Pins one contract version per stage for the lifetime of a pipeline run."""

    label: str
    versions: Dict[Stage, str] = field(default_factory=dict)

    def for_stage(self, stage: Stage) -> StageContract:
        return get_contract(stage, self.versions.get(stage, "v1"))


CONTRACT_SETS: Dict[str, ContractSet] = {
    "v1": ContractSet(label="v1", versions={Stage.EXTRACT_TASKS: "v1"}),
    "v2": ContractSet(label="v2", versions={Stage.EXTRACT_TASKS: "v2"}),
    "v3": ContractSet(label="v3", versions={Stage.EXTRACT_TASKS: "v3"}),
}

LATEST_CONTRACTS = CONTRACT_SETS["v3"]


def get_contract_set(label: str) -> ContractSet:
    """Look up a contract set by label, raising ``ValueError`` for unknown labels."""

    try:
        return CONTRACT_SETS[label]
    except KeyError:
        known = ", ".join(sorted(CONTRACT_SETS))
        raise ValueError(f"Unknown contract version '{label}' (known: {known}).") from None
