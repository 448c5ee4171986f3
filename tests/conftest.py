from __future__ import annotations

import asyncio
import json
import re
from types import SimpleNamespace
from typing import Any, Callable, Dict, List, Optional, Union

import pytest

from venture_flow.config import PipelineSettings
from venture_flow.llm import GenerationClient
from venture_flow.pipeline import PlanPipeline
from venture_flow.prompts import SYSTEM_PROMPTS
from venture_flow.schemas import Stage
from venture_flow.store import InMemoryPlanStore

Responder = Union[Dict[str, Any], str, None, Callable[[Dict[str, Any]], Any]]


def discovery_payload() -> dict[str, Any]:
    return {
        "opportunities": [
            {
                "opportunityName": "Digital Wall Art Shop",
                "description": "Sell AI-assisted printable wall art on Etsy and Shopify.",
                "potential": "High demand for affordable home decor.",
                "risk": "Crowded marketplace listings.",
                "quickReturn": "Short",
                "priority": 8,
            },
            {
                "opportunityName": "Resume Rewrite Studio",
                "description": "Tailored resumes for career switchers, reviewed by humans.",
                "potential": "Steady demand from job seekers.",
                "risk": "Quality control at scale.",
                "quickReturn": "Medium",
                "priority": 6,
            },
        ]
    }


def rank_in_prompt_order(request: Dict[str, Any]) -> Dict[str, Any]:
    """Rank opportunities in the order they appear in the prompt."""

    ids = re.findall(r"id=([0-9a-f]+)", request["messages"][1]["content"])
    return {
        "rankedOpportunities": [
            {"id": opportunity_id, "rank": index, "rationale": f"Ranked {index} against the focus."}
            for index, opportunity_id in enumerate(ids, start=1)
        ]
    }


def analysis_payload() -> dict[str, Any]:
    return {
        "demandForecast": "Growing 12% a year.",
        "competitiveLandscape": "Fragmented sellers with little branding.",
        "potentialRevenue": "$120k in year one.",
    }


def structure_payload() -> dict[str, Any]:
    return {
        "commander": "Founder acting as approver of record.",
        "okrs": [{"objective": "Launch fast", "keyResults": ["50 listings in 30 days"]}],
        "cLevelBoard": [{"role": "CEO", "description": "Owns vision."}],
        "advisoryCouncil": [{"role": "Legal", "description": "Checks licensing."}],
        "aiCore": "Central orchestrator routing work to departments.",
        "departments": [
            {
                "name": "Marketing",
                "function": "Drive traffic.",
                "aiIntegration": "Generates ad copy.",
                "staff": [{"role": "Marketing Manager", "persona": "Upbeat and data driven."}],
                "kpis": ["CTR"],
            }
        ],
        "projectManagementFramework": {
            "methodology": "Hybrid Prince-2 and Agile",
            "phases": [
                {"phaseName": "Initiation", "description": "Set up.", "keyActivities": ["Register the business"]}
            ],
        },
    }


def strategy_payload() -> dict[str, Any]:
    return {
        "businessStrategy": {
            "marketingTactics": "Pinterest and Etsy ads.",
            "operationalWorkflows": "Generate, quality check, list, deliver.",
            "financialForecasts": "Revenue climbs from $2k to $15k per month during year one.",
        }
    }


def advice_payload() -> dict[str, Any]:
    analysis = {
        "costBenefitAnalysis": "Balanced.",
        "resourceMetrics": "Two people, $5k, 6 weeks.",
        "strategicRecommendation": "Pick when control matters.",
    }
    return {"inHouse": dict(analysis), "outSourced": dict(analysis)}


def chart_payload() -> dict[str, Any]:
    months = ["Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec"]
    return {"chartData": [{"month": month, "revenue": 2000 + 1000 * index} for index, month in enumerate(months)]}


def _task(task_id: str, title: str, category: str, dependencies: List[str]) -> dict[str, Any]:
    return {
        "id": task_id,
        "title": title,
        "description": f"{title} for the launch.",
        "category": category,
        "humanContribution": "Observer/Approval",
        "priority": "High",
        "startDate": "2026-01-05",
        "endDate": "2026-01-16",
        "dependencies": dependencies,
    }


def action_plan_payload() -> dict[str, Any]:
    return {
        "actionPlan": [
            {
                "categoryTitle": "Operations",
                "tasks": [
                    _task("OPS-01", "Vet freelance illustrators on Upwork", "Operations", []),
                    _task("OPS-02", "Quality check before listing", "Quality Assurance", ["OPS-01"]),
                ],
            },
            {
                "categoryTitle": "Marketing",
                "tasks": [_task("MKT-01", "Launch Etsy storefront", "Marketing", ["OPS-02"])],
            },
        ],
        "criticalPath": {"taskTitle": "Vet freelance illustrators on Upwork", "timeEstimate": "2-3 weeks"},
        "businessModelCanvas": {
            "keyPartners": ["Print-on-demand suppliers"],
            "keyActivities": ["Design curation"],
            "keyResources": ["Design library"],
            "valuePropositions": ["Affordable unique art"],
            "customerRelationships": ["Self-service"],
            "channels": ["Etsy", "Shopify"],
            "customerSegments": ["Renters decorating on a budget"],
            "costStructure": ["Freelancer fees"],
            "revenueStreams": ["Digital downloads"],
        },
        "financials": {
            "capex": [{"item": "Brand kit", "amount": "$1,000", "justification": "One-time identity work."}],
            "opex": [{"item": "Ads", "amount": "$500/month", "justification": "Paid discovery."}],
            "investmentOptions": [{"type": "Bootstrapping", "description": "Self-funded.", "amount": "$5,000"}],
        },
    }


def brief_payload() -> dict[str, Any]:
    return {
        "viabilityScore": 7.5,
        "keyStrengths": ["Low capital", "Fast launch", "Evergreen demand"],
        "potentialRisks": ["Platform fees", "Copycats", "Seasonality"],
        "timeToBreakeven": "6-9 months",
        "roiPotential": "High",
        "strategicRecommendation": "Proceed with a lean out-sourced launch.",
    }


def ventures_payload() -> dict[str, Any]:
    return {"prioritizedVentures": "1. Print-on-demand art, because it suits design skills and low risk."}


DEFAULT_RESPONSES: Dict[Stage, Callable[[Dict[str, Any]], Any]] = {
    Stage.DISCOVER_OPPORTUNITIES: lambda _: discovery_payload(),
    Stage.RANK_OPPORTUNITIES: rank_in_prompt_order,
    Stage.ANALYZE_MARKET: lambda _: analysis_payload(),
    Stage.GENERATE_STRUCTURE: lambda _: structure_payload(),
    Stage.BUILD_STRATEGY: lambda _: strategy_payload(),
    Stage.BUILD_MODE_ADVICE: lambda _: advice_payload(),
    Stage.CHART_DATA: lambda _: chart_payload(),
    Stage.EXTRACT_TASKS: lambda _: action_plan_payload(),
    Stage.EXECUTIVE_BRIEF: lambda _: brief_payload(),
    Stage.PRIORITIZE_VENTURES: lambda _: ventures_payload(),
}

_STAGE_BY_SYSTEM_PROMPT = {prompt: stage for stage, prompt in SYSTEM_PROMPTS.items()}


class FakeCompletions:
    def __init__(self, owner: "FakeAsyncOpenAI") -> None:
        self._owner = owner

    async def create(self, **request: Any) -> SimpleNamespace:
        return await self._owner.respond(request)


class FakeAsyncOpenAI:
    """Stand-in for ``AsyncOpenAI`` that answers each stage with canned JSON.

    The stage is recognised from the system prompt. Tests can swap a
    stage's response, make it raise, or hold it on an ``asyncio.Event``.
    """

    def __init__(self) -> None:
        self.chat = SimpleNamespace(completions=FakeCompletions(self))
        self.responses: Dict[Stage, Responder] = {}
        self.failures: Dict[Stage, List[BaseException]] = {}
        self.gates: Dict[Stage, asyncio.Event] = {}
        self.requests: List[Dict[str, Any]] = []
        self.calls: Dict[Stage, int] = {}
        self.aborted: List[Stage] = []
        self.finish_reason = "stop"

    def fail(self, stage: Stage, exc: BaseException, times: int = 1) -> None:
        """Raise *exc* for the next *times* calls to *stage*."""

        self.failures.setdefault(stage, []).extend([exc] * times)

    def requests_for(self, stage: Stage) -> List[Dict[str, Any]]:
        return [request for request in self.requests if self.stage_of(request) is stage]

    @staticmethod
    def stage_of(request: Dict[str, Any]) -> Stage:
        return _STAGE_BY_SYSTEM_PROMPT[request["messages"][0]["content"]]

    @property
    def total_calls(self) -> int:
        return sum(self.calls.values())

    async def respond(self, request: Dict[str, Any]) -> SimpleNamespace:
        stage = self.stage_of(request)
        self.requests.append(request)
        self.calls[stage] = self.calls.get(stage, 0) + 1

        gate = self.gates.get(stage)
        if gate is not None:
            try:
                await gate.wait()
            except asyncio.CancelledError:
                self.aborted.append(stage)
                raise
        pending = self.failures.get(stage)
        if pending:
            raise pending.pop(0)

        responder = self.responses.get(stage, DEFAULT_RESPONSES[stage])
        data = responder(request) if callable(responder) else responder
        content = data if isinstance(data, str) or data is None else json.dumps(data)
        return SimpleNamespace(
            choices=[SimpleNamespace(message=SimpleNamespace(content=content), finish_reason=self.finish_reason)]
        )


@pytest.fixture
def fake_openai() -> FakeAsyncOpenAI:
    return FakeAsyncOpenAI()


@pytest.fixture
def settings() -> PipelineSettings:
    return PipelineSettings(backoff_base=0.0, backoff_max=0.0, max_attempts=3)


@pytest.fixture
def generation_client(fake_openai: FakeAsyncOpenAI, settings: PipelineSettings) -> GenerationClient:
    return GenerationClient(fake_openai, settings=settings)


@pytest.fixture
def store() -> InMemoryPlanStore:
    return InMemoryPlanStore()


@pytest.fixture
def pipeline(generation_client: GenerationClient, store: InMemoryPlanStore, settings: PipelineSettings) -> PlanPipeline:
    return PlanPipeline(generation_client, store, settings=settings)


def opportunity_payload(name: str = "Digital Wall Art Shop", opportunity_id: Optional[str] = "art-shop") -> dict:
    payload = dict(discovery_payload()["opportunities"][0], opportunityName=name)
    if opportunity_id is not None:
        payload["id"] = opportunity_id
    return payload
