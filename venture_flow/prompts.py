"""Prompt templates for every stage, with build-mode variants."""

from __future__ import annotations

import json
from functools import partial
from textwrap import dedent
from typing import Any, Dict, List, Optional

from .contracts import StageContract
from .llm import PromptTemplate
from .schemas import (
    BuildMode,
    BuildModeAdviceInput,
    BusinessStrategy,
    BusinessStructureInput,
    ChartDataInput,
    DiscoveryInput,
    ExecutiveBriefInput,
    ExtractTasksInput,
    MarketAnalysisInput,
    RankingInput,
    Stage,
    StrategyInput,
    VentureInput,
)

SYSTEM_PROMPTS: Dict[Stage, str] = {
    Stage.DISCOVER_OPPORTUNITIES: "You are an expert venture scout who frames business opportunities from raw material.",
    Stage.RANK_OPPORTUNITIES: "You are an expert business analyst who ranks opportunities against a strategic focus.",
    Stage.ANALYZE_MARKET: "You are an expert market analyst.",
    Stage.GENERATE_STRUCTURE: "You are an expert in organizational design and AI-driven business automation.",
    Stage.BUILD_STRATEGY: "You are an expert AI strategist focused on automation and profit-first optimization.",
    Stage.BUILD_MODE_ADVICE: "You are an expert business consultant comparing build methodologies.",
    Stage.EXTRACT_TASKS: "You are an expert project manager and financial analyst.",
    Stage.CHART_DATA: "You are an expert financial data analyst.",
    Stage.EXECUTIVE_BRIEF: "You are a world-class business analyst at a top-tier venture capital firm.",
    Stage.PRIORITIZE_VENTURES: "You are an expert in online business and entrepreneurship.",
}


def _pretty_json(data: Any) -> str:
    return json.dumps(data, indent=2, ensure_ascii=False)


def _strategy_lines(strategy: BusinessStrategy) -> str:
    return "\n".join(
        [
            f"- Marketing Tactics: {strategy.marketing_tactics}",
            f"- Operational Workflows: {strategy.operational_workflows}",
            f"- Financial Forecasts: {strategy.financial_forecasts}",
        ]
    )


# ---------------------------------------------------------------------------
# Discovery and ranking
# ---------------------------------------------------------------------------


def _render_discovery(payload: DiscoveryInput) -> str:
    sections = []
    if payload.context:
        sections.append(f"**Source Material:**\n{payload.context.strip()}")
    if payload.user_interests:
        sections.append(f"**Interests & Skills:** {payload.user_interests.strip()}")
    if payload.market_trends:
        sections.append(f"**Market Trends:** {payload.market_trends.strip()}")
    material = "\n\n".join(sections)
    return dedent(
        """
        Analyze the material below and identify distinct, high-potential business opportunities.
        For each opportunity give a name, a short description, and assessments of its potential,
        its risk, and how quickly it can return money. Finish with a 1-10 priority that synthesises
        the three assessments.
        """
    ).strip() + f"\n\n{material}"


def _render_ranking(payload: RankingInput) -> str:
    lines = [
        f"- id={opportunity.id} **{opportunity.opportunity_name}**: {opportunity.description}\n"
        f"  - Potential: {opportunity.potential}\n"
        f"  - Risk: {opportunity.risk}\n"
        f"  - Quick Return: {opportunity.quick_return}\n"
        f"  - Initial Priority: {opportunity.priority}"
        for opportunity in payload.opportunities
    ]
    return dedent(
        f"""
        Given a list of business opportunities and a strategic focus, rank them in order of preference.
        The ranking should reflect which opportunities best align with the stated focus.

        Give every opportunity exactly one rank from 1 to {len(payload.opportunities)} (1 is the best) with no
        ties and no gaps, copy its id verbatim, and explain how its potential, risk, and return speed
        contribute to the rank.

        **Strategic Focus:** {payload.focus}

        **Business Opportunities:**
        """
    ).strip() + "\n" + "\n".join(lines)


DISCOVERY_PROMPT = PromptTemplate(
    name="discover_opportunities",
    system_prompt=SYSTEM_PROMPTS[Stage.DISCOVER_OPPORTUNITIES],
    render=_render_discovery,
    temperature=0.8,
)

RANKING_PROMPT = PromptTemplate(
    name="rank_opportunities",
    system_prompt=SYSTEM_PROMPTS[Stage.RANK_OPPORTUNITIES],
    render=_render_ranking,
    temperature=0.3,
)


# ---------------------------------------------------------------------------
# Foundation stages
# ---------------------------------------------------------------------------


def _render_market_analysis(payload: MarketAnalysisInput) -> str:
    return dedent(
        """
        Given the description of a market opportunity, provide a demand forecast, an analysis of the
        competitive landscape, and a projection of the potential revenue.
        """
    ).strip() + f"\n\nMarket Opportunity Description: {payload.opportunity_description}"


def _render_structure(payload: BusinessStructureInput) -> str:
    return dedent(
        f"""
        For the given business opportunity, design a detailed organizational structure for a fully
        automated, AI-powered agency.

        Business Opportunity Name: {payload.opportunity_name}
        Business Opportunity Description: {payload.opportunity_description}

        Design the following components:
        1. Commander: the ultimate strategic authority and its function.
        2. OKRs: two or three company objectives, each with measurable key results.
        3. C-Level Board: CEO, CFO, COO, CMO, CPO and the primary responsibility of each.
        4. Advisory Council: AI consultants (e.g., Legal, Debater, Philosopher, Audit) advising leadership.
        5. AI-Core Base: the central AI system orchestrating tasks across the organization.
        6. AI-Powered Departments: for each, its function, how the AI-Core automates it, its AI persona
           staff, and the KPIs it is measured by.
        7. Project Management Framework: the methodology (e.g., a hybrid of Prince-2 and Agile) and the
           phases Initiation, Development, Establishment, Activation, Execution, and Control, each with
           goals and key activities.
        """
    )


MARKET_ANALYSIS_PROMPT = PromptTemplate(
    name="analyze_market_opportunity",
    system_prompt=SYSTEM_PROMPTS[Stage.ANALYZE_MARKET],
    render=_render_market_analysis,
)

STRUCTURE_PROMPT = PromptTemplate(
    name="generate_business_structure",
    system_prompt=SYSTEM_PROMPTS[Stage.GENERATE_STRUCTURE],
    render=_render_structure,
)


# ---------------------------------------------------------------------------
# Strategy (build-mode aware)
# ---------------------------------------------------------------------------

STRATEGY_MODE_SECTIONS: Dict[Optional[BuildMode], str] = {
    None: dedent(
        """
        ## MODE-AGNOSTIC STRATEGY ##
        No build mode has been chosen yet. Keep the plan valid whether capabilities are built internally
        or procured externally, and call out where that decision changes the workflow.
        """
    ),
    BuildMode.IN_HOUSE: dedent(
        """
        ## IN-HOUSE BUILD MODE ##
        Generate a strategy focused on building capabilities and processes internally.
        - Operational Workflow: structure marketing, operations, and finance for an internal team, with
          processes for internal content creation, quality control, and customer service.
        - Team & Tools: assume an internal AI-powered team (Procurement Lead, Demand Analyst, etc.) using
          robust, potentially licensed, automated tools (ERP, CRM, Gantt managers).
        """
    ),
    BuildMode.OUT_SOURCED: dedent(
        """
        ## OUT-SOURCED BUILD MODE ##
        Generate a strategy that maximizes external resources to minimize internal effort and investment,
        for a stakeholder who prefers to manage and approve rather than build.
        - Operational Workflow: design a lean procurement process that orchestrates external freelancers,
          agencies, and services.
        - Knowledge Base & Supplier Database: plan a knowledge base from trustworthy resources and a
          database of scored suppliers with their specialties.
        - Team & Tools: favour free solutions, public AI models, toolkits, and public repositories, and use
          trial subscriptions before committing. Consider the legalities of public assets.
        - Partnerships: include a path to partnerships with pre-qualified solution providers.
        """
    ),
}


def _render_strategy(payload: StrategyInput, *, mode_label: str, section: str) -> str:
    return "\n".join(
        [
            "Based on the following market analysis, generate a comprehensive business strategy designed for",
            "maximum automation and profit-first optimization.",
            "",
            f"**Market Analysis:** {payload.market_analysis}",
            f"**Build Mode:** {mode_label}",
            "",
            "**Framework Guidance:**",
            "- Financials: align the forecast with a profit-first approach emphasizing EBITDA uplift and",
            "  optimized procurement costs.",
            "- Branding: all tactics should reflect a consistent corporate identity.",
            section,
            "**Output Requirements:**",
            "- Marketing Tactics: a plan for each phase including a multi-channel sales strategy (Etsy,",
            "  Shopify, social media, etc.).",
            "- Operational Workflows: creation of top-seller quality assets in various formats, a quality",
            "  check before listing, a final assurance approval before delivery, financial transfers",
            "  (e.g., Stripe, PayPal), and a customer service lifecycle.",
            "- Financial Forecasts: projected performance, KPIs, and a clear path to profitability.",
        ]
    )


def strategy_prompt(build_mode: Optional[BuildMode]) -> PromptTemplate:
    """Return the strategy prompt variant for *build_mode* (None is mode-agnostic)."""

    variant = build_mode.value if build_mode else "agnostic"
    return PromptTemplate(
        name=f"build_business_strategy:{variant}",
        system_prompt=SYSTEM_PROMPTS[Stage.BUILD_STRATEGY],
        render=partial(
            _render_strategy,
            mode_label=build_mode.value if build_mode else "undecided",
            section=STRATEGY_MODE_SECTIONS[build_mode],
        ),
    )


# ---------------------------------------------------------------------------
# Build-mode advice and charts
# ---------------------------------------------------------------------------


def _render_build_mode_advice(payload: BuildModeAdviceInput) -> str:
    return dedent(
        """
        Given a foundational business strategy, compare two implementation paths: "in-house" and
        "out-sourced".

        For BOTH modes provide:
        1. Cost-Benefit Analysis: for in-house discuss control, IP ownership, and long-term costs; for
           out-sourced discuss speed, flexibility, and reliance on third parties.
        2. Resource Metrics: for in-house estimate team size, initial capital, and time-to-market; for
           out-sourced estimate the monthly services budget, upfront capital, and time-to-market.
        3. Strategic Recommendation: when and why a stakeholder would choose this path. Frame out-sourced
           as the capital-efficient option for a stakeholder who prefers to manage and approve.

        **Business Strategy Input:**
        """
    ).strip() + "\n" + _strategy_lines(payload.business_strategy)


def _render_chart_data(payload: ChartDataInput) -> str:
    return dedent(
        """
        Parse the text-based financial forecast below and extract projected revenue for the first 12
        months of operation.
        1. Use a three-letter month abbreviation (e.g., "Jan", "Feb", "Mar").
        2. Revenue is a whole number of dollars for that month.
        3. Return 12 entries, each with a 'month' and a 'revenue' key.
        """
    ).strip() + f"\n\nFinancial Forecast Text: {payload.financial_forecasts}"


BUILD_MODE_ADVICE_PROMPT = PromptTemplate(
    name="generate_build_mode_advice",
    system_prompt=SYSTEM_PROMPTS[Stage.BUILD_MODE_ADVICE],
    render=_render_build_mode_advice,
)

CHART_DATA_PROMPT = PromptTemplate(
    name="generate_chart_data",
    system_prompt=SYSTEM_PROMPTS[Stage.CHART_DATA],
    render=_render_chart_data,
    temperature=0.2,
)


# ---------------------------------------------------------------------------
# Task extraction (build-mode aware, contract aware)
# ---------------------------------------------------------------------------

TASK_MODE_SECTIONS: Dict[BuildMode, str] = {
    BuildMode.IN_HOUSE: dedent(
        """
        ### In-House Task Focus ###
        Tasks should reflect internal development cycles, team collaboration, and building proprietary
        systems.
        """
    ),
    BuildMode.OUT_SOURCED: dedent(
        """
        ### Out-Sourced Task Focus ###
        Tasks should focus on procurement, management, and integration of external resources.
        - Supplier Discovery: e.g., "Identify and vet freelance content creators on Upwork".
        - Tool Integration: e.g., "Set up trial for a SaaS tool and integrate with workflow".
        - Prompt Engineering: e.g., "Create specification documents for outsourced developers".
        - Knowledge Base: e.g., "Compile a database of top-rated suppliers and free software solutions".
        """
    ),
}


def _task_field_lines(contract: StageContract) -> str:
    lines = [
        '1. Unique ID: a short, unique ID (e.g., "MKT-01").',
        "2. Title & Description: a clear title and description.",
        '3. Category: e.g., "Marketing", "Operations", "Quality Assurance", "Finance", "Customer Service".',
    ]
    if "human_contribution" in contract.output_model.task_model().model_fields:
        lines.extend(
            [
                "4. Human Contribution: monitoring and approval duties for the stakeholder.",
                "5. Priority: 'High', 'Medium', or 'Low' from an Eisenhower Matrix for a fast launch.",
                "6. Dates: 'startDate' and 'endDate' in YYYY-MM-DD, assuming the project starts today.",
                "7. Dependencies: IDs of tasks in this plan that must finish before this one starts.",
            ]
        )
    return "\n".join(lines)


def _render_extract_tasks(payload: ExtractTasksInput, contract: StageContract) -> str:
    parts = [
        "Convert the high-level business strategy below into an actionable project plan tailored to the",
        "build mode. The stakeholder prefers an observer/approver role.",
        "",
        f"**Build Mode:** {payload.build_mode.value}",
        "",
        "**Part 1: Action Plan**",
        "Create a task category for each major section (Marketing, Operations, Financials) and extract",
        "specific, actionable tasks. For each task provide:",
        _task_field_lines(contract),
        TASK_MODE_SECTIONS[payload.build_mode],
        "The action plan must include tasks for a quality check before listing, a final assurance",
        "approval before delivery, multi-format production, multi-channel sales, financial transfer",
        "setup, and customer service setup.",
        "",
        "Identify the single task on the critical path for the quickest launch, using its exact title,",
        "and give a 'timeEstimate' in days or weeks (e.g., \"2-3 days\", \"1 week\").",
    ]
    if contract.carries("business_model_canvas"):
        parts.extend(["", "**Part 2: Business Model Canvas**", "Populate a standard Business Model Canvas concisely."])
    if contract.carries("financials"):
        parts.extend(
            [
                "",
                "**Part 3: Financial Estimation**",
                "1. CAPEX: key one-time capital expenditures.",
                "2. OPEX: recurring operational expenditures.",
                "3. Investment Options: 2-3 suitable options with potential amounts.",
                "Keep all estimates realistic for a lean, AI-driven startup.",
            ]
        )
    parts.extend(["", "**Business Strategy Input:**", _strategy_lines(payload.business_strategy)])
    return "\n".join(parts)


def extract_tasks_prompt(build_mode: BuildMode, contract: StageContract) -> PromptTemplate:
    """Return the task-extraction variant for *build_mode* under *contract*."""

    return PromptTemplate(
        name=f"extract_tasks:{build_mode.value}:{contract.version}",
        system_prompt=SYSTEM_PROMPTS[Stage.EXTRACT_TASKS],
        render=lambda payload: _render_extract_tasks(payload, contract),
        temperature=0.5,
    )


# ---------------------------------------------------------------------------
# Executive brief and venture prioritisation
# ---------------------------------------------------------------------------


def _render_executive_brief(payload: ExecutiveBriefInput) -> str:
    # v1 plans carry no financials.
    action_plan = payload.action_plan.model_dump(mode="json", by_alias=True, exclude_none=True)
    return dedent(
        f"""
        Distill the business plan below into a high-impact executive brief for the managing partners.
        Be ruthless, concise, and focused on the metrics that matter for an investment decision.

        **Business Opportunity:** {payload.opportunity_name}
        **Description:** {payload.opportunity_description}
        """
    ).strip() + "\n\n" + "\n".join(
        [
            "**Full Plan Details:**",
            f"- Market Analysis: {_pretty_json(payload.market_analysis.to_payload())}",
            f"- Business Strategy: {_pretty_json(payload.business_strategy.to_payload())}",
            f"- Action Plan & Financials: {_pretty_json(action_plan)}",
            "",
            "Provide:",
            "1. Viability Score (1-10) for likelihood of success and profitability.",
            "2. Key Strengths: exactly three compelling reasons to invest.",
            "3. Potential Risks: exactly three risks that could kill this business.",
            "4. Time to Breakeven from OPEX, revenue projections, and the critical path.",
            "5. ROI Potential: 'High', 'Medium', or 'Low'.",
            "6. Strategic Recommendation: one decisive sentence: go, no-go, or go with conditions.",
        ]
    )


def _render_ventures(payload: VentureInput) -> str:
    return dedent(
        f"""
        Given the following market data, user skills, and risk tolerance, prioritize a list of online
        business ventures the user should develop or begin.

        Market Data: {payload.market_data}
        User Skills: {payload.user_skills}
        Risk Tolerance: {payload.risk_tolerance}

        Consider side-hustles, passive income generators, freelance portals, drop shipping, and social
        media management. Explain the rationale behind the prioritization.
        """
    )


# Moderation thresholds for the free-form venture advice, per harm category.
VENTURE_SAFETY_SETTINGS: List[Dict[str, str]] = [
    {"category": "HARM_CATEGORY_HATE_SPEECH", "threshold": "BLOCK_ONLY_HIGH"},
    {"category": "HARM_CATEGORY_DANGEROUS_CONTENT", "threshold": "BLOCK_NONE"},
    {"category": "HARM_CATEGORY_HARASSMENT", "threshold": "BLOCK_MEDIUM_AND_ABOVE"},
    {"category": "HARM_CATEGORY_SEXUALLY_EXPLICIT", "threshold": "BLOCK_LOW_AND_ABOVE"},
]

EXECUTIVE_BRIEF_PROMPT = PromptTemplate(
    name="generate_executive_brief",
    system_prompt=SYSTEM_PROMPTS[Stage.EXECUTIVE_BRIEF],
    render=_render_executive_brief,
    temperature=0.4,
)

VENTURES_PROMPT = PromptTemplate(
    name="prioritize_ventures",
    system_prompt=SYSTEM_PROMPTS[Stage.PRIORITIZE_VENTURES],
    render=_render_ventures,
    options={"safety_settings": VENTURE_SAFETY_SETTINGS},
)
