"""Plan pipeline orchestrator.

One ``PlanPipeline`` drives a single user's journey from raw material to a
persisted plan::

    idle -> discovering -> awaiting_selection -> analyzing -> strategizing
         -> advising -> awaiting_build_mode -> finalizing -> done

``error`` is reachable from every working state and ``cancelled`` from every
state where work is in flight or pending. Results of a parallel group are
committed only when every member of the group succeeded, and the plan store
is written exactly once per run, on entry to ``done``.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, TypeVar, Union

from pydantic import BaseModel

from .config import PipelineSettings
from .contracts import ContractSet, get_contract_set
from .errors import (
    BuildModeTimeoutError,
    FailureKind,
    GenerationError,
    InvalidTransitionError,
    RunCancelledError,
    StageFailedError,
    StoreConflictError,
    UnknownOpportunityError,
)
from .flows import (
    analyze_market_opportunity,
    build_business_strategy,
    discover_opportunities,
    extract_tasks,
    format_market_analysis,
    generate_build_mode_advice,
    generate_business_structure,
    generate_chart_data,
    generate_executive_brief,
    rank_opportunities,
)
from .integrity import check_action_plan, has_procurement_emphasis
from .llm import GenerationClient
from .schemas import (
    DEFAULT_RANKING_FOCUS,
    ActionPlanV1,
    BuildMode,
    BuildModeAdvice,
    BusinessStrategy,
    MarketAnalysis,
    Opportunity,
    PipelineProgress,
    PipelineState,
    PlanSnapshot,
    RankedOpportunity,
    Stage,
    StageFailure,
)
from .store import PlanStore

logger = logging.getLogger(__name__)

T = TypeVar("T")
TransitionListener = Callable[[PipelineState, PipelineState], None]

_WORKING_STATES = frozenset(
    {
        PipelineState.DISCOVERING,
        PipelineState.ANALYZING,
        PipelineState.STRATEGIZING,
        PipelineState.ADVISING,
        PipelineState.FINALIZING,
    }
)

_TRANSITIONS: Dict[PipelineState, frozenset[PipelineState]] = {
    PipelineState.IDLE: frozenset({PipelineState.DISCOVERING, PipelineState.ANALYZING, PipelineState.DONE}),
    PipelineState.DISCOVERING: frozenset(
        {PipelineState.AWAITING_SELECTION, PipelineState.ERROR, PipelineState.CANCELLED}
    ),
    PipelineState.AWAITING_SELECTION: frozenset(
        {PipelineState.DISCOVERING, PipelineState.ANALYZING, PipelineState.DONE}
    ),
    PipelineState.ANALYZING: frozenset({PipelineState.STRATEGIZING, PipelineState.ERROR, PipelineState.CANCELLED}),
    PipelineState.STRATEGIZING: frozenset({PipelineState.ADVISING, PipelineState.ERROR, PipelineState.CANCELLED}),
    PipelineState.ADVISING: frozenset(
        {PipelineState.AWAITING_BUILD_MODE, PipelineState.ERROR, PipelineState.CANCELLED}
    ),
    PipelineState.AWAITING_BUILD_MODE: frozenset(
        {PipelineState.FINALIZING, PipelineState.ERROR, PipelineState.CANCELLED}
    ),
    PipelineState.FINALIZING: frozenset({PipelineState.DONE, PipelineState.ERROR, PipelineState.CANCELLED}),
    PipelineState.DONE: frozenset({PipelineState.DISCOVERING, PipelineState.ANALYZING, PipelineState.DONE}),
    PipelineState.ERROR: frozenset({PipelineState.IDLE, PipelineState.AWAITING_SELECTION}),
    PipelineState.CANCELLED: frozenset({PipelineState.IDLE, PipelineState.AWAITING_SELECTION}),
}


class ExponentialBackoff:
    """Exponential backoff helper."""

    def __init__(self, base_s: float = 1.0, factor: float = 2.0, max_s: float = 30.0):
        self.base = base_s
        self.factor = factor
        self.max = max_s
        self.attempt = 0

    def next(self) -> float:
        delay = min(self.base * (self.factor ** self.attempt), self.max)
        self.attempt += 1
        return delay

    def reset(self) -> None:
        self.attempt = 0


class PlanPipeline:
    """Sequence the generation stages for one opportunity at a time."""

    def __init__(
        self,
        client: GenerationClient,
        store: PlanStore,
        *,
        settings: Optional[PipelineSettings] = None,
        contracts: Optional[ContractSet] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._client = client
        self._store = store
        self._settings = settings or client.settings
        self._contracts = contracts or get_contract_set(self._settings.contract_version)
        self._sleep = sleep

        self._state = PipelineState.IDLE
        self._listeners: List[TransitionListener] = []
        self._opportunities: List[RankedOpportunity] = []
        self._opportunity: Optional[Opportunity] = None
        self._results: Dict[Stage, Any] = {}
        self._completed: List[Stage] = []
        self._build_mode: Optional[BuildMode] = None
        self._failure: Optional[StageFailure] = None
        self._snapshot: Optional[PlanSnapshot] = None
        self._mode_future: Optional[asyncio.Future[BuildMode]] = None
        self._task: Optional[asyncio.Task[PlanSnapshot]] = None
        # Child task running the guarded work of the current operation.
        self._active: Optional[asyncio.Future[Any]] = None
        self._cancel_requested = False
        # Set while a ``run`` will wait on ``choose_build_mode``.
        self._choice_pending = False

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def state(self) -> PipelineState:
        return self._state

    @property
    def contracts(self) -> ContractSet:
        return self._contracts

    @property
    def opportunities(self) -> List[RankedOpportunity]:
        return list(self._opportunities)

    @property
    def opportunity(self) -> Optional[Opportunity]:
        return self._opportunity

    @property
    def snapshot(self) -> Optional[PlanSnapshot]:
        return self._snapshot

    @property
    def failure(self) -> Optional[StageFailure]:
        return self._failure

    @property
    def rollback_state(self) -> PipelineState:
        """Where ``recover`` lands: the selection step if there is anything to select."""

        return PipelineState.AWAITING_SELECTION if self._opportunities else PipelineState.IDLE

    @property
    def progress(self) -> PipelineProgress:
        advice = self._results.get(Stage.BUILD_MODE_ADVICE)
        if self._snapshot is not None and self._state is PipelineState.DONE:
            advice = self._snapshot.build_mode_advice
        return PipelineProgress(
            state=self._state,
            opportunity_id=self._opportunity.id if self._opportunity else None,
            contract_version=self._contracts.label,
            completed_stages=list(self._completed),
            build_mode=self._build_mode,
            build_mode_advice=advice,
            failure=self._failure,
            rollback_state=(
                self.rollback_state
                if self._state in (PipelineState.ERROR, PipelineState.CANCELLED)
                else None
            ),
        )

    def on_transition(self, listener: TransitionListener) -> Callable[[], None]:
        """Register *listener* for every state change; returns an unsubscribe callable."""

        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def discover(self, request: Union[BaseModel, Mapping[str, Any]]) -> List[RankedOpportunity]:
        """Discover opportunities in raw material and rank them against a focus."""

        self._require(
            "discover opportunities",
            PipelineState.IDLE,
            PipelineState.AWAITING_SELECTION,
            PipelineState.DONE,
        )
        payload = request.model_dump(by_alias=True) if isinstance(request, BaseModel) else dict(request)
        focus = payload.pop("focus", None) or DEFAULT_RANKING_FOCUS

        self._reset_run()
        self._opportunities = []
        self._transition(PipelineState.DISCOVERING)
        ranked = await self._guard(self._discover(payload, focus))
        self._opportunities = ranked
        self._transition(PipelineState.AWAITING_SELECTION)
        return ranked

    async def prepare(self, opportunity: Union[Opportunity, Mapping[str, Any], str]) -> PipelineState:
        """Run every stage that does not depend on the build mode.

        A plan already stored for the opportunity short-circuits straight to
        ``done`` without any generation call.
        """

        self._require(
            "select an opportunity",
            PipelineState.IDLE,
            PipelineState.AWAITING_SELECTION,
            PipelineState.DONE,
        )
        selected = self._resolve(opportunity)
        self._reset_run()
        self._opportunity = selected
        await self._guard(self._prepare(selected))
        return self._state

    async def finalize(self, build_mode: Union[BuildMode, str]) -> PlanSnapshot:
        """Generate the build-mode dependent stages and persist the plan."""

        mode = BuildMode(build_mode)
        self._require("choose a build mode", PipelineState.AWAITING_BUILD_MODE)
        if self._mode_future is not None and not self._mode_future.done():
            raise InvalidTransitionError(
                "A running pipeline is waiting for its build mode; use choose_build_mode().",
                state=self._state.value,
            )
        self._build_mode = mode
        return await self._guard(self._finish(mode))

    async def run(
        self,
        opportunity: Union[Opportunity, Mapping[str, Any], str],
        build_mode: Union[BuildMode, str, None] = None,
    ) -> PlanSnapshot:
        """Prepare, wait for ``choose_build_mode`` (unless *build_mode* is given), then finalize."""

        self._choice_pending = build_mode is None
        try:
            state = await self.prepare(opportunity)
        finally:
            self._choice_pending = False
        if state is PipelineState.DONE and self._snapshot is not None:
            return self._snapshot
        if build_mode is None:
            build_mode = await self._guard(self._wait_for_build_mode())
        return await self.finalize(build_mode)

    def start(
        self,
        opportunity: Union[Opportunity, Mapping[str, Any], str],
        build_mode: Union[BuildMode, str, None] = None,
    ) -> asyncio.Task[PlanSnapshot]:
        """Schedule ``run`` as a task that ``cancel`` can tear down."""

        if self._task is not None and not self._task.done():
            raise InvalidTransitionError("A run is already in progress.", state=self._state.value)
        self._task = asyncio.create_task(self.run(opportunity, build_mode))
        return self._task

    def choose_build_mode(self, build_mode: Union[BuildMode, str]) -> None:
        """Hand the chosen build mode to a ``run`` that is waiting for it."""

        mode = BuildMode(build_mode)
        if self._state is not PipelineState.AWAITING_BUILD_MODE:
            raise InvalidTransitionError(
                f"Cannot choose a build mode while {self._state.value}.", state=self._state.value
            )
        if self._mode_future is None or self._mode_future.done():
            raise InvalidTransitionError(
                "No run is waiting for a build mode; call finalize() instead.", state=self._state.value
            )
        logger.info("Build mode %s chosen for %s", mode.value, self._opportunity.id if self._opportunity else "-")
        self._mode_future.set_result(mode)

    def cancel(self) -> bool:
        """Tear down the current run; returns False when there was nothing to cancel.

        A run scheduled with ``start`` is cancelled as a whole. An operation
        awaited directly has its in-flight stage calls aborted and its caller
        receives ``RunCancelledError``. A run parked at the build-mode decision
        simply drops its partial results.
        """

        if self._task is not None and not self._task.done():
            self._task.cancel()
            return True
        if self._active is not None and not self._active.done():
            self._cancel_requested = True
            self._active.cancel()
            return True
        if self._state in _WORKING_STATES or self._state is PipelineState.AWAITING_BUILD_MODE:
            self._mark_cancelled()
            return True
        return False

    def recover(self) -> PipelineState:
        """Leave ``error`` or ``cancelled`` for the rollback target, discarding partial work."""

        self._require("recover", PipelineState.ERROR, PipelineState.CANCELLED)
        target = self.rollback_state
        self._reset_run()
        self._transition(target)
        return target

    # ------------------------------------------------------------------
    # Stage groups
    # ------------------------------------------------------------------

    async def _discover(self, payload: Dict[str, Any], focus: str) -> List[RankedOpportunity]:
        found = await self._call(
            Stage.DISCOVER_OPPORTUNITIES,
            lambda: discover_opportunities(
                self._client, payload, contract=self._contracts.for_stage(Stage.DISCOVER_OPPORTUNITIES)
            ),
        )
        self._commit({Stage.DISCOVER_OPPORTUNITIES: found})
        ranking_payload = {"opportunities": [item.to_payload() for item in found], "focus": focus}
        ranked = await self._call(
            Stage.RANK_OPPORTUNITIES,
            lambda: rank_opportunities(
                self._client, ranking_payload, contract=self._contracts.for_stage(Stage.RANK_OPPORTUNITIES)
            ),
        )
        self._commit({Stage.RANK_OPPORTUNITIES: ranked})
        return ranked

    async def _prepare(self, opportunity: Opportunity) -> None:
        stored = await self._store.get(opportunity.id)
        if stored is None:
            await self._foundation(opportunity)
            return
        logger.info("Plan for %s already stored (version %s); skipping generation", opportunity.id, stored.version)
        self._snapshot = stored
        self._build_mode = stored.build_mode
        self._transition(PipelineState.DONE)

    async def _foundation(self, opportunity: Opportunity) -> None:
        self._transition(PipelineState.ANALYZING)
        results = await self._gather(
            {
                Stage.ANALYZE_MARKET: lambda: analyze_market_opportunity(
                    self._client,
                    {"opportunityDescription": opportunity.description},
                    contract=self._contracts.for_stage(Stage.ANALYZE_MARKET),
                ),
                Stage.GENERATE_STRUCTURE: lambda: generate_business_structure(
                    self._client,
                    {
                        "opportunityName": opportunity.opportunity_name,
                        "opportunityDescription": opportunity.description,
                    },
                    contract=self._contracts.for_stage(Stage.GENERATE_STRUCTURE),
                ),
            }
        )
        self._commit(results)

        self._transition(PipelineState.STRATEGIZING)
        analysis: MarketAnalysis = self._results[Stage.ANALYZE_MARKET]
        strategy = await self._call(
            Stage.BUILD_STRATEGY,
            lambda: build_business_strategy(
                self._client,
                {"marketAnalysis": format_market_analysis(analysis)},
                contract=self._contracts.for_stage(Stage.BUILD_STRATEGY),
            ),
        )
        self._commit({Stage.BUILD_STRATEGY: strategy})

        self._transition(PipelineState.ADVISING)
        results = await self._gather(
            {
                Stage.BUILD_MODE_ADVICE: lambda: generate_build_mode_advice(
                    self._client,
                    {"businessStrategy": strategy.to_payload()},
                    contract=self._contracts.for_stage(Stage.BUILD_MODE_ADVICE),
                ),
                Stage.CHART_DATA: lambda: generate_chart_data(
                    self._client,
                    {"financialForecasts": strategy.financial_forecasts},
                    contract=self._contracts.for_stage(Stage.CHART_DATA),
                ),
            }
        )
        self._commit(results)
        if self._choice_pending:
            self._mode_future = asyncio.get_running_loop().create_future()
        self._transition(PipelineState.AWAITING_BUILD_MODE)

    async def _wait_for_build_mode(self) -> BuildMode:
        if self._mode_future is None:
            self._mode_future = asyncio.get_running_loop().create_future()
        timeout = self._settings.build_mode_timeout
        try:
            return await asyncio.wait_for(self._mode_future, timeout=timeout)
        except asyncio.TimeoutError:
            raise BuildModeTimeoutError(f"No build mode was chosen within {timeout} seconds.") from None

    async def _finish(self, mode: BuildMode) -> PlanSnapshot:
        opportunity = self._opportunity
        if opportunity is None:
            raise InvalidTransitionError("No opportunity has been prepared.", state=self._state.value)
        self._transition(PipelineState.FINALIZING)

        analysis: MarketAnalysis = self._results[Stage.ANALYZE_MARKET]
        strategy: BusinessStrategy = self._results[Stage.BUILD_STRATEGY]
        if self._settings.mode_aware_strategy:
            strategy = await self._call(
                Stage.BUILD_STRATEGY,
                lambda: build_business_strategy(
                    self._client,
                    {"marketAnalysis": format_market_analysis(analysis), "buildMode": mode.value},
                    contract=self._contracts.for_stage(Stage.BUILD_STRATEGY),
                ),
            )

        plan: ActionPlanV1 = await self._call(
            Stage.EXTRACT_TASKS,
            lambda: extract_tasks(
                self._client,
                {"businessStrategy": strategy.to_payload(), "buildMode": mode.value},
                contract=self._contracts.for_stage(Stage.EXTRACT_TASKS),
            ),
        )
        report = check_action_plan(plan)
        if not report.is_clean:
            logger.warning("Action plan for %s has integrity findings: %s", opportunity.id, report.to_payload())
        if mode is BuildMode.OUT_SOURCED and not has_procurement_emphasis(plan):
            logger.warning("Out-sourced action plan for %s has no procurement tasks", opportunity.id)

        brief_plan: Dict[str, Any] = {"criticalPath": plan.critical_path.to_payload()}
        financials = getattr(plan, "financials", None)
        if financials is not None:
            brief_plan["financials"] = financials.to_payload()
        brief = await self._call(
            Stage.EXECUTIVE_BRIEF,
            lambda: generate_executive_brief(
                self._client,
                {
                    "opportunityName": opportunity.opportunity_name,
                    "opportunityDescription": opportunity.description,
                    "marketAnalysis": analysis.to_payload(),
                    "businessStrategy": strategy.to_payload(),
                    "actionPlan": brief_plan,
                },
                contract=self._contracts.for_stage(Stage.EXECUTIVE_BRIEF),
            ),
        )

        advice: BuildModeAdvice = self._results[Stage.BUILD_MODE_ADVICE]
        snapshot = PlanSnapshot(
            opportunity=Opportunity.model_validate(opportunity.model_dump()),
            contract_version=self._contracts.label,
            build_mode=mode,
            analysis=analysis,
            structure=self._results[Stage.GENERATE_STRUCTURE],
            strategy=strategy,
            build_mode_advice=advice,
            action_plan=plan,
            chart_data=self._results[Stage.CHART_DATA],
            executive_brief=brief,
            integrity=report,
        )
        stored = await self._store.set(opportunity.id, snapshot, expected_version=None)
        self._commit({Stage.EXTRACT_TASKS: plan, Stage.EXECUTIVE_BRIEF: brief})
        self._snapshot = stored
        self._transition(PipelineState.DONE)
        logger.info("Plan for %s stored at version %s", opportunity.id, stored.version)
        return stored

    # ------------------------------------------------------------------
    # Stage calls
    # ------------------------------------------------------------------

    async def _call(self, stage: Stage, factory: Callable[[], Awaitable[T]]) -> T:
        """Invoke one stage, retrying provider failures with exponential backoff."""

        attempts = self._settings.attempts_for(stage.value)
        backoff = ExponentialBackoff(self._settings.backoff_base, 2.0, self._settings.backoff_max)
        attempt = 1
        while True:
            logger.debug("Stage %s attempt %d/%d", stage.value, attempt, attempts)
            try:
                return await factory()
            except GenerationError as exc:
                if exc.stage is None:
                    exc.stage = stage.value
                if not exc.retryable or attempt >= attempts:
                    raise
                delay = backoff.next()
                logger.warning(
                    "Stage %s failed on attempt %d/%d (%s); retrying in %.1fs",
                    stage.value,
                    attempt,
                    attempts,
                    exc,
                    delay,
                )
            except (asyncio.CancelledError, StoreConflictError, BuildModeTimeoutError):
                raise
            except Exception as exc:
                raise GenerationError(f"Stage '{stage.value}' raised {exc!r}", stage=stage.value) from exc
            await self._sleep(delay)
            attempt += 1

    async def _gather(self, calls: Dict[Stage, Callable[[], Awaitable[Any]]]) -> Dict[Stage, Any]:
        """Run a parallel group; every member settles before the group is judged."""

        stages = list(calls)
        outcomes = await asyncio.gather(*(self._call(stage, calls[stage]) for stage in stages), return_exceptions=True)
        for outcome in outcomes:
            if isinstance(outcome, BaseException):
                raise outcome
        return dict(zip(stages, outcomes))

    async def _guard(self, work: Awaitable[T]) -> T:
        """Run *work* as the cancellable in-flight task of this pipeline.

        Stage failures land in ``error`` and cancellation in ``cancelled``.
        Results that settle after the run was cancelled are dropped.
        """

        task = asyncio.ensure_future(work)
        self._active = task
        self._cancel_requested = False
        try:
            result = await task
        except (GenerationError, BuildModeTimeoutError, StoreConflictError) as exc:
            if self._state is PipelineState.CANCELLED:
                raise RunCancelledError(self._failure) from exc
            if isinstance(exc, GenerationError):
                self._fail(Stage(exc.stage) if exc.stage else None, exc.kind, str(exc))
            elif isinstance(exc, BuildModeTimeoutError):
                self._fail(None, FailureKind.TIMEOUT, str(exc))
            else:
                self._fail(None, FailureKind.STORE_CONFLICT, str(exc))
            raise StageFailedError(self._failure) from exc
        except asyncio.CancelledError:
            torn_down = self._cancel_requested or self._state is PipelineState.CANCELLED
            failure = self._mark_cancelled()
            if not torn_down:
                raise
            raise RunCancelledError(failure) from None
        finally:
            if self._active is task:
                self._active = None
        if self._state is PipelineState.CANCELLED:
            raise RunCancelledError(self._failure)
        return result

    # ------------------------------------------------------------------
    # State bookkeeping
    # ------------------------------------------------------------------

    def _require(self, action: str, *allowed: PipelineState) -> None:
        if self._state not in allowed:
            raise InvalidTransitionError(f"Cannot {action} while {self._state.value}.", state=self._state.value)

    def _transition(self, new_state: PipelineState) -> None:
        old_state = self._state
        if new_state not in _TRANSITIONS[old_state]:
            raise InvalidTransitionError(
                f"Illegal transition {old_state.value} -> {new_state.value}.", state=old_state.value
            )
        self._state = new_state
        logger.info("Pipeline %s -> %s", old_state.value, new_state.value)
        for listener in list(self._listeners):
            try:
                listener(old_state, new_state)
            except Exception:
                logger.exception("Transition listener %r failed", listener)

    def _resolve(self, opportunity: Union[Opportunity, Mapping[str, Any], str]) -> Opportunity:
        if isinstance(opportunity, Opportunity):
            return opportunity
        if isinstance(opportunity, str):
            for candidate in self._opportunities:
                if candidate.id == opportunity:
                    return candidate
            raise UnknownOpportunityError(f"Opportunity '{opportunity}' was not discovered in this session.")
        return Opportunity.model_validate(opportunity)

    def _commit(self, results: Mapping[Stage, Any]) -> None:
        self._results.update(results)
        for stage in results:
            if stage not in self._completed:
                self._completed.append(stage)

    def _reset_run(self) -> None:
        self._opportunity = None
        self._results = {}
        self._completed = []
        self._build_mode = None
        self._failure = None
        self._snapshot = None
        self._mode_future = None

    def _fail(self, stage: Optional[Stage], kind: FailureKind, message: str) -> None:
        self._failure = StageFailure(stage=stage, kind=kind.value, message=message)
        self._results = {}
        self._completed = []
        logger.error(
            "Pipeline failed in %s at stage %s (%s): %s",
            self._state.value,
            stage.value if stage else "-",
            kind.value,
            message,
        )
        self._transition(PipelineState.ERROR)

    def _mark_cancelled(self) -> StageFailure:
        failure = StageFailure(kind=FailureKind.CANCELLED.value, message="The run was cancelled.")
        if self._mode_future is not None and not self._mode_future.done():
            self._mode_future.cancel()
        if PipelineState.CANCELLED not in _TRANSITIONS[self._state]:
            return failure
        self._failure = failure
        self._results = {}
        self._completed = []
        self._transition(PipelineState.CANCELLED)
        return failure
