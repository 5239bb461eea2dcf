"""Adaptive Mapping Pipeline

Coordinates decoding, the matching strategies and the arbiter for one
uploaded file.

Run flow:
1. Decoding - bytes to records and source fields
2. Matching - free strategies in parallel, then external inference for
   ambiguous fields (budget permitting)
3. Arbitrating - one decision per field, learning cache updated
4. Fallback - a single re-run with the free strategies when external
   inference or the arbiter failed
"""

import logging
import time
import uuid
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError, as_completed
from typing import Dict, List, Optional, Tuple

import pandas as pd

from import_mapper.agents.field_inference import FieldInferenceAgent, InferenceClient
from import_mapper.config import AppConfig, get_config
from import_mapper.database.base import LearningCache
from import_mapper.database.memory_cache import InMemoryLearningCache
from import_mapper.decoding.decoder import TabularDecoder
from import_mapper.decoding.model import DecodedTable, SourceField
from import_mapper.matching.arbiter import ArbitrationOutcome, MappingArbiter
from import_mapper.matching.constants import (
    DEFAULT_MAX_WORKERS,
    FREE_STRATEGIES,
    OrchestratorState,
    StrategyStatus,
)
from import_mapper.matching.context import Deadline, MatchContext
from import_mapper.matching.exceptions import (
    BudgetExceeded,
    DecodeError,
    ExternalInferenceError,
    StrategyTimeout,
)
from import_mapper.matching.model import (
    MappingCandidate,
    MappingDecision,
    MappingResult,
    StrategyOutcome,
)
from import_mapper.matching.validators import validate_state_transition
from import_mapper.schema.target_fields import TargetCatalog, get_default_catalog
from import_mapper.strategies import (
    ExactMatcher,
    ExternalInferenceMatcher,
    FuzzyMatcher,
    HistoricalMatcher,
    MappingStrategy,
    StatisticalMatcher,
)
from import_mapper.utils.infrastructure.mlflow import log_mapping_run
from import_mapper.utils.sanitize import sanitize_for_logging

logger = logging.getLogger(__name__)


def apply_mapping(
    records: pd.DataFrame,
    decisions: List[MappingDecision],
    catalog: Optional[TargetCatalog] = None,
) -> pd.DataFrame:
    """
    Rename mapped source columns to their target fields.

    Unmapped source columns are dropped. Columns are ordered by target
    declaration order when a catalog is given, else by decision order.

    Args:
        records: Decoded records (source column names)
        decisions: Final mapping decisions
        catalog: Optional target catalog used for column order

    Returns:
        DataFrame with one column per mapped target field
    """
    mapped = [d for d in decisions if d.is_mapped and d.source_field in records.columns]
    if catalog is not None:
        mapped.sort(key=lambda d: catalog.declaration_index(d.target_field))

    normalized = pd.DataFrame(index=records.index)
    for decision in mapped:
        normalized[decision.target_field] = records[decision.source_field]
    return normalized


class _RunState:
    """Current orchestrator state of one run; every change is validated."""

    def __init__(self, run_id: str):
        self.run_id = run_id
        self.current = OrchestratorState.DECODING

    def transition(self, new_state: str) -> None:
        validate_state_transition(self.current, new_state)
        logger.debug(f"Run {self.run_id}: {self.current} -> {new_state}")
        self.current = new_state


class AdaptiveOrchestrator:
    """Top-level coordinator of a field-mapping run.

    Constructed with explicit collaborators; nothing is shared between runs
    except the learning cache.
    """

    def __init__(
        self,
        catalog: Optional[TargetCatalog] = None,
        cache: Optional[LearningCache] = None,
        config: Optional[AppConfig] = None,
        strategies: Optional[List[MappingStrategy]] = None,
        inference_client: Optional[InferenceClient] = None,
        decoder: Optional[TabularDecoder] = None,
        max_workers: int = DEFAULT_MAX_WORKERS,
        enable_tracing: bool = True,
    ):
        """
        Initialize the orchestrator.

        Args:
            catalog: Target schema (defaults to the standard product fields)
            cache: Learning cache (defaults to a process-local in-memory cache)
            config: Application config (defaults to the global config)
            strategies: Strategy list overriding the defaults
            inference_client: Client for the external matcher; when None, the
                DSPy agent is used if its provider has an API key
            decoder: Tabular decoder (defaults to one built from config)
            max_workers: Thread pool size for strategy execution
            enable_tracing: Whether the default inference agent traces to MLflow
        """
        self.config = config or get_config()
        self.catalog = catalog or get_default_catalog()
        self.cache = cache if cache is not None else InMemoryLearningCache()
        self.decoder = decoder or TabularDecoder(self.config.decoder)
        self.max_workers = max_workers
        self.arbiter = MappingArbiter(self.catalog, self.config.thresholds, cache=self.cache)

        if strategies is None:
            strategies = self._default_strategies(inference_client, enable_tracing)
        self.strategies = strategies
        self.free_strategies = [s for s in strategies if s.name in FREE_STRATEGIES]

    def _default_strategies(
        self, inference_client: Optional[InferenceClient], enable_tracing: bool
    ) -> List[MappingStrategy]:
        strategies: List[MappingStrategy] = [
            ExactMatcher(),
            FuzzyMatcher(),
            StatisticalMatcher(),
            HistoricalMatcher(self.cache),
        ]
        if not self.config.budget.external_enabled:
            return strategies

        if inference_client is None and FieldInferenceAgent.is_configured(self.config):
            inference_client = FieldInferenceAgent(enable_tracing=enable_tracing, config=self.config)
        if inference_client is not None:
            strategies.append(ExternalInferenceMatcher(inference_client))
        else:
            logger.info("No inference provider configured; external matcher disabled")
        return strategies

    def run(
        self,
        content: bytes,
        content_type: Optional[str] = None,
        filename: Optional[str] = None,
        deadline_seconds: Optional[float] = None,
        run_id: Optional[str] = None,
    ) -> MappingResult:
        """
        Map one uploaded file onto the target schema.

        Args:
            content: Raw file bytes
            content_type: Declared MIME type, if any
            filename: Original file name, if any
            deadline_seconds: Caller deadline for the whole run; in-flight
                strategies are abandoned when it expires
            run_id: Optional run ID (UUID). Generated when not provided

        Returns:
            MappingResult in state accepted, partially_accepted or failed

        Raises:
            DecodeError: If the file itself cannot be read
        """
        run_id = run_id or str(uuid.uuid4())
        started = time.monotonic()
        if deadline_seconds is None:
            deadline_seconds = self.config.timeouts.default_deadline_seconds
        deadline = Deadline(deadline_seconds)
        state = _RunState(run_id)

        try:
            table = self.decoder.decode(content, content_type=content_type, filename=filename)
        except DecodeError as e:
            logger.warning(f"Run {run_id}: decode failed: {e}")
            raise

        context = MatchContext.from_config(run_id, self.config, deadline=deadline)
        source_fields = table.source_fields
        if not source_fields:
            state.transition(OrchestratorState.FAILED)
            context.note("decode produced no usable fields")
            return self._finish(state, table, context, None, {}, [], started, fallback_used=False)

        state.transition(OrchestratorState.MATCHING)
        outcomes, external_failed = self._run_strategies(self.strategies, source_fields, context)
        candidates = self._collect(outcomes)

        if not candidates:
            state.transition(OrchestratorState.FAILED)
            context.note("no strategy produced any candidate")
            return self._finish(state, table, context, None, outcomes, [], started, fallback_used=False)

        state.transition(OrchestratorState.ARBITRATING)
        arbitration = None
        if external_failed:
            context.note("external inference failed; falling back to free strategies")
        else:
            try:
                arbitration = self.arbiter.arbitrate(source_fields, candidates)
            except Exception as e:
                logger.error(f"Run {run_id}: arbitration failed, falling back: {e}", exc_info=True)
                context.note(f"arbitration failed ({e}); falling back to free strategies")

        fallback_used = arbitration is None
        if fallback_used:
            arbitration, outcomes = self._fallback(state, source_fields, context, outcomes)
            if arbitration is None:
                state.transition(OrchestratorState.FAILED)
                return self._finish(state, table, context, None, outcomes, [], started, fallback_used=True)

        state.transition(self._final_state(arbitration))
        return self._finish(
            state, table, context, arbitration, outcomes, candidates, started, fallback_used=fallback_used
        )

    def _fallback(
        self,
        state: _RunState,
        source_fields: List[SourceField],
        context: MatchContext,
        outcomes: Dict[str, StrategyOutcome],
    ) -> Tuple[Optional[ArbitrationOutcome], Dict[str, StrategyOutcome]]:
        """Single retry with the free strategies only.

        Free strategies that already completed in the first pass are reused;
        the others are run again.
        """
        state.transition(OrchestratorState.MATCHING)
        fallback_outcomes = {
            name: outcome
            for name, outcome in outcomes.items()
            if name in FREE_STRATEGIES and outcome.status == StrategyStatus.COMPLETED
        }
        pending = [s for s in self.free_strategies if s.name not in fallback_outcomes]
        if pending:
            rerun, _ = self._run_strategies(pending, source_fields, context)
            fallback_outcomes.update(rerun)

        # Keep the first-pass outcomes of the other strategies for diagnostics
        merged = dict(outcomes)
        merged.update(fallback_outcomes)

        candidates = self._collect(fallback_outcomes)
        if not candidates:
            context.note("fallback produced no candidates")
            return None, merged

        state.transition(OrchestratorState.ARBITRATING)
        try:
            return self.arbiter.arbitrate(source_fields, candidates), merged
        except Exception as e:
            logger.error(f"Run {context.run_id}: fallback arbitration failed: {e}", exc_info=True)
            context.note(f"fallback arbitration failed ({e})")
            return None, merged

    def _run_strategies(
        self,
        strategies: List[MappingStrategy],
        source_fields: List[SourceField],
        context: MatchContext,
    ) -> Tuple[Dict[str, StrategyOutcome], bool]:
        """
        Run strategies concurrently, one task per strategy.

        Free strategies run first, all in parallel, each bounded by the
        strategy timeout. Paid strategies run afterwards on the fields the
        free ones left ambiguous, bounded by their own timeout.

        Returns:
            (outcome per strategy name, whether a paid strategy errored)
        """
        cheap = [s for s in strategies if not s.is_paid]
        paid = [s for s in strategies if s.is_paid]
        outcomes: Dict[str, StrategyOutcome] = {}
        paid_failed = False

        executor = ThreadPoolExecutor(
            max_workers=max(1, min(self.max_workers, len(strategies) or 1)),
            thread_name_prefix=f"mapper-{context.run_id[:8]}",
        )
        try:
            outcomes.update(self._run_phase(
                executor, cheap, source_fields, context, self.config.timeouts.strategy_timeout_seconds
            ))

            for strategy in paid:
                outcome = self._run_paid(executor, strategy, source_fields, context, outcomes)
                outcomes[strategy.name] = outcome
                if outcome.status == StrategyStatus.FAILED:
                    paid_failed = True
        finally:
            # Abandon anything still in flight; its results are discarded
            if context.deadline.expired():
                context.cancel_event.set()
            executor.shutdown(wait=False, cancel_futures=True)

        return outcomes, paid_failed

    def _run_phase(
        self,
        executor: ThreadPoolExecutor,
        strategies: List[MappingStrategy],
        source_fields: List[SourceField],
        context: MatchContext,
        timeout: float,
    ) -> Dict[str, StrategyOutcome]:
        outcomes: Dict[str, StrategyOutcome] = {}
        if not strategies:
            return outcomes

        phase_started = time.monotonic()
        wait = context.deadline.clamp(timeout)
        future_to_strategy = {
            executor.submit(self._invoke, strategy, source_fields, context): strategy
            for strategy in strategies
        }
        try:
            for future in as_completed(future_to_strategy, timeout=wait):
                strategy = future_to_strategy[future]
                outcomes[strategy.name] = self._outcome_from_future(strategy, future, context)
        except FutureTimeoutError:
            elapsed = time.monotonic() - phase_started
            for future, strategy in future_to_strategy.items():
                if strategy.name in outcomes:
                    continue
                future.cancel()
                outcomes[strategy.name] = self._timed_out(strategy, timeout, elapsed, context, wait < timeout)

        # Submission order, so diagnostics are stable
        return {s.name: outcomes[s.name] for s in strategies}

    def _run_paid(
        self,
        executor: ThreadPoolExecutor,
        strategy: MappingStrategy,
        source_fields: List[SourceField],
        context: MatchContext,
        outcomes: Dict[str, StrategyOutcome],
    ) -> StrategyOutcome:
        if context.cancelled or context.deadline.expired():
            return StrategyOutcome(strategy.name, StrategyStatus.SKIPPED, error="deadline expired")

        context.ambiguous_fields = self._ambiguous_fields(source_fields, outcomes, context)
        if not context.ambiguous_fields:
            return StrategyOutcome(strategy.name, StrategyStatus.SKIPPED, error="no ambiguous fields")
        if not context.budget.can_afford():
            context.note(f"{strategy.name}: skipped, cost budget exhausted")
            return StrategyOutcome(strategy.name, StrategyStatus.SKIPPED, error="cost budget exhausted")

        timeout = self.config.timeouts.external_timeout_seconds
        started = time.monotonic()
        wait = context.deadline.clamp(timeout)
        future = executor.submit(self._invoke, strategy, source_fields, context)
        try:
            future.result(timeout=wait)
        except FutureTimeoutError:
            future.cancel()
            # The request may already be out; its reservation is spent either way
            charged = context.budget.charge_outstanding()
            if charged:
                context.note(f"{strategy.name}: abandoned call charged at its estimate ({charged:.6f})")
            return self._timed_out(
                strategy, timeout, time.monotonic() - started, context, wait < timeout, cost=charged
            )
        except Exception:
            # Reported by _outcome_from_future below
            pass
        return self._outcome_from_future(strategy, future, context)

    def _invoke(
        self,
        strategy: MappingStrategy,
        source_fields: List[SourceField],
        context: MatchContext,
    ) -> Tuple[List[MappingCandidate], float, float]:
        started = time.monotonic()
        spent_before = context.budget.spent
        candidates = strategy.propose(source_fields, self.catalog, context)
        return candidates, time.monotonic() - started, context.budget.spent - spent_before

    def _outcome_from_future(self, strategy: MappingStrategy, future, context: MatchContext) -> StrategyOutcome:
        try:
            candidates, elapsed, cost = future.result()
        except BudgetExceeded as e:
            context.note(f"{strategy.name}: {e}")
            return StrategyOutcome(strategy.name, StrategyStatus.SKIPPED, error=str(e))
        except ExternalInferenceError as e:
            logger.warning(f"Strategy {strategy.name} failed: {e}")
            context.note(f"{strategy.name}: {e}")
            return StrategyOutcome(strategy.name, StrategyStatus.FAILED, error=str(e))
        except Exception as e:
            logger.error(f"Strategy {strategy.name} raised unexpectedly: {e}", exc_info=True)
            context.note(f"{strategy.name}: {type(e).__name__}: {e}")
            return StrategyOutcome(strategy.name, StrategyStatus.FAILED, error=str(e))

        return StrategyOutcome(
            strategy=strategy.name,
            status=StrategyStatus.COMPLETED,
            candidates=list(candidates or []),
            elapsed_seconds=elapsed,
            cost=cost,
        )

    @staticmethod
    def _timed_out(
        strategy: MappingStrategy,
        timeout: float,
        elapsed: float,
        context: MatchContext,
        deadline_bound: bool,
        cost: float = 0.0,
    ) -> StrategyOutcome:
        if deadline_bound or context.deadline.expired():
            context.cancel_event.set()
            logger.warning(f"Run deadline expired, abandoning strategy {strategy.name}")
            return StrategyOutcome(
                strategy.name, StrategyStatus.CANCELLED, elapsed_seconds=elapsed, cost=cost, error="deadline expired"
            )
        error = StrategyTimeout(strategy.name, timeout)
        logger.warning(str(error))
        context.note(str(error))
        return StrategyOutcome(
            strategy.name, StrategyStatus.TIMED_OUT, elapsed_seconds=elapsed, cost=cost, error=str(error)
        )

    @staticmethod
    def _collect(outcomes: Dict[str, StrategyOutcome]) -> List[MappingCandidate]:
        candidates = []
        for outcome in outcomes.values():
            if outcome.status == StrategyStatus.COMPLETED:
                candidates.extend(outcome.candidates)
        return candidates

    @staticmethod
    def _ambiguous_fields(
        source_fields: List[SourceField],
        outcomes: Dict[str, StrategyOutcome],
        context: MatchContext,
    ) -> List[str]:
        best: Dict[str, float] = {}
        for outcome in outcomes.values():
            if outcome.status != StrategyStatus.COMPLETED:
                continue
            for candidate in outcome.candidates:
                best[candidate.source_field] = max(best.get(candidate.source_field, 0.0), candidate.confidence)
        threshold = context.thresholds.ambiguity_threshold
        return [f.name for f in source_fields if best.get(f.name, 0.0) < threshold]

    def _final_state(self, arbitration: ArbitrationOutcome) -> str:
        thresholds = self.config.thresholds
        mapped = sum(1 for d in arbitration.decisions if d.is_mapped)
        if mapped == 0:
            return OrchestratorState.FAILED
        if (
            arbitration.overall_confidence >= thresholds.acceptance_threshold
            and len(arbitration.unmapped_fields) <= thresholds.unmapped_tolerance
        ):
            return OrchestratorState.ACCEPTED
        return OrchestratorState.PARTIALLY_ACCEPTED

    def _finish(
        self,
        state: _RunState,
        table: DecodedTable,
        context: MatchContext,
        arbitration: Optional[ArbitrationOutcome],
        outcomes: Dict[str, StrategyOutcome],
        candidates: List[MappingCandidate],
        started: float,
        fallback_used: bool,
    ) -> MappingResult:
        if arbitration is not None:
            decisions = arbitration.decisions
            overall = arbitration.overall_confidence
            cache_events = [e.to_dict() for e in arbitration.cache_events]
        else:
            decisions = [
                MappingDecision(
                    source_field=f.name,
                    target_field=None,
                    confidence=0.0,
                    strategy=None,
                    rationale="Run failed before arbitration",
                    competing_candidates=[c for c in candidates if c.source_field == f.name],
                )
                for f in table.source_fields
            ]
            overall = 0.0
            cache_events = []

        mapped_targets = {d.target_field for d in decisions if d.is_mapped}
        result = MappingResult(
            run_id=context.run_id,
            state=state.current,
            decisions=decisions,
            overall_confidence=overall,
            unmapped_fields=[d.source_field for d in decisions if not d.is_mapped],
            total_cost=round(context.budget.spent, 6),
            elapsed_seconds=time.monotonic() - started,
            strategies_invoked=[
                name for name, o in outcomes.items() if o.status != StrategyStatus.SKIPPED
            ],
            strategy_outcomes=outcomes,
            missing_required_targets=[
                name for name in self.catalog.required_fields() if name not in mapped_targets
            ],
            fallback_used=fallback_used,
            decode_report=table.report(),
            cache_events=cache_events,
            notes=list(context.notes),
            normalized_records=apply_mapping(table.records, decisions, self.catalog),
        )
        self._log_run(result)
        return result

    def _log_run(self, result: MappingResult) -> None:
        logger.info(
            f"Mapping run {result.run_id} finished: state={result.state}, "
            f"confidence={result.overall_confidence:.1f}, mapped={result.mapped_count}/{len(result.decisions)}, "
            f"cost={result.total_cost:.6f}, elapsed={result.elapsed_seconds:.3f}s, "
            f"strategies={result.strategies_invoked}",
            extra={"mapping_run": result.to_diagnostics()},
        )
        if result.unmapped_fields:
            logger.info(
                f"Run {result.run_id} unmapped fields: "
                f"{[sanitize_for_logging(name) for name in result.unmapped_fields]}"
            )

        log_mapping_run(
            result.run_id,
            metrics={
                "overall_confidence": result.overall_confidence,
                "total_cost": result.total_cost,
                "elapsed_seconds": result.elapsed_seconds,
                "mapped_fields": float(result.mapped_count),
                "unmapped_fields": float(len(result.unmapped_fields)),
            },
            params={
                "state": result.state,
                "fallback_used": str(result.fallback_used),
                "strategies": ",".join(result.strategies_invoked),
            },
            config=self.config,
        )
