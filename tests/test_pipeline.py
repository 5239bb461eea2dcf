"""End-to-end tests for the adaptive orchestrator."""

import logging
import time

import pandas as pd
import pytest

from conftest import FakeInferenceClient, make_config
from import_mapper.agents.field_inference import InferenceResponse
from import_mapper.database import CacheEventKind, InMemoryLearningCache, SqlLearningCache
from import_mapper.matching.constants import FREE_STRATEGIES, OrchestratorState, StrategyStatus
from import_mapper.matching.exceptions import DecodeError, InvalidStateTransitionError
from import_mapper.matching.model import MappingDecision
from import_mapper.matching.validators import validate_state_transition
from import_mapper.pipeline import AdaptiveOrchestrator, apply_mapping
from import_mapper.schema.target_fields import FormatConstraint, TargetCatalog, TargetFieldSpec
from import_mapper.strategies import ExactMatcher, MappingStrategy

EXACT_FILE = b"name,sku,price,stock\nWidget,AB-1001,19.99,5\nGadget,CD-2002,5.49,12\n"
AMBIGUOUS_FILE = b"name,price,zz_col\nWidget,19.99,foo\nGadget,5.49,bar\n"


def external_config(**budget):
    return make_config(budget={"external_enabled": True, **budget})


def orchestrator_for(config, client=None, cache=None, **kwargs):
    return AdaptiveOrchestrator(
        cache=cache if cache is not None else InMemoryLearningCache(),
        config=config,
        inference_client=client,
        **kwargs,
    )


def test_exact_headers_map_with_full_confidence(config):
    result = orchestrator_for(config).run(EXACT_FILE, content_type="text/csv")

    assert result.state == OrchestratorState.ACCEPTED
    assert [(d.source_field, d.target_field, d.confidence, d.strategy) for d in result.decisions] == [
        ("name", "name", 100.0, "exact"),
        ("sku", "sku", 100.0, "exact"),
        ("price", "price", 100.0, "exact"),
        ("stock", "stock", 100.0, "exact"),
    ]
    assert result.overall_confidence == 100.0
    assert result.unmapped_fields == []
    assert result.total_cost == 0.0
    assert [e["kind"] for e in result.cache_events] == [CacheEventKind.INSERTED] * 4


def test_normalized_records_use_target_names(config):
    result = orchestrator_for(config).run(EXACT_FILE)

    assert list(result.normalized_records.columns) == ["name", "sku", "price", "stock"]
    assert result.normalized_records["sku"].tolist() == ["AB-1001", "CD-2002"]


def test_unmapped_fields_make_result_partial(config):
    result = orchestrator_for(config).run(AMBIGUOUS_FILE)

    assert result.state == OrchestratorState.PARTIALLY_ACCEPTED
    assert result.unmapped_fields == ["zz_col"]
    assert result.mappings == {"name": "name", "price": "price"}


def test_zero_budget_never_calls_external(config):
    client = FakeInferenceClient(mappings=[{"source_field": "zz_col", "target_field": "story", "confidence": 75}])

    result = orchestrator_for(external_config(cost_ceiling=0.0), client).run(AMBIGUOUS_FILE)

    assert client.calls == []
    assert result.state in (OrchestratorState.ACCEPTED, OrchestratorState.PARTIALLY_ACCEPTED)
    assert result.strategy_outcomes["external"].status == StrategyStatus.SKIPPED
    assert "external" not in result.strategies_invoked
    assert result.total_cost == 0.0


def test_external_resolves_ambiguous_fields_within_budget():
    client = FakeInferenceClient(
        mappings=[{"source_field": "zz_col", "target_field": "story", "confidence": 75}],
        cost=0.0002,
    )

    result = orchestrator_for(external_config(), client).run(AMBIGUOUS_FILE)

    assert client.calls == [["zz_col"]]
    decision = result.decision_for("zz_col")
    assert (decision.target_field, decision.strategy, decision.confidence) == ("story", "external", 75.0)
    assert result.total_cost == pytest.approx(0.0002)
    assert result.state == OrchestratorState.ACCEPTED


def test_external_is_skipped_when_nothing_is_ambiguous():
    client = FakeInferenceClient()

    result = orchestrator_for(external_config(), client).run(EXACT_FILE)

    assert client.calls == []
    assert result.strategy_outcomes["external"].status == StrategyStatus.SKIPPED


def test_deadline_shorter_than_external_latency_uses_completed_strategies():
    client = FakeInferenceClient(
        mappings=[{"source_field": "zz_col", "target_field": "story", "confidence": 75}],
        delay=5.0,
    )
    started = time.monotonic()

    result = orchestrator_for(external_config(), client).run(AMBIGUOUS_FILE, deadline_seconds=0.5)

    assert time.monotonic() - started < 4.0
    assert result.strategy_outcomes["external"].status == StrategyStatus.CANCELLED
    assert result.mappings == {"name": "name", "price": "price"}
    assert result.unmapped_fields == ["zz_col"]
    assert result.state == OrchestratorState.PARTIALLY_ACCEPTED
    assert not result.fallback_used


class UnresponsiveClient(FakeInferenceClient):
    """Keeps the call going after the run has given up on it."""

    def infer(self, source_fields, catalog, context):
        with self._lock:
            self.calls.append([f.name for f in source_fields])
        time.sleep(1.0)
        return InferenceResponse(mappings=[], cost=self.cost)


def test_abandoned_external_call_is_charged_its_estimate():
    client = UnresponsiveClient()

    result = orchestrator_for(external_config(), client).run(AMBIGUOUS_FILE, deadline_seconds=0.3)

    assert result.strategy_outcomes["external"].status == StrategyStatus.CANCELLED
    assert client.calls == [["zz_col"]]
    assert result.strategy_outcomes["external"].cost == pytest.approx(0.0004)
    assert result.total_cost == pytest.approx(0.0004)
    assert any("charged at its estimate" in note for note in result.notes)


class SlowStrategy(MappingStrategy):
    name = "slow"

    def propose(self, source_fields, catalog, context):
        context.cancel_event.wait(1.0)
        return []


def test_slow_strategy_times_out_without_blocking_others():
    config = make_config(timeouts={"strategy_timeout_seconds": 0.2})
    orchestrator = orchestrator_for(config, strategies=[ExactMatcher(), SlowStrategy()])

    result = orchestrator.run(EXACT_FILE)

    assert result.strategy_outcomes["slow"].status == StrategyStatus.TIMED_OUT
    assert result.strategy_outcomes["exact"].status == StrategyStatus.COMPLETED
    assert result.state == OrchestratorState.ACCEPTED
    assert any("timed out" in note for note in result.notes)


def test_external_failure_falls_back_to_free_strategies():
    client = FakeInferenceClient(error=RuntimeError("upstream 503"))

    result = orchestrator_for(external_config(), client).run(AMBIGUOUS_FILE)

    assert result.fallback_used
    assert result.strategy_outcomes["external"].status == StrategyStatus.FAILED
    assert all(d.strategy in FREE_STRATEGIES for d in result.decisions if d.is_mapped)
    assert result.state == OrchestratorState.PARTIALLY_ACCEPTED
    assert any("falling back" in note for note in result.notes)


def test_arbiter_failure_triggers_single_fallback(config, monkeypatch):
    orchestrator = orchestrator_for(config)
    original = orchestrator.arbiter.arbitrate
    calls = []

    def flaky(*args, **kwargs):
        calls.append(1)
        if len(calls) == 1:
            raise RuntimeError("corrupt candidate")
        return original(*args, **kwargs)

    monkeypatch.setattr(orchestrator.arbiter, "arbitrate", flaky)

    result = orchestrator.run(EXACT_FILE)

    assert len(calls) == 2
    assert result.fallback_used
    assert result.state == OrchestratorState.ACCEPTED


def test_repeated_arbiter_failure_ends_failed(config, monkeypatch):
    orchestrator = orchestrator_for(config)

    def broken(*args, **kwargs):
        raise RuntimeError("always broken")

    monkeypatch.setattr(orchestrator.arbiter, "arbitrate", broken)

    result = orchestrator.run(EXACT_FILE)

    assert result.state == OrchestratorState.FAILED
    assert result.unmapped_fields == ["name", "sku", "price", "stock"]
    assert result.overall_confidence == 0.0


def test_no_candidates_for_any_field_fails(config):
    catalog = TargetCatalog([TargetFieldSpec("price", "number", constraint=FormatConstraint(min_value=0))])

    result = AdaptiveOrchestrator(catalog=catalog, cache=InMemoryLearningCache(), config=config).run(
        b"qwerty\nabc\ndef\n"
    )

    assert result.state == OrchestratorState.FAILED
    assert result.unmapped_fields == ["qwerty"]


@pytest.mark.parametrize("content", [b"", b"only,a,header\n"])
def test_decode_error_is_raised_to_caller(config, content):
    with pytest.raises(DecodeError):
        orchestrator_for(config).run(content)


def test_runs_are_idempotent_for_identical_cache_state(config):
    content = b"Prodct Name,x7q,col_3\nWidget,4006381333931,live\nGadget,4006381333948,draft\n"

    first = orchestrator_for(config).run(content)
    second = orchestrator_for(config).run(content)

    assert [d.to_dict() for d in first.decisions] == [d.to_dict() for d in second.decisions]
    assert first.mappings["gtin"] == "x7q"
    assert first.mappings["status"] == "col_3"


def test_learning_cache_round_trip_after_header_rename(config, tmp_path):
    db_path = tmp_path / "cache.db"

    first = orchestrator_for(config, cache=SqlLearningCache(db_path)).run(b"Brand\nAcme\nGlobex\n")
    second = orchestrator_for(config, cache=SqlLearningCache(db_path)).run(b"Hersteller\nInitech\nUmbrella\n")

    assert first.decisions[0].confidence >= 80
    decision = second.decisions[0]
    assert decision.target_field == "brandId"
    assert decision.strategy == "historical"
    assert decision.confidence > 0


def test_renamed_price_column_is_found_next_to_same_shape_column(config, tmp_path):
    db_path = tmp_path / "cache.db"
    first = orchestrator_for(config, cache=SqlLearningCache(db_path)).run(
        b"name,price,compareAtPrice\nWidget,19.99,24.99\nGadget,5.49,7.99\n"
    )
    second = orchestrator_for(config, cache=SqlLearningCache(db_path)).run(
        b"name,qq1,compareAtPrice\nWidget,12.50,15.00\nGadget,3.20,4.10\n"
    )

    assert first.mappings == {"name": "name", "price": "price", "compareAtPrice": "compareAtPrice"}
    historical = second.strategy_outcomes["historical"].candidates
    assert [(c.target_field, c.confidence) for c in historical if c.source_field == "qq1"] == [("price", 80.0)]
    decision = second.decision_for("qq1")
    assert decision.target_field == "price"
    assert "historical" in decision.supporting_strategies


def test_repeat_run_reinforces_cache(config):
    cache = InMemoryLearningCache()
    orchestrator = orchestrator_for(config, cache=cache)

    orchestrator.run(EXACT_FILE)
    result = orchestrator.run(EXACT_FILE)

    assert {e["kind"] for e in result.cache_events} == {CacheEventKind.REINFORCED}
    assert "historical" in result.decisions[0].supporting_strategies


def test_missing_required_targets_are_reported(config):
    result = orchestrator_for(config).run(b"price\n19.99\n")

    assert result.missing_required_targets == ["name"]


def test_diagnostic_log_entry_per_run(config, caplog):
    caplog.set_level(logging.INFO, logger="import_mapper.pipeline")

    orchestrator_for(config).run(EXACT_FILE, run_id="run-42")

    entries = [r.mapping_run for r in caplog.records if hasattr(r, "mapping_run")]
    assert len(entries) == 1
    assert entries[0]["run_id"] == "run-42"
    assert entries[0]["state"] == OrchestratorState.ACCEPTED
    assert entries[0]["decisions"]["price"]["target"] == "price"


def test_apply_mapping_drops_unmapped_columns():
    records = pd.DataFrame({"Title": ["Widget"], "Junk": ["x"], "Cost": ["3"]})
    decisions = [
        MappingDecision("Title", "name", 90.0, "exact"),
        MappingDecision("Junk", None, 0.0, None),
        MappingDecision("Cost", "price", 90.0, "exact"),
    ]

    normalized = apply_mapping(records, decisions)

    assert normalized.to_dict(orient="list") == {"name": ["Widget"], "price": ["3"]}


def test_terminal_states_cannot_transition():
    with pytest.raises(InvalidStateTransitionError):
        validate_state_transition(OrchestratorState.ACCEPTED, OrchestratorState.MATCHING)
    with pytest.raises(InvalidStateTransitionError):
        validate_state_transition(OrchestratorState.DECODING, OrchestratorState.ACCEPTED)
