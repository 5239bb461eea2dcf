"""Tests for the budget-gated external matcher, the cost budget and the inference agent."""

import threading

import dspy
import pytest

from conftest import FakeInferenceClient, make_config, make_field
from import_mapper.agents.field_inference import FieldInferenceAgent, parse_mappings
from import_mapper.matching.context import CostBudget, MatchContext
from import_mapper.matching.exceptions import BudgetExceeded, ExternalInferenceError
from import_mapper.strategies import ExternalInferenceMatcher


@pytest.fixture
def fields():
    return [make_field("Artikelnr", ["AB-1001"], 0), make_field("Name", ["Widget"], 1)]


def make_context(ceiling=0.001, estimate=0.0004, ambiguous=None):
    context = MatchContext.from_config(
        "test-run", make_config(), budget=CostBudget(ceiling=ceiling, per_call_estimate=estimate)
    )
    context.ambiguous_fields = ambiguous
    return context


def test_only_ambiguous_fields_are_sent_in_one_batch(fields, catalog):
    client = FakeInferenceClient(mappings=[
        {"source_field": "Artikelnr", "target_field": "sku", "confidence": 80, "rationale": "article number"},
    ])
    context = make_context(ambiguous=["Artikelnr"])

    candidates = ExternalInferenceMatcher(client).propose(fields, catalog, context)

    assert client.calls == [["Artikelnr"]]
    assert [(c.source_field, c.target_field, c.confidence, c.strategy) for c in candidates] == [
        ("Artikelnr", "sku", 80.0, "external"),
    ]


def test_confidence_is_clamped_and_unknown_names_dropped(fields, catalog):
    client = FakeInferenceClient(mappings=[
        {"source_field": "Artikelnr", "target_field": "sku", "confidence": 100},
        {"source_field": "Artikelnr", "target_field": "nonexistent", "confidence": 70},
        {"source_field": "Name", "target_field": "name", "confidence": 95},
        {"source_field": "Ghost", "target_field": "price", "confidence": 10},
    ])
    context = make_context(ambiguous=["Artikelnr"])

    candidates = ExternalInferenceMatcher(client).propose(fields, catalog, context)

    assert [(c.target_field, c.confidence) for c in candidates] == [("sku", 89.0)]


def test_low_confidence_is_raised_to_minimum(fields, catalog):
    client = FakeInferenceClient(mappings=[{"source_field": "Name", "target_field": "name", "confidence": 12}])

    candidates = ExternalInferenceMatcher(client).propose(fields, catalog, make_context())

    assert candidates[0].confidence == 40.0


def test_actual_cost_is_charged(fields, catalog):
    context = make_context()

    ExternalInferenceMatcher(FakeInferenceClient(cost=0.00015)).propose(fields, catalog, context)

    assert context.budget.spent == pytest.approx(0.00015)
    assert context.budget.remaining == pytest.approx(0.001 - 0.00015)


def test_unknown_cost_charges_the_estimate(fields, catalog):
    context = make_context()

    ExternalInferenceMatcher(FakeInferenceClient(cost=None)).propose(fields, catalog, context)

    assert context.budget.spent == pytest.approx(0.0004)


def test_zero_ceiling_never_calls_client(fields, catalog):
    client = FakeInferenceClient()

    with pytest.raises(BudgetExceeded):
        ExternalInferenceMatcher(client).propose(fields, catalog, make_context(ceiling=0.0))

    assert client.calls == []


def test_client_error_is_wrapped_and_charged(fields, catalog):
    context = make_context()
    client = FakeInferenceClient(error=RuntimeError("connection reset"))

    with pytest.raises(ExternalInferenceError, match="connection reset"):
        ExternalInferenceMatcher(client).propose(fields, catalog, context)

    assert context.budget.spent == pytest.approx(0.0004)


def test_no_ambiguous_fields_makes_no_call(fields, catalog):
    client = FakeInferenceClient()

    assert ExternalInferenceMatcher(client).propose(fields, catalog, make_context(ambiguous=[])) == []
    assert client.calls == []


def test_budget_reservations_respect_ceiling():
    budget = CostBudget(ceiling=0.001, per_call_estimate=0.0004)

    first = budget.reserve()
    second = budget.reserve()
    with pytest.raises(BudgetExceeded):
        budget.reserve()

    budget.settle(first, 0.0001)
    budget.settle(second)
    assert budget.spent == pytest.approx(0.0005)
    assert budget.can_afford()


def test_abandoned_reservation_is_charged_at_its_estimate():
    budget = CostBudget(ceiling=0.001, per_call_estimate=0.0004)
    reservation = budget.reserve()

    assert budget.charge_outstanding() == pytest.approx(0.0004)
    assert budget.spent == pytest.approx(0.0004)
    assert budget.outstanding == 0.0

    # A cheaper late answer does not lower what was already charged
    budget.settle(reservation, 0.0001)
    assert budget.spent == pytest.approx(0.0004)


def test_late_settle_adds_only_the_excess_over_the_estimate():
    budget = CostBudget(ceiling=0.001, per_call_estimate=0.0004)
    reservation = budget.reserve()
    budget.charge_outstanding()

    budget.settle(reservation, 0.0006)

    assert budget.spent == pytest.approx(0.0006)


def test_reservation_cannot_be_settled_twice():
    budget = CostBudget(ceiling=0.001, per_call_estimate=0.0004)
    reservation = budget.reserve()
    budget.settle(reservation)

    with pytest.raises(ValueError):
        budget.settle(reservation)
    assert budget.spent == pytest.approx(0.0004)


def test_cancelled_run_makes_no_call(fields, catalog):
    client = FakeInferenceClient()
    context = make_context()
    context.cancel_event.set()

    assert ExternalInferenceMatcher(client).propose(fields, catalog, context) == []
    assert client.calls == []
    assert context.budget.spent == 0.0


class TestParseMappings:

    def test_list_inside_code_fence(self):
        raw = '```json\n[{"source_field": "A", "target_field": "sku", "confidence": 75, "rationale": "r"}]\n```'

        mappings = parse_mappings(raw)

        assert [(m.source_field, m.target_field, m.confidence) for m in mappings] == [("A", "sku", 75.0)]

    def test_wrapped_object_and_fractional_confidence(self):
        mappings = parse_mappings('{"mappings": [{"source": "A", "target": "sku", "confidence": 0.8}]}')

        assert mappings[0].confidence == pytest.approx(80.0)

    def test_plain_source_to_target_object(self):
        mappings = parse_mappings('{"A": "sku", "B": null}')

        assert [(m.source_field, m.target_field) for m in mappings] == [("A", "sku")]

    def test_empty_output(self):
        assert parse_mappings("  ") == []

    def test_invalid_json_raises(self):
        with pytest.raises(ExternalInferenceError):
            parse_mappings("sku is Artikelnr")


class CopyableLM:
    """Stands in for a dspy LM: keeps a call history and copies with an empty one."""

    def __init__(self, history=None):
        self.history = list(history or [])

    def copy(self):
        return CopyableLM()


class TestFieldInferenceAgentCost:

    @pytest.fixture
    def agent(self):
        return FieldInferenceAgent(
            lm=CopyableLM(history=[{"cost": 0.05}, {"cost": 0.07}]),
            enable_tracing=False,
            config=make_config(),
        )

    def test_cost_covers_only_the_current_call(self, agent, fields, catalog, monkeypatch):
        def predict(lm, source_json, target_json, context):
            lm.history.append({"cost": 0.0003})
            return dspy.Prediction(mappings="[]", reasoning="")

        monkeypatch.setattr(agent, "_predict", predict)

        first = agent.infer(fields, catalog, make_context())
        second = agent.infer(fields, catalog, make_context())

        assert first.cost == pytest.approx(0.0003)
        assert second.cost == pytest.approx(0.0003)
        assert len(agent.lm.history) == 2

    def test_concurrent_calls_do_not_share_cost(self, agent, fields, catalog, monkeypatch):
        both_started = threading.Barrier(2)
        costs = iter([0.0001, 0.0006])
        lock = threading.Lock()

        def predict(lm, source_json, target_json, context):
            with lock:
                lm.history.append({"cost": next(costs)})
            both_started.wait(timeout=5)
            return dspy.Prediction(mappings="[]", reasoning="")

        monkeypatch.setattr(agent, "_predict", predict)

        results = []
        threads = [
            threading.Thread(target=lambda: results.append(agent.infer(fields, catalog, make_context())))
            for _ in range(2)
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert sorted(r.cost for r in results) == pytest.approx([0.0001, 0.0006])

    def test_unknown_cost_is_none(self, agent, fields, catalog, monkeypatch):
        monkeypatch.setattr(agent, "_predict", lambda *args: dspy.Prediction(mappings="[]", reasoning=""))

        assert agent.infer(fields, catalog, make_context()).cost is None
