"""Shared fixtures for the import mapper tests."""

import threading
from datetime import datetime
from typing import List, Optional

import pytest

from import_mapper.agents.field_inference import InferenceClient, InferenceResponse, InferredMapping
from import_mapper.config import AppConfig
from import_mapper.database import InMemoryLearningCache, SqlLearningCache
from import_mapper.decoding.model import SourceField
from import_mapper.decoding.type_inference import infer_column_type
from import_mapper.matching.context import MatchContext
from import_mapper.schema.target_fields import get_default_catalog
from import_mapper.utils.normalize import compute_fingerprint, compute_shape_key, value_shape_signature

NOW = datetime(2026, 3, 1, 12, 0, 0)


def make_config(**updates) -> AppConfig:
    """AppConfig with tracing and the paid strategy off unless overridden."""
    base = AppConfig()
    config = base.model_copy(update={
        "mlflow": base.mlflow.model_copy(update={"enabled": False}),
        "budget": base.budget.model_copy(update={"external_enabled": False}),
    })
    for section, values in updates.items():
        config = config.model_copy(update={
            section: getattr(config, section).model_copy(update=values)
        })
    return config


def make_field(name: str, samples: List[str], position: int = 0) -> SourceField:
    inferred_type = infer_column_type(samples)
    signature = value_shape_signature(inferred_type, samples)
    non_empty = [s for s in samples if s.strip()]
    return SourceField(
        name=name,
        position=position,
        inferred_type=inferred_type,
        sample_values=tuple(non_empty),
        null_ratio=1.0 - len(non_empty) / len(samples) if samples else 1.0,
        distinct_ratio=len(set(non_empty)) / len(non_empty) if non_empty else 0.0,
        shape_signature=signature,
        fingerprint=compute_fingerprint(name, signature),
        shape_key=compute_shape_key(signature),
    )


class FakeInferenceClient(InferenceClient):
    """Records calls and answers with canned mappings."""

    def __init__(
        self,
        mappings: Optional[List[dict]] = None,
        cost: Optional[float] = 0.0002,
        delay: float = 0.0,
        error: Optional[Exception] = None,
    ):
        self.mappings = mappings or []
        self.cost = cost
        self.delay = delay
        self.error = error
        self.calls: List[List[str]] = []
        self._lock = threading.Lock()

    def infer(self, source_fields, catalog, context) -> InferenceResponse:
        with self._lock:
            self.calls.append([f.name for f in source_fields])
        if self.delay:
            # Returns early once the run is cancelled
            context.cancel_event.wait(self.delay)
        if self.error is not None:
            raise self.error
        return InferenceResponse(
            mappings=[InferredMapping(**m) for m in self.mappings],
            cost=self.cost,
        )


@pytest.fixture
def config():
    return make_config()


@pytest.fixture
def catalog():
    return get_default_catalog()


@pytest.fixture
def memory_cache():
    return InMemoryLearningCache()


@pytest.fixture
def sql_cache(tmp_path):
    return SqlLearningCache(tmp_path / "cache.db", memory_cache_size=10)


@pytest.fixture(params=["memory", "sql"])
def any_cache(request, tmp_path):
    if request.param == "memory":
        return InMemoryLearningCache()
    return SqlLearningCache(tmp_path / "cache.db", memory_cache_size=10)


@pytest.fixture
def context(config):
    return MatchContext.from_config("test-run", config)
