"""Field inference agent."""

import json
import logging
import re
import threading
from typing import List, Optional

import dspy

from import_mapper.agents.field_inference.base import InferenceClient
from import_mapper.agents.field_inference.model import InferenceResponse, InferredMapping
from import_mapper.agents.field_inference.signature import FieldInferenceSignature
from import_mapper.config import AppConfig, get_config
from import_mapper.decoding.model import SourceField
from import_mapper.llms.llm import get_llm_for_agent
from import_mapper.matching.context import MatchContext
from import_mapper.matching.exceptions import ExternalInferenceError
from import_mapper.schema.target_fields import TargetCatalog
from import_mapper.utils.infrastructure.mlflow import setup_mlflow_tracing
from import_mapper.utils.retry import retry_with_backoff

logger = logging.getLogger(__name__)

AGENT_NAME = "field_inference"

_CODE_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$", re.MULTILINE)


def parse_mappings(raw: str) -> List[InferredMapping]:
    """
    Parse the agent's JSON mapping output.

    Accepts a list of mapping objects, an object wrapping such a list under
    ``mappings``, or a plain ``{source: target}`` object.

    Args:
        raw: Raw text from the model (code fences allowed)

    Returns:
        Parsed mappings

    Raises:
        ExternalInferenceError: If the text is not valid mapping JSON
    """
    text = _CODE_FENCE.sub("", (raw or "").strip()).strip()
    if not text:
        return []
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as e:
        raise ExternalInferenceError(f"Inference output is not valid JSON: {e}") from e

    if isinstance(payload, dict) and isinstance(payload.get("mappings"), list):
        payload = payload["mappings"]
    if isinstance(payload, dict):
        payload = [
            {"source_field": source, "target_field": target}
            for source, target in payload.items()
            if isinstance(target, str)
        ]
    if not isinstance(payload, list):
        raise ExternalInferenceError(f"Unexpected inference output type: {type(payload).__name__}")

    mappings = []
    for item in payload:
        if not isinstance(item, dict):
            continue
        source = item.get("source_field") or item.get("source")
        target = item.get("target_field") or item.get("target")
        if not source or not target:
            continue
        try:
            confidence = float(item.get("confidence", 0))
        except (TypeError, ValueError):
            confidence = 0.0
        # Some models answer on a 0-1 scale
        if 0 < confidence <= 1:
            confidence *= 100
        mappings.append(InferredMapping(
            source_field=str(source),
            target_field=str(target),
            confidence=confidence,
            rationale=str(item.get("rationale", "")),
        ))
    return mappings


class FieldInferenceAgent(InferenceClient):
    """Maps ambiguous fields with a single DSPy ChainOfThought call per run"""

    def __init__(
        self,
        lm: Optional[dspy.LM] = None,
        enable_tracing: bool = True,
        config: Optional[AppConfig] = None,
    ):
        """
        Initialize the Field Inference Agent

        Args:
            lm: DSPy language model (if None, created from config on first use)
            enable_tracing: Whether to enable MLflow tracing (default: True)
            config: Application config (defaults to the global config)
        """
        self.config = config or get_config()
        self.enable_tracing = enable_tracing
        self._lm = lm
        self._lock = threading.Lock()
        self.predictor = dspy.ChainOfThought(FieldInferenceSignature)

    @staticmethod
    def is_configured(config: Optional[AppConfig] = None) -> bool:
        """Whether the provider selected for this agent has an API key."""
        config = config or get_config()
        provider = config.field_inference_llm.lower()
        if provider == "anthropic":
            return bool(config.anthropic.api_key)
        return bool(config.openai.api_key)

    @property
    def lm(self) -> dspy.LM:
        with self._lock:
            if self._lm is None:
                if self.enable_tracing:
                    setup_mlflow_tracing(experiment_name=AGENT_NAME, config=self.config)
                self._lm = get_llm_for_agent(AGENT_NAME, self.config)
            return self._lm

    def infer(
        self,
        source_fields: List[SourceField],
        catalog: TargetCatalog,
        context: MatchContext,
    ) -> InferenceResponse:
        source_json = json.dumps([f.to_dict() for f in source_fields], indent=2)
        target_json = json.dumps(catalog.to_prompt(), indent=2)

        # A private copy starts with an empty history, so its cost is this call's alone
        call_lm = self.lm.copy()
        try:
            result = self._predict(call_lm, source_json, target_json, context)
        except ExternalInferenceError:
            raise
        except Exception as e:
            raise ExternalInferenceError(f"Field inference call failed: {e}") from e

        mappings = parse_mappings(result.mappings)
        cost = self._history_cost(call_lm)
        logger.debug(
            f"Field inference returned {len(mappings)} mappings for {len(source_fields)} fields "
            f"(cost: {cost if cost is not None else 'unknown'})"
        )
        return InferenceResponse(
            mappings=mappings,
            cost=cost,
            reasoning=getattr(result, "reasoning", "") or "",
        )

    @retry_with_backoff(
        max_retries=2,
        initial_delay=0.5,
        max_delay=2.0,
        no_retry=(ExternalInferenceError,),
        abort_when=lambda self, lm, source_json, target_json, context: context.cancelled,
    )
    def _predict(self, lm: dspy.LM, source_json: str, target_json: str, context: MatchContext):
        # Per-call LM context; strategies run on worker threads
        with dspy.context(lm=lm):
            return self.predictor(source_fields=source_json, target_fields=target_json)

    @staticmethod
    def _history_cost(lm: dspy.LM) -> Optional[float]:
        entries = getattr(lm, "history", None) or []
        costs = [entry.get("cost") for entry in entries if isinstance(entry, dict)]
        costs = [c for c in costs if c is not None]
        return float(sum(costs)) if costs else None
