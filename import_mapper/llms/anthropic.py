"""Anthropic LM factory."""

from typing import Optional

import dspy

from import_mapper.config import AppConfig, get_config


def create_anthropic_lm(config: Optional[AppConfig] = None) -> dspy.LM:
    config = config or get_config()
    settings = config.anthropic
    return dspy.LM(
        model=f"anthropic/{settings.model}",
        api_key=settings.api_key,
        temperature=settings.temperature,
        max_tokens=settings.max_tokens,
        timeout=min(settings.timeout, config.timeouts.external_timeout_seconds),
        num_retries=0,
    )
