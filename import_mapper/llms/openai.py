"""OpenAI (and OpenRouter) LM factory."""

import os
from typing import Optional

import dspy

from import_mapper.config import AppConfig, get_config


def create_openai_lm(config: Optional[AppConfig] = None) -> dspy.LM:
    """
    Build the DSPy LM for the OpenAI provider.

    OpenRouter keys ("sk-or-...") are routed through the openrouter/ prefix.
    The request timeout never exceeds the external strategy timeout, since
    a slower answer would be discarded anyway.

    Args:
        config: Application config (defaults to the global config)

    Returns:
        Configured dspy.LM
    """
    config = config or get_config()
    settings = config.openai
    model = settings.model

    if settings.api_key and settings.api_key.startswith("sk-or-"):
        os.environ["OPENROUTER_API_KEY"] = settings.api_key
        if not model.startswith("openrouter/"):
            model = f"openrouter/openai/{model}"
    elif "/" not in model:
        model = f"openai/{model}"

    lm_kwargs = {
        "model": model,
        "api_key": settings.api_key,
        "temperature": settings.temperature,
        "timeout": min(settings.timeout, config.timeouts.external_timeout_seconds),
        # Retries are handled by the agent so they can stop when the run is cancelled
        "num_retries": 0,
    }
    if settings.max_tokens:
        lm_kwargs["max_tokens"] = settings.max_tokens
    if settings.base_url:
        lm_kwargs["api_base"] = settings.base_url

    return dspy.LM(**lm_kwargs)
