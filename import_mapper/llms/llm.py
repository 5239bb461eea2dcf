"""LM selection per agent, driven by config."""

from typing import Optional

import dspy

from import_mapper.config import AppConfig, get_config
from import_mapper.llms.anthropic import create_anthropic_lm
from import_mapper.llms.openai import create_openai_lm

PROVIDERS = {
    "openai": create_openai_lm,
    "anthropic": create_anthropic_lm,
}


def get_llm_for_agent(agent_name: str, config: Optional[AppConfig] = None) -> dspy.LM:
    """
    Get the DSPy LM for an agent.

    Args:
        agent_name: Agent name (e.g. 'field_inference'); the provider is read
            from the ``<agent_name>_llm`` config setting
        config: Application config (defaults to the global config)

    Returns:
        Configured dspy.LM instance

    Raises:
        ValueError: If the configured provider is unknown
    """
    config = config or get_config()
    provider = str(getattr(config, f"{agent_name}_llm", "openai")).lower()

    if provider not in PROVIDERS:
        raise ValueError(
            f"Unknown LLM provider for {agent_name}: {provider}. Available: {', '.join(PROVIDERS)}"
        )
    return PROVIDERS[provider](config)
