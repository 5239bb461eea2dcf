"""LLM providers for the inference agents."""

from import_mapper.llms.llm import get_llm_for_agent

__all__ = ["get_llm_for_agent"]
