"""
Agent roster and content generation.

The registry is the catalog of specialist agents (strategy, creative,
marketing, design, engineering, quality) loaded from ``catalog.yaml``.
Generators turn an agent assignment into deliverable content, either through
an LLM provider or the deterministic simulation used offline and in tests.
"""

from .generation import ContentGenerator, LiteLLMContentGenerator, SimulatedContentGenerator, build_content_generator
from .registry import AgentDefinition, AgentRegistry, get_agent_registry


__all__ = [
    "AgentDefinition",
    "AgentRegistry",
    "get_agent_registry",
    "ContentGenerator",
    "LiteLLMContentGenerator",
    "SimulatedContentGenerator",
    "build_content_generator",
]
