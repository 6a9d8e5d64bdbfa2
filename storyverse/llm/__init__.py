"""LLM module for gateway and prompt management."""

from .gateway import (
    LLMGateway,
    ClaudeGateway,
    MockGateway,
    LLMResponse,
    GenerationError,
    TransportError,
    ParseError,
    create_gateway,
    load_schema
)
from .prompt_registry import PromptRegistry, PromptTemplate, PromptVersion

__all__ = [
    "LLMGateway",
    "ClaudeGateway",
    "MockGateway",
    "LLMResponse",
    "GenerationError",
    "TransportError",
    "ParseError",
    "create_gateway",
    "load_schema",
    "PromptRegistry",
    "PromptTemplate",
    "PromptVersion"
]
