"""
LLM Gateway - Provider-agnostic interface for content generation.

Turns a structured instruction plus source excerpt into a JSON object.
Transport failures and unparsable output surface as distinct exceptions so
pipeline stages can tell them apart.
"""

import json
import re
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

import jsonschema


@dataclass
class LLMResponse:
    """Response from an LLM call."""
    content: dict
    raw_text: str
    model: str
    usage: dict
    latency_ms: float


class GenerationError(Exception):
    """Base class for content-generation failures."""

    def __init__(self, message: str, retryable: bool = False):
        super().__init__(message)
        self.retryable = retryable


class TransportError(GenerationError):
    """The generation call itself failed (network, quota, auth)."""


class ParseError(GenerationError):
    """The generation call returned nothing usable as a JSON object."""


class LLMGateway(ABC):
    """Abstract base class for LLM providers."""

    @abstractmethod
    def run_structured(
        self,
        prompt: str,
        input_data: dict,
        schema: dict,
        options: Optional[dict] = None
    ) -> LLMResponse:
        """
        Run a prompt with structured output.

        Args:
            prompt: The prompt template with {{placeholders}}
            input_data: Data to inject into placeholders
            schema: JSON schema describing the expected output
            options: Provider options (temperature, max_tokens, strict)

        Returns:
            LLMResponse with parsed content

        Raises:
            TransportError: If the call fails after retries
            ParseError: If the output is empty or not a JSON object, or
                (with strict=True) fails schema validation
        """
        pass

    def _render_prompt(self, template: str, data: dict) -> str:
        """Render a prompt template with data."""
        result = template
        for key, value in data.items():
            placeholder = f"{{{{{key}}}}}"
            if isinstance(value, (dict, list)):
                value = json.dumps(value, indent=2)
            result = result.replace(placeholder, str(value))
        return result

    def _validate_output(self, output: dict, schema: dict) -> None:
        """Validate output against JSON schema."""
        jsonschema.validate(instance=output, schema=schema)

    def _parse_content(self, raw_text: str) -> dict:
        """Parse raw model text into a JSON object."""
        if not raw_text or not raw_text.strip():
            raise ParseError("Empty response from content generation")
        try:
            content = json.loads(raw_text)
        except json.JSONDecodeError:
            content = _extract_json(raw_text)
        if not isinstance(content, dict):
            raise ParseError(
                f"Expected a JSON object, got {type(content).__name__}"
            )
        return content


class ClaudeGateway(LLMGateway):
    """Claude API implementation of LLM Gateway."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = "claude-sonnet-4-20250514",
        max_retries: int = 3,
        retry_delay: float = 1.0
    ):
        if not api_key:
            raise ValueError("No API key provided; run 'storyverse login' or set ANTHROPIC_API_KEY")
        if max_retries < 1:
            raise ValueError(f"max_retries must be at least 1, got {max_retries}")

        self.api_key = api_key
        self.model = model
        self.max_retries = max_retries
        self.retry_delay = retry_delay

        import anthropic
        self.client = anthropic.Anthropic(api_key=self.api_key)

    def run_structured(
        self,
        prompt: str,
        input_data: dict,
        schema: dict,
        options: Optional[dict] = None
    ) -> LLMResponse:
        """Run a prompt and get structured JSON output."""
        options = options or {}
        strict = options.get("strict", False)

        rendered_prompt = self._render_prompt(prompt, input_data)

        system_prompt = (
            "You are an AI assistant that outputs valid JSON only. "
            "Do not include any text before or after the JSON object. "
            "Do not use markdown code blocks. Output raw JSON only."
        )

        schema_instruction = f"\n\nYour output must conform to this JSON schema:\n{json.dumps(schema, indent=2)}"
        full_prompt = rendered_prompt + schema_instruction

        last_error: Optional[GenerationError] = None
        for attempt in range(self.max_retries):
            try:
                start_time = time.time()

                response = self.client.messages.create(
                    model=self.model,
                    max_tokens=options.get("max_tokens", 4096),
                    temperature=options.get("temperature", 0.7),
                    system=system_prompt,
                    messages=[
                        {"role": "user", "content": full_prompt}
                    ]
                )

                latency_ms = (time.time() - start_time) * 1000
                raw_text = response.content[0].text if response.content else ""
                content = self._parse_content(raw_text)

                if strict:
                    self._validate_output(content, schema)

                return LLMResponse(
                    content=content,
                    raw_text=raw_text,
                    model=response.model,
                    usage={
                        "input_tokens": response.usage.input_tokens,
                        "output_tokens": response.usage.output_tokens
                    },
                    latency_ms=latency_ms
                )

            except jsonschema.ValidationError as e:
                last_error = ParseError(
                    f"Output failed schema validation: {e.message}",
                    retryable=True
                )
            except ParseError as e:
                e.retryable = True
                last_error = e
            except Exception as e:
                error_str = str(e)
                retryable = "rate_limit" in error_str.lower() or "timeout" in error_str.lower()
                last_error = TransportError(error_str, retryable=retryable)

            if attempt < self.max_retries - 1 and last_error.retryable:
                time.sleep(self.retry_delay * (attempt + 1))
            else:
                break

        raise type(last_error)(
            f"LLM call failed after {attempt + 1} attempt(s): {last_error}"
        ) from last_error


class MockGateway(LLMGateway):
    """Mock gateway for testing without API calls."""

    def __init__(self, responses: Optional[dict] = None):
        """
        Initialize mock gateway.

        Args:
            responses: Dict mapping prompt substrings to response dicts,
                raw response strings, or exceptions to raise
        """
        self.responses = responses or {}
        self.call_log: list[dict] = []

    def set_response(self, prompt_contains: str, response: Union[dict, str]) -> None:
        """Set a mock response for prompts containing a string."""
        self.responses[prompt_contains] = response

    def set_error(self, prompt_contains: str, error: Exception) -> None:
        """Raise ``error`` for prompts containing a string."""
        self.responses[prompt_contains] = error

    def calls_matching(self, prompt_contains: str) -> list[dict]:
        """Logged calls whose rendered prompt contains a string."""
        return [c for c in self.call_log if prompt_contains in c["rendered"]]

    def run_structured(
        self,
        prompt: str,
        input_data: dict,
        schema: dict,
        options: Optional[dict] = None
    ) -> LLMResponse:
        """Return mock response based on prompt content."""
        options = options or {}
        rendered = self._render_prompt(prompt, input_data)

        self.call_log.append({
            "prompt": prompt,
            "input_data": input_data,
            "schema": schema,
            "rendered": rendered
        })

        for key, response in self.responses.items():
            if key not in rendered:
                continue
            if isinstance(response, Exception):
                raise response
            raw_text = response if isinstance(response, str) else json.dumps(response)
            content = self._parse_content(raw_text)
            if options.get("strict", False):
                try:
                    self._validate_output(content, schema)
                except jsonschema.ValidationError as e:
                    raise ParseError(f"Output failed schema validation: {e.message}") from e
            return LLMResponse(
                content=content,
                raw_text=raw_text,
                model="mock",
                usage={"input_tokens": 0, "output_tokens": 0},
                latency_ms=0
            )

        raise TransportError(f"No mock response configured for prompt containing: {rendered[:100]}...")


def _extract_json(text: str) -> dict:
    """Try to extract JSON from text that might have markdown formatting."""
    patterns = [
        r"```json\s*([\s\S]*?)\s*```",
        r"```\s*([\s\S]*?)\s*```",
        r"\{[\s\S]*\}"
    ]

    for pattern in patterns:
        match = re.search(pattern, text)
        if match:
            try:
                json_str = match.group(1) if "```" in pattern else match.group(0)
                return json.loads(json_str)
            except (json.JSONDecodeError, IndexError):
                continue

    raise ParseError("No valid JSON found in response")


def load_schema(schema_name: str) -> dict:
    """Load a JSON schema from the schemas directory."""
    schema_path = Path(__file__).parent.parent / "schemas" / f"{schema_name}.schema.json"
    if not schema_path.exists():
        raise FileNotFoundError(f"Schema not found: {schema_path}")

    with open(schema_path) as f:
        return json.load(f)


def create_gateway(provider: str = "claude", **kwargs) -> LLMGateway:
    """Factory function to create an LLM gateway."""
    if provider == "claude":
        return ClaudeGateway(**kwargs)
    elif provider == "mock":
        return MockGateway(**kwargs)
    else:
        raise ValueError(f"Unknown provider: {provider}")
