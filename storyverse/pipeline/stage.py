"""Shared plumbing for stages that call the generation client."""

import logging
from typing import Callable, Optional

from ..config import PipelineSettings
from ..llm.gateway import load_schema
from .parsing import ResolvedFields, resolve_fields

logger = logging.getLogger(__name__)


class GenerativeStage:
    """Base for stages 1-5: one instruction template, one schema each."""

    # Stage index, for log lines
    stage = -1

    def __init__(
        self,
        llm_gateway,
        prompt_registry,
        settings: Optional[PipelineSettings] = None,
        progress_fn: Optional[Callable[[str], None]] = None,
    ):
        self.gateway = llm_gateway
        self.registry = prompt_registry
        self.settings = settings or PipelineSettings()
        self._progress = progress_fn or (lambda msg: None)

    def _generate(
        self,
        prompt_id: str,
        input_data: dict,
        defaults: dict,
        options: Optional[dict] = None,
    ) -> ResolvedFields:
        """Issue one request and resolve its fields against the schema.

        Transport errors and unparsable output propagate; missing or
        malformed fields fall back to ``defaults``.
        """
        prompt_tmpl = self.registry.get_prompt(prompt_id)
        schema = load_schema(prompt_tmpl.schema_name)

        response = self.gateway.run_structured(
            prompt=prompt_tmpl.template,
            input_data=input_data,
            schema=schema,
            options=options or {"temperature": 0.4, "max_tokens": 4096},
        )

        resolved = resolve_fields(response.content, schema, defaults)
        if not resolved.complete:
            logger.warning(
                "Stage %d (%s) fell back to defaults: %s",
                self.stage, prompt_id, ", ".join(resolved.warnings()),
            )
        return resolved
