"""
Prompt Registry - Version-controlled instruction template management.

Handles loading and version selection of stage instruction templates.
"""

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Optional


@dataclass
class PromptTemplate:
    """A versioned prompt template."""
    id: str
    version: str
    template: str
    schema_name: str
    metadata: dict


@dataclass
class PromptVersion:
    """Version metadata for a prompt."""
    version: str
    path: str


class PromptRegistry:
    """
    Registry for prompt templates with version control.

    Prompts are stored as files: {prompt_id}_v{version}.txt
    Example: read_structure_v0.txt, guardrails_v1.txt

    Leading ``# key: value`` lines are metadata; ``# schema:`` names the
    JSON schema the output is resolved against. They are not sent to the
    model.
    """

    def __init__(self, prompts_dir: Optional[Path] = None, versions: Optional[dict] = None):
        self.prompts_dir = Path(prompts_dir) if prompts_dir else Path(__file__).parent.parent / "prompts"
        self.versions = dict(versions or {})  # prompt_id -> pinned version
        self._cache: dict[str, PromptTemplate] = {}

    def get_prompt(self, prompt_id: str, version: Optional[str] = None) -> PromptTemplate:
        """
        Get a prompt template by ID and version.

        Args:
            prompt_id: The prompt identifier (e.g., 'identify_story')
            version: Specific version (e.g., 'v0'). If None, uses the
                pinned version or the latest on disk.
        """
        if version is None:
            version = self.versions.get(prompt_id)

        if version is None:
            versions = self.list_prompt_versions(prompt_id)
            if not versions:
                raise FileNotFoundError(f"No versions found for prompt: {prompt_id}")
            version = versions[-1].version

        cache_key = f"{prompt_id}_{version}"
        if cache_key in self._cache:
            return self._cache[cache_key]

        file_path = self.prompts_dir / f"{prompt_id}_{version}.txt"
        if not file_path.exists():
            raise FileNotFoundError(f"Prompt not found: {file_path}")

        raw = file_path.read_text(encoding="utf-8")
        metadata, body = self._split_metadata(raw)

        prompt = PromptTemplate(
            id=prompt_id,
            version=version,
            template=body,
            schema_name=metadata.get("schema", f"{prompt_id}_output"),
            metadata=metadata
        )

        self._cache[cache_key] = prompt
        return prompt

    def list_prompt_versions(self, prompt_id: str) -> list[PromptVersion]:
        """List all available versions of a prompt."""
        versions = []
        pattern = re.compile(rf"^{re.escape(prompt_id)}_v(\d+)\.txt$")

        for path in self.prompts_dir.glob(f"{prompt_id}_v*.txt"):
            match = pattern.match(path.name)
            if match:
                versions.append(PromptVersion(
                    version=f"v{match.group(1)}",
                    path=str(path)
                ))

        versions.sort(key=lambda v: int(v.version[1:]))
        return versions

    def pin_prompt_version(self, prompt_id: str, version: str) -> None:
        """Pin a specific prompt version for every later lookup."""
        self.versions[prompt_id] = version

    def _split_metadata(self, raw: str) -> tuple[dict, str]:
        """Split leading ``# key: value`` header lines from the body."""
        metadata = {}
        lines = raw.split('\n')

        body_start = 0
        for i, line in enumerate(lines):
            if not line.startswith('#'):
                body_start = i
                break
            match = re.match(r'^#\s*(\w+):\s*(.+)$', line)
            if match:
                metadata[match.group(1).lower()] = match.group(2).strip()
        else:
            body_start = len(lines)

        return metadata, '\n'.join(lines[body_start:]).strip() + '\n'

    def clear_cache(self) -> None:
        """Clear the prompt cache."""
        self._cache.clear()
