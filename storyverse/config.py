"""
Configuration management for storyverse.

Handles API key storage and retrieval with an interactive login flow, and
the pipeline settings (model, excerpt limits, hook pack size) read from
the same config file with environment overrides.
"""

import json
import os
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Optional

DEFAULT_MODEL = "claude-sonnet-4-20250514"


@dataclass
class PipelineSettings:
    """Tunable pipeline parameters."""
    model: str = DEFAULT_MODEL
    # Character limit of the source excerpt sent with stages 1-3
    excerpt_chars: int = 15000
    # Smaller limit for stage 4, whose instruction carries more context
    plan_excerpt_chars: int = 12000
    # Overrides the planner's hook pack size when set
    hook_pack_count: Optional[int] = None
    # Transport attempts inside the generation client
    max_retries: int = 3

    def to_dict(self) -> dict:
        return asdict(self)


def get_config_dir() -> Path:
    """Get the configuration directory, creating it if needed."""
    config_home = os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config")
    config_dir = Path(config_home) / "storyverse"
    config_dir.mkdir(parents=True, exist_ok=True)
    return config_dir


def get_config_path() -> Path:
    """Get the path to the config file."""
    return get_config_dir() / "config.json"


def load_config() -> dict:
    """Load configuration from disk."""
    config_path = get_config_path()
    if config_path.exists():
        try:
            with open(config_path) as f:
                return json.load(f)
        except (json.JSONDecodeError, IOError):
            return {}
    return {}


def save_config(config: dict) -> None:
    """Save configuration to disk."""
    config_path = get_config_path()
    with open(config_path, "w") as f:
        json.dump(config, f, indent=2)
    # Owner read/write only: the file holds the API key
    os.chmod(config_path, 0o600)


def load_settings(config: Optional[dict] = None) -> PipelineSettings:
    """
    Build pipeline settings.

    Priority:
    1. STORYVERSE_MODEL / STORYVERSE_HOOK_PACK environment variables
    2. "pipeline" section of the config file
    3. Defaults
    """
    if config is None:
        config = load_config()
    section = config.get("pipeline", {})
    known = {f.name for f in fields(PipelineSettings)}
    settings = PipelineSettings(**{k: v for k, v in section.items() if k in known})

    env_model = os.environ.get("STORYVERSE_MODEL")
    if env_model:
        settings.model = env_model

    env_hook = os.environ.get("STORYVERSE_HOOK_PACK")
    if env_hook:
        try:
            settings.hook_pack_count = int(env_hook)
        except ValueError:
            raise ValueError(f"STORYVERSE_HOOK_PACK must be an integer, got {env_hook!r}") from None

    if settings.hook_pack_count is not None and settings.hook_pack_count < 0:
        raise ValueError("hook_pack_count cannot be negative")
    if not isinstance(settings.max_retries, int) or settings.max_retries < 1:
        raise ValueError(f"max_retries must be an integer of at least 1, got {settings.max_retries!r}")
    return settings


# =============================================================================
# API key
# =============================================================================

API_KEY_FIELD = "anthropic_api_key"
API_KEY_PREFIX = "sk-ant-"


def get_api_key() -> Optional[str]:
    """ANTHROPIC_API_KEY from the environment, else the stored key."""
    return os.environ.get("ANTHROPIC_API_KEY") or load_config().get(API_KEY_FIELD)


def set_api_key(api_key: str) -> None:
    """Store the API key in config."""
    config = load_config()
    config[API_KEY_FIELD] = api_key
    save_config(config)


def clear_api_key() -> None:
    """Remove the stored API key."""
    config = load_config()
    config.pop(API_KEY_FIELD, None)
    save_config(config)


def mask_key(api_key: str) -> str:
    """Show only the ends of a key."""
    if len(api_key) <= 12:
        return "*" * len(api_key)
    return f"{api_key[:8]}...{api_key[-4:]}"


def validate_api_key(api_key: str, model: str = DEFAULT_MODEL) -> tuple[bool, str]:
    """
    Check a key with a one-token request.

    Returns:
        (is_valid, message)
    """
    import anthropic

    client = anthropic.Anthropic(api_key=api_key)
    try:
        client.messages.create(
            model=model,
            max_tokens=1,
            messages=[{"role": "user", "content": "ping"}]
        )
    except anthropic.AuthenticationError:
        return False, "The key was rejected"
    except anthropic.RateLimitError:
        # Rate limiting still proves the key authenticates
        return True, "Key accepted (currently rate limited)"
    except anthropic.APIError as e:
        return False, f"Could not validate the key: {e}"
    return True, "Key accepted"


def _ask(question: str, default: bool = False) -> bool:
    hint = "[Y/n]" if default else "[y/N]"
    try:
        answer = input(f"  {question} {hint} ").strip().lower()
    except (KeyboardInterrupt, EOFError):
        print()
        return False
    if not answer:
        return default
    return answer in ("y", "yes")


def interactive_login() -> bool:
    """
    Prompt for an API key, validate it and store it.

    Returns:
        True if a usable key is configured afterwards
    """
    existing = get_api_key()
    if existing:
        print(f"  An API key is already configured ({mask_key(existing)}).")
        if not _ask("Replace it?"):
            return True

    print("  storyverse calls the Anthropic API for stages 1-5 of every job.")
    print("  Create a key at https://console.anthropic.com/settings/keys")
    try:
        api_key = input("  API key: ").strip()
    except (KeyboardInterrupt, EOFError):
        print("\n  Login cancelled.")
        return False

    if not api_key:
        print("  No key entered.")
        return False
    if not api_key.startswith(API_KEY_PREFIX) and not _ask(
        f"Key does not start with '{API_KEY_PREFIX}'. Use it anyway?"
    ):
        return False

    is_valid, message = validate_api_key(api_key)
    print(f"  {message}")
    if not is_valid:
        return False

    set_api_key(api_key)
    print(f"  Saved to {get_config_path()}")
    return True


def check_auth_or_prompt() -> Optional[str]:
    """
    Return the configured API key, offering an interactive login if missing.

    Returns:
        API key, or None if the user declined or login failed
    """
    api_key = get_api_key()
    if api_key:
        return api_key

    print("  No Anthropic API key is configured.")
    if _ask("Log in now?", default=True) and interactive_login():
        return get_api_key()
    return None
