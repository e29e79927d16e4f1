"""
Environment helper utilities for foldwise.

Responsible for:
- Loading environment variables from a .env file.
- Providing helpers to access each provider's API key in a safe, centralized way.
"""

from __future__ import annotations

import os

from dotenv import load_dotenv

from ..core.errors import MissingApiKeyError

# Env var holding the credential for each provider. Ollama needs no key,
# only a reachable server.
API_KEY_ENV_VARS = {
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
}

OLLAMA_BASE_URL_ENV_VAR = "OLLAMA_API_BASE_URL"
DEFAULT_OLLAMA_BASE_URL = "http://localhost:11434"

# ---------------------------------------------------------------------------
# .env loading
# ---------------------------------------------------------------------------

# Load from a .env in the current working directory or its parents.
# This is called once at import time.
load_dotenv()

# ---------------------------------------------------------------------------
# Public helpers
# ---------------------------------------------------------------------------

def get_api_key(provider: str) -> str:
    """
    Return the API key for `provider` from the environment.

    Raises MissingApiKeyError if the key is not set. This should be the
    *only* place in the codebase that knows the actual env var names.
    """
    env_var = API_KEY_ENV_VARS.get(provider)
    if env_var is None:
        return ""

    key = os.getenv(env_var)
    if not key:
        raise MissingApiKeyError(
            f"{env_var} not set. "
            "Please set it in your environment or in a .env file."
        )

    return key


def is_key_present(provider: str) -> bool:
    """
    Return True if the provider's credential appears to be set.

    Used by `foldwise version` to show a quick status without raising.
    """
    env_var = API_KEY_ENV_VARS.get(provider)
    if env_var is None:
        return True
    return bool(os.getenv(env_var))


def key_env_var(provider: str) -> str | None:
    return API_KEY_ENV_VARS.get(provider)


def get_ollama_base_url() -> str:
    return os.getenv(OLLAMA_BASE_URL_ENV_VAR, DEFAULT_OLLAMA_BASE_URL).rstrip("/")
