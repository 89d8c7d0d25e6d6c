"""Pytest configuration and fixtures.

Provides environment isolation, logging configuration and shared provider
configs. Fake vendor clients live in tests/helpers.py.
"""

from __future__ import annotations

import logging
import os
from typing import Any

import pytest

# =============================================================================
# Environment Isolation (Autouse)
# =============================================================================

_VENDOR_ENV_PREFIXES = ("OPENAI_", "AZURE_OPENAI_", "ANTHROPIC_", "GOOGLE_")


@pytest.fixture(autouse=True)
def block_dotenv(request, monkeypatch):
    """Prevent python-dotenv from loading project .env files during tests.

    ``validate_config`` loads ``.env`` lazily, once per process; the flag is
    reset per test so each test sees its own loading decision.

    Opt-out: @pytest.mark.allow_dotenv
    """
    monkeypatch.setattr("modelgate.config._DOTENV_LOADED", False)
    if request.node.get_closest_marker("allow_dotenv"):
        return
    monkeypatch.setattr("dotenv.load_dotenv", lambda *_args, **_kwargs: False)


@pytest.fixture(autouse=True)
def isolate_provider_env(request, monkeypatch):
    """Clear vendor env vars so configs only see what a test sets.

    Opt-out: @pytest.mark.allow_env_pollution
    """
    if request.node.get_closest_marker("allow_env_pollution"):
        return
    for key in list(os.environ.keys()):
        if key.startswith(_VENDOR_ENV_PREFIXES):
            monkeypatch.delenv(key, raising=False)


# =============================================================================
# Logging
# =============================================================================


@pytest.fixture(scope="session", autouse=True)
def quiet_noisy_libraries():
    """Suppress noisy third-party loggers."""
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


# =============================================================================
# Shared configs
# =============================================================================


@pytest.fixture
def openai_config() -> dict[str, Any]:
    return {"provider": "openai", "api_key": "sk-test"}


@pytest.fixture
def azure_config() -> dict[str, Any]:
    return {
        "provider": "azure",
        "api_key": "azure-test",
        "endpoint": "https://example.openai.azure.com",
        "deployment_name": "gpt4-deploy",
    }


@pytest.fixture
def anthropic_config() -> dict[str, Any]:
    return {"provider": "anthropic", "api_key": "ant-test"}


@pytest.fixture
def google_config() -> dict[str, Any]:
    return {"provider": "google", "api_key": "goog-test"}
