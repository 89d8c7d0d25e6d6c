"""Configuration: frozen provider configs with layered defaults and env fallback.

Each vendor has its own config dataclass, discriminated by ``provider``.
``validate_config`` returns a fully populated copy: shared defaults first,
then vendor defaults, then presence checks for vendor-required fields.

Example:
    config = validate_config({"provider": "openai", "model": "gpt-4o"})
    # api_key is resolved from OPENAI_API_KEY when not passed
"""

from __future__ import annotations

from collections.abc import Mapping
import dataclasses
from dataclasses import dataclass
import os
from typing import Any, Literal, TypeVar, Union

import dotenv

from modelgate.errors import ConfigurationError

_DOTENV_LOADED = False

ProviderName = Literal["openai", "azure", "anthropic", "google"]
ExecutionMode = Literal["live", "mock"]

SUPPORTED_PROVIDERS: tuple[str, ...] = ("openai", "azure", "anthropic", "google")

#: Shared defaults layered under every config before vendor checks run.
CONFIG_DEFAULTS: dict[str, Any] = {
    "temperature": 0.7,
    "max_tokens": 1000,
    "stream": False,
}

DEFAULT_MODELS: dict[str, str] = {
    "openai": "gpt-4",
    "azure": "gpt-4",
    "anthropic": "claude-3-opus-20240229",
    "google": "gemini-pro",
    "openai_embedding": "text-embedding-3-small",
    "azure_embedding": "text-embedding-ada-002",
    "google_embedding": "text-embedding-004",
}

DEFAULT_API_VERSIONS: dict[str, str] = {
    "azure": "2023-05-15",
    "anthropic": "2023-06-01",
}

DEFAULT_GOOGLE_LOCATION = "us-central1"

TEMPERATURE_RANGE = (0.0, 1.0)
MAX_TOKENS_RANGE = (1, 100_000)

# Vendor-specific environment variable names.
API_KEY_ENV_VARS: dict[str, str] = {
    "openai": "OPENAI_API_KEY",
    "azure": "AZURE_OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "google": "GOOGLE_API_KEY",
}
AZURE_ENDPOINT_ENV_VAR = "AZURE_OPENAI_ENDPOINT"
AZURE_API_VERSION_ENV_VAR = "AZURE_OPENAI_API_VERSION"
OPENAI_ORG_ENV_VAR = "OPENAI_ORG_ID"


@dataclass(frozen=True)
class GoogleServiceAccount:
    """Service-account credentials, an alternative to a Google API key."""

    client_email: str | None = None
    private_key: str | None = None
    project_id: str | None = None

    def is_complete(self) -> bool:
        return all(
            _is_non_empty(v) for v in (self.client_email, self.private_key, self.project_id)
        )

    def __repr__(self) -> str:
        return (
            f"GoogleServiceAccount(client_email={self.client_email!r}, "
            f"private_key={'[REDACTED]' if self.private_key else None}, "
            f"project_id={self.project_id!r})"
        )


@dataclass(frozen=True)
class _BaseConfig:
    """Fields shared by every vendor config.

    ``temperature``, ``max_tokens`` and ``stream`` are ``None`` until
    ``validate_config`` fills them from ``CONFIG_DEFAULTS``.
    """

    api_key: str | None = None
    model: str | None = None
    embedding_model: str | None = None
    temperature: float | None = None
    max_tokens: int | None = None
    stream: bool | None = None
    base_url: str | None = None
    #: ``"mock"`` returns deterministic values without calling the vendor.
    execution_mode: ExecutionMode = "live"
    #: Scale returned embedding vectors to unit length.
    normalize_embeddings: bool = False

    def __repr__(self) -> str:
        shown = []
        for f in dataclasses.fields(self):
            value = getattr(self, f.name)
            if f.name == "api_key" and value:
                shown.append("api_key='[REDACTED]'")
            else:
                shown.append(f"{f.name}={value!r}")
        return f"{type(self).__name__}({', '.join(shown)})"


@dataclass(frozen=True, repr=False)
class OpenAIConfig(_BaseConfig):
    provider: Literal["openai"] = "openai"
    organization: str | None = None


@dataclass(frozen=True, repr=False)
class AzureOpenAIConfig(_BaseConfig):
    provider: Literal["azure"] = "azure"
    endpoint: str | None = None
    deployment_name: str | None = None
    api_version: str | None = None


@dataclass(frozen=True, repr=False)
class AnthropicConfig(_BaseConfig):
    provider: Literal["anthropic"] = "anthropic"
    api_version: str | None = None


@dataclass(frozen=True, repr=False)
class GoogleConfig(_BaseConfig):
    provider: Literal["google"] = "google"
    service_account: GoogleServiceAccount | None = None
    #: Vertex AI location, used with service-account credentials.
    location: str | None = None


ProviderConfig = Union[OpenAIConfig, AzureOpenAIConfig, AnthropicConfig, GoogleConfig]

CONFIG_TYPES: dict[str, type[_BaseConfig]] = {
    "openai": OpenAIConfig,
    "azure": AzureOpenAIConfig,
    "anthropic": AnthropicConfig,
    "google": GoogleConfig,
}

_C = TypeVar("_C", bound=_BaseConfig)


def apply_defaults(base: Mapping[str, Any], overrides: Mapping[str, Any] | None) -> dict[str, Any]:
    """Return ``base`` layered with ``overrides``.

    Precedence: a key in ``overrides`` wins over ``base`` unless its value is
    ``None``, which means "not set" and keeps the base value. Keys only present
    in ``overrides`` are added. Neither input is modified.
    """
    merged = dict(base)
    if not overrides:
        return merged
    for key, value in overrides.items():
        if value is not None:
            merged[key] = value
    return merged


def get_env_var(name: str) -> str | None:
    """Return a non-empty environment variable value, else None."""
    value = os.environ.get(name)
    return value if _is_non_empty(value) else None


def _load_dotenv_once() -> None:
    """Load a ``.env`` file from the working directory tree, once per process."""
    global _DOTENV_LOADED
    if _DOTENV_LOADED:
        return
    dotenv.load_dotenv(dotenv.find_dotenv(usecwd=True))
    _DOTENV_LOADED = True


def validate_config(config: ProviderConfig | Mapping[str, Any] | None) -> ProviderConfig:
    """Validate and normalize a provider configuration.

    Args:
        config: A vendor config dataclass or a mapping with a ``provider`` key.

    Returns:
        A new, fully populated config of the matching vendor type.

    Raises:
        ConfigurationError: If the config is absent, the provider is unknown,
            a value is out of range, or a vendor-required field is missing
            after checking both the config and the vendor's env var.
    """
    if config is None:
        raise ConfigurationError("Configuration is required")

    # Env fallbacks below may come from a .env file.
    _load_dotenv_once()

    if isinstance(config, Mapping):
        config = _config_from_mapping(config)
    elif not isinstance(config, _BaseConfig):
        raise ConfigurationError(
            f"Unsupported configuration type: {type(config).__name__}",
            hint="Pass a provider config dataclass or a mapping with a 'provider' key.",
        )

    provider = getattr(config, "provider", None)
    if not _is_non_empty(provider):
        raise ConfigurationError("Provider identifier is required")
    if provider not in CONFIG_TYPES or not isinstance(config, CONFIG_TYPES[provider]):
        raise ConfigurationError(
            f"Unsupported provider: {provider!r}",
            hint=f"Supported providers: {', '.join(SUPPORTED_PROVIDERS)}",
        )

    shared = apply_defaults(
        CONFIG_DEFAULTS,
        {
            "temperature": config.temperature,
            "max_tokens": config.max_tokens,
            "stream": config.stream,
        },
    )
    config = dataclasses.replace(config, **shared)
    _check_ranges(config)

    if config.execution_mode not in ("live", "mock"):
        raise ConfigurationError(
            f"Unsupported execution_mode: {config.execution_mode!r}",
            hint="Use execution_mode='live' or execution_mode='mock'.",
        )

    validator = _VALIDATORS[provider]
    return validator(config)


def _config_from_mapping(data: Mapping[str, Any]) -> ProviderConfig:
    provider = data.get("provider")
    if not _is_non_empty(provider):
        raise ConfigurationError("Provider identifier is required")
    config_cls = CONFIG_TYPES.get(provider)
    if config_cls is None:
        raise ConfigurationError(
            f"Unsupported provider: {provider!r}",
            hint=f"Supported providers: {', '.join(SUPPORTED_PROVIDERS)}",
        )

    known = {f.name for f in dataclasses.fields(config_cls)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ConfigurationError(
            f"Unknown {provider} configuration field(s): {', '.join(unknown)}",
            hint=f"Valid fields: {', '.join(sorted(known))}",
        )

    values = dict(data)
    account = values.get("service_account")
    if isinstance(account, Mapping):
        try:
            values["service_account"] = GoogleServiceAccount(**account)
        except TypeError as e:
            raise ConfigurationError(
                "Google service account must include client_email, private_key, and project_id",
                hint="Pass client_email, private_key and project_id.",
            ) from e
    return config_cls(**values)  # type: ignore[return-value]


def _check_ranges(config: _BaseConfig) -> None:
    temperature = config.temperature
    low, high = TEMPERATURE_RANGE
    if (
        isinstance(temperature, bool)
        or not isinstance(temperature, (int, float))
        or not low <= temperature <= high
    ):
        raise ConfigurationError(
            "Temperature must be between 0 and 1",
            hint=f"Got temperature={temperature!r}.",
        )

    max_tokens = config.max_tokens
    low_tokens, high_tokens = MAX_TOKENS_RANGE
    if (
        isinstance(max_tokens, bool)
        or not isinstance(max_tokens, int)
        or not low_tokens <= max_tokens <= high_tokens
    ):
        raise ConfigurationError(
            "Max tokens must be between 1 and 100000",
            hint=f"Got max_tokens={max_tokens!r}.",
        )


def _resolve_api_key(config: _C, provider: str, label: str) -> _C:
    if _is_non_empty(config.api_key):
        return config
    env_var = API_KEY_ENV_VARS[provider]
    api_key = get_env_var(env_var)
    if api_key is None:
        raise ConfigurationError(
            f"{label} API key is required",
            hint=f"Set {env_var} environment variable or pass api_key=...",
        )
    return dataclasses.replace(config, api_key=api_key)


def _fill(config: _C, **defaults: Any) -> _C:
    """Fill empty fields on ``config`` from ``defaults``."""
    missing = {
        name: value
        for name, value in defaults.items()
        if not _is_non_empty(getattr(config, name)) and value is not None
    }
    return dataclasses.replace(config, **missing) if missing else config


def validate_openai_config(config: OpenAIConfig) -> OpenAIConfig:
    config = _resolve_api_key(config, "openai", "OpenAI")
    return _fill(
        config,
        model=DEFAULT_MODELS["openai"],
        embedding_model=DEFAULT_MODELS["openai_embedding"],
        organization=get_env_var(OPENAI_ORG_ENV_VAR),
    )


def validate_azure_config(config: AzureOpenAIConfig) -> AzureOpenAIConfig:
    config = _fill(config, endpoint=get_env_var(AZURE_ENDPOINT_ENV_VAR))
    if not _is_non_empty(config.endpoint) or not _is_non_empty(config.deployment_name):
        raise ConfigurationError(
            "Azure OpenAI endpoint and deployment_name are required",
            hint=f"Pass endpoint= (or set {AZURE_ENDPOINT_ENV_VAR}) and deployment_name=.",
        )
    config = _resolve_api_key(config, "azure", "Azure OpenAI")
    return _fill(
        config,
        model=DEFAULT_MODELS["azure"],
        embedding_model=DEFAULT_MODELS["azure_embedding"],
        api_version=get_env_var(AZURE_API_VERSION_ENV_VAR)
        or DEFAULT_API_VERSIONS["azure"],
    )


def validate_anthropic_config(config: AnthropicConfig) -> AnthropicConfig:
    config = _resolve_api_key(config, "anthropic", "Anthropic")
    return _fill(
        config,
        model=DEFAULT_MODELS["anthropic"],
        api_version=DEFAULT_API_VERSIONS["anthropic"],
    )


def validate_google_config(config: GoogleConfig) -> GoogleConfig:
    account = config.service_account
    if account is not None and not account.is_complete():
        raise ConfigurationError(
            "Google service account must include client_email, private_key, and project_id",
            hint="Pass all of client_email, private_key and project_id.",
        )
    if account is None:
        env_var = API_KEY_ENV_VARS["google"]
        if not _is_non_empty(config.api_key):
            api_key = get_env_var(env_var)
            if api_key is None:
                raise ConfigurationError(
                    "Google API key or service account is required",
                    hint=f"Set {env_var}, pass api_key=..., or pass service_account=...",
                )
            config = dataclasses.replace(config, api_key=api_key)
    return _fill(
        config,
        model=DEFAULT_MODELS["google"],
        embedding_model=DEFAULT_MODELS["google_embedding"],
        location=DEFAULT_GOOGLE_LOCATION if account is not None else None,
    )


_VALIDATORS: dict[str, Any] = {
    "openai": validate_openai_config,
    "azure": validate_azure_config,
    "anthropic": validate_anthropic_config,
    "google": validate_google_config,
}


def _is_non_empty(value: Any) -> bool:
    return isinstance(value, str) and bool(value.strip())
