"""Azure OpenAI provider.

Same wire format as OpenAI; requests address a deployment rather than a
model, so the configured ``deployment_name`` is sent as the model.
"""

from __future__ import annotations

from typing import Any

from modelgate.errors import APIError
from modelgate.providers.openai import OpenAIProvider


class AzureOpenAIProvider(OpenAIProvider):
    provider_name = "azure"
    # The default api_version predates stream_options, so streams report no usage.
    include_stream_usage = False

    def _create_client(self) -> Any:
        try:
            from openai import AsyncAzureOpenAI
        except ImportError as e:
            raise APIError(
                "openai package not installed",
                hint="pip install openai",
            ) from e
        config = self._config
        return AsyncAzureOpenAI(
            api_key=config.api_key,
            azure_endpoint=config.endpoint,  # type: ignore[union-attr]
            api_version=config.api_version,  # type: ignore[union-attr]
        )

    def _request_model(self, override: str | None) -> str:
        return override or self._config.deployment_name  # type: ignore[union-attr,return-value]
