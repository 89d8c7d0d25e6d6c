"""modelgate: one async interface over hosted LLM vendors.

Public API:
    - create_provider(): Build the adapter for an OpenAI, Azure OpenAI,
      Anthropic or Google config
    - generate_text / stream_text / generate_structured / generate_embeddings
      on providers
    - ToolRegistry: Register and execute tools the model may call
    - Embedding math: cosine_similarity, find_similar_embeddings, ...
    - Prompt templates: create_template, compile_template, PromptPatterns
"""

from __future__ import annotations

import logging

from modelgate.config import (
    AnthropicConfig,
    AzureOpenAIConfig,
    GoogleConfig,
    GoogleServiceAccount,
    OpenAIConfig,
    ProviderConfig,
    apply_defaults,
    validate_config,
)
from modelgate.embeddings import (
    EmbeddingCandidate,
    SimilarityMatch,
    cosine_similarity,
    euclidean_distance,
    find_similar_embeddings,
    magnitude,
    normalize,
)
from modelgate.errors import (
    APIError,
    AuthenticationError,
    ConfigurationError,
    EmbeddingsError,
    ModelGateError,
    RateLimitError,
    RequestTimeoutError,
    StructuredDataError,
    TemplateValidationError,
    ToolExecutionError,
    ToolTimeoutError,
    ToolValidationError,
    UnsupportedFeatureError,
)
from modelgate.options import (
    EmbeddingOptions,
    StructuredDataOptions,
    TextGenerationOptions,
)
from modelgate.prompts import (
    PromptPatterns,
    PromptTemplate,
    TemplateVariable,
    compile_template,
    create_template,
)
from modelgate.providers import (
    PROVIDERS,
    AnthropicProvider,
    AzureOpenAIProvider,
    BaseProvider,
    GeminiProvider,
    Message,
    OpenAIProvider,
    ProviderCapabilities,
    ToolCall,
    create_provider,
)
from modelgate.result import (
    EmbeddingResponse,
    StructuredDataResponse,
    TextChunk,
    TextGenerationResponse,
    TokenUsage,
)
from modelgate.tools import (
    CancellationToken,
    Tool,
    ToolCallState,
    ToolInvocation,
    ToolRegistry,
    ToolRegistryConfig,
    ToolResult,
)

try:
    from importlib.metadata import PackageNotFoundError, version

    __version__ = version("modelgate")
except PackageNotFoundError:
    __version__ = "0.0.0+unknown"

# Library-level NullHandler: stay silent unless the consumer configures logging.
logging.getLogger("modelgate").addHandler(logging.NullHandler())

__all__ = [
    "PROVIDERS",
    "APIError",
    "AnthropicConfig",
    "AnthropicProvider",
    "AuthenticationError",
    "AzureOpenAIConfig",
    "AzureOpenAIProvider",
    "BaseProvider",
    "CancellationToken",
    "ConfigurationError",
    "EmbeddingCandidate",
    "EmbeddingOptions",
    "EmbeddingResponse",
    "EmbeddingsError",
    "GeminiProvider",
    "GoogleConfig",
    "GoogleServiceAccount",
    "Message",
    "ModelGateError",
    "OpenAIConfig",
    "OpenAIProvider",
    "PromptPatterns",
    "PromptTemplate",
    "ProviderCapabilities",
    "ProviderConfig",
    "RateLimitError",
    "RequestTimeoutError",
    "SimilarityMatch",
    "StructuredDataError",
    "StructuredDataOptions",
    "StructuredDataResponse",
    "TemplateValidationError",
    "TemplateVariable",
    "TextChunk",
    "TextGenerationOptions",
    "TextGenerationResponse",
    "TokenUsage",
    "Tool",
    "ToolCall",
    "ToolCallState",
    "ToolExecutionError",
    "ToolInvocation",
    "ToolRegistry",
    "ToolRegistryConfig",
    "ToolResult",
    "ToolTimeoutError",
    "ToolValidationError",
    "UnsupportedFeatureError",
    "apply_defaults",
    "compile_template",
    "cosine_similarity",
    "create_provider",
    "create_template",
    "euclidean_distance",
    "find_similar_embeddings",
    "magnitude",
    "normalize",
    "validate_config",
]
