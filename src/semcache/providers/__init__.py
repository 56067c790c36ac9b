"""
Providers Module

Clients for remote embedding APIs.

Public API:
    - EmbeddingProviderConfig: Provider configuration
    - BaseEmbeddingClient: Abstract client interface
    - ProviderResult / ProviderFailure: Typed call results
    - OpenAICompatibleEmbeddingClient: OpenAI-style /embeddings endpoints
    - create_embedding_client(): Build the client for a configuration

Usage:
    >>> from semcache.providers import EmbeddingProviderConfig, create_embedding_client
    >>>
    >>> client = create_embedding_client(EmbeddingProviderConfig(api_key="sk-..."))
    >>> result = await client.create_embeddings(["show revenue"])
    >>> if result.ok:
    ...     print(len(result.vectors[0]))
"""

import httpx

from .base import BaseEmbeddingClient, EmbeddingProviderConfig, ProviderFailure, ProviderResult
from .openai_compatible import OpenAICompatibleEmbeddingClient


def create_embedding_client(
    config: EmbeddingProviderConfig,
    transport: httpx.AsyncBaseTransport | None = None,
) -> BaseEmbeddingClient:
    """
    Create the embedding client for a configuration.

    Args:
        config: Provider configuration
        transport: Optional httpx transport override

    Returns:
        Embedding client instance
    """
    return OpenAICompatibleEmbeddingClient(config, transport=transport)


__all__ = [
    "BaseEmbeddingClient",
    "EmbeddingProviderConfig",
    "OpenAICompatibleEmbeddingClient",
    "ProviderFailure",
    "ProviderResult",
    "create_embedding_client",
]
