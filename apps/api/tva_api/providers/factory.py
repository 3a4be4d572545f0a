from __future__ import annotations

from tva_api.providers.embeddings import EmbeddingProvider
from tva_api.providers.embeddings_http import HttpEmbeddingProvider
from tva_api.providers.store import ViolationStoreProvider
from tva_api.providers.store_postgres import PostgresViolationStore
from tva_api.providers.vlm import VLMProvider
from tva_api.providers.vlm_openai import OpenAIVLMProvider


def get_vlm_provider() -> VLMProvider:
    """
    Returns the configured VLMProvider.
    """
    return OpenAIVLMProvider()


def get_embedding_provider() -> EmbeddingProvider:
    """
    Returns the configured EmbeddingProvider.
    """
    return HttpEmbeddingProvider()


def get_violation_store() -> ViolationStoreProvider:
    """
    Returns the configured ViolationStoreProvider.
    """
    return PostgresViolationStore()
