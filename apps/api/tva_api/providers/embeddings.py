from __future__ import annotations

import abc

from tva_api.providers.base import Provider


class EmbeddingProvider(Provider):
    """
    Interface for turning text into fixed-length vectors comparable with the rule corpus.
    """

    @abc.abstractmethod
    def embed_texts(self, texts: list[str], options: dict | None = None) -> list[list[float]]:
        """
        Embeds each text, preserving order.

        Raises:
            RuntimeError: the endpoint is unconfigured, unreachable, or returned an unusable shape.
        """
        pass

    def embed_text(self, text: str) -> list[float]:
        return self.embed_texts([text])[0]
