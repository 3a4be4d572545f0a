from __future__ import annotations

import abc


class Provider(abc.ABC):
    """
    Base class for model capability providers.
    Every concrete provider declares the backend family it talks to ('openai_compatible', 'http', ...).
    """

    @property
    @abc.abstractmethod
    def provider_family(self) -> str:
        """The backend family this provider belongs to."""
        pass
