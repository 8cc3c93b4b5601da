from abc import ABC, abstractmethod
from typing import Any

import httpx

from ..db_models import Account
from ..types import ProviderResponse


class ProviderInterface(ABC):
    """
    Provider-specific half of an invocation: validating a credential and
    performing the live call. Selection and bookkeeping are shared.
    """

    @abstractmethod
    async def validate_credential(
        self, credential: str, client: httpx.AsyncClient
    ) -> None:
        """
        Checks a credential against the live provider API.

        Args:
            credential: The API key or personal access token.
            client: An httpx.AsyncClient instance for making requests.

        Raises:
            httpx.HTTPStatusError: The provider answered with an error status.
        """
        pass

    @abstractmethod
    async def call(
        self, account: Account, payload: Any, client: httpx.AsyncClient
    ) -> ProviderResponse:
        """
        Performs the provider call for an already selected account.

        Returns:
            A ProviderResponse carrying the data plus usage quantity and cost.
        """
        pass
