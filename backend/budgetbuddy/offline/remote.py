import logging
from typing import Any

import httpx

from budgetbuddy.models.transactions import TransactionInput
from budgetbuddy.offline.errors import RemoteWriteFailure

logger = logging.getLogger(__name__)


def _error_message(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        data = None
    if isinstance(data, dict):
        detail = data.get("detail") or data.get("message")
        if isinstance(detail, str) and detail:
            return detail
        if detail:
            return str(detail)
    return f"HTTP {response.status_code}"


class RemoteTransactionService:
    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        options: dict[str, Any] = {
            "base_url": base_url,
            "headers": {"Authorization": f"Bearer {api_key}"},
        }
        if timeout is not None:
            options["timeout"] = timeout
        if transport is not None:
            options["transport"] = transport
        self._client = httpx.AsyncClient(**options)

    async def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            raise RemoteWriteFailure(str(exc) or exc.__class__.__name__) from exc

        if not response.is_success:
            raise RemoteWriteFailure(_error_message(response), response.status_code)
        try:
            data = response.json()
        except ValueError as exc:
            raise RemoteWriteFailure("Invalid JSON in response", response.status_code) from exc
        if not isinstance(data, dict):
            raise RemoteWriteFailure("Unexpected response body", response.status_code)
        return data

    async def create_transaction(self, payload: TransactionInput) -> str:
        data = await self._request("POST", "/v1/transactions", json=payload.model_dump(mode="json"))
        remote_id = data.get("id") or data.get("transaction_id")
        if not remote_id:
            raise RemoteWriteFailure("Response did not include a transaction id")
        logger.debug("Remote transaction created: %s", remote_id)
        return str(remote_id)

    async def fetch_stats(self) -> dict[str, Any]:
        return await self._request("GET", "/v1/stats")

    async def aclose(self) -> None:
        await self._client.aclose()
