"""
Dune API client for the address label query
"""

import asyncio
from typing import Any, Awaitable, Callable, Dict, List, Optional

import aiohttp

from holder_risk.core.config import ClientConfig, LabelConfig
from holder_risk.core.exceptions import LookupFailure
from holder_risk.core.logger import get_logger

logger = get_logger(__name__)


STATE_COMPLETED = "QUERY_STATE_COMPLETED"
TERMINAL_FAILURE_STATES = {
    "QUERY_STATE_FAILED",
    "QUERY_STATE_CANCELLED",
    "QUERY_STATE_EXPIRED",
}


class DuneLabelClient:
    """
    Runs the saved label query for one address and returns its rows

    Each lookup executes the query with query_address bound, polls the
    execution until it completes and reads the result rows.
    """

    def __init__(
        self,
        api_key: Optional[str],
        query_id: int = 5177452,
        base_url: str = "https://api.dune.com/api/v1",
        timeout_s: float = 30.0,
        poll_interval_s: float = 1.0,
        max_polls: int = 60,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep
    ):
        self.api_key = api_key
        self.query_id = query_id
        self.base_url = base_url.rstrip("/")
        self.timeout = aiohttp.ClientTimeout(total=timeout_s)
        self.poll_interval_s = poll_interval_s
        self.max_polls = max_polls
        self._sleep = sleep
        self.session: Optional[aiohttp.ClientSession] = None

    @classmethod
    def from_config(cls, client_config: ClientConfig, label_config: LabelConfig) -> "DuneLabelClient":
        return cls(
            api_key=client_config.dune_api_key,
            query_id=label_config.query_id,
            base_url=client_config.dune_base_url,
            timeout_s=client_config.request_timeout_s,
            poll_interval_s=client_config.dune_poll_interval_s,
            max_polls=client_config.dune_max_polls,
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    async def _get_session(self) -> aiohttp.ClientSession:
        if self.session is None or self.session.closed:
            self.session = aiohttp.ClientSession(
                headers={
                    "Accept": "application/json",
                    "X-Dune-API-Key": self.api_key or "",
                },
                timeout=self.timeout,
            )
        return self.session

    async def _request(self, method: str, path: str, json_body: Optional[Dict] = None) -> Dict:
        session = await self._get_session()
        url = f"{self.base_url}{path}"
        try:
            async with session.request(method, url, json=json_body) as response:
                if response.status == 429:
                    raise LookupFailure("Dune API rate limit exceeded", source="dune")
                if response.status != 200:
                    text = await response.text()
                    raise LookupFailure(
                        f"Dune API {method} {path} returned {response.status}: {text[:200]}",
                        source="dune"
                    )
                return await response.json()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise LookupFailure(f"Dune API {method} {path} failed: {e}", source="dune") from e

    async def query_address_labels(self, address: str) -> List[Dict[str, Any]]:
        """
        Label rows for an address

        Returns:
            Rows of {owner_key, custody_owner, blockchain, ...}

        Raises:
            LookupFailure: On missing credentials, HTTP errors or a failed execution
        """
        if not self.is_configured:
            raise LookupFailure("Dune API key not configured", source="dune")

        execution = await self._request(
            "POST",
            f"/query/{self.query_id}/execute",
            {"query_parameters": {"query_address": address}}
        )
        execution_id = execution.get("execution_id")
        if not execution_id:
            raise LookupFailure(f"Dune execute returned no execution_id: {execution}", source="dune")

        for _ in range(self.max_polls):
            status = await self._request("GET", f"/execution/{execution_id}/status")
            state = status.get("state")
            if state == STATE_COMPLETED:
                break
            if state in TERMINAL_FAILURE_STATES:
                raise LookupFailure(f"Dune execution {execution_id} ended in {state}", source="dune")
            await self._sleep(self.poll_interval_s)
        else:
            raise LookupFailure(
                f"Dune execution {execution_id} did not complete after {self.max_polls} polls",
                source="dune"
            )

        payload = await self._request("GET", f"/execution/{execution_id}/results")
        rows = (payload.get("result") or {}).get("rows") or []

        logger.debug("dune_labels_fetched", address=address, rows=len(rows))
        return rows

    async def close(self):
        """Close the HTTP session"""
        if self.session:
            await self.session.close()
            self.session = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
