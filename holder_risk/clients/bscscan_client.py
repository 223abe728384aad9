"""
BscScan API client for token transfers and contract probing
"""

import asyncio
from typing import Any, Dict, List, Optional

import aiohttp

from holder_risk.core.config import ClientConfig
from holder_risk.core.exceptions import LookupFailure
from holder_risk.core.logger import get_logger

logger = get_logger(__name__)


NO_TRANSACTIONS_MESSAGE = "No transactions found"


class BscScanClient:
    """Chain data source backed by the BscScan account and proxy modules"""

    def __init__(
        self,
        api_key: Optional[str],
        base_url: str = "https://api.bscscan.com/api",
        timeout_s: float = 30.0
    ):
        self.api_key = api_key
        self.base_url = base_url
        self.timeout = aiohttp.ClientTimeout(total=timeout_s)
        self.session: Optional[aiohttp.ClientSession] = None

    @classmethod
    def from_config(cls, config: ClientConfig) -> "BscScanClient":
        return cls(
            api_key=config.bscscan_api_key,
            base_url=config.bscscan_base_url,
            timeout_s=config.request_timeout_s,
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    async def _get_session(self) -> aiohttp.ClientSession:
        if self.session is None or self.session.closed:
            self.session = aiohttp.ClientSession(
                headers={"Accept": "application/json"},
                timeout=self.timeout,
            )
        return self.session

    async def _get(self, params: Dict[str, Any]) -> Dict[str, Any]:
        if not self.is_configured:
            raise LookupFailure("BscScan API key not configured", source="bscscan")

        session = await self._get_session()
        query = {k: str(v) for k, v in params.items()}
        query["apikey"] = self.api_key
        try:
            async with session.get(self.base_url, params=query) as response:
                if response.status != 200:
                    raise LookupFailure(
                        f"BscScan returned HTTP {response.status}", source="bscscan"
                    )
                return await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise LookupFailure(f"BscScan request failed: {e}", source="bscscan") from e

    async def get_transactions(self, address: str, limit: int = 1000) -> List[Dict[str, Any]]:
        """
        Latest BEP-20 transfers touching an address, newest first

        Raises:
            LookupFailure: On HTTP or API errors
        """
        data = await self._get({
            "module": "account",
            "action": "tokentx",
            "address": address,
            "page": 1,
            "offset": limit,
            "startblock": 0,
            "endblock": 999999999,
            "sort": "desc",
        })

        if data.get("status") == "1":
            rows = data.get("result") or []
            logger.debug("bscscan_transactions_fetched", address=address, count=len(rows))
            return rows

        message = data.get("message") or ""
        if message.startswith(NO_TRANSACTIONS_MESSAGE):
            return []

        raise LookupFailure(
            f"BscScan tokentx error: {message} {data.get('result')}", source="bscscan"
        )

    async def is_contract(self, address: str) -> bool:
        """
        True when the address has deployed code

        Raises:
            LookupFailure: On HTTP or API errors
        """
        data = await self._get({
            "module": "proxy",
            "action": "eth_getCode",
            "address": address,
            "tag": "latest",
        })

        if "error" in data:
            raise LookupFailure(f"BscScan eth_getCode error: {data['error']}", source="bscscan")

        code = data.get("result")
        if not isinstance(code, str) or not code.startswith("0x"):
            raise LookupFailure(f"BscScan eth_getCode returned {code!r}", source="bscscan")

        return code not in ("0x", "0x0")

    async def close(self):
        """Close the HTTP session"""
        if self.session:
            await self.session.close()
            self.session = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
