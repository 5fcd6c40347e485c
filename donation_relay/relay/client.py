import logging
from typing import Optional, Protocol

import httpx

from donation_relay.core.errors import RelayNetworkError

logger = logging.getLogger(__name__)

FEE_LEG = "fee"
RECIPIENT_LEG = "recipient"


class RelayClient(Protocol):
    """The relay gateway: holds the relayer key, signs and submits ledger transactions."""

    async def get_balance(self) -> int:
        ...

    async def redeem(self, leg: str, item, amount: int, recipient: Optional[str]) -> str:
        ...

    async def aclose(self) -> None:
        ...


class HttpRelayClient:
    """
    Talks JSON to a relay gateway.

        GET  /balance -> {"balance": <lamports>}
        POST /redeem  -> {"signature": "<tx signature>"}

    Transport and HTTP status errors surface as ``RelayNetworkError``.
    Timeouts are left to the caller, which wraps every call.
    """

    def __init__(self, base_url: str, api_key=None, client: httpx.AsyncClient = None):
        headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
        self.http = client or httpx.AsyncClient(base_url=base_url, headers=headers, timeout=None)

    async def get_balance(self) -> int:
        data = await self._request("GET", "/balance")
        try:
            return int(data["balance"])
        except (KeyError, TypeError, ValueError) as e:
            raise RelayNetworkError(f"relay gateway returned a bad balance: {data!r}") from e

    async def redeem(self, leg: str, item, amount: int, recipient: Optional[str]) -> str:
        data = await self._request("POST", "/redeem", json={
            "leg": leg,
            "commitment": item.commitment,
            "nullifier": item.nullifier,
            "secretHash": item.secret_hash,
            "amount": amount,
            "recipient": recipient,
        })
        if not isinstance(data, dict) or not data.get("signature"):
            raise RelayNetworkError(f"relay gateway returned no signature: {data!r}")
        return data["signature"]

    async def _request(self, method: str, path: str, **kwargs):
        logger.debug("relay gateway %s %s", method, path)
        try:
            response = await self.http.request(method, path, **kwargs)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as e:
            raise RelayNetworkError(f"relay gateway answered {e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise RelayNetworkError(f"relay gateway unreachable: {e}") from e
        except ValueError as e:
            # body was not json
            raise RelayNetworkError("relay gateway returned invalid json") from e

    async def aclose(self) -> None:
        await self.http.aclose()
