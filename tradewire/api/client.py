"""
Async REST client for the venue's request/response API.

Shares the TokenProvider with the ConnectionManager: every request carries
the current bearer token, and a 401 forces the same logout path as a
rejected socket handshake.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional

import httpx

from tradewire.auth.token_store import TokenStore
from tradewire.core.errors import ApiError, AuthExpiredError, ValidationFailedError
from tradewire.core.json_utils import dumps

log = logging.getLogger("tradewire")

ORDER_ACTIONS = ("bid", "offer")


class ApiClient:
    def __init__(
        self,
        base_url: str,
        tokens: TokenStore,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.tokens = tokens
        # A shared client passed in is not closed by close()
        if client is not None:
            self.client = client
            self._owns_client = False
        else:
            self.client = httpx.AsyncClient(base_url=self.base_url, http2=True, timeout=timeout)
            self._owns_client = True

    async def close(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    # -------------------------------------------------------------------------
    # Auth
    # -------------------------------------------------------------------------

    async def login(self, username: str, password: str) -> Dict[str, Any]:
        data = await self._request("POST", "/auth/login", json={"username": username, "password": password})
        self._store_session(data)
        return data

    async def register(
        self,
        username: str,
        email: str,
        password: str,
        phone: str,
        role: Optional[str] = None,
    ) -> Dict[str, Any]:
        body: Dict[str, Any] = {"username": username, "email": email, "password": password, "phone": phone}
        if role:
            body["role"] = role
        data = await self._request("POST", "/auth/register", json=body)
        self._store_session(data)
        return data

    def logout(self) -> None:
        self.tokens.clear()
        log.info(dumps({"event": "api_logout"}))

    def _store_session(self, data: Dict[str, Any]) -> None:
        token = data.get("access_token")
        if not token:
            raise ApiError(200, "auth response without access_token")
        self.tokens.store(token, data.get("expires_in", 3600), data.get("user"))

    # -------------------------------------------------------------------------
    # Account
    # -------------------------------------------------------------------------

    async def get_profile(self) -> Dict[str, Any]:
        return await self._request("GET", "/profile")

    async def get_dashboard(self) -> Dict[str, Any]:
        orders, market, trades, summary, profile = await asyncio.gather(
            self._request("GET", "/orders"),
            self._request("GET", "/market"),
            self._request("GET", "/trades"),
            self._request("GET", "/account"),
            self._request("GET", "/profile"),
        )
        return {
            "orders": orders.get("orders", []),
            "marketData": market.get("marketData", []),
            "trades": trades.get("trades", []),
            "summary": summary.get("summary", {}),
            "profile": profile,
        }

    async def get_account_summary(self) -> Dict[str, Any]:
        data = await self._request("GET", "/account")
        return data.get("summary", {})

    async def get_stats(self) -> Any:
        data = await self._request("GET", "/stats")
        return data.get("stats")

    # -------------------------------------------------------------------------
    # Orders and market data
    # -------------------------------------------------------------------------

    async def create_order(
        self,
        action: str,
        price: float,
        amount: float,
        product: str,
        monthyear: str,
        expires_at: Optional[str] = None,
    ) -> Dict[str, Any]:
        action = str(action).lower()
        if action not in ORDER_ACTIONS:
            raise ValidationFailedError(f"action must be one of {ORDER_ACTIONS}, got {action!r}", field="action")
        if price is None or float(price) <= 0:
            raise ValidationFailedError("price must be positive", field="price")
        if amount is None or float(amount) <= 0:
            raise ValidationFailedError("amount must be positive", field="amount")

        body: Dict[str, Any] = {
            "action": action,
            "price": float(price),
            "amount": float(amount),
            "product": product,
            "monthyear": monthyear,
        }
        if expires_at:
            body["expiresAt"] = expires_at
        data = await self._request("POST", "/orders", json=body)
        log.info(dumps({"event": "order_created", "action": action, "price": price, "amount": amount, "product": product}))
        return data.get("order", data)

    async def cancel_order(self, order_id: str) -> Dict[str, Any]:
        return await self._request("DELETE", f"/orders/{order_id}")

    async def update_order(
        self,
        order_id: str,
        price: Optional[float] = None,
        amount: Optional[float] = None,
        expires_at: Optional[str] = None,
    ) -> Dict[str, Any]:
        updates: Dict[str, Any] = {}
        if price is not None:
            updates["price"] = price
        if amount is not None:
            updates["amount"] = amount
        if expires_at is not None:
            updates["expiresAt"] = expires_at
        if not updates:
            raise ValidationFailedError("update_order needs at least one field")
        data = await self._request("PUT", f"/orders/{order_id}", json=updates)
        return data.get("order", data)

    async def get_market_data(self) -> List[Dict[str, Any]]:
        data = await self._request("GET", "/market")
        return data.get("marketData", [])

    async def get_trades(self) -> List[Dict[str, Any]]:
        data = await self._request("GET", "/trades")
        return data.get("trades", [])

    async def process_nlp(self, message: str) -> Any:
        data = await self._request("POST", "/nlp/process", json={"message": message})
        return data.get("result")

    # -------------------------------------------------------------------------
    # Transport
    # -------------------------------------------------------------------------

    async def _request(self, method: str, path: str, json: Any = None) -> Any:
        headers = {"Content-Type": "application/json"}
        token = self.tokens.get_valid_token()
        if token:
            headers["Authorization"] = f"Bearer {token}"

        resp = await self.client.request(method, path, json=json, headers=headers)
        if resp.status_code == 401:
            log.warning(dumps({"event": "api_unauthorized", "method": method, "path": path}))
            self.tokens.handle_auth_error()
            raise AuthExpiredError("Authentication failed")
        if resp.is_error:
            raise ApiError(resp.status_code, _error_message(resp))
        return resp.json()


def _error_message(resp: httpx.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        body = {}
    if isinstance(body, dict):
        msg = body.get("error") or body.get("detail")
        if msg:
            return str(msg)
    return f"HTTP {resp.status_code}"
