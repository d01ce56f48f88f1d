"""
Order API Client

Thin async wrapper over the REST endpoints, built on one long-lived
httpx.AsyncClient. Responses are parsed into the shared pydantic schemas.

Failure mapping:
    - transport errors, timeouts, 5xx  -> ApiUnavailableError
    - 401                              -> session cleared, ApiAuthError
    - other 4xx                        -> ApiRejectedError
    - 2xx with an unreadable body      -> ApiUnavailableError
"""

import logging
from typing import Any, Optional, TypeVar

import httpx
from pydantic import BaseModel

from tableside.client.errors import ApiAuthError, ApiRejectedError, ApiUnavailableError
from tableside.client.session import SessionHolder
from tableside.schemas import (
    BillListResponse,
    BillResponse,
    OrderListResponse,
    OrderResponse,
    OrderStatus,
    OrderSubmit,
    SubmitOrderResponse,
)

logger = logging.getLogger(__name__)

ResponseModel = TypeVar("ResponseModel", bound=BaseModel)


class ApiClient:
    """Client for the order API."""

    def __init__(
        self,
        base_url: str,
        session: Optional[SessionHolder] = None,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.session = session or SessionHolder()
        self._http = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            transport=transport,
        )

    async def __aenter__(self) -> "ApiClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    # -------------------------------------------------------------------------
    # Orders
    # -------------------------------------------------------------------------

    async def submit_order(self, submission: OrderSubmit) -> SubmitOrderResponse:
        return await self._request(
            "POST",
            "/api/orders",
            SubmitOrderResponse,
            json=submission.model_dump(mode="json", exclude_none=True),
        )

    async def update_status(self, order_id: int, status: OrderStatus) -> OrderResponse:
        return await self._request(
            "PUT",
            f"/api/orders/{order_id}/status",
            OrderResponse,
            json={"status": status.value},
        )

    async def fetch_orders(
        self,
        limit: Optional[int] = None,
        status: Optional[OrderStatus] = None,
    ) -> list[OrderResponse]:
        params: dict[str, Any] = {}
        if limit is not None:
            params["limit"] = limit
        if status is not None:
            params["status"] = status.value
        data = await self._request("GET", "/api/orders", OrderListResponse, params=params)
        return data.orders

    async def fetch_order(self, order_id: int) -> OrderResponse:
        return await self._request("GET", f"/api/orders/{order_id}", OrderResponse)

    async def fetch_table_orders(
        self,
        table_key: str,
        open_only: bool = False,
    ) -> list[OrderResponse]:
        data = await self._request(
            "GET",
            f"/api/orders/table/{table_key}",
            OrderListResponse,
            params={"open_only": str(open_only).lower()},
        )
        return data.orders

    # -------------------------------------------------------------------------
    # Bills
    # -------------------------------------------------------------------------

    async def fetch_bills(self, limit: Optional[int] = None) -> list[BillResponse]:
        params = {"limit": limit} if limit is not None else {}
        data = await self._request("GET", "/api/bills", BillListResponse, params=params)
        return data.bills

    # -------------------------------------------------------------------------
    # Transport
    # -------------------------------------------------------------------------

    async def _request(
        self,
        method: str,
        path: str,
        model: type[ResponseModel],
        **kwargs: Any,
    ) -> ResponseModel:
        headers = {}
        if self.session.is_authenticated:
            headers["Authorization"] = f"Bearer {self.session.token}"

        try:
            response = await self._http.request(method, path, headers=headers, **kwargs)
        except httpx.TransportError as e:
            logger.warning(f"{method} {path} failed: {e!r}")
            raise ApiUnavailableError(f"Server unreachable: {e}") from e

        if response.status_code == 401:
            self.session.clear()
            raise ApiAuthError("Session expired, please sign in again", status_code=401)

        if response.status_code >= 500:
            logger.warning(f"{method} {path} returned {response.status_code}")
            raise ApiUnavailableError(
                f"Server error ({response.status_code})",
                status_code=response.status_code,
                detail=_error_detail(response),
            )

        if response.status_code >= 400:
            detail = _error_detail(response)
            raise ApiRejectedError(
                f"{method} {path} rejected ({response.status_code}): {detail}",
                status_code=response.status_code,
                detail=detail,
            )

        # A proxy or a newer server can answer 2xx with a body we cannot read
        try:
            return model.model_validate(response.json())
        except ValueError as e:
            logger.warning(f"{method} {path} returned an unreadable body: {e!r}")
            raise ApiUnavailableError(
                f"Unexpected response from server ({response.status_code})",
                status_code=response.status_code,
                detail=response.text[:200],
            ) from e


def _error_detail(response: httpx.Response) -> Any:
    """Pull the detail out of the server's error envelope, if there is one."""
    try:
        body = response.json()
    except ValueError:
        return response.text
    if isinstance(body, dict):
        return body.get("detail", body.get("error", body))
    return body
