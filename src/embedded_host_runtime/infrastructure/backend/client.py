"""HTTP client for record queries and long-running operation endpoints."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any
from urllib.parse import quote

import httpx

from embedded_host_runtime.domain.errors import (
    BackendError,
    ClientRequestError,
    TransientBackendError,
    backend_error_for_status,
)
from embedded_host_runtime.domain.operations import (
    OperationInitiation,
    RemoteOperationStatus,
    StatusPollResult,
    clamp_progress,
    parse_remote_status,
)
from embedded_host_runtime.domain.ports import (
    OperationLauncher,
    QueryEndpoint,
    StatusPollEndpoint,
)
from embedded_host_runtime.domain.queries import QueryDescriptor, QueryPage


class BackendClient(QueryEndpoint, StatusPollEndpoint, OperationLauncher):
    """Wrapper around the backend record and operation endpoints."""

    def __init__(
        self,
        base_url: str,
        timeout_seconds: float = 10.0,
        session_token: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        token_provider: Callable[[], str | None] | None = None,
    ) -> None:
        self._base_url = self._normalize_base_url(base_url)
        self._timeout_seconds = timeout_seconds
        self._session_token = session_token
        self._transport = transport
        self._token_provider = token_provider

    async def fetch_records(self, query: QueryDescriptor) -> QueryPage:
        """Call `GET /records/{recordType}`."""

        record_type = quote(query.record_type, safe="")
        params: dict[str, str | int] = {
            "limit": query.page_size,
            "offset": query.offset,
        }
        if query.fields:
            params["fields"] = ",".join(query.fields)
        for name, value in sorted(query.filters.items()):
            params[f"filter.{name}"] = self._param_value(value)

        response = await self._request("GET", f"/records/{record_type}", params=params)
        self._ensure_success(response)
        payload = self._json_body(response)

        items_raw = payload
        if isinstance(payload, dict):
            items_raw = payload.get("items", payload.get("result"))
        if not isinstance(items_raw, list):
            raise ClientRequestError(
                f"GET {response.request.url} returned an unexpected payload shape.",
                status_code=response.status_code,
            )
        items = [item for item in items_raw if isinstance(item, dict)]
        return QueryPage(items=items, total=self._total_from_response(response, payload, items))

    async def poll_status(self, operation_id: str) -> StatusPollResult:
        """Call `GET /operations/{operationId}/progress`."""

        operation_path = quote(operation_id, safe="")
        response = await self._request("GET", f"/operations/{operation_path}/progress")
        if response.status_code == 404:
            return StatusPollResult(status=RemoteOperationStatus.NOT_FOUND)
        self._ensure_success(response)
        payload = self._json_body(response)
        if not isinstance(payload, dict):
            raise ClientRequestError(
                f"GET {response.request.url} returned an unexpected payload shape.",
                status_code=response.status_code,
            )
        body = payload.get("result", payload)
        if not isinstance(body, dict):
            body = payload

        try:
            status = parse_remote_status(body.get("status"))
        except ValueError as exc:
            raise ClientRequestError(str(exc), status_code=response.status_code) from exc
        message = body.get("message")
        return StatusPollResult(
            status=status,
            progress_fraction=self._progress_fraction(body),
            message=str(message) if message is not None else None,
        )

    async def start_operation(
        self,
        kind: str,
        parameters: dict[str, Any] | None = None,
    ) -> OperationInitiation:
        """Call `POST /operations/{kind}`."""

        kind_path = quote(kind, safe="")
        response = await self._request("POST", f"/operations/{kind_path}", json=parameters or {})
        self._ensure_success(response)
        payload = self._json_body(response)
        body = payload.get("result", payload) if isinstance(payload, dict) else None
        if not isinstance(body, dict):
            raise ClientRequestError(
                f"POST {response.request.url} returned an unexpected payload shape.",
                status_code=response.status_code,
            )

        operation_id = body.get("operationId") or body.get("tracker_id")
        if not operation_id:
            raise ClientRequestError(
                f"POST {response.request.url} did not return an operation id.",
                status_code=response.status_code,
            )
        status_raw = body.get("status")
        try:
            status = (
                parse_remote_status(status_raw)
                if status_raw is not None
                else RemoteOperationStatus.PENDING
            )
        except ValueError:
            status = RemoteOperationStatus.PENDING
        message = body.get("message")
        return OperationInitiation(
            operation_id=str(operation_id),
            status=status,
            progress_fraction=self._progress_fraction(body),
            message=str(message) if message is not None else None,
        )

    async def cancel_operation(self, operation_id: str) -> None:
        """Call `POST /operations/{operationId}/cancel` (server-side cancellation)."""

        operation_path = quote(operation_id, safe="")
        response = await self._request("POST", f"/operations/{operation_path}/cancel")
        self._ensure_success(response)

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        url = self._endpoint(path)
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout_seconds,
                transport=self._transport,
                headers=self._headers(),
            ) as http_client:
                return await http_client.request(method, url, **kwargs)
        except httpx.TimeoutException as exc:
            raise TransientBackendError(f"{method} {url} timed out: {exc}") from exc
        except httpx.HTTPError as exc:
            raise TransientBackendError(f"{method} {url} failed: {exc}") from exc

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        token = self._token_provider() if self._token_provider is not None else None
        token = token or self._session_token
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    def _endpoint(self, path: str) -> str:
        return f"{self._base_url}{path}"

    def _ensure_success(self, response: httpx.Response) -> None:
        if response.is_success:
            return
        message = self._detail_from_response(response)
        raise backend_error_for_status(
            response.status_code,
            f"{response.request.method} {response.request.url} failed: "
            f"{response.status_code} {message}",
        )

    def _json_body(self, response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError as exc:
            raise ClientRequestError(
                f"{response.request.method} {response.request.url} returned invalid JSON.",
                status_code=response.status_code,
            ) from exc

    def _detail_from_response(self, response: httpx.Response) -> str:
        try:
            payload = response.json()
        except ValueError:
            text = response.text.strip()
            return text or "<no response body>"

        if isinstance(payload, dict):
            detail = payload.get("detail")
            if isinstance(detail, str):
                return detail
            error = payload.get("error")
            if isinstance(error, dict) and isinstance(error.get("message"), str):
                return error["message"]
        return str(payload)

    def _total_from_response(
        self,
        response: httpx.Response,
        payload: Any,
        items: list[dict[str, Any]],
    ) -> int:
        if isinstance(payload, dict):
            total = payload.get("total")
            if isinstance(total, int):
                return total
        header_total = response.headers.get("X-Total-Count")
        if header_total is not None and header_total.strip().isdigit():
            return int(header_total.strip())
        return len(items)

    def _progress_fraction(self, body: dict[str, Any]) -> float:
        fraction = body.get("progressFraction")
        if isinstance(fraction, (int, float)):
            return clamp_progress(fraction)
        percentage = body.get("progress_percentage", body.get("progressPercentage"))
        if isinstance(percentage, str) and percentage.strip():
            try:
                percentage = float(percentage)
            except ValueError:
                return 0.0
        if isinstance(percentage, (int, float)):
            return clamp_progress(percentage / 100)
        return 0.0

    def _param_value(self, value: object) -> str:
        if isinstance(value, bool):
            return "true" if value else "false"
        if isinstance(value, (list, tuple, set)):
            return ",".join(str(item) for item in value)
        return str(value)

    def _normalize_base_url(self, base_url: str) -> str:
        normalized = base_url.strip().rstrip("/")
        if not normalized:
            raise BackendError("Backend endpoint cannot be empty.")
        return normalized


__all__ = ["BackendClient"]
