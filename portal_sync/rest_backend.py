"""PostgREST / GoTrue client for the hosted backend-as-a-service."""

from __future__ import annotations

from typing import Any, Mapping

import httpx

from portal_common.config import BackendSettings, get_settings
from portal_common.logging import get_logger
from portal_sync.backend import CurrentUser, Query, QueryResult, Record
from portal_sync.errors import BackendError

logger = get_logger(__name__)


def _literal(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if hasattr(value, "isoformat"):
        return value.isoformat()
    return str(value)


def _quote_list_item(value: Any) -> str:
    text = _literal(value)
    if any(ch in text for ch in ',()" '):
        escaped = text.replace('"', '\\"')
        return f'"{escaped}"'
    return text


def encode_query(query: Query | None) -> list[tuple[str, str]]:
    """Translate a :class:`Query` into PostgREST query-string parameters."""
    params: list[tuple[str, str]] = [("select", "*")]
    if query is None:
        return params

    for column, value in query.eq.items():
        op = "is" if value is None else "eq"
        params.append((column, f"{op}.{_literal(value)}"))
    for column, values in query.in_.items():
        items = ",".join(_quote_list_item(v) for v in values)
        params.append((column, f"in.({items})"))
    for op, bounds in (("gte", query.gte), ("lte", query.lte), ("lt", query.lt)):
        for column, bound in bounds.items():
            params.append((column, f"{op}.{_literal(bound)}"))

    if query.search and query.search_fields:
        term = query.search.replace(",", " ").replace("(", " ").replace(")", " ").strip()
        if term:
            clauses = ",".join(f"{name}.ilike.*{term}*" for name in query.search_fields)
            params.append(("or", f"({clauses})"))

    if query.order_by:
        direction = "desc" if query.descending else "asc"
        params.append(("order", f"{query.order_by}.{direction}"))
    if query.limit is not None:
        params.append(("limit", str(query.limit)))
    if query.offset:
        params.append(("offset", str(query.offset)))
    return params


def parse_content_range(header: str | None) -> int | None:
    """Extract the total from a ``Content-Range: 0-9/42`` header."""
    if not header or "/" not in header:
        return None
    total = header.rsplit("/", 1)[1].strip()
    return int(total) if total.isdigit() else None


class SupabaseBackend:
    """Thin asynchronous client for the hosted REST/RPC/auth endpoints."""

    def __init__(
        self,
        url: str,
        api_key: str,
        *,
        access_token: str | None = None,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.url = url.rstrip("/")
        self.api_key = api_key
        self.access_token = access_token
        self._client = httpx.AsyncClient(
            base_url=self.url,
            timeout=timeout,
            transport=transport,
            headers=self._headers(),
        )

    @classmethod
    def from_settings(
        cls,
        settings: BackendSettings | None = None,
        *,
        access_token: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> "SupabaseBackend":
        settings = settings or get_settings().backend
        if not settings.url or settings.api_key is None:
            raise ValueError("PORTAL_BACKEND_URL and PORTAL_BACKEND_API_KEY are required in rest mode")
        token = access_token
        if token is None and settings.access_token is not None:
            token = settings.access_token.get_secret_value()
        return cls(
            settings.url,
            settings.api_key.get_secret_value(),
            access_token=token,
            timeout=settings.timeout_sec,
            transport=transport,
        )

    def _headers(self) -> dict[str, str]:
        return {
            "apikey": self.api_key,
            "Authorization": f"Bearer {self.access_token or self.api_key}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    async def aclose(self) -> None:
        await self._client.aclose()

    async def query(self, collection: str, query: Query | None = None) -> QueryResult:
        headers = {"Prefer": "count=exact"} if query is not None and query.count else None
        response = await self._request(
            "GET", f"/rest/v1/{collection}", params=encode_query(query), headers=headers
        )
        records = self._json(response) or []
        if not isinstance(records, list):
            raise BackendError(f"Unexpected response for {collection}: expected a list")
        total = parse_content_range(response.headers.get("content-range"))
        return QueryResult(records, total if total is not None else len(records))

    async def call(self, procedure: str, args: Mapping[str, Any] | None = None) -> Any:
        response = await self._request("POST", f"/rest/v1/rpc/{procedure}", json=dict(args or {}))
        return self._json(response)

    async def insert(self, collection: str, record: Mapping[str, Any]) -> Record:
        response = await self._request(
            "POST",
            f"/rest/v1/{collection}",
            json=dict(record),
            headers={"Prefer": "return=representation"},
        )
        return self._single(response, collection)

    async def update(self, collection: str, record_id: str, patch: Mapping[str, Any]) -> Record:
        response = await self._request(
            "PATCH",
            f"/rest/v1/{collection}",
            params=[("id", f"eq.{record_id}")],
            json=dict(patch),
            headers={"Prefer": "return=representation"},
        )
        return self._single(response, collection)

    async def delete(self, collection: str, record_id: str) -> None:
        await self._request("DELETE", f"/rest/v1/{collection}", params=[("id", f"eq.{record_id}")])

    async def current_user(self) -> CurrentUser | None:
        if not self.access_token:
            return None
        try:
            response = await self._request("GET", "/auth/v1/user")
        except BackendError as exc:
            if exc.status in (401, 403):
                logger.info("access_token_rejected", status=exc.status)
                return None
            raise
        payload = self._json(response) or {}
        user_id = payload.get("id")
        if not user_id:
            return None

        roles_response = await self._request(
            "GET",
            "/rest/v1/user_roles",
            params=[("select", "role"), ("user_id", f"eq.{user_id}")],
        )
        rows = self._json(roles_response) or []
        roles = tuple(row["role"] for row in rows if isinstance(row, dict) and row.get("role"))
        return CurrentUser(id=user_id, email=payload.get("email") or "", roles=roles)

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            logger.warning("backend_transport_error", method=method, path=path, error=str(exc))
            raise BackendError(f"Network error talking to backend: {exc}") from exc

        if response.is_error:
            raise self._error_from(response)
        return response

    @staticmethod
    def _json(response: httpx.Response) -> Any:
        if response.status_code == 204 or not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise BackendError("Backend returned a non-JSON response", status=response.status_code) from exc

    @staticmethod
    def _single(response: httpx.Response, collection: str) -> Record:
        payload = SupabaseBackend._json(response)
        if isinstance(payload, list):
            if not payload:
                raise BackendError(
                    f"No {collection} record matched", code="PGRST116", status=response.status_code
                )
            payload = payload[0]
        if not isinstance(payload, dict):
            raise BackendError(f"Unexpected response for {collection}: expected a record")
        return payload

    @staticmethod
    def _error_from(response: httpx.Response) -> BackendError:
        code: str | None = None
        message = response.reason_phrase or f"HTTP {response.status_code}"
        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, dict):
            code = body.get("code") or body.get("error_code")
            message = (
                body.get("message")
                or body.get("msg")
                or body.get("error_description")
                or body.get("error")
                or message
            )
            if code is not None:
                code = str(code)
        return BackendError(str(message), code=code, status=response.status_code)
