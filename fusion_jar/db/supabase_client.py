"""
Supabase client for the investment tables.

Talks to the project's PostgREST endpoint (``/rest/v1``) directly over httpx
using the service-role key, so it bypasses row level security.
"""

from typing import Any, Dict, List, Optional, Type

import httpx

from fusion_jar.config import settings


class SupabaseError(Exception):
    """Base exception for Supabase errors."""
    pass


class SupabaseAuthError(SupabaseError):
    """Service role key rejected."""
    pass


class SupabaseQueryError(SupabaseError):
    """Error executing a select."""
    pass


class SupabaseMutationError(SupabaseError):
    """Error executing an insert or update."""
    pass


def eq(value: Any) -> str:
    return f"eq.{value}"


def lte(value: Any) -> str:
    return f"lte.{value}"


def gte(value: Any) -> str:
    return f"gte.{value}"


RETURN_ROWS = {"Prefer": "return=representation"}


class SupabaseClient:
    """
    Async PostgREST client.

        client = SupabaseClient()
        rows = await client.select("investment_intents", filters={"status": eq("active")}, order="created_at.asc")
        row = await client.insert("investment_executions", {...})
        await client.update("investment_intents", {"status": "paused"}, filters={"id": eq(intent_id)})
    """

    def __init__(
        self,
        url: Optional[str] = None,
        service_role_key: Optional[str] = None,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.url = (url or settings.supabase_url or "").rstrip("/")
        self.service_role_key = service_role_key or settings.supabase_service_role_key
        if not self.url:
            raise SupabaseError("SUPABASE_URL is required")
        if not self.service_role_key:
            raise SupabaseError("SUPABASE_SERVICE_ROLE_KEY is required")

        self.timeout = timeout
        self._transport = transport
        self._http: Optional[httpx.AsyncClient] = None

    @property
    def rest_url(self) -> str:
        return f"{self.url}/rest/v1"

    @property
    def headers(self) -> Dict[str, str]:
        key = self.service_role_key
        return {"apikey": key, "Authorization": f"Bearer {key}", "Content-Type": "application/json"}

    def _session(self) -> httpx.AsyncClient:
        if self._http is None or self._http.is_closed:
            self._http = httpx.AsyncClient(
                base_url=self.rest_url,
                headers=self.headers,
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._http

    async def close(self) -> None:
        http, self._http = self._http, None
        if http is not None and not http.is_closed:
            await http.aclose()

    async def _send(
        self,
        method: str,
        table: str,
        error_type: Type[SupabaseError],
        action: str,
        **kwargs: Any,
    ) -> Any:
        """One PostgREST round trip; transport and HTTP failures become ``error_type``."""
        try:
            response = await self._session().request(method, f"/{table}", **kwargs)
        except httpx.RequestError as e:
            raise error_type(f"{action} {table}: request failed: {e}") from e

        if response.status_code == 401:
            raise SupabaseAuthError("Invalid service role key")
        if response.is_error:
            raise error_type(f"{action} {table} failed ({response.status_code}): {response.text}")
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise error_type(f"{action} {table}: response is not JSON: {response.text[:200]}") from e

    async def select(
        self,
        table: str,
        *,
        columns: str = "*",
        filters: Optional[Dict[str, str]] = None,
        order: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """
        Select rows from a table.

        Args:
            table: Table name
            columns: PostgREST ``select`` list
            filters: Column -> operator expression (see ``eq``/``lte``/``gte``)
            order: e.g. ``created_at.asc``
            limit: Max rows

        Raises:
            SupabaseQueryError: If the request fails
        """
        params: Dict[str, Any] = {"select": columns, **(filters or {})}
        if order:
            params["order"] = order
        if limit is not None:
            params["limit"] = str(limit)
        rows = await self._send("GET", table, SupabaseQueryError, "select from", params=params)
        return rows or []

    async def insert(self, table: str, row: Dict[str, Any]) -> Dict[str, Any]:
        """Insert one row and return it as stored."""
        data = await self._send("POST", table, SupabaseMutationError, "insert into", json=row, headers=RETURN_ROWS)
        if isinstance(data, list):
            if not data:
                raise SupabaseMutationError(f"insert into {table} returned no row")
            return data[0]
        if data is None:
            raise SupabaseMutationError(f"insert into {table} returned no row")
        return data

    async def update(
        self,
        table: str,
        values: Dict[str, Any],
        *,
        filters: Dict[str, str],
    ) -> List[Dict[str, Any]]:
        """Update matching rows; returns the updated rows."""
        if not filters:
            raise SupabaseMutationError("Refusing to update without filters")
        rows = await self._send(
            "PATCH", table, SupabaseMutationError, "update", params=filters, json=values, headers=RETURN_ROWS
        )
        return rows or []
