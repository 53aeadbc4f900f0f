"""
Gateway-side client for the backend session API.

Every forwarded call carries a freshly minted bearer token for the caller's
identity. Backend responses (including 4xx error bodies) are passed through
unchanged; only transport failures are translated here.
"""

from __future__ import annotations

import asyncio
import datetime as dt
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx

from sessiongate.errors import ErrorKind, GatewayError
from sessiongate.logging_config import logger
from sessiongate.schemas.session import ChatSession
from sessiongate.services.token_service import TokenIssuer


@dataclass
class BackendResponse:
    status_code: int
    body: Any


class BackendClient:
    def __init__(
        self,
        *,
        base_url: str,
        issuer: TokenIssuer,
        timeout_seconds: float = 10.0,
        max_attempts: int = 2,
        retry_backoff_seconds: float = 0.1,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._issuer = issuer
        self._max_attempts = max(1, max_attempts)
        self._retry_backoff_seconds = retry_backoff_seconds
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=self.base_url, timeout=timeout_seconds
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def request(
        self,
        method: str,
        path: str,
        *,
        identity: Optional[str] = None,
        params: Optional[Dict[str, Any]] = None,
        json_body: Optional[Dict[str, Any]] = None,
    ) -> BackendResponse:
        """
        Send one request to the backend.

        GET requests are retried on transport failure; writes are sent once.

        Raises:
            GatewayError: store_timeout when the backend does not answer in
                time, store_unavailable when it cannot be reached
        """
        headers: Dict[str, str] = {}
        if identity is not None:
            headers["Authorization"] = f"Bearer {self._issuer.issue(identity).token}"

        attempts = self._max_attempts if method.upper() == "GET" else 1
        last_kind = ErrorKind.STORE_UNAVAILABLE
        for attempt in range(1, attempts + 1):
            try:
                resp = await self._client.request(
                    method,
                    path,
                    headers=headers,
                    params=params,
                    json=json_body,
                )
            except httpx.TimeoutException as exc:
                last_kind = ErrorKind.STORE_TIMEOUT
                logger.warning(
                    "Backend %s %s timed out (attempt %d/%d): %s",
                    method,
                    path,
                    attempt,
                    attempts,
                    exc,
                )
            except httpx.TransportError as exc:
                last_kind = ErrorKind.STORE_UNAVAILABLE
                logger.warning(
                    "Backend %s %s unreachable (attempt %d/%d): %s",
                    method,
                    path,
                    attempt,
                    attempts,
                    exc,
                )
            else:
                try:
                    body = resp.json()
                except ValueError:
                    body = {"error": "bad_gateway", "message": resp.text[:500]}
                return BackendResponse(status_code=resp.status_code, body=body)

            if attempt < attempts:
                await asyncio.sleep(self._retry_backoff_seconds * (2 ** (attempt - 1)))

        if last_kind is ErrorKind.STORE_TIMEOUT:
            raise GatewayError(ErrorKind.STORE_TIMEOUT, "Backend timed out, try again")
        raise GatewayError(ErrorKind.STORE_UNAVAILABLE, "Backend unavailable, try again")

    async def list_sessions(
        self,
        identity: str,
        start_date: dt.datetime,
        end_date: dt.datetime,
        limit: int,
    ) -> List[ChatSession]:
        resp = await self.request(
            "GET",
            "/api/sessions/list",
            identity=identity,
            params={
                "startDate": start_date.isoformat(),
                "endDate": end_date.isoformat(),
                "limit": limit,
            },
        )
        if resp.status_code != 200:
            raise _error_from_backend(resp)
        return [ChatSession.model_validate(item) for item in resp.body.get("sessions", [])]

    async def fetch_secret_fingerprint(self) -> Optional[str]:
        resp = await self.request("GET", "/health")
        if resp.status_code != 200 or not isinstance(resp.body, dict):
            raise GatewayError(
                ErrorKind.STORE_UNAVAILABLE,
                f"Backend health check failed with status {resp.status_code}",
            )
        return resp.body.get("secretFingerprint")


def _error_from_backend(resp: BackendResponse) -> GatewayError:
    body = resp.body if isinstance(resp.body, dict) else {}
    try:
        kind = ErrorKind(body.get("error"))
    except ValueError:
        kind = ErrorKind.STORE_UNAVAILABLE
    return GatewayError(kind, body.get("message") or f"Backend returned {resp.status_code}")


__all__ = ["BackendClient", "BackendResponse"]
