"""
HTTP plumbing shared by the adapters.

`send_request` turns transport failures and HTTP error codes into the
structured `RemoteUnavailable` / `AuthExpired` conditions. `with_auth_retry`
implements the refresh-then-retry-once contract.
"""

import logging
from typing import Any, Awaitable, Callable, Dict, Iterable, Optional, TypeVar

import httpx

from listing_sync.core.exceptions import AuthExpired, RemoteUnavailable

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Callers inspect these themselves (e.g. 404 means the remote listing vanished)
PASSTHROUGH_STATUS_CODES = frozenset({404})


async def send_request(
    marketplace: str,
    method: str,
    url: str,
    *,
    client: Optional[httpx.AsyncClient] = None,
    timeout: float = 20.0,
    passthrough: Iterable[int] = PASSTHROUGH_STATUS_CODES,
    **kwargs: Any,
) -> httpx.Response:
    """
    Make a request to a marketplace API.

    Raises:
        AuthExpired: on HTTP 401
        RemoteUnavailable: on timeouts, transport errors, 429, 5xx and any
            other non-2xx code not listed in `passthrough`
    """
    try:
        if client is not None:
            response = await client.request(method, url, timeout=timeout, **kwargs)
        else:
            async with httpx.AsyncClient(timeout=timeout) as session:
                response = await session.request(method, url, **kwargs)
    except httpx.TimeoutException as e:
        logger.warning(f"{marketplace}: request to {url} timed out after {timeout}s")
        raise RemoteUnavailable(f"{marketplace} request timed out: {str(e)}", marketplace=marketplace)
    except httpx.RequestError as e:
        logger.warning(f"{marketplace}: network error calling {url}: {str(e)}")
        raise RemoteUnavailable(f"{marketplace} network error: {str(e)}", marketplace=marketplace)

    status_code = response.status_code
    if status_code == 401:
        raise AuthExpired(f"{marketplace} rejected the access token", marketplace=marketplace, status_code=401)
    if status_code == 429:
        raise RemoteUnavailable(f"{marketplace} rate limit hit", marketplace=marketplace, status_code=429)
    if status_code >= 400 and status_code not in passthrough:
        raise RemoteUnavailable(
            f"{marketplace} API error {status_code}: {response.text[:500]}",
            marketplace=marketplace,
            status_code=status_code,
        )
    return response


async def request_token(
    marketplace: str,
    url: str,
    *,
    client: Optional[httpx.AsyncClient] = None,
    timeout: float = 20.0,
    **kwargs: Any,
) -> Dict[str, Any]:
    """
    POST an OAuth refresh grant. A 400 (invalid_grant, revoked consent) means
    the refresh token itself is dead and surfaces as AuthExpired.
    """
    response = await send_request(
        marketplace, "POST", url, client=client, timeout=timeout, passthrough={400}, **kwargs
    )
    if response.status_code == 400:
        error_text = response.text[:500]
        logger.error(f"{marketplace}: token refresh rejected: {error_text}")
        raise AuthExpired(f"{marketplace} refresh grant rejected: {error_text}", marketplace=marketplace, status_code=400)
    return response.json()


async def with_auth_retry(adapter, call: Callable[[], Awaitable[T]]) -> T:
    """
    Run `call`; on AuthExpired refresh the adapter's credentials through its
    injected token refresher and retry exactly once.
    """
    try:
        return await call()
    except AuthExpired:
        logger.info(f"{adapter.name.value}: access token expired, refreshing credentials")

    adapter.credentials = await adapter.token_refresher(adapter.credentials, adapter.refresh_grant)
    return await call()
