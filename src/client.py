"""
GraphQL Client - Authenticated transport to the control-plane API.

Posts GraphQL documents over HTTP with a bearer token and maps every
failure onto the remote error taxonomy (NotFound, Conflict,
ValidationRejected, Transient, Unauthorized).
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional

import aiohttp

from errors import (
    Conflict,
    NotFound,
    RemoteError,
    Transient,
    Unauthorized,
    ValidationRejected,
)

logger = logging.getLogger(__name__)

DEFAULT_ENDPOINT = "https://backboard.railway.app/graphql/v2"

_CODE_ERRORS = {
    "NOT_FOUND": NotFound,
    "CONFLICT": Conflict,
    "UNAUTHENTICATED": Unauthorized,
    "FORBIDDEN": Unauthorized,
}


def map_graphql_error(errors: List[Dict[str, Any]]) -> RemoteError:
    """
    Map the first GraphQL error onto a RemoteError.

    The extensions.code of the error decides the category; when no code is
    given, well-known message fragments are used instead.

    Args:
        errors: The "errors" list from a GraphQL response.

    Returns:
        The RemoteError to raise.
    """
    first = errors[0] if errors else {}
    message = first.get("message") or "Unknown GraphQL error"
    extensions = first.get("extensions") or {}
    code = str(extensions.get("code", "")).upper()

    if code in _CODE_ERRORS:
        return _CODE_ERRORS[code](message)
    if code in ("BAD_USER_INPUT", "VALIDATION", "GRAPHQL_VALIDATION_FAILED"):
        return ValidationRejected(extensions.get("field"), message)
    if code == "INTERNAL_SERVER_ERROR":
        return Transient(message)

    lowered = message.lower()
    if "not found" in lowered:
        return NotFound(message)
    if "already exists" in lowered:
        return Conflict(message)
    if "not authorized" in lowered or "unauthorized" in lowered:
        return Unauthorized(message)
    return ValidationRejected(None, message)


class GraphQLClient:
    """Executes GraphQL queries and mutations against the control plane."""

    def __init__(
        self,
        token: str,
        endpoint: str = DEFAULT_ENDPOINT,
        timeout: int = 30,
    ):
        self.token = token
        self.endpoint = endpoint
        self.timeout = timeout

        if not self.token:
            logger.warning(
                "Control-plane token not configured. Set CONTROL_PLANE_TOKEN."
            )

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.token}",
            "Content-Type": "application/json",
        }

    async def execute(
        self, query: str, variables: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """
        Execute a GraphQL document.

        Args:
            query: The GraphQL query or mutation.
            variables: Variables for the document.

        Returns:
            The "data" object of the response.

        Raises:
            RemoteError: A subclass describing the failure.
        """
        payload = {"query": query, "variables": variables or {}}
        timeout = aiohttp.ClientTimeout(total=self.timeout)

        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.post(
                    self.endpoint, json=payload, headers=self._headers()
                ) as resp:
                    if resp.status in (401, 403):
                        raise Unauthorized(
                            f"Control plane returned HTTP {resp.status}"
                        )
                    if resp.status == 429 or resp.status >= 500:
                        raise Transient(f"Control plane returned HTTP {resp.status}")
                    body = await resp.json()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.warning(f"GraphQL request failed: {e}")
            raise Transient(e) from e

        if body.get("errors"):
            error = map_graphql_error(body["errors"])
            logger.debug(f"GraphQL error: {error}")
            raise error

        return body.get("data") or {}
