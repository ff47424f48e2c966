"""Unit tests for client.py - GraphQL transport and error mapping."""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import aiohttp
import pytest

from client import DEFAULT_ENDPOINT, GraphQLClient, map_graphql_error
from errors import (
    Conflict,
    NotFound,
    Transient,
    Unauthorized,
    ValidationRejected,
)


def mock_session_for(mock_session_cls, status=200, body=None, error=None):
    """Wire a patched aiohttp.ClientSession to return one response."""
    mock_resp = AsyncMock()
    mock_resp.status = status
    mock_resp.json = AsyncMock(return_value=body or {})

    mock_session = AsyncMock()
    if error is not None:
        mock_session.post = MagicMock(side_effect=error)
    else:
        mock_session.post = MagicMock(
            return_value=AsyncMock(
                __aenter__=AsyncMock(return_value=mock_resp),
                __aexit__=AsyncMock(return_value=False),
            )
        )

    mock_session_cls.return_value = AsyncMock(
        __aenter__=AsyncMock(return_value=mock_session),
        __aexit__=AsyncMock(return_value=False),
    )
    return mock_session


class TestClientConfiguration:
    """Tests for GraphQLClient construction."""

    def test_defaults(self):
        client = GraphQLClient(token="t")
        assert client.endpoint == DEFAULT_ENDPOINT
        assert client.timeout == 30

    def test_missing_token_warns(self, caplog):
        GraphQLClient(token="")
        assert "CONTROL_PLANE_TOKEN" in caplog.text


class TestMapGraphQLError:
    """Tests for map_graphql_error."""

    @pytest.mark.parametrize(
        "code,expected",
        [
            ("NOT_FOUND", NotFound),
            ("CONFLICT", Conflict),
            ("UNAUTHENTICATED", Unauthorized),
            ("FORBIDDEN", Unauthorized),
            ("BAD_USER_INPUT", ValidationRejected),
            ("INTERNAL_SERVER_ERROR", Transient),
        ],
    )
    def test_extension_codes(self, code, expected):
        error = map_graphql_error(
            [{"message": "boom", "extensions": {"code": code}}]
        )
        assert isinstance(error, expected)

    @pytest.mark.parametrize(
        "message,expected",
        [
            ("Environment not found", NotFound),
            ("Private network already exists", Conflict),
            ("Not Authorized", Unauthorized),
            ("Invalid healthcheck path", ValidationRejected),
        ],
    )
    def test_message_fallback(self, message, expected):
        assert isinstance(map_graphql_error([{"message": message}]), expected)

    def test_validation_keeps_field(self):
        error = map_graphql_error(
            [
                {
                    "message": "must be positive",
                    "extensions": {"code": "BAD_USER_INPUT", "field": "vcpus"},
                }
            ]
        )
        assert error.attribute == "vcpus"
        assert str(error) == "vcpus: must be positive"

    def test_empty_errors(self):
        error = map_graphql_error([])
        assert isinstance(error, ValidationRejected)
        assert "Unknown GraphQL error" in str(error)


@pytest.mark.asyncio
class TestGraphQLClient:
    """Tests for GraphQLClient.execute."""

    @pytest.fixture
    def client(self):
        return GraphQLClient(token="secret-token", timeout=5)

    async def test_returns_data(self, client):
        with patch("client.aiohttp.ClientSession") as mock_session_cls:
            mock_session = mock_session_for(
                mock_session_cls, body={"data": {"privateNetworks": []}}
            )

            data = await client.execute("query { x }", {"environmentId": "env"})

        assert data == {"privateNetworks": []}
        args, kwargs = mock_session.post.call_args
        assert args[0] == DEFAULT_ENDPOINT
        assert kwargs["json"]["variables"] == {"environmentId": "env"}
        assert kwargs["headers"]["Authorization"] == "Bearer secret-token"

    async def test_null_data(self, client):
        with patch("client.aiohttp.ClientSession") as mock_session_cls:
            mock_session_for(mock_session_cls, body={"data": None})

            assert await client.execute("query { x }") == {}

    async def test_graphql_errors_raised(self, client):
        body = {
            "data": None,
            "errors": [
                {"message": "Network not found", "extensions": {"code": "NOT_FOUND"}}
            ],
        }
        with patch("client.aiohttp.ClientSession") as mock_session_cls:
            mock_session_for(mock_session_cls, body=body)

            with pytest.raises(NotFound, match="Network not found"):
                await client.execute("query { x }")

    async def test_unauthorized_status(self, client):
        with patch("client.aiohttp.ClientSession") as mock_session_cls:
            mock_session_for(mock_session_cls, status=401)

            with pytest.raises(Unauthorized):
                await client.execute("query { x }")

    @pytest.mark.parametrize("status", [429, 502])
    async def test_transient_status(self, client, status):
        with patch("client.aiohttp.ClientSession") as mock_session_cls:
            mock_session_for(mock_session_cls, status=status)

            with pytest.raises(Transient) as exc_info:
                await client.execute("query { x }")

        assert exc_info.value.retryable

    @pytest.mark.parametrize(
        "error",
        [aiohttp.ClientConnectionError("refused"), asyncio.TimeoutError()],
    )
    async def test_network_failures_are_transient(self, client, error):
        with patch("client.aiohttp.ClientSession") as mock_session_cls:
            mock_session_for(mock_session_cls, error=error)

            with pytest.raises(Transient):
                await client.execute("query { x }")
