"""Pytest configuration and fixtures."""

import asyncio
import itertools
from typing import Any, Callable, Dict, List, Optional, Tuple

import pytest
from unittest.mock import AsyncMock, MagicMock

from errors import Conflict, NotFound
from identity import IdentityCodec
from kinds import private_network, private_network_endpoint
from kinds import service_instance, service_limits
from kinds.base import DeletionMode, ResourceKind
from kinds.registry import reset_registry
from policy import PolicyKind
from remote import Observation, RemoteCollaborator

PROJECT_ID = "0b4c2d7e-8a51-4a8e-9a3c-1f2e3d4c5b6a"
ENVIRONMENT_ID = "5f1d2c3b-4a59-4e8d-b7c6-a5b4c3d2e1f0"
OTHER_ENVIRONMENT_ID = "9e8d7c6b-5a49-4382-a1b0-c9d8e7f6a5b4"
NETWORK_ID = "c3d4e5f6-a7b8-4c9d-8e0f-1a2b3c4d5e6f"
SERVICE_ID = "a1b2c3d4-e5f6-4a7b-8c9d-0e1f2a3b4c5d"


class FakeCollaborator(RemoteCollaborator):
    """
    In-memory remote for one kind.

    Identity components missing from the create payload (the remote's own
    ids) are generated. Write-only attributes, and any listed in
    `unreported`, are accepted but never reported back. Set
    `fail[operation]` to make an operation raise, and `delay[operation]` to
    make it sleep first.
    """

    def __init__(
        self,
        kind: ResourceKind,
        computed: Optional[Callable[[Dict[str, Any]], Dict[str, Any]]] = None,
        deduplicates: bool = True,
        unreported: Tuple[str, ...] = (),
    ):
        self._kind = kind
        self.deduplicates = deduplicates
        self.unreported = unreported
        self.computed = computed or (lambda payload: {})
        self.resources: Dict[str, Dict[str, Any]] = {}
        self.calls: List[Tuple[str, Any]] = []
        self.fail: Dict[str, Exception] = {}
        self.delay: Dict[str, float] = {}
        self.closed = False
        self._ids = itertools.count(1)

    @property
    def kind(self) -> str:
        return self._kind.name

    def calls_to(self, operation: str) -> List[Any]:
        return [arg for op, arg in self.calls if op == operation]

    async def _enter(self, operation: str, arg: Any) -> None:
        self.calls.append((operation, arg))
        if operation in self.delay:
            await asyncio.sleep(self.delay[operation])
        if operation in self.fail:
            raise self.fail[operation]

    def _reported(self, values: Dict[str, Any]) -> Dict[str, Any]:
        policy = self._kind.policy
        return {
            k: v
            for k, v in values.items()
            if policy.policy_of(k) != PolicyKind.WRITE_ONLY
            and k not in self.unreported
        }

    def _find(self, natural_key: Dict[str, Any]) -> Optional[str]:
        for identity, state in self.resources.items():
            if all(state.get(a) == v for a, v in natural_key.items()):
                return identity
        return None

    async def create_or_get(self, payload: Dict[str, Any]) -> Tuple[str, Observation]:
        await self._enter("create_or_get", dict(payload))
        existing = self._find(self._kind.natural_key_of(payload))
        if existing is not None:
            if not self.deduplicates:
                raise Conflict(f"{self.kind} already exists")
            return existing, dict(self.resources[existing])

        components = [
            str(payload[name]) if name in payload else f"{name}-{next(self._ids)}"
            for name in self._kind.identity.component_names
        ]
        identity = self._kind.identity.encode(components)
        state = self._reported(payload)
        state.update(self.computed(payload))
        self.resources[identity] = state
        return identity, dict(state)

    async def read(self, identity: str) -> Optional[Observation]:
        await self._enter("read", identity)
        state = self.resources.get(identity)
        return dict(state) if state is not None else None

    async def update(self, identity: str, delta: Dict[str, Any]) -> Observation:
        await self._enter("update", (identity, dict(delta)))
        if identity not in self.resources:
            raise NotFound(f"{self.kind} {identity} not found")
        self.resources[identity].update(self._reported(delta))
        return dict(self.resources[identity])

    async def delete(self, token: str) -> None:
        await self._enter("delete", token)
        deletion = self._kind.deletion
        if deletion.mode == DeletionMode.COARSE:
            parent = IdentityCodec(*deletion.parent_attributes)
            doomed = [
                identity
                for identity, state in self.resources.items()
                if parent.encode([state[a] for a in deletion.parent_attributes])
                == token
            ]
        else:
            doomed = [token] if token in self.resources else []
        if not doomed:
            raise NotFound(f"{self.kind} {token} not found")
        for identity in doomed:
            del self.resources[identity]

    async def lookup(
        self, natural_key: Dict[str, Any]
    ) -> Optional[Tuple[str, Observation]]:
        await self._enter("lookup", dict(natural_key))
        identity = self._find(natural_key)
        if identity is None:
            return None
        return identity, dict(self.resources[identity])

    async def close(self) -> None:
        self.closed = True


def network_dns(payload: Dict[str, Any]) -> Dict[str, Any]:
    return {"dns_name": f"{payload['name']}.internal"}


def endpoint_dns(payload: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "dns_name": f"{payload['service_name']}.internal",
        "private_ips": ["10.0.0.2"],
        "tags": list(payload.get("tags", [])),
    }


@pytest.fixture(autouse=True)
def clean_registry():
    """Reset the global kind registry between tests."""
    reset_registry()
    yield
    reset_registry()


@pytest.fixture
def network_kind():
    return private_network.KIND


@pytest.fixture
def endpoint_kind():
    return private_network_endpoint.KIND


@pytest.fixture
def instance_kind():
    return service_instance.KIND


@pytest.fixture
def limits_kind():
    return service_limits.KIND


@pytest.fixture
def network_remote():
    """Fake remote for private networks."""
    return FakeCollaborator(private_network.KIND, computed=network_dns)


@pytest.fixture
def endpoint_remote():
    """Fake remote for private network endpoints."""
    return FakeCollaborator(
        private_network_endpoint.KIND,
        computed=endpoint_dns,
        unreported=("service_name",),
    )


@pytest.fixture
def instance_remote():
    """Fake remote for service instances."""
    return FakeCollaborator(service_instance.KIND)


@pytest.fixture
def limits_remote():
    """Fake remote for service limits."""
    return FakeCollaborator(service_limits.KIND)


@pytest.fixture
def network_spec():
    """Desired spec of a private network."""
    return {
        "name": "backend",
        "project_id": PROJECT_ID,
        "environment_id": ENVIRONMENT_ID,
        "tags": ["team:core"],
    }


@pytest.fixture
def endpoint_spec():
    """Desired spec of a private network endpoint."""
    return {
        "environment_id": ENVIRONMENT_ID,
        "private_network_id": NETWORK_ID,
        "service_id": SERVICE_ID,
        "service_name": "api",
    }


@pytest.fixture
def instance_spec():
    """Desired spec of a service instance."""
    return {
        "service_id": SERVICE_ID,
        "environment_id": ENVIRONMENT_ID,
        "source_image": "ghcr.io/acme/api:1.0",
        "start_command": "./serve",
        "healthcheck_timeout": 30,
        "registry_credentials_username": "bot",
        "registry_credentials_password": "s3cret",
    }


@pytest.fixture
def mock_pool():
    """Create a mock asyncpg pool."""
    pool = AsyncMock()
    pool.acquire = MagicMock()
    return pool


@pytest.fixture
def mock_connection():
    """Create a mock asyncpg connection."""
    conn = AsyncMock()
    return conn


@pytest.fixture
def sample_record():
    """Stored managed resource record."""
    return {
        "id": 7,
        "kind": "private_network",
        "name": "backend-net",
        "identity": f"{ENVIRONMENT_ID}:network-1",
        "desired": {
            "name": "backend",
            "project_id": PROJECT_ID,
            "environment_id": ENVIRONMENT_ID,
        },
        "canonical": {
            "name": "backend",
            "project_id": PROJECT_ID,
            "environment_id": ENVIRONMENT_ID,
            "dns_name": "backend.internal",
        },
        "spec_hash": "abc123",
        "status": "ready",
        "last_change_kind": "created",
        "last_error": None,
        "last_reconcile_time": "2026-01-01 00:00:00",
    }
