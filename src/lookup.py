"""
Lookups - Read-only queries for the objects manifests refer to.

Every kind is addressed by project, environment and service UUIDs that are
created outside this controller. These lookups resolve one such UUID to the
object's name and parent ids so manifest authors can check what they point
at. Nothing here is stored or reconciled.
"""

import logging
import re
from dataclasses import asdict, dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

from client import GraphQLClient
from errors import NotFound, ValidationRejected
from kinds.base import UUID_PATTERN

logger = logging.getLogger(__name__)

PROJECT_QUERY = """
query project($id: String!) {
  project(id: $id) {
    id
    name
    description
    isPublic
    prDeploys
    workspace { id }
    environments { edges { node { id } } }
  }
}
"""

ENVIRONMENT_QUERY = """
query environment($id: String!) {
  environment(id: $id) { id name projectId }
}
"""

SERVICE_QUERY = """
query service($id: String!) {
  service(id: $id) { id name projectId }
}
"""

_UUID = re.compile(UUID_PATTERN)


@dataclass
class ProjectInfo:
    """A project as reported by the control plane."""

    id: str
    name: str
    description: str = ""
    is_public: bool = False
    has_pr_deploys: bool = False
    workspace_id: Optional[str] = None
    # Oldest environment of the project
    default_environment_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class EnvironmentInfo:
    """An environment and the project it belongs to."""

    id: str
    name: str
    project_id: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ServiceInfo:
    """A service and the project it belongs to."""

    id: str
    name: str
    project_id: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


async def _fetch(
    client: GraphQLClient, subject: str, query: str, object_id: str
) -> Dict[str, Any]:
    if not _UUID.match(object_id or ""):
        raise ValidationRejected("id", f"{object_id!r} is not a valid UUID")

    data = await client.execute(query, {"id": object_id})
    found = data.get(subject)
    if found is None:
        raise NotFound(f"No {subject} exists with id {object_id}")
    logger.debug(f"Looked up {subject} {object_id}")
    return found


async def lookup_project(client: GraphQLClient, project_id: str) -> ProjectInfo:
    """
    Look up a project by ID.

    Args:
        client: GraphQL client for the control plane.
        project_id: UUID of the project.

    Returns:
        ProjectInfo for the project.

    Raises:
        ValidationRejected: If project_id is not a UUID.
        NotFound: If no such project exists.
    """
    project = await _fetch(client, "project", PROJECT_QUERY, project_id)

    workspace = project.get("workspace") or {}
    edges = (project.get("environments") or {}).get("edges") or []
    return ProjectInfo(
        id=project["id"],
        name=project["name"],
        description=project.get("description") or "",
        is_public=bool(project.get("isPublic")),
        has_pr_deploys=bool(project.get("prDeploys")),
        workspace_id=workspace.get("id"),
        default_environment_id=edges[0]["node"]["id"] if edges else None,
    )


async def lookup_environment(
    client: GraphQLClient, environment_id: str
) -> EnvironmentInfo:
    """Look up an environment by ID."""
    environment = await _fetch(client, "environment", ENVIRONMENT_QUERY, environment_id)
    return EnvironmentInfo(
        id=environment["id"],
        name=environment["name"],
        project_id=environment["projectId"],
    )


async def lookup_service(client: GraphQLClient, service_id: str) -> ServiceInfo:
    """Look up a service by ID."""
    service = await _fetch(client, "service", SERVICE_QUERY, service_id)
    return ServiceInfo(
        id=service["id"],
        name=service["name"],
        project_id=service["projectId"],
    )


LOOKUPS: Dict[str, Callable[[GraphQLClient, str], Awaitable[Any]]] = {
    "project": lookup_project,
    "environment": lookup_environment,
    "service": lookup_service,
}


async def lookup_by_id(client: GraphQLClient, subject: str, object_id: str) -> Any:
    """
    Look up a project, environment or service by ID.

    Raises:
        ValueError: If subject is not one of LOOKUPS.
    """
    if subject not in LOOKUPS:
        raise ValueError(
            f"Unknown lookup '{subject}'; expected one of {', '.join(LOOKUPS)}"
        )
    return await LOOKUPS[subject](client, object_id)
