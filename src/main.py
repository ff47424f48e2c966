"""
Main entry point for the converge controller.

Provides the `converge` command line interface: apply manifests, import
and destroy resources, inspect stored state, and look up the projects,
environments and services manifests refer to.
"""

import asyncio
import json
import logging
import sys
from typing import Any, Awaitable, Callable, List, Optional, TypeVar

import click
import yaml
from tabulate import tabulate

from client import GraphQLClient
from config import APIConfig, Config, DatabaseConfig, get_config
from controller import Controller, CycleOutcome
from db import StateStore
from errors import ReconcileError
from kinds.registry import get_registry, register_builtin_kinds
from lookup import LOOKUPS, lookup_by_id
from manifest import ManifestError, load_manifest
from migrate import run_migrations

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Application:
    """Wires configuration, state store, GraphQL client and controller."""

    def __init__(self, config: Optional[Config] = None):
        self.config = config or get_config()
        self.store: Optional[StateStore] = None
        self.client: Optional[GraphQLClient] = None
        self.controller: Optional[Controller] = None

    async def initialize(self):
        """Initialize all components."""
        logger.info("Initializing converge controller")

        registry = get_registry()
        if not registry.list_kinds():
            register_builtin_kinds()

        self.store = StateStore.from_config(self.config.database)
        await self.store.connect()
        await self.store.initialize_schema()

        api = self.config.api
        self.client = GraphQLClient(api.token, endpoint=api.url, timeout=api.timeout)
        self.controller = Controller(
            self.store,
            lambda kind: registry.create_collaborator(
                kind, self.client, redeploy=api.redeploy_on_change
            ),
            registry=registry,
            config=self.config.controller,
        )

    async def shutdown(self):
        """Release all components."""
        if self.store:
            await self.store.close()

    async def run(self, operation: Callable[["Application"], Awaitable[T]]) -> T:
        """Initialize, run one operation, and shut down."""
        await self.initialize()
        try:
            return await operation(self)
        finally:
            await self.shutdown()


def _run(operation: Callable[[Application], Awaitable[T]]) -> T:
    try:
        return asyncio.run(Application().run(operation))
    except ValueError as e:
        # Configuration errors
        click.echo(f"Error: {e}", err=True)
        sys.exit(2)


def _echo_outcomes(outcomes: List[CycleOutcome]) -> None:
    rows = []
    for outcome in outcomes:
        detail = outcome.error or ""
        if outcome.drifted:
            detail = f"drifted: {', '.join(outcome.drifted)}"
        rows.append(
            [
                outcome.kind,
                outcome.name,
                outcome.change_kind or ("retryable" if outcome.retryable else "failed"),
                outcome.identity or "-",
                detail,
            ]
        )
    click.echo(
        tabulate(
            rows,
            headers=["KIND", "NAME", "RESULT", "IDENTITY", "DETAIL"],
            tablefmt="simple",
        )
    )
    for outcome in outcomes:
        for warning in outcome.warnings:
            click.echo(f"Warning ({outcome.key}): {warning}", err=True)


def _dump(data: Any, output: str) -> str:
    if output == "yaml":
        return yaml.safe_dump(data, default_flow_style=False, sort_keys=False)
    return json.dumps(data, indent=2, default=str)


@click.group()
@click.option(
    "--log-level",
    envvar="LOG_LEVEL",
    default="INFO",
    help="Logging level (LOG_LEVEL)",
)
def cli(log_level):
    """converge - reconcile control-plane resources to a desired state"""
    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


@cli.command()
@click.argument("filename", type=click.Path(exists=True, dir_okay=False))
def apply(filename):
    """Reconcile every resource in a YAML/JSON manifest"""
    try:
        entries = load_manifest(filename)
    except ManifestError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(2)

    if not entries:
        click.echo("No resources found in manifest")
        return

    outcomes = _run(lambda app: app.controller.reconcile_all(entries))
    _echo_outcomes(outcomes)
    if not all(o.success for o in outcomes):
        sys.exit(1)


@cli.command(name="import")
@click.argument("kind")
@click.argument("name")
@click.argument("token")
def import_(kind, name, token):
    """Adopt an existing remote resource by identity token"""
    outcome = _run(lambda app: app.controller.import_resource(kind, name, token))
    _echo_outcomes([outcome])
    if not outcome.success:
        sys.exit(1)


@cli.command()
@click.argument("kind")
@click.argument("name")
@click.confirmation_option(prompt="Are you sure you want to destroy this resource?")
def destroy(kind, name):
    """Delete a managed resource remotely"""
    outcome = _run(lambda app: app.controller.destroy_resource(kind, name))
    _echo_outcomes([outcome])
    if not outcome.success:
        sys.exit(1)


@cli.command()
@click.option("--kind", "-k", default=None, help="Only show resources of this kind")
@click.option("--output", "-o", type=click.Choice(["table", "json"]), default="table")
def get(kind, output):
    """List managed resources"""
    resources = _run(lambda app: app.store.list_resources(kind=kind))

    if output == "json":
        click.echo(_dump(resources, "json"))
        return

    if not resources:
        click.echo("No resources found")
        return

    rows = [
        [
            r["kind"],
            r["name"],
            r["status"],
            r.get("last_change_kind") or "-",
            r.get("identity") or "-",
        ]
        for r in resources
    ]
    click.echo(
        tabulate(
            rows,
            headers=["KIND", "NAME", "STATUS", "LAST CHANGE", "IDENTITY"],
            tablefmt="simple",
        )
    )


@cli.command()
@click.argument("kind")
@click.argument("name")
@click.option("--output", "-o", type=click.Choice(["json", "yaml"]), default="json")
def describe(kind, name, output):
    """Show the stored desired and canonical state of a resource"""
    resource = _run(lambda app: app.store.get_resource(kind, name))
    if resource is None:
        click.echo(f"Error: {kind}/{name} is not managed", err=True)
        sys.exit(1)

    for key in ("created_at", "updated_at", "last_reconcile_time"):
        if resource.get(key) is not None:
            resource[key] = str(resource[key])
    click.echo(_dump(resource, output))


@cli.command()
@click.argument("kind")
@click.argument("name")
@click.option("--limit", "-l", default=10, help="Number of history entries to show")
def history(kind, name, limit):
    """Show reconciliation history for a resource"""

    async def load(app: Application):
        resource = await app.store.get_resource(kind, name)
        if resource is None:
            return None
        return await app.store.get_reconciliation_history(resource["id"], limit)

    entries = _run(load)
    if entries is None:
        click.echo(f"Error: {kind}/{name} is not managed", err=True)
        sys.exit(1)
    if not entries:
        click.echo("No reconciliation history")
        return

    rows = []
    for entry in entries:
        duration = entry.get("duration_seconds")
        rows.append(
            [
                str(entry["reconcile_time"])[:19],
                "✓" if entry["success"] else "✗",
                entry["phase"],
                entry.get("change_kind") or "-",
                f"{duration:.1f}s" if duration is not None else "-",
                entry.get("trigger_reason") or "-",
                (entry.get("error_message") or "")[:60],
            ]
        )
    headers = ["Time", "OK", "Phase", "Change", "Duration", "Trigger", "Error"]
    click.echo(tabulate(rows, headers=headers, tablefmt="grid"))


@cli.command()
def kinds():
    """List the resource kinds this controller manages"""
    registry = get_registry()
    if not registry.list_kinds():
        register_builtin_kinds()

    rows = []
    for name in registry.list_kinds():
        kind = registry.get_kind(name)
        rows.append(
            [
                name,
                ":".join(kind.identity.component_names),
                kind.deletion.mode.value,
                "yes" if kind.updatable else "no",
                kind.description,
            ]
        )
    click.echo(
        tabulate(
            rows,
            headers=["KIND", "IDENTITY", "DELETION", "UPDATABLE", "DESCRIPTION"],
            tablefmt="simple",
        )
    )


@cli.command(name="lookup")
@click.argument("subject", type=click.Choice(list(LOOKUPS)))
@click.argument("object_id", metavar="ID")
@click.option(
    "--output", "-o", type=click.Choice(["table", "json", "yaml"]), default="table"
)
def lookup_(subject, object_id, output):
    """Look up a project, environment or service by ID"""

    async def fetch():
        api = APIConfig.from_env()
        client = GraphQLClient(api.token, endpoint=api.url, timeout=api.timeout)
        return await lookup_by_id(client, subject, object_id)

    try:
        found = asyncio.run(fetch())
    except ValueError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(2)
    except ReconcileError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    if output != "table":
        click.echo(_dump(found.to_dict(), output))
        return
    rows = [
        [key, "-" if value is None else value]
        for key, value in found.to_dict().items()
    ]
    click.echo(tabulate(rows, headers=["FIELD", "VALUE"], tablefmt="simple"))


@cli.command()
def migrate():
    """Apply pending state store migrations"""

    async def apply_pending():
        store = StateStore.from_config(DatabaseConfig.from_env())
        await store.connect()
        try:
            return await run_migrations(store.pool)
        finally:
            await store.close()

    try:
        applied = asyncio.run(apply_pending())
    except ValueError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(2)
    click.echo(f"Applied {applied} migration(s)")


if __name__ == "__main__":
    cli()
