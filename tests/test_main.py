"""Unit tests for main.py - Command line interface."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from click.testing import CliRunner

from config import APIConfig, Config
from controller import CycleOutcome
from errors import NotFound
from lookup import ServiceInfo
from main import Application, cli

MANIFEST = """
- kind: private_network
  name: backend-net
  spec:
    name: backend
"""


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def manifest_file(tmp_path):
    path = tmp_path / "resources.yaml"
    path.write_text(MANIFEST)
    return str(path)


class TestApply:
    """Tests for the apply command."""

    def test_success(self, runner, manifest_file):
        outcome = CycleOutcome(
            "private_network", "backend-net", True, "created", "env:net-1"
        )
        with patch("main._run", return_value=[outcome]) as mock_run:
            result = runner.invoke(cli, ["apply", manifest_file])

        assert result.exit_code == 0
        assert "backend-net" in result.output
        assert "created" in result.output
        assert "env:net-1" in result.output
        mock_run.assert_called_once()

    def test_failure_exit_code(self, runner, manifest_file):
        outcome = CycleOutcome(
            "private_network",
            "backend-net",
            False,
            error="Transient failure: HTTP 503",
            retryable=True,
        )
        with patch("main._run", return_value=[outcome]):
            result = runner.invoke(cli, ["apply", manifest_file])

        assert result.exit_code == 1
        assert "retryable" in result.output

    def test_warnings_and_drift_shown(self, runner, manifest_file):
        outcome = CycleOutcome(
            "private_network",
            "backend-net",
            True,
            "updated",
            "env:net-1",
            drifted=["tags"],
            warnings=["deletes every resource"],
        )
        with patch("main._run", return_value=[outcome]):
            result = runner.invoke(cli, ["apply", manifest_file])

        assert "drifted: tags" in result.output
        assert "Warning (private_network/backend-net)" in result.output

    def test_empty_manifest(self, runner, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")

        with patch("main._run") as mock_run:
            result = runner.invoke(cli, ["apply", str(path)])

        assert result.exit_code == 0
        assert "No resources found in manifest" in result.output
        mock_run.assert_not_called()

    def test_malformed_manifest(self, runner, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("- kind: private_network\n")

        result = runner.invoke(cli, ["apply", str(path)])

        assert result.exit_code == 2
        assert "missing name" in result.output

    def test_missing_file(self, runner):
        result = runner.invoke(cli, ["apply", "/nonexistent/resources.yaml"])
        assert result.exit_code == 2


class TestImportAndDestroy:
    """Tests for the import and destroy commands."""

    def test_import(self, runner):
        outcome = CycleOutcome("service_limits", "api", True, "unchanged", "svc:env")
        with patch("main._run", return_value=outcome):
            result = runner.invoke(cli, ["import", "service_limits", "api", "svc:env"])

        assert result.exit_code == 0
        assert "unchanged" in result.output

    def test_import_failure(self, runner):
        outcome = CycleOutcome("service_limits", "api", False, error="No such thing")
        with patch("main._run", return_value=outcome):
            result = runner.invoke(cli, ["import", "service_limits", "api", "svc:env"])

        assert result.exit_code == 1
        assert "No such thing" in result.output

    def test_destroy_requires_confirmation(self, runner):
        with patch("main._run") as mock_run:
            result = runner.invoke(
                cli, ["destroy", "private_network", "backend-net"], input="n\n"
            )

        assert result.exit_code == 1
        mock_run.assert_not_called()

    def test_destroy_confirmed(self, runner):
        outcome = CycleOutcome("private_network", "backend-net", True, "removed")
        with patch("main._run", return_value=outcome):
            result = runner.invoke(
                cli, ["destroy", "private_network", "backend-net", "--yes"]
            )

        assert result.exit_code == 0
        assert "removed" in result.output


class TestInspection:
    """Tests for the get, describe and history commands."""

    @pytest.fixture
    def resource(self):
        return {
            "id": 7,
            "kind": "private_network",
            "name": "backend-net",
            "status": "ready",
            "identity": "env:net-1",
            "last_change_kind": "created",
            "desired": {"name": "backend"},
            "canonical": {"name": "backend", "dns_name": "backend.internal"},
            "updated_at": None,
        }

    def test_get_table(self, runner, resource):
        with patch("main._run", return_value=[resource]):
            result = runner.invoke(cli, ["get"])

        assert result.exit_code == 0
        assert "LAST CHANGE" in result.output
        assert "backend-net" in result.output

    def test_get_empty(self, runner):
        with patch("main._run", return_value=[]):
            result = runner.invoke(cli, ["get", "--kind", "service_limits"])

        assert "No resources found" in result.output

    def test_get_json(self, runner, resource):
        with patch("main._run", return_value=[resource]):
            result = runner.invoke(cli, ["get", "-o", "json"])

        assert '"dns_name": "backend.internal"' in result.output

    def test_describe_yaml(self, runner, resource):
        with patch("main._run", return_value=resource):
            result = runner.invoke(
                cli, ["describe", "private_network", "backend-net", "-o", "yaml"]
            )

        assert result.exit_code == 0
        assert "dns_name: backend.internal" in result.output

    def test_describe_not_managed(self, runner):
        with patch("main._run", return_value=None):
            result = runner.invoke(cli, ["describe", "private_network", "nope"])

        assert result.exit_code == 1
        assert "is not managed" in result.output

    def test_history(self, runner):
        entries = [
            {
                "reconcile_time": "2026-01-01 10:00:00.123",
                "success": False,
                "phase": "applying",
                "change_kind": None,
                "duration_seconds": 1.25,
                "trigger_reason": "retry",
                "error_message": "Transient failure: HTTP 503",
            }
        ]
        with patch("main._run", return_value=entries):
            result = runner.invoke(cli, ["history", "private_network", "backend-net"])

        assert result.exit_code == 0
        assert "2026-01-01 10:00:00" in result.output
        assert "1.2s" in result.output or "1.3s" in result.output
        assert "HTTP 503" in result.output

    def test_history_empty(self, runner):
        with patch("main._run", return_value=[]):
            result = runner.invoke(cli, ["history", "private_network", "backend-net"])

        assert "No reconciliation history" in result.output


class TestKindsCommand:
    """Tests for the kinds command."""

    def test_lists_builtin_kinds(self, runner):
        with patch("kinds.registry.entry_points", return_value=[]):
            result = runner.invoke(cli, ["kinds"])

        assert result.exit_code == 0
        assert "private_network_endpoint" in result.output
        assert "coarse" in result.output
        assert "service_id:environment_id" in result.output


class TestLookupCommand:
    """Tests for the lookup command."""

    @pytest.fixture
    def service(self):
        return ServiceInfo("svc-1", "api", "proj-1")

    def test_table(self, runner, monkeypatch, service):
        monkeypatch.setenv("CONTROL_PLANE_TOKEN", "t")
        with patch(
            "main.lookup_by_id", new_callable=AsyncMock, return_value=service
        ) as mock_lookup:
            result = runner.invoke(cli, ["lookup", "service", "svc-1"])

        assert result.exit_code == 0
        assert "project_id" in result.output
        assert "proj-1" in result.output
        client, subject, object_id = mock_lookup.call_args[0]
        assert client.token == "t"
        assert (subject, object_id) == ("service", "svc-1")

    def test_yaml(self, runner, monkeypatch, service):
        monkeypatch.setenv("CONTROL_PLANE_TOKEN", "t")
        with patch("main.lookup_by_id", new_callable=AsyncMock, return_value=service):
            result = runner.invoke(cli, ["lookup", "service", "svc-1", "-o", "yaml"])

        assert "name: api" in result.output

    def test_not_found(self, runner, monkeypatch):
        monkeypatch.setenv("CONTROL_PLANE_TOKEN", "t")
        with patch(
            "main.lookup_by_id",
            new_callable=AsyncMock,
            side_effect=NotFound("No service exists with id svc-1"),
        ):
            result = runner.invoke(cli, ["lookup", "service", "svc-1"])

        assert result.exit_code == 1
        assert "No service exists" in result.output

    def test_missing_token(self, runner, monkeypatch):
        monkeypatch.delenv("CONTROL_PLANE_TOKEN", raising=False)

        result = runner.invoke(cli, ["lookup", "project", "p"])

        assert result.exit_code == 2
        assert "CONTROL_PLANE_TOKEN" in result.output

    def test_unknown_subject(self, runner):
        result = runner.invoke(cli, ["lookup", "workspace", "w"])
        assert result.exit_code == 2


class TestMigrateCommand:
    """Tests for the migrate command."""

    def test_missing_password(self, runner, monkeypatch):
        monkeypatch.delenv("DB_PASSWORD", raising=False)

        result = runner.invoke(cli, ["migrate"])

        assert result.exit_code == 2
        assert "DB_PASSWORD" in result.output

    def test_applies(self, runner, monkeypatch):
        monkeypatch.setenv("DB_PASSWORD", "pw")
        store = MagicMock()
        store.connect = AsyncMock()
        store.close = AsyncMock()

        with patch("main.StateStore.from_config", return_value=store), patch(
            "main.run_migrations", new_callable=AsyncMock, return_value=1
        ):
            result = runner.invoke(cli, ["migrate"])

        assert result.exit_code == 0
        assert "Applied 1 migration(s)" in result.output
        store.close.assert_awaited_once()


@pytest.mark.asyncio
class TestApplication:
    """Tests for Application wiring."""

    async def test_initialize_wires_collaborators(self):
        config = Config.default()
        config.api = APIConfig(token="t", redeploy_on_change=True)
        store = MagicMock()
        store.connect = AsyncMock()
        store.initialize_schema = AsyncMock()
        store.close = AsyncMock()

        with patch("main.StateStore.from_config", return_value=store), patch(
            "kinds.registry.entry_points", return_value=[]
        ):
            app = Application(config)
            await app.initialize()

        store.connect.assert_awaited_once()
        store.initialize_schema.assert_awaited_once()
        instance = app.controller.collaborator_factory("service_instance")
        network = app.controller.collaborator_factory("private_network")
        assert instance.redeploy is True
        assert network.client is app.client

        await app.shutdown()
        store.close.assert_awaited_once()

    async def test_run_shuts_down_on_error(self):
        app = Application(Config.default())
        app.initialize = AsyncMock()
        app.shutdown = AsyncMock()

        async def failing(application):
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            await app.run(failing)
        app.shutdown.assert_awaited_once()
