"""
Command line interface.
"""

import sys
import types
from unittest.mock import patch

import pytest
from click.testing import CliRunner

from corvus import AppModule, Corvus, GET, MemoryDatabase, RouteGroup, __version__, controller
from corvus.cli import cli


@controller("/status")
class StatusController:

    @GET("/")
    def index(self, request, ctx):
        return {"ok": True}


class Undeclared:
    pass


@pytest.fixture
def app_module(monkeypatch):
    """Importable module ``corvus_cli_app`` exposing apps in several forms."""
    module = types.ModuleType("corvus_cli_app")
    module.module = AppModule(routes=[RouteGroup(path="/api", controllers=[StatusController])])
    module.app = Corvus(module.module)
    module.factory = lambda: Corvus(module.module)
    module.broken = AppModule(routes=[RouteGroup(controllers=[Undeclared])])
    module.database = MemoryDatabase(name="cli-db")
    module.broken_with_database = AppModule(
        databases=[module.database],
        routes=[RouteGroup(controllers=[Undeclared])],
    )
    module.with_database = AppModule(
        databases=[module.database],
        routes=[RouteGroup(controllers=[StatusController])],
    )
    module.number = 42
    monkeypatch.setitem(sys.modules, "corvus_cli_app", module)
    for key in ("CORVUS_PORT", "CORVUS_PROD", "CORVUS_HOST"):
        monkeypatch.delenv(key, raising=False)
    return module


@pytest.fixture
def runner():
    return CliRunner()


class TestVersion:

    def test_version_command(self, runner):
        result = runner.invoke(cli, ["version"])
        assert result.exit_code == 0
        assert f"corvus {__version__}" in result.output

    def test_version_option(self, runner):
        result = runner.invoke(cli, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.output


class TestRoutes:

    @pytest.mark.parametrize("target", ["corvus_cli_app:app", "corvus_cli_app:module", "corvus_cli_app:factory"])
    def test_prints_route_table(self, runner, app_module, target):
        result = runner.invoke(cli, ["routes", target])
        assert result.exit_code == 0, result.output
        assert "/api/status" in result.output
        assert "StatusController.index" in result.output
        assert "1 routes" in result.output

    def test_startup_failure(self, runner, app_module):
        result = runner.invoke(cli, ["routes", "corvus_cli_app:broken"])
        assert result.exit_code == 1

    @pytest.mark.parametrize("target", ["corvus_cli_app:with_database", "corvus_cli_app:broken_with_database"])
    def test_databases_disconnected_afterwards(self, runner, app_module, target):
        runner.invoke(cli, ["routes", target])
        assert app_module.database.connected is False
        assert app_module.database.verbose is True

    def test_bad_target(self, runner, app_module):
        for target in ("corvus_cli_app", "corvus_cli_app:missing", "not_a_module_xyz:app", "corvus_cli_app:number"):
            result = runner.invoke(cli, ["routes", target])
            assert result.exit_code == 2, target


class TestRun:

    def test_run_applies_options(self, runner, app_module):
        with patch.object(Corvus, "run") as run:
            result = runner.invoke(cli, ["run", "corvus_cli_app:app", "--port", "8081", "--prod", "--log-level", "debug"])

        assert result.exit_code == 0, result.output
        run.assert_called_once_with()
        assert app_module.app.settings.port == 8081
        assert app_module.app.settings.log_level == "debug"
        assert app_module.app.is_prod

    def test_run_env_file(self, runner, app_module, tmp_path):
        env_file = tmp_path / ".env"
        env_file.write_text("CORVUS_PORT=8082\n")
        with patch.object(Corvus, "run"):
            result = runner.invoke(cli, ["run", "corvus_cli_app:app", "--env-file", str(env_file)])
        assert result.exit_code == 0, result.output
        assert app_module.app.settings.port == 8082

    def test_run_reports_config_fault(self, runner, app_module, monkeypatch):
        monkeypatch.setenv("CORVUS_PORT", "not-a-port")
        with patch.object(Corvus, "run") as run:
            result = runner.invoke(cli, ["run", "corvus_cli_app:app"])
        assert result.exit_code == 1
        run.assert_not_called()
