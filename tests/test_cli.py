"""
Tests for the CLI interface.
"""
import os
import tempfile
from unittest.mock import patch, MagicMock

import pytest
import yaml
from rich.console import Console
from typer.testing import CliRunner

from ai_task_router.cli.main import app, EXIT_CODE_PASS, EXIT_CODE_FAIL
from ai_task_router.core.oracle import Decision
from ai_task_router.core.router import TaskResult
from ai_task_router.storage.repository import QuotaLedger

runner = CliRunner()


@pytest.fixture(autouse=True)
def quiet_logging(monkeypatch):
    """Keep log handlers off the runner's captured streams and tables unwrapped."""
    monkeypatch.delenv("MAIN_AGENT_MODEL", raising=False)
    with patch('ai_task_router.cli.main.setup_logging') as mock, \
            patch('ai_task_router.cli.main.console', Console(width=200)):
        yield mock


@pytest.fixture
def mock_build_services():
    """Mock the service wiring used by the run command."""
    with patch('ai_task_router.cli.main.build_services') as mock:
        yield mock


class TestCLI:
    """Test CLI commands."""

    def setup_method(self):
        """Set up a config file and ledger path in a temp directory."""
        self.temp_dir = tempfile.mkdtemp()
        self.db_path = os.path.join(self.temp_dir, "ledger.db")
        self.config_path = os.path.join(self.temp_dir, "router.yaml")
        with open(self.config_path, 'w', encoding='utf-8') as f:
            yaml.dump({
                "storage": {"path": self.db_path},
                "oracle": {"origin": "alpha", "model": "judge"},
                "providers": {"alpha": {"api_key_env": "ALPHA_API_KEY"}},
                "catalog": {
                    "alpha": [
                        {"name": "m-small", "rank": 1, "rpm_allowed": 10,
                         "tpm_total": 1000, "rpd_total": 100},
                        {"name": "m-large", "rank": 2, "rpm_allowed": 5,
                         "tpm_total": 5000, "rpd_total": 50},
                    ]
                }
            }, f)

    def teardown_method(self):
        """Clean up test environment."""
        import shutil
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def _invoke(self, *args, **kwargs):
        return runner.invoke(app, ["--config", self.config_path, *args], **kwargs)

    def test_missing_config_fails(self):
        result = runner.invoke(app, ["--config", os.path.join(self.temp_dir, "nope.yaml"), "stats"])

        assert result.exit_code == EXIT_CODE_FAIL
        assert "Error loading config" in result.output

    def test_config_from_environment(self):
        result = runner.invoke(app, ["seed"], env={"AI_TASK_ROUTER_CONFIG": self.config_path})

        assert result.exit_code == EXIT_CODE_PASS
        assert "Seeded 2 models" in result.output

    def test_init_creates_ledger(self):
        result = self._invoke("init")

        assert result.exit_code == EXIT_CODE_PASS
        assert os.path.exists(self.db_path)

    def test_seed_and_stats(self):
        assert self._invoke("seed").exit_code == EXIT_CODE_PASS
        QuotaLedger(self.db_path).record_usage("m-small", 3, 250)

        result = self._invoke("stats")

        assert result.exit_code == EXIT_CODE_PASS
        assert "m-small" in result.output
        assert "m-large" in result.output
        assert "3/10" in result.output

    def test_stats_empty_ledger(self):
        result = self._invoke("stats")

        assert result.exit_code == EXIT_CODE_PASS
        assert "No models in the ledger" in result.output

    def test_disable_and_enable(self):
        self._invoke("seed")

        result = self._invoke("disable", "m-small")
        assert result.exit_code == EXIT_CODE_PASS
        assert not QuotaLedger(self.db_path).get_model("m-small").enabled

        result = self._invoke("enable", "m-small")
        assert result.exit_code == EXIT_CODE_PASS
        assert QuotaLedger(self.db_path).get_model("m-small").enabled

    def test_disable_unknown_model(self):
        result = self._invoke("disable", "ghost")

        assert result.exit_code == EXIT_CODE_FAIL
        assert "Unknown model" in result.output

    def test_prune(self):
        self._invoke("seed")

        result = self._invoke("prune")

        assert result.exit_code == EXIT_CODE_PASS
        assert "Pruned 0 usage events and 0 outcome events" in result.output

    def test_failures_listed(self):
        self._invoke("seed")
        QuotaLedger(self.db_path).record_outcome("m-small", "code", False, 0, "rate limited")

        result = self._invoke("failures", "m-small")

        assert result.exit_code == EXIT_CODE_PASS
        assert "rate limited" in result.output

    def test_no_failures(self):
        self._invoke("seed")

        result = self._invoke("failures", "m-small", "--limit", "5")

        assert result.exit_code == EXIT_CODE_PASS
        assert "No recorded failures for m-small" in result.output

    def test_run_success(self, mock_build_services):
        services = MagicMock()
        services.router.execute_task.return_value = TaskResult(
            success=True,
            model_used="m-small",
            tokens_used=1234,
            decision=Decision("m-small", "short task", 200, "simple"),
            response="Paris",
            attempted_models=["m-small"]
        )
        mock_build_services.return_value = services

        result = self._invoke("run", "capital of France?", "--type", "qa")

        assert result.exit_code == EXIT_CODE_PASS
        assert "Paris" in result.output
        assert "1,234" in result.output
        services.router.execute_task.assert_called_once_with("capital of France?", "qa")

    def test_run_failure_exits_nonzero(self, mock_build_services):
        services = MagicMock()
        services.router.execute_task.return_value = TaskResult(
            success=False,
            model_used="none",
            error="No models available: all rate limits exceeded",
            error_type="CapacityExhaustedError"
        )
        mock_build_services.return_value = services

        result = self._invoke("run", "anything")

        assert result.exit_code == EXIT_CODE_FAIL
        assert "CapacityExhaustedError" in result.output
