"""
Tests for the click command-line interface.
"""

import asyncio
import json

import pytest
import yaml
from click.testing import CliRunner
from rankharvest import cli as cli_module
from rankharvest.cli import cli
from rankharvest.config import Config
from rankharvest.recovery import FailedTargetQueue
from rankharvest.scheduler import SweepState
from rankharvest.storage import SnapshotStore
from rankharvest.utils import atomic_write_json

from tests.helpers.factories import make_records


@pytest.fixture(autouse=True)
def quiet_logging(monkeypatch):
    monkeypatch.setattr(cli_module, "configure_logging", lambda config: None)


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(
        yaml.safe_dump(
            {
                "targets": {"ASIA1": {"id": 11, "servers": {"ASIA011": 101}}},
                "storage": {"db_path": str(tmp_path / "rankings.db"), "pool_size": 1},
                "sweep": {
                    "state_file": str(tmp_path / "sweep_state.json"),
                    "failed_targets_file": str(tmp_path / "failed.json"),
                },
                "debug": {"html_dir": str(tmp_path / "artifacts")},
            }
        )
    )
    return path


@pytest.fixture
def runner():
    return CliRunner()


@pytest.mark.unit
class TestCli:
    def test_status_without_sweep(self, runner, config_file):
        result = runner.invoke(cli, ["--config", str(config_file), "status"])

        assert result.exit_code == 0
        assert "No sweep has been recorded yet" in result.output

    def test_status_with_checkpoint(self, runner, config_file):
        config = Config.from_yaml(config_file)
        state = SweepState(sweep_id="abc", targets_total=4, targets_processed=4, targets_skipped=1)
        atomic_write_json(config.sweep.state_file, state.model_dump(mode="json"))

        result = runner.invoke(cli, ["--config", str(config_file), "status"])

        assert result.exit_code == 0
        assert "Sweep abc" in result.output
        assert "Processed" in result.output

    def test_config_file_discovered_in_working_directory(self, runner, config_file, monkeypatch):
        config = Config.from_yaml(config_file)
        atomic_write_json(config.sweep.state_file, SweepState(sweep_id="found").model_dump(mode="json"))
        monkeypatch.chdir(config_file.parent)

        result = runner.invoke(cli, ["status"])

        assert result.exit_code == 0
        assert "Sweep found" in result.output

    def test_failed_lists_queue(self, runner, config_file):
        config = Config.from_yaml(config_file)
        FailedTargetQueue(config.sweep.failed_targets_file).record("ASIA1_ASIA011", "transient", "lost")

        result = runner.invoke(cli, ["--config", str(config_file), "failed"])

        assert result.exit_code == 0
        assert "ASIA1_ASIA011" in result.output

    def test_failed_empty(self, runner, config_file):
        result = runner.invoke(cli, ["--config", str(config_file), "failed"])

        assert "No failed targets" in result.output

    def test_cleanup(self, runner, config_file):
        result = runner.invoke(cli, ["--config", str(config_file), "cleanup", "--max-age-hours", "1"])

        assert result.exit_code == 0
        assert "Removed 0 artifact(s)" in result.output

    def test_harvest_unknown_target(self, runner, config_file):
        result = runner.invoke(cli, ["--config", str(config_file), "harvest", "EU1", "EU011"])

        assert result.exit_code == 2
        assert "not a configured target" in result.output

    def test_diff_without_history(self, runner, config_file):
        result = runner.invoke(cli, ["--config", str(config_file), "diff", "ASIA1", "ASIA011"])

        assert result.exit_code == 1
        assert "Cannot diff" in result.output

    def test_diff_json(self, runner, config_file):
        config = Config.from_yaml(config_file)

        async def seed():
            store = SnapshotStore(config.storage)
            await store.initialize()
            try:
                await store.replace_snapshot("ASIA1_ASIA011", make_records(10), "browser")
                await store.replace_snapshot("ASIA1_ASIA011", make_records(9) + make_records(1, start=50), "browser")
            finally:
                await store.close()

        asyncio.run(seed())

        result = runner.invoke(cli, ["--config", str(config_file), "diff", "ASIA1", "ASIA011", "--json-output"])

        assert result.exit_code == 0
        report = json.loads(result.output[result.output.index('{\n  "target_key"') :])
        assert report["classification"] == "changes"
        assert report["summary"]["added"] == 1
        assert report["summary"]["removed"] == 1

    def test_version(self, runner):
        result = runner.invoke(cli, ["--version"])

        assert result.exit_code == 0
        assert "0.1.0" in result.output
