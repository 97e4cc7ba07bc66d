"""Tests for the studio command-line interface."""

import pytest
from conftest import FakeApi

from studio import cli


@pytest.fixture(autouse=True)
def _offline_cli(monkeypatch, tmp_path):
    monkeypatch.setenv("STUDIO_CONFIG_FILE", str(tmp_path / "missing-config.json"))
    monkeypatch.setattr(cli, "configure_logging", lambda level, format: None)
    monkeypatch.setattr(cli, "LiteLLMApiAdapter", lambda config: FakeApi())


class TestCli:
    def test_new_creates_project(self, vault_root, capsys):
        exit_code = cli.main(["--vault", str(vault_root), "new", "Launch Plan"])

        assert exit_code == 0
        assert "Created SystemSculpt/Studio/Launch Plan.systemsculpt" in capsys.readouterr().out
        assert (vault_root / "SystemSculpt/Studio/Launch Plan.systemsculpt").exists()

    def test_validate_prints_execution_order(self, vault_root, capsys):
        cli.main(["--vault", str(vault_root), "new", "Plan", "--path", "Plan.systemsculpt"])
        capsys.readouterr()

        exit_code = cli.main(["--vault", str(vault_root), "validate", "Plan.systemsculpt"])

        out = capsys.readouterr().out
        assert exit_code == 0
        assert "1." in out and "(studio.input@1.0.0)" in out
        assert "2." in out and "(studio.text_generation@1.0.0)" in out

    def test_run_prints_outputs_and_summary(self, vault_root, capsys):
        cli.main(["--vault", str(vault_root), "new", "Plan", "--path", "Plan.systemsculpt"])
        capsys.readouterr()

        exit_code = cli.main(["--vault", str(vault_root), "run", "Plan.systemsculpt"])

        out = capsys.readouterr().out
        assert exit_code == 0
        assert "(execution)" in out
        assert "echo: Describe a launch-ready plan" in out
        assert "2 executed, 0 cached" in out

    def test_missing_project_is_an_error(self, vault_root, capsys):
        exit_code = cli.main(["--vault", str(vault_root), "run", "Nope.systemsculpt"])

        assert exit_code == 1
        assert capsys.readouterr().err.startswith("Error: ")

    def test_nodes_needs_no_vault_but_new_does(self, tmp_path, capsys):
        exit_code = cli.main(["--vault", str(tmp_path / "no-vault"), "nodes"])

        assert exit_code == 0
        assert "studio.http_request@1.0.0 [api]" in capsys.readouterr().out

        exit_code = cli.main(["--vault", str(tmp_path / "no-vault"), "new", "X"])

        assert exit_code == 1
        assert "Vault directory does not exist" in capsys.readouterr().err
