import json

import pytest
from typer.testing import CliRunner

from conftest import FakeDirectory, item
from driveflow import cli
from driveflow.config import CONFIG_FILENAME, STATE_DB_FILENAME


runner = CliRunner()


@pytest.fixture
def workspace(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    return tmp_path


def test_init_writes_config(workspace):
    result = runner.invoke(
        cli.app, ["init", "--root", "https://drive.google.com/drive/folders/ABC123", "--interval", "10"]
    )

    assert result.exit_code == 0, result.output
    data = json.loads((workspace / CONFIG_FILENAME).read_text(encoding="utf-8"))
    assert data["root_folder_id"] == "ABC123"
    assert data["poll_interval_seconds"] == 10.0
    assert data["fetch_timeout_seconds"] == 8.0


def test_init_rejects_bad_interval(workspace):
    result = runner.invoke(cli.app, ["init", "--interval", "0"])
    assert result.exit_code == 1
    assert not (workspace / CONFIG_FILENAME).exists()


def test_commands_need_init(workspace):
    result = runner.invoke(cli.app, ["status"])
    assert result.exit_code == 1
    assert "dflow init" in " ".join(result.output.split())


def test_status_compares_against_recorded_snapshot(workspace, monkeypatch):
    directory = FakeDirectory({"root": [item("a"), item("b")]})
    monkeypatch.setattr(cli, "_load_client", lambda config: directory)
    assert runner.invoke(cli.app, ["init"]).exit_code == 0

    first = runner.invoke(cli.app, ["status", "--refresh-snapshot"])
    assert first.exit_code == 0, first.output
    assert (workspace / STATE_DB_FILENAME).exists()

    directory.tree["root"] = [item("a"), item("c")]
    second = runner.invoke(cli.app, ["status"])
    assert second.exit_code == 0, second.output
    assert "New" in second.output and "Deleted" in second.output

    third = runner.invoke(cli.app, ["status"])
    assert "Deleted" in third.output


def test_encrypt_then_decrypt(workspace):
    encrypted = runner.invoke(cli.app, ["encrypt", "top secret", "--password", "pw", "--salt", "s"])
    assert encrypted.exit_code == 0
    token = encrypted.output.strip()

    decrypted = runner.invoke(cli.app, ["decrypt", token, "--password", "pw", "--salt", "s"])
    assert decrypted.output.strip() == "top secret"

    wrong = runner.invoke(cli.app, ["decrypt", token, "--password", "nope", "--salt", "s"])
    assert wrong.exit_code == 1


def test_watch_rejects_zero_interval_instead_of_using_default(workspace, monkeypatch):
    directory = FakeDirectory({"root": [item("a")]})
    monkeypatch.setattr(cli, "_load_client", lambda config: directory)
    assert runner.invoke(cli.app, ["init"]).exit_code == 0

    result = runner.invoke(cli.app, ["watch", "--interval", "0"])

    assert result.exit_code == 1
    assert "interval" in result.output.lower()
    assert directory.calls == []
