import subprocess

import pytest

from datastores import staging
from datastores.exceptions import TransferError
from datastores.staging import LocalStager, ScpStager, make_stager, staged_file_name


def test_local_stager_copies_and_removes(tmp_path):
    source = tmp_path / "extract.csv"
    source.write_text("item,brand\nmilk,acme\n", encoding="utf-8")
    staging_dir = tmp_path / "staging"
    staging_dir.mkdir()

    stager = LocalStager(str(staging_dir))
    staged = stager.stage(str(source), "groceries")

    target = staging_dir / "groceries.csv"
    assert staged.server_path == str(target.resolve())
    assert target.read_text(encoding="utf-8") == source.read_text(encoding="utf-8")

    stager.remove(staged)
    assert not target.exists()
    # Removing twice is harmless
    stager.remove(staged)


def test_local_stager_overwrites_previous_stage(tmp_path):
    staging_dir = tmp_path / "staging"
    staging_dir.mkdir()
    first = tmp_path / "a.csv"
    second = tmp_path / "b.csv"
    first.write_text("x\n1\n", encoding="utf-8")
    second.write_text("x\n2\n", encoding="utf-8")

    stager = LocalStager(str(staging_dir))
    stager.stage(str(first), "numbers")
    stager.stage(str(second), "numbers")

    assert [p.name for p in staging_dir.iterdir()] == ["numbers.csv"]
    assert (staging_dir / "numbers.csv").read_text(encoding="utf-8") == "x\n2\n"


def test_local_stager_missing_source(tmp_path):
    with pytest.raises(TransferError):
        LocalStager(str(tmp_path)).stage(str(tmp_path / "missing.csv"), "groceries")


@pytest.mark.parametrize("table_name", ["", "a/b", "..\\x", ".."])
def test_staged_file_name_rejects_paths(table_name):
    with pytest.raises(TransferError):
        staged_file_name(table_name)


@pytest.fixture()
def recorded_commands(monkeypatch):
    commands = []

    def fake_run(cmd, **kwargs):
        commands.append(cmd)
        return subprocess.CompletedProcess(cmd, 0, "", "")

    monkeypatch.setattr(staging.subprocess, "run", fake_run)
    return commands


def test_scp_stager_copies_and_removes(recorded_commands):
    stager = ScpStager("loader@db.example.com:/var/lib/staging/")

    staged = stager.stage("/data/extract.csv", "groceries")
    stager.remove(staged)

    assert staged.server_path == "/var/lib/staging/groceries.csv"
    assert recorded_commands == [
        ["scp", "/data/extract.csv", "loader@db.example.com:/var/lib/staging/groceries.csv"],
        ["ssh", "loader@db.example.com", "rm", "-f", "/var/lib/staging/groceries.csv"],
    ]


def test_scp_stager_failure(monkeypatch):
    def failing_run(cmd, **kwargs):
        raise subprocess.CalledProcessError(1, cmd, stderr="Permission denied")

    monkeypatch.setattr(staging.subprocess, "run", failing_run)

    with pytest.raises(TransferError) as exc_info:
        ScpStager("db.example.com:/staging").stage("/data/extract.csv", "groceries")
    assert exc_info.value.table == "groceries"


def test_scp_stager_needs_a_host():
    with pytest.raises(ValueError):
        ScpStager("/var/lib/staging")


def test_make_stager_picks_transport_from_directory(tmp_path):
    assert isinstance(make_stager(str(tmp_path)), LocalStager)
    assert isinstance(make_stager("loader@db.example.com:/staging"), ScpStager)
    assert isinstance(make_stager("loader@db.example.com:/staging", mode="local"), LocalStager)
    assert isinstance(make_stager("db.example.com:/staging", mode="SCP"), ScpStager)


def test_make_stager_rejects_bad_configuration():
    with pytest.raises(ValueError):
        make_stager("")
    with pytest.raises(ValueError):
        make_stager("/staging", mode="ftp")
