"""Tests for the insightrag profiles command and the top-level app."""

from __future__ import annotations

from pathlib import Path

from typer.testing import CliRunner

from insightrag.cli.main import app
from stubs import CSV_HEADER

runner = CliRunner()


def test_profiles_lists_records(csv_path: Path, tmp_path: Path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    result = runner.invoke(app, ["profiles", "--data", str(csv_path)])
    assert result.exit_code == 0, result.output
    assert "5 loaded" in result.output
    assert "Bronze" in result.output


def test_profiles_limit(csv_path: Path, tmp_path: Path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    result = runner.invoke(app, ["profiles", "--data", str(csv_path), "--limit", "2"])
    assert result.exit_code == 0, result.output
    assert "3 more" in result.output


def test_profiles_reports_ingestion_error(tmp_path: Path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    bad = tmp_path / "bad.csv"
    bad.write_text(CSV_HEADER + "\n1,old,Male,UK,1,1,1,1,Low,Gold,1\n", encoding="utf-8")
    result = runner.invoke(app, ["profiles", "--data", str(bad)])
    assert result.exit_code == 1
    assert "Error (ingestion)" in result.output


def test_profiles_reports_non_utf8_file(tmp_path: Path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    bad = tmp_path / "latin1.csv"
    bad.write_bytes(CSV_HEADER.encode() + b"\n1,30,M\xe9le,UK,1,1,1,1,Low,Gold,1\n")
    result = runner.invoke(app, ["profiles", "--data", str(bad)])
    assert result.exit_code == 1
    assert "Error (ingestion)" in result.output
    assert not isinstance(result.exception, UnicodeDecodeError)


def test_version_command():
    result = runner.invoke(app, ["version"])
    assert result.exit_code == 0
    assert result.output.startswith("insightrag ")


def test_version_flag():
    result = runner.invoke(app, ["--version"])
    assert result.exit_code == 0
    assert "insightrag" in result.output
