"""
Smoke tests for the command-line entry point, run against the mock tables.
"""
import sys
import pytest
import main


@pytest.fixture(autouse=True)
def fast_bootstrap(monkeypatch):
    monkeypatch.setenv("REFDATA_STARTUP_DELAY", "0")
    monkeypatch.setenv("REFDATA_RETRY_BACKOFF", "0")


def run_cli(monkeypatch, *args):
    monkeypatch.setattr(sys, "argv", ["main.py", *args])
    main.main()


def test_refdata(monkeypatch, capsys):
    """refdata prints the labels of one domain."""
    run_cli(monkeypatch, "refdata", "--mock", "--domain", "country")
    out = capsys.readouterr().out
    assert "COUNTRY (5 entries)" in out
    assert "Romania" in out


def test_filter_shows_query(monkeypatch, capsys):
    """filter prints the entity path and the OData filter."""
    run_cli(monkeypatch, "filter", "--country", "RO", "PL", "--company", "1000")
    out = capsys.readouterr().out
    assert "/Reconciliation" in out
    assert "substringof('RO',CountryList)" in out


def test_filter_run(monkeypatch, capsys):
    """filter --run executes the query against mock data."""
    run_cli(monkeypatch, "filter", "--recon", "R-0001", "--only-differences", "--run", "--mock", "--limit", "1")
    out = capsys.readouterr().out
    assert "DiffGrossAmount ne 0" in out
    assert "RESULTS" in out


def test_aggregate(monkeypatch, capsys):
    """aggregate prints labeled buckets from real rows."""
    run_cli(monkeypatch, "aggregate", "R-0001", "--mock")
    out = capsys.readouterr().out
    assert "DIFFERENCES BY COMPANYCODE" in out
    assert "(2000)" in out
    assert "sample data" not in out


def test_bad_filter_exits(monkeypatch):
    """An inverted date range exits with status 1."""
    with pytest.raises(SystemExit) as exc_info:
        run_cli(monkeypatch, "filter", "--from", "2024-02-01", "--to", "2024-01-01")
    assert exc_info.value.code == 1


def test_no_command(monkeypatch):
    """Running without a command exits."""
    with pytest.raises(SystemExit):
        run_cli(monkeypatch)
