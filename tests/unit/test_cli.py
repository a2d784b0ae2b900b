"""
Tests for the operations CLI.
"""

from pathlib import Path

import pytest

from src.app_shell.cli import main


@pytest.fixture
def cli_args(tmp_path: Path, project_root: Path, monkeypatch: pytest.MonkeyPatch) -> list[str]:
    monkeypatch.delenv("PI_API_KEY", raising=False)
    monkeypatch.setenv("PAYWALL_DEV_MODE", "1")
    args = ["--rules", str(project_root / "rules.yaml"), "--data-dir", str(tmp_path)]
    main([*args, "migrate"])
    return args


def test_migrate_creates_database(cli_args: list[str], tmp_path: Path, capsys) -> None:
    assert (tmp_path / "paywall.db").exists()
    main([*cli_args, "migrate"])
    assert "Applied 0 migration(s)" in capsys.readouterr().out


def test_seed(cli_args: list[str], capsys) -> None:
    main([*cli_args, "seed"])
    assert "demo-sunrise" in capsys.readouterr().out


def test_show_missing_payment_exits(cli_args: list[str]) -> None:
    with pytest.raises(SystemExit) as exc:
        main([*cli_args, "show-payment", "pay-missing"])
    assert exc.value.code == 1


def test_recover_then_show(cli_args: list[str], capsys) -> None:
    # Dev mode without an API key: the stub network reports an approved payment
    main([*cli_args, "recover", "pay-1"])
    assert "stored approved" in capsys.readouterr().out

    main([*cli_args, "show-payment", "pay-1"])
    assert "approved" in capsys.readouterr().out


def test_grants_empty(cli_args: list[str], capsys) -> None:
    main([*cli_args, "grants", "alice"])
    assert "No entitlements for alice" in capsys.readouterr().out


def test_recover_without_api_key_outside_dev_mode(
    cli_args: list[str], monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.delenv("PAYWALL_DEV_MODE")

    with pytest.raises(RuntimeError, match="PI_API_KEY"):
        main([*cli_args, "recover", "pay-1"])
