from pathlib import Path

import pytest

from src.adapters.sqlite.migrator import SQLiteMigrator
from src.rules.loader import load_rules
from src.rules.models import Rules

PROJECT_ROOT = Path(__file__).resolve().parent.parent


@pytest.fixture
def project_root() -> Path:
    return PROJECT_ROOT


@pytest.fixture
def rules() -> Rules:
    """The real rules.yaml from the project root."""
    return load_rules(PROJECT_ROOT / "rules.yaml")


@pytest.fixture
def db_path(tmp_path: Path) -> str:
    """Temporary SQLite database with all migrations applied."""
    path = str(tmp_path / "paywall.db")
    SQLiteMigrator(path, str(PROJECT_ROOT / "migrations")).run_migrations()
    return path
