"""Root test configuration for context-guard.

Every test runs with an isolated config search path and environment, so a
developer's own ``~/.guard/config.yaml`` or ``CONTEXT_GUARD_*`` variables never
leak into the suite.

Shared fixtures:
  project_dir: an empty project root under tmp_path
  home_dir:    a fake home directory under tmp_path
  guard:       a SecurityGuard bound to project_dir / home_dir
"""

from __future__ import annotations

from pathlib import Path

import pytest

from guard.guard import SecurityGuard


@pytest.fixture(autouse=True)
def isolate_config(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """No config file is found unless a test provides one."""
    for var in ("CONTEXT_GUARD_CONFIG", "CONTEXT_GUARD_PROJECT_ROOT", "CONTEXT_GUARD_USER"):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setattr("guard.config.DEFAULT_CONFIG_PATHS", [])
    monkeypatch.chdir(tmp_path)


@pytest.fixture
def project_dir(tmp_path: Path) -> Path:
    root = tmp_path / "project"
    (root / "src").mkdir(parents=True)
    (root / "src" / "app.py").write_text("print('hello')\n")
    return root


@pytest.fixture
def home_dir(tmp_path: Path) -> Path:
    home = tmp_path / "home"
    home.mkdir()
    return home


@pytest.fixture
def guard(project_dir: Path, home_dir: Path) -> SecurityGuard:
    return SecurityGuard(project_dir, user="tester", home=home_dir)
