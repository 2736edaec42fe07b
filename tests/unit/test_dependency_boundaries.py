"""Dependency boundary checks: optional backends stay optional."""

from __future__ import annotations

import os
import subprocess
import sys
import tomllib
from pathlib import Path


def _read_toml(path: Path) -> dict:
    return tomllib.loads(path.read_text(encoding="utf-8"))


def test_package_import_does_not_load_optional_backends():
    code = r"""
import sys
import skillsync.interfaces  # noqa: F401
blocked = {"hnswlib", "openai", "google.genai"}
loaded = set(sys.modules)
found = sorted(name for name in blocked if name in loaded)
if found:
    raise SystemExit(f"Unexpected imports: {found}")
"""
    src = Path(__file__).resolve().parents[2] / "src"
    paths = [str(src), os.environ.get("PYTHONPATH")]
    env = {**os.environ, "PYTHONPATH": os.pathsep.join(p for p in paths if p)}
    result = subprocess.run(
        [sys.executable, "-c", code],
        capture_output=True,
        text=True,
        check=False,
        env=env,
    )
    assert result.returncode == 0, result.stderr or result.stdout


def test_sync_module_has_no_embedding_imports():
    sync_root = Path(__file__).resolve().parents[2] / "src" / "skillsync" / "modules" / "sync"
    blocked_markers = {"modules.embeddings", "hnswlib", "openai", "genai", "numpy"}
    offenders: list[Path] = []
    for path in sync_root.rglob("*.py"):
        text = path.read_text(encoding="utf-8")
        if any(marker in text for marker in blocked_markers):
            offenders.append(path)

    assert not offenders, f"Blocked imports found in sync module: {offenders}"


def test_core_dependencies_exclude_optional_backends():
    root = Path(__file__).resolve().parents[2]
    data = _read_toml(root / "pyproject.toml")
    deps = {d.split(";")[0].strip() for d in data["project"]["dependencies"]}
    blocked = {"hnswlib", "openai", "google-genai"}
    assert not {d for d in deps for b in blocked if d.startswith(b)}
    extras = data["project"]["optional-dependencies"]
    assert any(d.startswith("hnswlib") for d in extras["ann"])
