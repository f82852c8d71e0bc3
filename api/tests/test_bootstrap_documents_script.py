from __future__ import annotations

import os
import subprocess
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[2]
SCRIPT_PATH = ROOT / "scripts" / "bootstrap_documents.py"


def _run_script(*args: str) -> str:
    env = {**os.environ, "PYTHONPATH": os.pathsep.join(filter(None, [str(ROOT / "api"), os.getenv("PYTHONPATH")]))}
    completed = subprocess.run(
        [sys.executable, str(SCRIPT_PATH), *args],
        check=True,
        capture_output=True,
        text=True,
        env=env,
    )
    return completed.stdout


def test_bootstrap_script_emits_documents_ddl() -> None:
    output = _run_script()

    assert "create table if not exists documents" in output
    assert "documents_data_gin_idx" in output
    assert "insert into documents" not in output


def test_bootstrap_script_can_seed_root_interests() -> None:
    output = _run_script("--seed-interests")

    assert output.count("insert into documents") == 10
    assert "values ('interests', 'fashion', jsonb_build_object(" in output
    assert "'level', 0" in output
    assert "'isActive', true" in output
    assert "on conflict (collection, id) do nothing;" in output
