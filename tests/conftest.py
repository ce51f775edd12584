from __future__ import annotations

import json
import shutil
import sys
from datetime import UTC, datetime
from pathlib import Path

import pytest

# pytest may run without installing the project; ensure repo root is importable.
REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from relay.core.config import Config  # noqa: E402
from tests._factories import account_payload  # noqa: E402

NOW = datetime(2025, 1, 15, 12, 0, 0, tzinfo=UTC)


@pytest.fixture()
def temp_dir(tmp_path: Path) -> Path:
    return tmp_path


@pytest.fixture()
def test_config(temp_dir: Path) -> Config:
    """Config fixture that points data_dir to a temp directory."""

    cfg_dst_dir = temp_dir / "config"
    cfg_dst_dir.mkdir(parents=True, exist_ok=True)

    # copy default + presets
    shutil.copy2(REPO_ROOT / "config" / "default.yaml", cfg_dst_dir / "default.yaml")
    shutil.copytree(REPO_ROOT / "config" / "presets", cfg_dst_dir / "presets")

    c = Config.from_yaml(cfg_dst_dir / "default.yaml")
    return c.model_copy(update={"paths": c.paths.model_copy(update={"data_dir": temp_dir / "data"})})


@pytest.fixture()
def now() -> datetime:
    return NOW


@pytest.fixture()
def payload_file(temp_dir: Path) -> Path:
    path = temp_dir / "account.json"
    path.write_text(json.dumps(account_payload()), encoding="utf-8")
    return path


@pytest.fixture()
def anyio_backend() -> str:
    # The code under test is asyncio-based (asyncio.run, asyncio.Lock, asyncio.sleep).
    return "asyncio"
