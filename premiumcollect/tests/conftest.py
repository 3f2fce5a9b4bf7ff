from __future__ import annotations

import os
from pathlib import Path
import tempfile

# Point settings at a throwaway SQLite file before any premiumcollect module builds the engine.
_DB_DIR = Path(tempfile.mkdtemp(prefix="premiumcollect-tests-"))
os.environ.setdefault("DATABASE_URL", f"sqlite+aiosqlite:///{_DB_DIR / 'test.db'}")
os.environ.setdefault("BOOTSTRAP_ON_STARTUP", "false")
# The last_used_at touch runs on its own connection; SQLite serializes writers, so tests opt in.
os.environ.setdefault("API_KEY_TOUCH_LAST_USED", "false")

import pytest  # noqa: E402

from premiumcollect.services.broadcaster import broadcaster  # noqa: E402


@pytest.fixture(autouse=True)
def reset_broadcaster() -> None:
    broadcaster._sessions.clear()
    yield
    broadcaster._sessions.clear()
