from __future__ import annotations

import sys
from pathlib import Path

import pytest

# Add backend folder to sys.path so `import receipt_ledger...` works in tests when running from backend root
BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from receipt_ledger.core import config as cfg  # noqa: E402
from receipt_ledger.services.storage_service import FilesystemReceiptStore  # noqa: E402


@pytest.fixture(autouse=True)
def base_settings(monkeypatch):
    monkeypatch.setattr(cfg.settings, "OPENAI_API_KEY", "sk-test", raising=False)
    monkeypatch.setattr(cfg.settings, "RECEIPT_PREPROCESS_IMAGES", False, raising=False)
    monkeypatch.setattr(cfg.settings, "PUBLIC_BASE_URL", "http://ledger.local", raising=False)
    monkeypatch.setattr(cfg.settings, "LEDGER_API_URL", None, raising=False)
    yield


@pytest.fixture
def store(tmp_path):
    return FilesystemReceiptStore(base_dir=tmp_path / "receipts")
