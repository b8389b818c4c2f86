# tests/conftest.py
"""Shared pytest fixtures for payment gate tests."""
import pytest

from app.paygate import audit
from tests.paygate_fakes import FakeChainClient, FakeClock, build_gate


@pytest.fixture(autouse=True)
def audit_log_path(tmp_path, monkeypatch):
    """Send audit events to a per-test file."""
    log_path = tmp_path / "audit.jsonl"
    monkeypatch.setattr(audit.settings, "PAYGATE_AUDIT_LOG_PATH", str(log_path))
    return log_path


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def chain():
    return FakeChainClient()


@pytest.fixture
def gate(chain, clock):
    return build_gate(chain, clock)
