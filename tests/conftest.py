"""
Shared pytest fixtures for the otphaven test suite.

Autouse fixtures below isolate tests from real user data:
  - Audit logger   -> temp directory  (no test events in ~/.otphaven/audit_logs)
  - Environment    -> temp data dir   (CLI tests never touch the real vault)
"""

import pytest


@pytest.fixture(autouse=True)
def _isolate_audit_logs(tmp_path):
    """Point the global AuditLogger at a temp directory for every test.

    Without this, any test that (directly or indirectly) calls
    ``get_audit_logger().log_event(...)`` creates ``./audit_logs/`` in the
    working directory.
    """
    import otphaven.core.audit_log as audit_mod

    old_logger = audit_mod._audit_logger
    test_logger = audit_mod.AuditLogger(log_dir=tmp_path / "audit_logs")
    audit_mod._audit_logger = test_logger

    yield test_logger

    test_logger.close()
    audit_mod._audit_logger = old_logger


@pytest.fixture(autouse=True)
def _isolate_environment(tmp_path, monkeypatch):
    """Keep otphaven settings from the developer's shell out of tests."""
    for name in (
        "OTPHAVEN_DATA_DIR",
        "OTPHAVEN_LOG_DIR",
        "OTPHAVEN_RELAY_URL",
        "OTPHAVEN_DISABLE_PIN",
        "OTPHAVEN_LOGIN_MESSAGE",
    ):
        # setenv first so teardown also removes values loaded from .env files
        monkeypatch.setenv(name, "")
        monkeypatch.delenv(name)
    monkeypatch.chdir(tmp_path)


# ── Shared builders ──────────────────────────────────────────────────


@pytest.fixture
def account_factory():
    """Build accounts with sensible defaults."""
    from otphaven.models import Account

    def make(account_id="acc-1", **kwargs):
        kwargs.setdefault("issuer", "GitHub")
        kwargs.setdefault("label", "alice@example.com")
        kwargs.setdefault("secret", "JBSWY3DPEHPK3PXP")
        return Account(id=account_id, **kwargs)

    return make


@pytest.fixture
def memory_gateway():
    from otphaven.vault.storage import MemoryKeyValueStore, StorageGateway

    return StorageGateway(MemoryKeyValueStore())


@pytest.fixture
def audit_logger(_isolate_audit_logs):
    """The per-test AuditLogger, for asserting on written events."""
    return _isolate_audit_logs
