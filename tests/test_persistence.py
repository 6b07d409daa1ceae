# tests/test_persistence.py
"""
Tests for the DB layer: session_scope commit/rollback and that recorded
requests survive an engine reconfigure (i.e. they are really on disk).
"""
import pytest

from oracle_bridge import db as dbmod
from oracle_bridge.connectors.functions_gateway import MockGatewayTransport
from oracle_bridge.consumer import OracleConfig, OracleConsumer
from oracle_bridge.models import OracleRequest
from oracle_bridge.registry import RequestRegistry


@pytest.fixture
def db_url(tmp_path):
    url = f"sqlite:///{tmp_path / 'persist.db'}"
    dbmod.reconfigure(url)
    dbmod.init_db()
    return url


def test_session_scope_rolls_back_on_error(db_url):
    with pytest.raises(RuntimeError):
        with dbmod.session_scope() as db:
            RequestRegistry(db).create("rolled-back")
            raise RuntimeError("boom")
    with dbmod.session_scope() as db:
        assert db.get(OracleRequest, "rolled-back") is None


def test_records_survive_reconfigure(db_url):
    transport = MockGatewayTransport()
    consumer = OracleConsumer(config=OracleConfig(), transport=transport)
    rid = consumer.submit("2025-01-19")
    transport.deliver(rid, b"4.123", b"")

    dbmod.reconfigure(db_url)
    fresh = OracleConsumer(config=OracleConfig(), transport=MockGatewayTransport())
    assert fresh.status(rid).response == b"4.123"
    assert fresh.entry_by_key("2025-01-19").data == "4.123"
