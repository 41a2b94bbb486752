"""Tests for the HTTP-backed TransactionStore, run against the real app in-process."""

import pytest
from fastapi.testclient import TestClient

from cryptofolio.client import HttpTransactionStore
from cryptofolio.ledger import LedgerService, PortfolioService
from cryptofolio.main import create_app
from cryptofolio.models import TxIn, TxUpdate
from cryptofolio.storage import MemoryTransactionStore, TransactionNotFound


@pytest.fixture
def server_store():
    return MemoryTransactionStore()


@pytest.fixture
def remote(server_store, oracle):
    return HttpTransactionStore(client=TestClient(create_app(store=server_store, oracle=oracle)))


class TestHttpTransactionStore:
    def test_ledger_pairs_once_over_http(self, remote, server_store):
        ledger = LedgerService(remote)

        created = ledger.submit(
            TxIn(asset="BTC", type="sell", quantity=0.5, price_usd=60000, destination_asset="USDT")
        )

        assert [t.asset for t in created] == ["BTC", "USDT"]
        assert [t.asset for t in server_store.list()] == ["BTC", "USDT"]
        assert remote.list() == server_store.list()

    def test_get_update_delete(self, remote):
        tx = remote.create(TxIn(asset="ETH", type="buy", quantity=1, price_usd=2000))

        assert remote.get(tx.id) == tx
        assert remote.update(tx.id, TxUpdate(notes="staked")).notes == "staked"
        remote.delete(tx.id)
        with pytest.raises(TransactionNotFound):
            remote.get(tx.id)

    def test_missing_ids_raise_not_found(self, remote):
        with pytest.raises(TransactionNotFound):
            remote.update("nope", TxUpdate(quantity=1))
        with pytest.raises(TransactionNotFound):
            remote.delete("nope")

    def test_history_queries(self, remote):
        btc = remote.create(TxIn(asset="BTC", type="buy", quantity=1, price_usd=100))
        remote.create(TxIn(asset="ETH", type="buy", quantity=1, price_usd=10))

        assert len(remote.history()) == 2
        assert [h.asset for h in remote.history(asset="eth")] == ["ETH"]
        assert [h.transaction_id for h in remote.history(transaction_id=btc.id)] == [btc.id]

    def test_portfolio_over_remote_store(self, remote, oracle):
        remote.create(TxIn(asset="BTC", type="buy", quantity=1, price_usd=50000))

        out = PortfolioService(remote, oracle).summary()

        assert out.rows[0].value == 70000
        assert out.totals.total_pnl == 20000
