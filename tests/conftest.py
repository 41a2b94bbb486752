"""Shared fixtures: transaction factory, quote factory, in-memory store, fake price oracle."""

import uuid
from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient

from cryptofolio.main import create_app
from cryptofolio.models import AssetPrice, Transaction, TxType
from cryptofolio.prices import PriceOracle
from cryptofolio.storage import MemoryPriceCache, MemoryTransactionStore

T0 = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def make_tx():
    """Build a stored Transaction without going through input validation."""

    def _make(asset, type, quantity, price=None, **kw):
        created = kw.pop("created_at", T0)
        return Transaction(
            id=kw.pop("id", uuid.uuid4().hex),
            asset=asset,
            type=TxType(type),
            quantity=quantity,
            price_usd=price,
            created_at=created,
            updated_at=created,
            **kw,
        )

    return _make


@pytest.fixture
def quote():
    def _quote(symbol, price, pct=0.0):
        return AssetPrice(
            symbol=symbol,
            name=symbol.title(),
            current_price=price,
            price_change_percentage_24h=pct,
            last_updated=T0.isoformat(),
        )

    return _quote


class FakeSource:
    """Quote source backed by a dict; records every call."""

    def __init__(self, prices=None, error=None):
        self.prices = prices or {}
        self.error = error
        self.calls = []

    def __call__(self, symbols):
        self.calls.append(list(symbols))
        if self.error is not None:
            raise self.error
        return {s: self.prices[s] for s in symbols if s in self.prices}


@pytest.fixture
def fake_source():
    return FakeSource


@pytest.fixture
def store():
    return MemoryTransactionStore()


@pytest.fixture
def market(quote):
    return {
        "BTC": quote("BTC", 70000.0, 0.0),
        "ETH": quote("ETH", 3000.0, 0.0),
        "USDT": quote("USDT", 1.0, 0.0),
    }


@pytest.fixture
def oracle(market):
    return PriceOracle(
        api_source=FakeSource(market),
        scraper_source=FakeSource(),
        cache=MemoryPriceCache(),
        mode="api",
        ttl=0,
    )


@pytest.fixture
def client(store, oracle):
    return TestClient(create_app(store=store, oracle=oracle))
