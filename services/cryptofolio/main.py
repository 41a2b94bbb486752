import logging
import time
from typing import List

from fastapi import FastAPI, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse

from cryptofolio.config import DB_PATH
from cryptofolio.ledger import LedgerService, PortfolioService
from cryptofolio.logging_config import configure_logging
from cryptofolio.models import (
    HistoryEntry,
    HistoryStats,
    PortfolioOut,
    Position,
    PriceResult,
    PriceSourceIn,
    Transaction,
    TxIn,
    TxUpdate,
)
from cryptofolio.prices import PriceOracle
from cryptofolio.storage import SqlitePriceCache, SqliteTransactionStore, TransactionNotFound

logger = logging.getLogger(__name__)


def create_app(store=None, oracle=None) -> FastAPI:
    """
    Build the API. Without arguments the sqlite store and price cache at
    DB_PATH are opened on startup; tests pass in-memory ones.
    """
    app = FastAPI(title="Crypto Portfolio", version="1.0.0")

    def _wire(store, oracle):
        app.state.store = store
        app.state.oracle = oracle
        app.state.ledger = LedgerService(store)
        app.state.portfolio = PortfolioService(store, oracle)

    if store is not None and oracle is not None:
        _wire(store, oracle)

    @app.on_event("startup")
    def _startup():
        if getattr(app.state, "store", None) is None:
            configure_logging()
            _wire(
                store or SqliteTransactionStore(DB_PATH),
                oracle or PriceOracle(cache=SqlitePriceCache(DB_PATH)),
            )
            logger.info("portfolio service ready, db=%s", DB_PATH)

    @app.exception_handler(TransactionNotFound)
    async def _not_found(request: Request, exc: TransactionNotFound):
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    # ---------------- endpoints ----------------
    @app.get("/health")
    def health():
        return {"ok": True, "ts": int(time.time())}

    @app.get("/transactions", response_model=List[Transaction])
    def list_transactions():
        return app.state.ledger.list()

    @app.get("/transactions/{tx_id}", response_model=Transaction)
    def get_transaction(tx_id: str):
        return app.state.ledger.get(tx_id)

    @app.post("/transactions", response_model=List[Transaction], status_code=status.HTTP_201_CREATED)
    def submit_transaction(inp: TxIn):
        """Record a transaction. A sell with destination_asset or a swap with
        source_asset also records its paired stablecoin leg; both are returned."""
        return app.state.ledger.submit(inp)

    @app.post("/transactions/batch", response_model=List[Transaction], status_code=status.HTTP_201_CREATED)
    def create_batch(inputs: List[TxIn]):
        """All-or-nothing insert of already-paired records."""
        return app.state.store.create_batch(inputs)

    @app.put("/transactions/{tx_id}", response_model=Transaction)
    def update_transaction(tx_id: str, upd: TxUpdate):
        try:
            return app.state.ledger.update(tx_id, upd)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))

    @app.delete("/transactions/{tx_id}")
    def delete_transaction(tx_id: str):
        app.state.ledger.delete(tx_id)
        return {"ok": True, "message": "Transaction deleted successfully"}

    @app.get("/history", response_model=List[HistoryEntry])
    def history():
        return app.state.ledger.history()

    @app.get("/history/stats", response_model=HistoryStats)
    def history_stats():
        return app.state.ledger.history_stats()

    @app.get("/history/asset/{asset}", response_model=List[HistoryEntry])
    def history_by_asset(asset: str):
        return app.state.ledger.history(asset=asset)

    @app.get("/history/transaction/{tx_id}", response_model=List[HistoryEntry])
    def history_by_transaction(tx_id: str):
        return app.state.ledger.history(transaction_id=tx_id)

    @app.get("/positions", response_model=List[Position])
    def positions():
        return app.state.portfolio.positions()

    @app.get("/portfolio", response_model=PortfolioOut)
    def portfolio():
        return app.state.portfolio.summary()

    @app.get("/prices", response_model=PriceResult)
    def prices(symbols: str = Query(..., description="Comma separated, e.g. BTC,ETH")):
        return app.state.oracle.get_prices(symbols.split(","))

    @app.get("/price-source")
    def get_price_source():
        return {"mode": app.state.oracle.mode}

    @app.put("/price-source")
    def set_price_source(inp: PriceSourceIn):
        app.state.oracle.set_mode(inp.mode)
        return {"mode": app.state.oracle.mode}

    return app


app = create_app()
