import logging
from typing import List, Optional

from cryptofolio.models import (
    HistoryEntry,
    HistoryStats,
    PortfolioOut,
    Position,
    Transaction,
    TxIn,
    TxType,
    TxUpdate,
)
from cryptofolio.positions import aggregate_positions
from cryptofolio.valuation import value_portfolio

logger = logging.getLogger(__name__)


def paired_leg(inp: TxIn) -> Optional[TxIn]:
    """
    The second half of a cross-asset record, priced at 1.0 per unit.

    sell X -> destination: the proceeds arrive as a buy of the destination.
    swap source -> X: the cost leaves the source as a sell (no destination,
    so it never pairs again).
    """
    proceeds = inp.quantity * (inp.price_usd or 0.0)
    if proceeds <= 0:
        return None
    if inp.type == TxType.sell and inp.destination_asset:
        return TxIn(
            asset=inp.destination_asset,
            type=TxType.buy,
            quantity=proceeds,
            price_usd=1.0,
            transaction_date=inp.transaction_date,
            notes=f"Received from selling {inp.quantity:g} {inp.asset}",
        )
    if inp.type == TxType.swap and inp.source_asset:
        # a sell, not a buy: the stablecoin is spent and its balance must drop
        return TxIn(
            asset=inp.source_asset,
            type=TxType.sell,
            quantity=proceeds,
            price_usd=1.0,
            transaction_date=inp.transaction_date,
            notes=f"Spent on swap for {inp.quantity:g} {inp.asset}",
        )
    return None


class LedgerService:
    """Transaction submission on top of any TransactionStore."""

    def __init__(self, store):
        self.store = store

    def submit(self, inp: TxIn) -> List[Transaction]:
        legs = [inp]
        pair = paired_leg(inp)
        if pair is not None:
            legs.append(pair)
        created = self.store.create_batch(legs)
        if pair is not None:
            logger.info(
                "%s %s paired with %s %s", inp.type.value, inp.asset, pair.type.value, pair.asset,
                extra={"asset": inp.asset},
            )
        return created

    def list(self) -> List[Transaction]:
        return self.store.list()

    def get(self, tx_id: str) -> Transaction:
        return self.store.get(tx_id)

    def update(self, tx_id: str, upd: TxUpdate) -> Transaction:
        return self.store.update(tx_id, upd)

    def delete(self, tx_id: str) -> None:
        self.store.delete(tx_id)

    def history(self, asset: Optional[str] = None, transaction_id: Optional[str] = None) -> List[HistoryEntry]:
        return self.store.history(asset=asset, transaction_id=transaction_id)

    def history_stats(self) -> HistoryStats:
        history = self.store.history()
        if not history:
            return HistoryStats(active_transactions=len(self.store.list()))
        stamps = [h.timestamp for h in history]
        return HistoryStats(
            total_actions=len(history),
            added=sum(1 for h in history if h.action == "add"),
            updated=sum(1 for h in history if h.action == "update"),
            deleted=sum(1 for h in history if h.action == "delete"),
            unique_assets=len({h.asset for h in history}),
            first_action_at=min(stamps),
            last_action_at=max(stamps),
            active_transactions=len(self.store.list()),
        )


class PortfolioService:
    def __init__(self, store, oracle):
        self.store = store
        self.oracle = oracle

    def positions(self) -> List[Position]:
        # stable sort: same-day records keep ledger order, so a pair follows its disposal
        ledger = sorted(self.store.list(), key=lambda t: t.effective_date)
        return aggregate_positions(ledger)

    def summary(self) -> PortfolioOut:
        positions = self.positions()
        result = self.oracle.get_prices([p.asset for p in positions])
        rows, totals, alloc = value_portfolio(positions, result.prices)
        return PortfolioOut(
            rows=rows,
            totals=totals,
            allocation=alloc,
            price_source=result.source,
            message=result.message,
        )
