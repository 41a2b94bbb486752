"""
Fold a list of ledger records into per-asset net positions.

Moving average cost: acquisitions add `quantity * price` to the cost basis,
disposals remove `quantity * current average` (their own price is ignored).
Records are folded strictly in the order given; nothing here sorts.
"""
import logging
import math
from typing import Dict, Iterable, List

from cryptofolio.config import STABLECOINS
from cryptofolio.models import Position, Transaction, TxType, finite

logger = logging.getLogger(__name__)

# below this a position counts as closed (float residue from partial sells)
DUST = 1e-9


def effective_price(tx: Transaction) -> float:
    if tx.price_usd is not None and math.isfinite(tx.price_usd):
        return tx.price_usd
    if tx.type == TxType.deposit and tx.asset in STABLECOINS:
        return 1.0
    return 0.0


def _new_state(asset: str) -> dict:
    return {
        "asset": asset,
        "quantity": 0.0,
        "investment": 0.0,
        "average": 0.0,
        "transactions": [],
        "earliest": None,
        "latest": None,
        "notes": [],
    }


def _acquire(st: dict, qty: float, price: float):
    st["quantity"] += qty
    st["investment"] += qty * price
    st["average"] = st["investment"] / st["quantity"] if st["quantity"] > 0 else 0.0


def _dispose(st: dict, qty: float):
    st["investment"] = max(st["investment"] - qty * st["average"], 0.0)
    st["quantity"] = max(st["quantity"] - qty, 0.0)
    st["average"] = st["investment"] / st["quantity"] if st["quantity"] > 0 else 0.0


def _note(st: dict, tx: Transaction):
    st["transactions"].append(tx)
    d = tx.effective_date
    if st["earliest"] is None or d < st["earliest"]:
        st["earliest"] = d
    if st["latest"] is None or d > st["latest"]:
        st["latest"] = d
    if tx.notes:
        st["notes"].append(tx.notes)


def aggregate_positions(transactions: Iterable[Transaction]) -> List[Position]:
    """
    Net positions with quantity > 0, in order of first appearance.

    Disposals of an asset with no open position are skipped, never turned
    into a short. Malformed quantities/prices are read as 0.
    """
    states: Dict[str, dict] = {}

    for tx in transactions:
        qty = finite(tx.quantity)
        st = states.get(tx.asset)

        if tx.type.acquiring:
            if st is None:
                st = states[tx.asset] = _new_state(tx.asset)
            _acquire(st, qty, effective_price(tx))
        elif tx.type.disposing:
            if st is None or st["quantity"] <= 0:
                logger.debug(
                    "skipping %s of %s %s: no open position", tx.type.value, qty, tx.asset, extra={"asset": tx.asset}
                )
                continue
            _dispose(st, qty)
        else:
            raise ValueError(f"unhandled transaction type: {tx.type!r}")

        _note(st, tx)

    positions = []
    for st in states.values():
        if st["quantity"] <= DUST:
            continue
        positions.append(
            Position(
                asset=st["asset"],
                total_quantity=st["quantity"],
                average_buy_price=st["average"],
                total_investment=st["investment"],
                transactions=st["transactions"],
                earliest_date=st["earliest"],
                latest_date=st["latest"],
                notes="; ".join(st["notes"]),
            )
        )
    return positions
