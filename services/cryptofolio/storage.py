import json
import logging
import sqlite3
import time
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Dict, List, Optional, Protocol, Sequence, Tuple

from dateutil import parser as dateparser

from cryptofolio.config import DB_PATH
from cryptofolio.models import (
    EDITABLE_FIELDS,
    AssetPrice,
    HistoryEntry,
    Transaction,
    TxIn,
    TxUpdate,
    merge_update,
)

logger = logging.getLogger(__name__)


class TransactionNotFound(LookupError):
    def __init__(self, tx_id: str):
        super().__init__(f"Transaction not found: {tx_id}")
        self.tx_id = tx_id


class TransactionStore(Protocol):
    def list(self) -> List[Transaction]: ...
    def get(self, tx_id: str) -> Transaction: ...
    def create(self, inp: TxIn) -> Transaction: ...
    def create_batch(self, inputs: Sequence[TxIn]) -> List[Transaction]: ...
    def update(self, tx_id: str, upd: TxUpdate) -> Transaction: ...
    def delete(self, tx_id: str) -> None: ...
    def history(self, asset: Optional[str] = None, transaction_id: Optional[str] = None) -> List[HistoryEntry]: ...


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_transaction(inp: TxIn, now: datetime) -> Transaction:
    data = inp.model_dump()
    data["transaction_date"] = data["transaction_date"] or now.date()
    return Transaction(id=uuid.uuid4().hex, created_at=now, updated_at=now, **data)


def updated_transaction(old: Transaction, upd: TxUpdate, now: datetime) -> Transaction:
    merged = merge_update(old, upd).model_dump()
    merged["transaction_date"] = merged["transaction_date"] or old.created_at.date()
    return Transaction(id=old.id, created_at=old.created_at, updated_at=now, **merged)


def history_fields(tx: Transaction) -> dict:
    return {
        "transaction_id": tx.id,
        "asset": tx.asset,
        "type": tx.type,
        "quantity": tx.quantity,
        "price_usd": tx.price_usd,
        "destination_asset": tx.destination_asset,
        "source_asset": tx.source_asset,
        "transaction_date": tx.transaction_date,
        "notes": tx.notes,
    }


def previous_values(tx: Transaction) -> dict:
    return tx.model_dump(include=set(EDITABLE_FIELDS), mode="json")


# ---------------- in-memory ----------------
class MemoryTransactionStore:
    """Dict-backed store for tests and local runs. Same contract as the sqlite one."""

    def __init__(self, transactions: Sequence[Transaction] = ()):
        self._rows: Dict[str, Transaction] = {t.id: t for t in transactions}
        self._history: List[HistoryEntry] = []

    def _log(self, action: str, tx: Transaction, previous: Optional[dict] = None):
        self._history.append(
            HistoryEntry(
                id=len(self._history) + 1,
                timestamp=utcnow(),
                action=action,
                previous=previous,
                **history_fields(tx),
            )
        )

    def list(self) -> List[Transaction]:
        return list(self._rows.values())

    def get(self, tx_id: str) -> Transaction:
        try:
            return self._rows[tx_id]
        except KeyError:
            raise TransactionNotFound(tx_id) from None

    def create(self, inp: TxIn) -> Transaction:
        return self.create_batch([inp])[0]

    def create_batch(self, inputs: Sequence[TxIn]) -> List[Transaction]:
        now = utcnow()
        created = [new_transaction(inp, now) for inp in inputs]
        for tx in created:
            self._rows[tx.id] = tx
            self._log("add", tx)
        return created

    def update(self, tx_id: str, upd: TxUpdate) -> Transaction:
        old = self.get(tx_id)
        tx = updated_transaction(old, upd, utcnow())
        self._rows[tx_id] = tx
        self._log("update", tx, previous_values(old))
        return tx

    def delete(self, tx_id: str) -> None:
        tx = self.get(tx_id)
        self._log("delete", tx)
        del self._rows[tx_id]

    def history(self, asset: Optional[str] = None, transaction_id: Optional[str] = None) -> List[HistoryEntry]:
        out = [
            h
            for h in reversed(self._history)
            if (asset is None or h.asset == asset.upper())
            and (transaction_id is None or h.transaction_id == transaction_id)
        ]
        return out


# ---------------- sqlite ----------------
@contextmanager
def db(path: str):
    conn = sqlite3.connect(path)
    conn.row_factory = sqlite3.Row
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def _iso(v) -> Optional[str]:
    return v.isoformat() if v is not None else None


class SqliteTransactionStore:
    def __init__(self, path: str = DB_PATH):
        self.path = str(path)
        self.init_db()

    def init_db(self):
        with db(self.path) as conn:
            c = conn.cursor()
            c.execute("""
            CREATE TABLE IF NOT EXISTS transactions(
                id TEXT PRIMARY KEY,
                asset TEXT NOT NULL,
                type TEXT NOT NULL,
                quantity REAL NOT NULL,
                price_usd REAL,
                destination_asset TEXT,
                source_asset TEXT,
                transaction_date TEXT,
                notes TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )""")
            c.execute("""
            CREATE TABLE IF NOT EXISTS history(
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                ts TEXT NOT NULL,
                action TEXT NOT NULL, -- add update delete
                transaction_id TEXT NOT NULL,
                asset TEXT NOT NULL,
                type TEXT NOT NULL,
                quantity REAL NOT NULL,
                price_usd REAL,
                destination_asset TEXT,
                source_asset TEXT,
                transaction_date TEXT,
                notes TEXT,
                previous TEXT         -- json, update only
            )""")
            c.execute("CREATE INDEX IF NOT EXISTS idx_history_asset ON history(asset)")
            c.execute("CREATE INDEX IF NOT EXISTS idx_history_tx ON history(transaction_id)")

    @staticmethod
    def _insert_tx(conn, tx: Transaction):
        conn.execute("""
            INSERT INTO transactions(id,asset,type,quantity,price_usd,destination_asset,source_asset,
                                     transaction_date,notes,created_at,updated_at)
            VALUES(?,?,?,?,?,?,?,?,?,?,?)
        """, (tx.id, tx.asset, tx.type.value, tx.quantity, tx.price_usd, tx.destination_asset,
              tx.source_asset, _iso(tx.transaction_date), tx.notes, _iso(tx.created_at), _iso(tx.updated_at)))

    @staticmethod
    def _log(conn, action: str, tx: Transaction, previous: Optional[dict] = None):
        conn.execute("""
            INSERT INTO history(ts,action,transaction_id,asset,type,quantity,price_usd,destination_asset,
                                source_asset,transaction_date,notes,previous)
            VALUES(?,?,?,?,?,?,?,?,?,?,?,?)
        """, (utcnow().isoformat(), action, tx.id, tx.asset, tx.type.value, tx.quantity, tx.price_usd,
              tx.destination_asset, tx.source_asset, _iso(tx.transaction_date), tx.notes,
              json.dumps(previous) if previous is not None else None))

    @staticmethod
    def _fetch(conn, tx_id: str) -> Transaction:
        r = conn.execute("SELECT * FROM transactions WHERE id=?", (tx_id,)).fetchone()
        if r is None:
            raise TransactionNotFound(tx_id)
        return Transaction(**dict(r))

    def list(self) -> List[Transaction]:
        with db(self.path) as conn:
            rows = conn.execute("SELECT * FROM transactions ORDER BY created_at, rowid").fetchall()
            return [Transaction(**dict(r)) for r in rows]

    def get(self, tx_id: str) -> Transaction:
        with db(self.path) as conn:
            return self._fetch(conn, tx_id)

    def create(self, inp: TxIn) -> Transaction:
        return self.create_batch([inp])[0]

    def create_batch(self, inputs: Sequence[TxIn]) -> List[Transaction]:
        now = utcnow()
        created = [new_transaction(inp, now) for inp in inputs]
        with db(self.path) as conn:
            for tx in created:
                self._insert_tx(conn, tx)
                self._log(conn, "add", tx)
        logger.info("recorded %d transaction(s): %s", len(created), ", ".join(t.id for t in created))
        return created

    def update(self, tx_id: str, upd: TxUpdate) -> Transaction:
        with db(self.path) as conn:
            old = self._fetch(conn, tx_id)
            tx = updated_transaction(old, upd, utcnow())
            conn.execute("""
                UPDATE transactions SET asset=?, type=?, quantity=?, price_usd=?, destination_asset=?,
                       source_asset=?, transaction_date=?, notes=?, updated_at=?
                WHERE id=?
            """, (tx.asset, tx.type.value, tx.quantity, tx.price_usd, tx.destination_asset, tx.source_asset,
                  _iso(tx.transaction_date), tx.notes, _iso(tx.updated_at), tx_id))
            self._log(conn, "update", tx, previous_values(old))
        return tx

    def delete(self, tx_id: str) -> None:
        with db(self.path) as conn:
            tx = self._fetch(conn, tx_id)
            self._log(conn, "delete", tx)
            conn.execute("DELETE FROM transactions WHERE id=?", (tx_id,))
        logger.info("deleted transaction %s", tx_id, extra={"tx_id": tx_id})

    def history(self, asset: Optional[str] = None, transaction_id: Optional[str] = None) -> List[HistoryEntry]:
        sql = "SELECT * FROM history WHERE 1=1"
        args: list = []
        if asset is not None:
            sql += " AND asset=?"
            args.append(asset.upper())
        if transaction_id is not None:
            sql += " AND transaction_id=?"
            args.append(transaction_id)
        sql += " ORDER BY id DESC"
        with db(self.path) as conn:
            rows = conn.execute(sql, args).fetchall()
        out = []
        for r in rows:
            d = dict(r)
            d["timestamp"] = d.pop("ts")
            d["previous"] = json.loads(d["previous"]) if d["previous"] else None
            out.append(HistoryEntry(**d))
        return out


# ---------------- price cache ----------------
class MemoryPriceCache:
    def __init__(self):
        self._items: Dict[str, Tuple[float, AssetPrice]] = {}

    def get(self, symbol: str, ttl: int) -> Optional[AssetPrice]:
        hit = self._items.get(symbol.upper())
        if hit is None:
            return None
        ts, price = hit
        if time.monotonic() - ts >= ttl:
            return None
        return price

    def put(self, price: AssetPrice):
        self._items[price.symbol.upper()] = (time.monotonic(), price)

    def clear(self):
        self._items.clear()


class SqlitePriceCache:
    def __init__(self, path: str = DB_PATH):
        self.path = str(path)
        with db(self.path) as conn:
            conn.execute("""
            CREATE TABLE IF NOT EXISTS prices_cache(
                symbol TEXT PRIMARY KEY,
                payload TEXT NOT NULL,
                fetched_at TEXT NOT NULL
            )""")

    def get(self, symbol: str, ttl: int) -> Optional[AssetPrice]:
        with db(self.path) as conn:
            r = conn.execute("SELECT payload, fetched_at FROM prices_cache WHERE symbol=?", (symbol.upper(),)).fetchone()
        if not r:
            return None
        try:
            fetched_at = dateparser.isoparse(r["fetched_at"])
            age = (utcnow() - fetched_at).total_seconds()
            if age >= ttl:
                return None
            return AssetPrice.model_validate_json(r["payload"])
        except ValueError:
            logger.debug("ignoring unreadable cache entry for %s", symbol)
            return None

    def put(self, price: AssetPrice):
        with db(self.path) as conn:
            conn.execute("""
                INSERT INTO prices_cache(symbol,payload,fetched_at)
                VALUES(?,?,?)
                ON CONFLICT(symbol) DO UPDATE SET
                  payload=excluded.payload,
                  fetched_at=excluded.fetched_at
            """, (price.symbol.upper(), price.model_dump_json(), utcnow().isoformat()))

    def clear(self):
        with db(self.path) as conn:
            conn.execute("DELETE FROM prices_cache")
