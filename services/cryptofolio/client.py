"""
TransactionStore over HTTP, for running the ledger/portfolio services against
a remote instance of this API instead of a local database.
"""
from typing import List, Optional, Sequence

import httpx

from cryptofolio.config import API_BASE_URL, HTTP_TIMEOUT
from cryptofolio.models import HistoryEntry, Transaction, TxIn, TxUpdate
from cryptofolio.storage import TransactionNotFound


class HttpTransactionStore:
    def __init__(self, base_url: str = API_BASE_URL, client: Optional[httpx.Client] = None):
        self.client = client or httpx.Client(base_url=base_url, timeout=HTTP_TIMEOUT)

    def close(self):
        self.client.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    def _check(self, r: httpx.Response, tx_id: Optional[str] = None) -> httpx.Response:
        if r.status_code == 404 and tx_id is not None:
            raise TransactionNotFound(tx_id)
        r.raise_for_status()
        return r

    def list(self) -> List[Transaction]:
        r = self._check(self.client.get("/transactions"))
        return [Transaction(**t) for t in r.json()]

    def get(self, tx_id: str) -> Transaction:
        r = self._check(self.client.get(f"/transactions/{tx_id}"), tx_id)
        return Transaction(**r.json())

    def create(self, inp: TxIn) -> Transaction:
        return self.create_batch([inp])[0]

    def create_batch(self, inputs: Sequence[TxIn]) -> List[Transaction]:
        # raw insert, pairing is done by the caller's LedgerService
        payload = [i.model_dump(mode="json") for i in inputs]
        r = self._check(self.client.post("/transactions/batch", json=payload))
        return [Transaction(**t) for t in r.json()]

    def update(self, tx_id: str, upd: TxUpdate) -> Transaction:
        payload = upd.model_dump(mode="json", exclude_unset=True)
        r = self._check(self.client.put(f"/transactions/{tx_id}", json=payload), tx_id)
        return Transaction(**r.json())

    def delete(self, tx_id: str) -> None:
        self._check(self.client.delete(f"/transactions/{tx_id}"), tx_id)

    def history(self, asset: Optional[str] = None, transaction_id: Optional[str] = None) -> List[HistoryEntry]:
        if transaction_id is not None:
            r = self._check(self.client.get(f"/history/transaction/{transaction_id}"))
            entries = [HistoryEntry(**h) for h in r.json()]
            return [h for h in entries if asset is None or h.asset == asset.upper()]
        path = f"/history/asset/{asset}" if asset is not None else "/history"
        r = self._check(self.client.get(path))
        return [HistoryEntry(**h) for h in r.json()]
