import logging
import time
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, List, Optional

import requests

from cryptofolio.config import (
    API_COOLDOWN_SEC,
    BINANCE_API,
    COINGECKO_API,
    COINMARKETCAP_API,
    HTTP_TIMEOUT,
    MAX_API_ERRORS,
    PRICE_SOURCE,
    PRICE_TTL_SEC,
    SCRAPER_MIN_INTERVAL_SEC,
)
from cryptofolio.models import AssetPrice, PriceResult
from cryptofolio.storage import MemoryPriceCache

logger = logging.getLogger(__name__)

Quotes = Dict[str, AssetPrice]
QuoteSource = Callable[[List[str]], Quotes]

MODES = ("api", "scraper", "auto")

SYMBOL_TO_ID = {
    "BTC": "bitcoin",
    "ETH": "ethereum",
    "BNB": "binancecoin",
    "XRP": "ripple",
    "ADA": "cardano",
    "SOL": "solana",
    "DOT": "polkadot",
    "DOGE": "dogecoin",
    "AVAX": "avalanche-2",
    "LINK": "chainlink",
    "MATIC": "polygon",
    "NEAR": "near",
    "APT": "aptos",
    "ARB": "arbitrum",
    "OP": "optimism",
    "LTC": "litecoin",
    "UNI": "uniswap",
    "ATOM": "cosmos",
    "FIL": "filecoin",
    "ICP": "internet-computer",
    "USDT": "tether",
    "USDC": "usd-coin",
    "BUSD": "binance-usd",
    "DAI": "dai",
}


def now_iso():
    return datetime.now(timezone.utc).isoformat()


def display_name(symbol: str) -> str:
    cg_id = SYMBOL_TO_ID.get(symbol)
    return cg_id.replace("-", " ").title() if cg_id else symbol


# ---------------- providers ----------------
def coingecko_quotes(symbols: List[str]) -> Quotes:
    """CoinGecko simple/price, enriched with names and logos from coins/markets."""
    ids = {SYMBOL_TO_ID[s]: s for s in symbols if s in SYMBOL_TO_ID}
    if not ids:
        return {}
    r = requests.get(
        f"{COINGECKO_API}/simple/price",
        params={"ids": ",".join(ids), "vs_currencies": "usd", "include_24hr_change": "true"},
        timeout=HTTP_TIMEOUT,
    )
    r.raise_for_status()
    data = r.json()

    # names/logos are cosmetic, a failure here must not lose the prices
    markets = {}
    try:
        m = requests.get(
            f"{COINGECKO_API}/coins/markets",
            params={"vs_currency": "usd", "ids": ",".join(ids), "order": "market_cap_desc"},
            timeout=HTTP_TIMEOUT,
        )
        if m.ok:
            markets = {item["id"]: item for item in m.json()}
    except (requests.RequestException, ValueError, KeyError, TypeError):
        logger.debug("coingecko markets lookup failed", exc_info=True)

    ts = now_iso()
    out = {}
    for cg_id, q in data.items():
        sym = ids.get(cg_id)
        if not sym or q.get("usd") is None:
            continue
        info = markets.get(cg_id, {})
        out[sym] = AssetPrice(
            symbol=sym,
            name=info.get("name") or sym,
            current_price=float(q["usd"]),
            price_change_percentage_24h=float(q.get("usd_24h_change") or 0.0),
            last_updated=ts,
            image=info.get("image"),
        )
    return out


def binance_quotes(symbols: List[str]) -> Quotes:
    # public 24h ticker, quoted against USDT (BUSD as second choice)
    r = requests.get(f"{BINANCE_API}/ticker/24hr", timeout=HTTP_TIMEOUT)
    r.raise_for_status()
    tickers = {t["symbol"]: t for t in r.json()}
    ts = now_iso()
    out = {}
    for sym in symbols:
        t = tickers.get(f"{sym}USDT") or tickers.get(f"{sym}BUSD")
        if not t:
            continue
        out[sym] = AssetPrice(
            symbol=sym,
            name=display_name(sym),
            current_price=float(t["lastPrice"]),
            price_change_percentage_24h=float(t.get("priceChangePercent") or 0.0),
            last_updated=ts,
        )
    return out


def coinmarketcap_quotes(symbols: List[str]) -> Quotes:
    r = requests.get(
        f"{COINMARKETCAP_API}/cryptocurrency/listing",
        params={"start": 1, "limit": 100, "convert": "USD"},
        timeout=HTTP_TIMEOUT,
    )
    r.raise_for_status()
    listing = (r.json().get("data") or {}).get("cryptoList") or []
    wanted = set(symbols)
    ts = now_iso()
    out = {}
    for coin in listing:
        sym = (coin.get("symbol") or "").upper()
        if sym not in wanted or sym in out:
            continue
        quote = (coin.get("quotes") or [{}])[0]
        out[sym] = AssetPrice(
            symbol=sym,
            name=coin.get("name") or display_name(sym),
            current_price=float(quote.get("price") or 0.0),
            price_change_percentage_24h=float(quote.get("percentChange24h") or 0.0),
            last_updated=ts,
        )
    return out


class Scraper:
    """
    Keyless fallback: Binance first, CoinMarketCap listing for whatever is
    still missing. The listing is large, so it is fetched at most once per
    `min_interval` seconds. Never raises.
    """

    def __init__(
        self,
        binance: QuoteSource = binance_quotes,
        listing: QuoteSource = coinmarketcap_quotes,
        min_interval: float = SCRAPER_MIN_INTERVAL_SEC,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.binance = binance
        self.listing = listing
        self.min_interval = min_interval
        self.clock = clock
        self._last_listing: Optional[float] = None

    def __call__(self, symbols: List[str]) -> Quotes:
        prices: Quotes = {}
        try:
            prices.update(self.binance(symbols))
        except Exception:
            logger.warning("binance ticker fetch failed", exc_info=True)

        missing = [s for s in symbols if s not in prices]
        if not missing:
            return prices

        now = self.clock()
        if self._last_listing is not None and now - self._last_listing < self.min_interval:
            logger.info("listing scrape rate limited, %d symbol(s) left unpriced", len(missing))
            return prices
        try:
            prices.update(self.listing(missing))
            self._last_listing = now
        except Exception:
            logger.warning("coinmarketcap listing fetch failed", exc_info=True)
        return prices


# ---------------- oracle ----------------
class PriceOracle:
    """
    Best-effort quotes for a set of symbols.

    mode "api" uses CoinGecko only, "scraper" the keyless fallback only, and
    "auto" tries the API first and falls back when it fails or returns
    nothing. Repeated API failures open a growing cooldown during which auto
    mode goes straight to the scraper. get_prices never raises: a total
    failure is an empty map plus a message.
    """

    def __init__(
        self,
        api_source: QuoteSource = coingecko_quotes,
        scraper_source: Optional[QuoteSource] = None,
        cache=None,
        mode: str = PRICE_SOURCE,
        ttl: int = PRICE_TTL_SEC,
        max_api_errors: int = MAX_API_ERRORS,
        cooldown_sec: float = API_COOLDOWN_SEC,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.api_source = api_source
        self.scraper_source = scraper_source if scraper_source is not None else Scraper()
        self.cache = cache if cache is not None else MemoryPriceCache()
        self.mode = "auto"
        self.set_mode(mode)
        self.ttl = ttl
        self.max_api_errors = max_api_errors
        self.cooldown_sec = cooldown_sec
        self.clock = clock
        self.api_errors = 0
        self.last_api_error: Optional[float] = None

    def set_mode(self, mode: str):
        mode = (mode or "").strip().lower()
        if mode not in MODES:
            raise ValueError(f"unknown price source {mode!r}, expected one of {', '.join(MODES)}")
        self.mode = mode
        self.reset_api_errors()
        logger.info("price source set to %s", mode, extra={"source": mode})

    def reset_api_errors(self):
        self.api_errors = 0
        self.last_api_error = None

    def should_use_scraper_only(self) -> bool:
        if self.last_api_error is None:
            return False
        cooldown = self.cooldown_sec * min(self.api_errors, self.max_api_errors)
        return self.clock() - self.last_api_error < cooldown

    def _record_api_error(self):
        self.api_errors += 1
        self.last_api_error = self.clock()

    def _scrape(self, symbols: List[str]) -> Optional[Quotes]:
        try:
            return self.scraper_source(symbols)
        except Exception:
            logger.error("scraper source failed", exc_info=True)
            return None

    def _fetch(self, symbols: List[str]):
        if self.mode == "scraper":
            prices = self._scrape(symbols)
            if prices is None:
                return {}, "scraper", "Unable to fetch prices. Please try again later."
            return prices, "scraper", None

        if self.mode == "auto" and self.should_use_scraper_only():
            logger.info("API cooling down after %d error(s), using scraper", self.api_errors)
        else:
            try:
                prices = self.api_source(symbols)
                if not prices and self.mode == "auto":
                    raise LookupError("no prices returned from API")
                self.api_errors = 0
                missing = [s for s in symbols if s not in prices]
                if missing and self.mode == "auto":
                    prices.update(self._scrape(missing) or {})
                return prices, "api", None
            except Exception:
                logger.warning("price API failed for %s", ",".join(symbols), exc_info=True, extra={"symbols": symbols})
                if self.mode == "api":
                    return {}, "api", "API failed, please switch to scraper mode"
                self._record_api_error()

        prices = self._scrape(symbols)
        if prices is None:
            return {}, "scraper", "Unable to fetch prices. Please try again later."
        return prices, "scraper", "Using alternative data source due to API rate limits"

    def _cached(self, symbol: str) -> Optional[AssetPrice]:
        try:
            return self.cache.get(symbol, self.ttl)
        except Exception:
            logger.warning("price cache read failed for %s", symbol, exc_info=True, extra={"symbols": [symbol]})
            return None

    def _store(self, price: AssetPrice):
        try:
            self.cache.put(price)
        except Exception:
            logger.warning("price cache write failed for %s", price.symbol, exc_info=True, extra={"symbols": [price.symbol]})

    def get_prices(self, symbols: Iterable[str]) -> PriceResult:
        wanted = sorted({s.strip().upper() for s in symbols if s and s.strip()})
        hits: Quotes = {}
        for s in wanted:
            cached = self._cached(s)
            if cached is not None:
                hits[s] = cached
        missing = [s for s in wanted if s not in hits]
        if not missing:
            return PriceResult(prices=hits, source="cache")

        fetched, source, message = self._fetch(missing)
        for price in fetched.values():
            self._store(price)
        if len(fetched) < len(missing):
            logger.info("no quote for %s", ",".join(s for s in missing if s not in fetched))
        return PriceResult(prices={**fetched, **hits}, source=source, message=message)
