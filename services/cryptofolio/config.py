import os

# ---------------- storage ----------------
DB_PATH = os.getenv("DB_PATH", "portfolio.db")

# ---------------- prices ----------------
PRICE_TTL_SEC = int(os.getenv("PRICE_TTL_SEC", "30"))
HTTP_TIMEOUT = float(os.getenv("HTTP_TIMEOUT", "10.0"))
PRICE_SOURCE = os.getenv("PRICE_SOURCE", "auto").strip().lower()  # api | scraper | auto
MAX_API_ERRORS = int(os.getenv("MAX_API_ERRORS", "3"))
API_COOLDOWN_SEC = int(os.getenv("API_COOLDOWN_SEC", "60"))
SCRAPER_MIN_INTERVAL_SEC = int(os.getenv("SCRAPER_MIN_INTERVAL_SEC", "30"))

COINGECKO_API = os.getenv("COINGECKO_API", "https://api.coingecko.com/api/v3")
BINANCE_API = os.getenv("BINANCE_API", "https://api.binance.com/api/v3")
COINMARKETCAP_API = os.getenv("COINMARKETCAP_API", "https://api.coinmarketcap.com/data-api/v3")

# ---------------- ledger ----------------
STABLECOINS = frozenset(
    s.strip().upper() for s in os.getenv("STABLECOINS", "USDT,USDC,BUSD,DAI").split(",") if s.strip()
)

# HTTP-backed store talks to this service
API_BASE_URL = os.getenv("API_BASE_URL", "http://localhost:8000").rstrip("/")

# ---------------- server ----------------
HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "8000"))
