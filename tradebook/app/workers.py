import logging
import threading

from .config import settings
from .services import market_data

logger = logging.getLogger(__name__)


def _refresh_benchmarks() -> None:
    for symbol in settings.market.benchmark_symbols:
        try:
            result = market_data.fill_gaps(symbol)
            logger.info("Benchmark refresh %s: %s of %s days filled", symbol, result["filled"], result["totalMissingDays"])
        except Exception as exc:
            logger.warning("Benchmark refresh for %s failed: %s", symbol, exc)


def start_workers() -> threading.Thread:
    # Keep startup path non-blocking for health checks.
    target = _refresh_benchmarks if settings.auto_update else (lambda: None)
    t = threading.Thread(target=target, daemon=True, name="benchmark-refresh")
    t.start()
    return t
