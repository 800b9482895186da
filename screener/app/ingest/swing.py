"""
Swing-trading candles for the NSE and BSE top-1000 lists.

Daily candles land in historical_prices_{nse,bse}_swing_daily (one row per
symbol per day, refreshed on every run). The hourly variant keeps 90 days of
60-minute candles for BSE so that at least 50 trading days are available;
symbols that already hold 50 distinct dates are skipped unless --force.

Usage:
    python -m screener.app.ingest.swing daily|hourly [--force]
"""

import argparse
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from kiteconnect import KiteConnect

from screener.app.common.config import get_config
from screener.app.common.kite_client import RequestPacer, get_kite, is_rate_limited
from screener.app.common.logging import setup_logging
from screener.app.common.supabase_client import get_client
from shared.schemas import DailyCandleRow

logger = logging.getLogger(__name__)

TOP_SYMBOL_TABLES = {
    "NSE": "nse_equity_top_1000_symbols",
    "BSE": "bse_equity_top_1000_symbols",
}


@dataclass(frozen=True)
class SwingJob:
    interval: str
    interval_label: str
    days: Optional[int]
    tables: Dict[str, str]
    on_conflict: str
    ignore_duplicates: bool
    chunk_size: int
    batch_size: int
    batch_delay: float
    # symbols already holding this many distinct dates are skipped (0 = never skip)
    min_trading_days: int = 0


DAILY_JOB = SwingJob(
    interval="day",
    interval_label="day",
    days=None,
    tables={
        "NSE": "historical_prices_nse_swing_daily",
        "BSE": "historical_prices_bse_swing_daily",
    },
    on_conflict="symbol,date",
    ignore_duplicates=False,
    chunk_size=1000,
    batch_size=50,
    batch_delay=2.0,
)

HOURLY_JOB = SwingJob(
    interval="60minute",
    interval_label="hourly",
    days=90,
    tables={"BSE": "historical_prices_bse_swing_hourly"},
    on_conflict="symbol,timestamp",
    ignore_duplicates=True,
    chunk_size=500,
    batch_size=20,
    batch_delay=3.0,
    min_trading_days=50,
)


@dataclass
class StoreResult:
    success: int = 0
    failed: int = 0
    skipped: int = 0  # symbols, not rows


def fetch_top_symbols(client, exchange: str) -> List[Dict[str, Any]]:
    table = TOP_SYMBOL_TABLES[exchange]
    logger.info(f"Fetching {exchange} top 1000 symbols...")
    response = (
        client.table(table)
        .select("symbol, instrument_token")
        .eq("is_active", True)
        .order("symbol")
        .execute()
    )
    rows = response.data or []
    logger.info(f"Fetched {len(rows)} {exchange} symbols")
    return rows


class SwingCandleFetcher:

    def __init__(
        self,
        job: SwingJob,
        kite: Optional[KiteConnect] = None,
        client=None,
        pacer: Optional[RequestPacer] = None,
        sleep: Callable[[float], None] = time.sleep,
        now: Callable[[], datetime] = datetime.now,
        force: bool = False,
    ):
        config = get_config()
        self.job = job
        self.force = force
        self.kite = kite or get_kite()
        self.client = client or get_client()
        self.days = job.days or config.swing_days
        self.backoff = config.rate_limit_backoff_sec
        self.pacer = pacer or RequestPacer(
            max_per_second=config.max_requests_per_second,
            min_delay=config.delay_between_requests_sec,
            sleep=sleep,
        )
        self._sleep = sleep
        self._now = now

    def fetch_candles(self, instrument_token: str, symbol: str) -> List[Dict[str, Any]]:
        to_date = self._now()
        from_date = to_date - timedelta(days=self.days)

        self.pacer.wait()
        try:
            candles = self.kite.historical_data(
                int(instrument_token), from_date, to_date, self.job.interval
            )
        except Exception as e:
            logger.error(f"Error fetching candles for {symbol}: {e}")
            if is_rate_limited(e):
                self._sleep(self.backoff)
            return []

        return [
            DailyCandleRow.from_candle(symbol, c, self.job.interval_label).to_dict()
            for c in candles
        ]

    def store(self, rows: List[Dict[str, Any]], table: str) -> StoreResult:
        result = StoreResult()
        size = self.job.chunk_size
        for start in range(0, len(rows), size):
            chunk = rows[start:start + size]
            try:
                (
                    self.client.table(table)
                    .upsert(
                        chunk,
                        on_conflict=self.job.on_conflict,
                        ignore_duplicates=self.job.ignore_duplicates,
                    )
                    .execute()
                )
            except Exception as e:
                logger.error(f"Error inserting batch into {table}: {e}")
                result.failed += len(chunk)
                continue
            result.success += len(chunk)
        return result

    def existing_trading_days(self, table: str, symbol: str) -> int:
        """Distinct dates already stored for a symbol."""
        try:
            response = self.client.table(table).select("date").eq("symbol", symbol).execute()
        except Exception as e:
            logger.warning(f"Error checking existing data for {symbol}: {e}")
            return 0
        return len({row["date"] for row in response.data or []})

    def has_enough_history(self, table: str, symbol: str) -> bool:
        if self.force or not self.job.min_trading_days:
            return False
        days = self.existing_trading_days(table, symbol)
        if days >= self.job.min_trading_days:
            logger.info(f"{symbol}: already has {days} trading days, skipping")
            return True
        if days:
            logger.info(f"{symbol}: has {days} trading days, fetching more")
        return False

    def process_exchange(self, exchange: str) -> StoreResult:
        table = self.job.tables[exchange]
        symbols = fetch_top_symbols(self.client, exchange)
        totals = StoreResult()
        if not symbols:
            return totals

        size = self.job.batch_size
        total_batches = (len(symbols) + size - 1) // size
        for start in range(0, len(symbols), size):
            batch = symbols[start:start + size]
            batch_number = start // size + 1

            rows: List[Dict[str, Any]] = []
            for s in batch:
                symbol = s["symbol"]
                if self.has_enough_history(table, symbol):
                    totals.skipped += 1
                    continue
                candles = self.fetch_candles(s["instrument_token"], symbol)
                if candles and self.job.min_trading_days:
                    days = len({c["date"] for c in candles})
                    flag = "" if days >= self.job.min_trading_days else " (below target)"
                    logger.info(f"{symbol}: {days} trading days fetched{flag}")
                rows.extend(candles)

            if rows:
                result = self.store(rows, table)
                totals.success += result.success
                totals.failed += result.failed

            done = min(start + size, len(symbols))
            logger.info(
                f"Batch {batch_number}/{total_batches} complete: {len(rows)} candles, "
                f"progress {done}/{len(symbols)} ({done / len(symbols) * 100:.1f}%)"
            )

            if start + size < len(symbols):
                self._sleep(self.job.batch_delay)

        logger.info(
            f"{exchange} summary: stored={totals.success} failed={totals.failed} "
            f"skipped={totals.skipped}"
        )
        return totals

    def run(self) -> Dict[str, StoreResult]:
        return {exchange: self.process_exchange(exchange) for exchange in self.job.tables}


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Fetch swing-trading candles")
    parser.add_argument("mode", choices=["daily", "hourly"], nargs="?", default="daily")
    parser.add_argument(
        "--force", action="store_true", help="refetch symbols that already have enough history"
    )
    args = parser.parse_args(argv)

    setup_logging(get_config().log_level)
    job = DAILY_JOB if args.mode == "daily" else HOURLY_JOB

    try:
        SwingCandleFetcher(job, force=args.force).run()
    except Exception as e:
        logger.error(f"Swing candle sync failed: {e}")
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
