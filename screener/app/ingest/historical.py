"""
Historical OHLC candle fetcher.

Loads active symbols from a Supabase symbol table, pulls intraday candles
for each from the Kite historical API and upserts them into the matching
historical price table.

Usage:
    python -m screener.app.ingest.historical nse-equity|bse-equity|bse-equity-20d|bse-fo
"""

import argparse
import logging
import time
from dataclasses import dataclass, field, replace
from datetime import date, datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from kiteconnect import KiteConnect

from screener.app.common.config import get_config
from screener.app.common.kite_client import RequestPacer, get_kite, is_rate_limited
from screener.app.common.logging import setup_logging
from screener.app.common.supabase_client import get_client
from shared.schemas import CandleRow, FoCandleRow

logger = logging.getLogger(__name__)

EQUITY_COLUMNS = "symbol, instrument_token, exchange, type, segment"
FO_COLUMNS = (
    "symbol, instrument_token, exchange, segment, instrument_type, "
    "underlying, expiry, strike, option_type"
)

# Kite interval name -> value stored in interval_type
INTERVAL_LABELS = {
    "minute": "1min",
    "3minute": "3min",
    "5minute": "5min",
    "10minute": "10min",
    "15minute": "15min",
    "30minute": "30min",
    "60minute": "hourly",
    "day": "day",
}


@dataclass(frozen=True)
class HistoryTarget:
    """Source symbol table and destination price table for one fetch job."""
    name: str
    symbol_table: str
    price_table: str
    derivatives: bool = False
    rolling: bool = False
    skip_existing: bool = True
    underlyings: Tuple[str, ...] = ()
    near_expiries: int = 0


HISTORY_TARGETS: Dict[str, HistoryTarget] = {
    "nse-equity": HistoryTarget(
        "nse-equity", "kite_nse_equity_symbols", "historical_prices_nse_equity"
    ),
    "bse-equity": HistoryTarget(
        "bse-equity", "kite_bse_equity_symbols", "historical_prices_bse_equity"
    ),
    "bse-equity-20d": HistoryTarget(
        "bse-equity-20d",
        "bse_equity_top_1000_symbols",
        "historical_prices_bse_equity",
        rolling=True,
        skip_existing=False,
    ),
    "bse-fo": HistoryTarget(
        "bse-fo",
        "kite_bse_fo_symbols",
        "historical_prices_bse_fo",
        derivatives=True,
        underlyings=("SENSEX", "BANKEX"),
        near_expiries=2,
    ),
}


@dataclass
class FetchSummary:
    total: int = 0
    success: int = 0
    failed: int = 0
    skipped: int = 0
    candles: int = 0
    pruned: int = 0
    failed_symbols: List[str] = field(default_factory=list)


def filter_near_expiries(
    contracts: Sequence[Dict[str, Any]], keep: int, today: Optional[date] = None
) -> List[Dict[str, Any]]:
    """
    Per underlying, keep contracts belonging to the next `keep` expiries
    on or after today. Input order within an expiry is preserved.
    """
    today = today or date.today()
    by_underlying: Dict[str, List[Dict[str, Any]]] = {}
    for contract in contracts:
        by_underlying.setdefault(contract.get("underlying") or "", []).append(contract)

    result = []
    for group in by_underlying.values():
        group = sorted(group, key=lambda c: str(c["expiry"]))
        expiries = sorted({str(c["expiry"]) for c in group})
        upcoming = [e for e in expiries if date.fromisoformat(e[:10]) >= today][:keep]
        result.extend(c for c in group if str(c["expiry"]) in upcoming)

    return result


def batched(items: Sequence[Any], size: int) -> List[Sequence[Any]]:
    return [items[i:i + size] for i in range(0, len(items), size)]


class HistoricalFetcher:
    """Fetch and persist historical candles for one target."""

    def __init__(
        self,
        target: HistoryTarget,
        kite: Optional[KiteConnect] = None,
        client=None,
        days: Optional[int] = None,
        interval: Optional[str] = None,
        pacer: Optional[RequestPacer] = None,
        sleep: Callable[[float], None] = time.sleep,
        now: Callable[[], datetime] = datetime.now,
    ):
        config = get_config()
        self.target = target
        self.kite = kite or get_kite()
        self.client = client or get_client()
        if days is None:
            days = config.rolling_window_days if target.rolling else config.history_days
        self.days = days
        self.interval = interval or config.history_interval
        self.interval_label = INTERVAL_LABELS.get(self.interval, self.interval)
        self.limit = config.top_stocks_limit
        self.batch_size = config.batch_size
        self.batch_delay = config.delay_between_batches_sec
        self.backoff = config.rate_limit_backoff_sec
        self.pacer = pacer or RequestPacer(
            max_per_second=config.max_requests_per_second,
            min_delay=config.delay_between_requests_sec,
            sleep=sleep,
        )
        self._sleep = sleep
        self._now = now

    # ------------------------------------------------------------------
    # Symbols
    # ------------------------------------------------------------------
    def load_symbols(self) -> List[Dict[str, Any]]:
        """Active symbols from the target's symbol table."""
        columns = FO_COLUMNS if self.target.derivatives else EQUITY_COLUMNS
        query = self.client.table(self.target.symbol_table).select(columns).eq("is_active", True)

        if self.target.underlyings:
            query = query.in_("underlying", list(self.target.underlyings))

        if self.target.derivatives:
            query = query.order("expiry")
        else:
            query = query.order("symbol")

        if not self.target.near_expiries:
            query = query.limit(self.limit)

        response = query.execute()
        symbols = response.data or []
        logger.info(f"Loaded {len(symbols)} symbols from {self.target.symbol_table}")

        if self.target.near_expiries:
            symbols = filter_near_expiries(
                symbols, self.target.near_expiries, today=self._now().date()
            )
            symbols = symbols[: self.limit]
            logger.info(f"Near-expiry selection: {len(symbols)} contracts")

        return symbols

    # ------------------------------------------------------------------
    # Window
    # ------------------------------------------------------------------
    def date_range(self) -> Tuple[datetime, datetime]:
        to_date = self._now()
        return to_date - timedelta(days=self.days), to_date

    def prune_old_rows(self) -> int:
        """Delete rows older than the rolling window."""
        cutoff, _ = self.date_range()
        logger.info(
            f"Cleaning up {self.target.price_table} rows older than {cutoff.date().isoformat()}..."
        )
        try:
            response = (
                self.client.table(self.target.price_table)
                .delete()
                .lt("timestamp", cutoff.astimezone(timezone.utc).isoformat())
                .execute()
            )
        except Exception as e:
            logger.error(f"Cleanup of {self.target.price_table} failed: {e}")
            return 0

        deleted = len(response.data or [])
        logger.info(f"Deleted {deleted} old records")
        return deleted

    def existing_row_count(self, symbol: str) -> int:
        try:
            response = (
                self.client.table(self.target.price_table)
                .select("symbol", count="exact", head=True)
                .eq("symbol", symbol)
                .execute()
            )
        except Exception as e:
            logger.warning(f"Error checking existing data for {symbol}: {e}")
            return 0
        return response.count or 0

    # ------------------------------------------------------------------
    # Kite
    # ------------------------------------------------------------------
    def fetch_candles(
        self, instrument_token: str, symbol: str, from_date: datetime, to_date: datetime
    ) -> List[Dict[str, Any]]:
        """Historical candles for one instrument; empty list on failure."""
        self.pacer.wait()
        try:
            candles = self.kite.historical_data(
                int(instrument_token), from_date, to_date, self.interval
            )
        except Exception as e:
            logger.error(f"{symbol} failed: {e}")
            if is_rate_limited(e):
                logger.info(f"Rate limit hit, waiting {self.backoff:.0f} seconds...")
                self._sleep(self.backoff)
            return []

        logger.debug(f"{symbol}: {len(candles)} candles")
        return candles

    def transform(self, contract: Dict[str, Any], candles: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        if self.target.derivatives:
            return [
                FoCandleRow.from_contract(contract, c, self.interval_label).to_dict()
                for c in candles
            ]
        return [
            CandleRow.from_candle(contract["symbol"], c, self.interval_label).to_dict()
            for c in candles
        ]

    def save(self, rows: List[Dict[str, Any]]) -> bool:
        if not rows:
            return True
        try:
            (
                self.client.table(self.target.price_table)
                .upsert(rows, on_conflict="symbol,timestamp", ignore_duplicates=True)
                .execute()
            )
        except Exception as e:
            logger.error(f"Database insert into {self.target.price_table} failed: {e}")
            return False
        return True

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------
    def process_symbol(
        self, contract: Dict[str, Any], from_date: datetime, to_date: datetime, summary: FetchSummary
    ) -> None:
        symbol = contract["symbol"]

        if self.target.skip_existing:
            existing = self.existing_row_count(symbol)
            if existing > 0:
                logger.info(f"{symbol}: {existing} candles already exist, skipping")
                summary.skipped += 1
                return

        candles = self.fetch_candles(contract["instrument_token"], symbol, from_date, to_date)
        if not candles:
            summary.failed += 1
            summary.failed_symbols.append(symbol)
            return

        rows = self.transform(contract, candles)
        if self.save(rows):
            summary.success += 1
            summary.candles += len(rows)
            logger.info(f"{symbol}: {len(rows)} candles saved")
        else:
            summary.failed += 1
            summary.failed_symbols.append(symbol)

    def run(self) -> FetchSummary:
        logger.info(
            f"Starting {self.target.name} historical fetch: last {self.days} days, "
            f"interval {self.interval}, destination {self.target.price_table}"
        )

        symbols = self.load_symbols()
        summary = FetchSummary(total=len(symbols))
        if not symbols:
            logger.warning("No symbols found")
            return summary

        if self.target.rolling:
            summary.pruned = self.prune_old_rows()

        from_date, to_date = self.date_range()
        logger.info(f"Fetching data from {from_date.date()} to {to_date.date()}")

        batches = batched(symbols, self.batch_size)
        for i, batch in enumerate(batches, start=1):
            logger.info(f"Batch {i}/{len(batches)} ({len(batch)} symbols)")
            for contract in batch:
                self.process_symbol(contract, from_date, to_date, summary)

            if i < len(batches) and self.batch_delay > 0:
                self._sleep(self.batch_delay)

        logger.info(
            f"Fetch complete: total={summary.total} success={summary.success} "
            f"failed={summary.failed} skipped={summary.skipped} candles={summary.candles}"
        )
        return summary


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Fetch Kite historical candles into Supabase")
    parser.add_argument("target", choices=sorted(HISTORY_TARGETS))
    parser.add_argument("--days", type=int, default=None)
    parser.add_argument("--interval", default=None)
    parser.add_argument(
        "--force", action="store_true", help="refetch symbols that already have rows"
    )
    args = parser.parse_args(argv)

    setup_logging(get_config().log_level)

    target = HISTORY_TARGETS[args.target]
    if args.force:
        target = replace(target, skip_existing=False)

    try:
        fetcher = HistoricalFetcher(target, days=args.days, interval=args.interval)
        fetcher.run()
    except Exception as e:
        logger.exception(f"FATAL ERROR: {e}")
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
