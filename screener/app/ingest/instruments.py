"""
Kite instrument master sync.

Fetches the full instrument dump from Kite Connect, keeps one
exchange/segment worth of instruments and refreshes the matching
Supabase symbol table (clear, then batched insert).

Usage:
    python -m screener.app.ingest.instruments nse-equity|bse-equity|nse-fo|bse-fo
"""

import argparse
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from kiteconnect import KiteConnect

from screener.app.common.config import get_config
from screener.app.common.kite_client import get_kite
from screener.app.common.logging import setup_logging
from screener.app.common.supabase_client import get_client
from shared.schemas import (
    DEFAULT_LOT_SIZE,
    DEFAULT_TICK_SIZE,
    FO_INSTRUMENT_TYPES,
    OPTION_TYPES,
    EquitySymbolRow,
    Exchange,
    FoSymbolRow,
    InstrumentType,
)

logger = logging.getLogger(__name__)

_FUT_SUFFIX = re.compile(r"\d{2}[A-Z]{3}FUT$", re.IGNORECASE)
_OPT_SUFFIX = re.compile(r"\d{2}[A-Z]{3}\d+[CP]E$", re.IGNORECASE)


@dataclass(frozen=True)
class SymbolTarget:
    """Where one instrument segment comes from and which table it lands in."""
    name: str
    exchange: str
    table: str
    key_column: str
    derivatives: bool = False


SYMBOL_TARGETS: Dict[str, SymbolTarget] = {
    "nse-equity": SymbolTarget("nse-equity", Exchange.NSE.value, "kite_nse_equity_symbols", "symbol"),
    "bse-equity": SymbolTarget("bse-equity", Exchange.BSE.value, "kite_bse_equity_symbols", "symbol"),
    "nse-fo": SymbolTarget("nse-fo", Exchange.NFO.value, "kite_nse_fo_symbols", "instrument_token", True),
    "bse-fo": SymbolTarget("bse-fo", Exchange.BFO.value, "kite_bse_fo_symbols", "instrument_token", True),
}


@dataclass
class StoreSummary:
    total: int = 0
    stored: int = 0
    failed: int = 0


def fetch_instruments(kite: KiteConnect, exchange: Optional[str] = None) -> List[Dict[str, Any]]:
    """Download the instrument dump (optionally a single exchange)."""
    logger.info("Fetching instruments from Kite Connect...")
    instruments = kite.instruments(exchange) if exchange else kite.instruments()
    logger.info(f"Fetched {len(instruments)} total instruments")
    return instruments


def filter_equity_symbols(
    instruments: List[Dict[str, Any]], exchange: str
) -> List[EquitySymbolRow]:
    """Keep cash-segment equities of one exchange."""
    rows = [
        EquitySymbolRow.from_instrument(inst, exchange)
        for inst in instruments
        if inst.get("exchange") == exchange
        and inst.get("instrument_type") == InstrumentType.EQ.value
        and inst.get("segment") == exchange
    ]
    logger.info(f"Filtered {len(rows)} {exchange} equity symbols")
    return rows


def extract_underlying(tradingsymbol: str, instrument_type: str) -> str:
    """
    Strip the expiry/strike suffix from a derivatives trading symbol.

    NIFTY24JAN24000CE -> NIFTY, RELIANCE24FEBFUT -> RELIANCE
    """
    if instrument_type == InstrumentType.FUT.value:
        return _FUT_SUFFIX.sub("", tradingsymbol)
    return _OPT_SUFFIX.sub("", tradingsymbol)


def _expiry_str(value: Any) -> str:
    if not value:
        return ""
    if hasattr(value, "strftime"):
        return value.strftime("%Y-%m-%d")
    return str(value)


def filter_fo_symbols(
    instruments: List[Dict[str, Any]], exchange: str
) -> List[FoSymbolRow]:
    """Keep futures and options of a derivatives exchange (NFO/BFO) with an expiry."""
    rows = []
    for inst in instruments:
        itype = inst.get("instrument_type")
        if inst.get("exchange") != exchange or itype not in FO_INSTRUMENT_TYPES:
            continue

        expiry = _expiry_str(inst.get("expiry"))
        if not expiry:
            continue

        underlying = extract_underlying(inst["tradingsymbol"], itype)
        rows.append(
            FoSymbolRow(
                symbol=inst["tradingsymbol"],
                instrument_token=str(inst["instrument_token"]),
                exchange=exchange,
                segment=f"{exchange}-FUT" if itype == InstrumentType.FUT.value else f"{exchange}-OPT",
                instrument_type=itype,
                underlying=underlying,
                expiry=expiry,
                strike=inst.get("strike") or None,
                option_type=itype if itype in OPTION_TYPES else None,
                company_name=inst.get("name") or underlying,
                lot_size=inst.get("lot_size") or DEFAULT_LOT_SIZE,
                tick_size=inst.get("tick_size") or DEFAULT_TICK_SIZE,
            )
        )

    futures = sum(1 for r in rows if r.instrument_type == InstrumentType.FUT.value)
    calls = sum(1 for r in rows if r.instrument_type == InstrumentType.CE.value)
    puts = sum(1 for r in rows if r.instrument_type == InstrumentType.PE.value)
    logger.info(
        f"Filtered {len(rows)} {exchange} F&O symbols "
        f"(futures={futures}, calls={calls}, puts={puts})"
    )
    return rows


def store_symbols(
    client,
    table: str,
    rows: List[Dict[str, Any]],
    key_column: str = "symbol",
    batch_size: Optional[int] = None,
) -> StoreSummary:
    """
    Replace the contents of a symbol table.

    A failed batch is logged and counted; remaining batches still run.
    """
    batch_size = batch_size or get_config().insert_batch_size
    summary = StoreSummary(total=len(rows))

    logger.info(f"Clearing existing rows in {table}...")
    try:
        client.table(table).delete().neq(key_column, "").execute()
    except Exception as e:
        logger.warning(f"Warning during delete from {table}: {e}")

    total_batches = (len(rows) + batch_size - 1) // batch_size
    for start in range(0, len(rows), batch_size):
        batch = rows[start:start + batch_size]
        batch_number = start // batch_size + 1
        logger.info(f"Processing batch {batch_number}/{total_batches} ({len(batch)} symbols)...")

        try:
            client.table(table).insert(batch).execute()
        except Exception as e:
            logger.error(f"Error in batch {batch_number}: {e}")
            summary.failed += len(batch)
            continue

        summary.stored += len(batch)

    logger.info(
        f"Stored {summary.stored}/{summary.total} rows in {table} "
        f"({summary.failed} failed)"
    )
    return summary


def sync_symbols(target_name: str, kite: Optional[KiteConnect] = None, client=None) -> StoreSummary:
    """Fetch, filter and store one symbol target."""
    target = SYMBOL_TARGETS[target_name]
    kite = kite or get_kite()
    client = client or get_client()

    instruments = fetch_instruments(kite)
    if target.derivatives:
        rows = filter_fo_symbols(instruments, target.exchange)
    else:
        rows = filter_equity_symbols(instruments, target.exchange)

    if not rows:
        logger.warning(f"No {target.name} symbols found")
        return StoreSummary()

    return store_symbols(
        client, target.table, [r.to_dict() for r in rows], key_column=target.key_column
    )


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Sync a Kite instrument segment to Supabase")
    parser.add_argument("target", choices=sorted(SYMBOL_TARGETS))
    args = parser.parse_args(argv)

    setup_logging(get_config().log_level)

    try:
        summary = sync_symbols(args.target)
    except Exception as e:
        logger.error(f"Symbol sync failed: {e}")
        return 1

    if summary.total == 0:
        return 1

    table = SYMBOL_TARGETS[args.target].table
    logger.info(f"{summary.stored} {args.target} symbols are now available in '{table}'")
    return 0 if summary.failed == 0 else 1


if __name__ == "__main__":
    raise SystemExit(main())
