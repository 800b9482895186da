"""
Spreadsheet-driven BSE symbol imports.

Two flavours:
- kite:   look up each spreadsheet symbol in the Kite BSE instrument dump
- master: match the spreadsheet's "Trading Symbol" column against the
          all_bse_equity_symbols table

Both upsert the matches into bse_equity_top_1000_symbols.

Usage:
    python -m screener.app.ingest.spreadsheet kite [--path symbols.csv]
    python -m screener.app.ingest.spreadsheet master [--path top.xlsx]
"""

import argparse
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

import pandas as pd
from kiteconnect import KiteConnect

from screener.app.common.config import get_config
from screener.app.common.kite_client import get_kite
from screener.app.common.logging import setup_logging
from screener.app.common.supabase_client import get_client
from shared.schemas import EquitySymbolRow, Exchange, InstrumentType

logger = logging.getLogger(__name__)

EXCHANGE = Exchange.BSE.value
SOURCE_TABLE = "all_bse_equity_symbols"
DEST_TABLE = "bse_equity_top_1000_symbols"

_HEADER = re.compile(r"^(symbol|name|stock)", re.IGNORECASE)
_MAX_LISTED_MISSING = 50


@dataclass
class ImportSummary:
    in_file: int = 0
    matched: int = 0
    saved: int = 0
    not_found: List[str] = field(default_factory=list)


def _unique_upper(values: Iterable[Any]) -> List[str]:
    seen = []
    for value in values:
        if value is None or (isinstance(value, float) and pd.isna(value)):
            continue
        symbol = str(value).strip().upper()
        if symbol and symbol not in seen:
            seen.append(symbol)
    return seen


def _load_frame(path: Path, header: Optional[int]) -> pd.DataFrame:
    ext = path.suffix.lower()
    if ext == ".csv":
        return pd.read_csv(path, header=header, dtype=str, skip_blank_lines=True)
    if ext in (".xlsx", ".xls"):
        return pd.read_excel(path, header=header, sheet_name=0, dtype=str)
    raise ValueError(f"Unsupported file format: {ext}. Use .csv, .xlsx, or .xls")


def read_symbols(path) -> List[str]:
    """
    Symbols from the first column of a CSV or Excel sheet.

    A first row starting with symbol/name/stock is treated as a header.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Spreadsheet file not found: {path}")

    frame = _load_frame(path, header=None)
    if frame.empty:
        return []

    column = frame.iloc[:, 0].tolist()
    if column and isinstance(column[0], str) and _HEADER.match(column[0].strip()):
        column = column[1:]

    symbols = _unique_upper(column)
    logger.info(f"Found {len(symbols)} unique symbols in {path.name}")
    return symbols


def read_trading_symbols(path) -> List[str]:
    """Symbols from the 'Trading Symbol' column, matched ignoring case and spaces."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Spreadsheet file not found: {path}")

    frame = _load_frame(path, header=0)
    column = next(
        (c for c in frame.columns if str(c).replace(" ", "").lower() == "tradingsymbol"),
        None,
    )
    if column is None:
        logger.warning(f"No 'Trading Symbol' column in {path.name}")
        return []

    symbols = _unique_upper(frame[column].tolist())
    logger.info(f"Found {len(symbols)} unique symbols in {path.name}")
    return symbols


def find_instrument(
    instruments: List[Dict[str, Any]], symbol: str, exchange: str = EXCHANGE
) -> Optional[Dict[str, Any]]:
    """Exact tradingsymbol match first, then case-insensitive."""
    candidates = [
        inst for inst in instruments
        if inst.get("exchange") == exchange
        and inst.get("instrument_type") == InstrumentType.EQ.value
        and inst.get("tradingsymbol")
    ]
    for inst in candidates:
        if inst["tradingsymbol"] == symbol:
            return inst
    upper = symbol.upper()
    for inst in candidates:
        if inst["tradingsymbol"].upper() == upper:
            return inst
    return None


def upsert_symbols(client, rows: List[Dict[str, Any]], table: str = DEST_TABLE) -> int:
    if not rows:
        return 0
    logger.info(f"Saving {len(rows)} symbols to {table}...")
    try:
        response = (
            client.table(table)
            .upsert(rows, on_conflict="symbol", ignore_duplicates=False)
            .execute()
        )
    except Exception as e:
        logger.error(f"Database error: {e}")
        return 0
    return len(response.data or rows)


def _report(summary: ImportSummary) -> None:
    logger.info(
        f"Import complete: in_file={summary.in_file} matched={summary.matched} "
        f"saved={summary.saved} not_found={len(summary.not_found)}"
    )
    if 0 < len(summary.not_found) <= _MAX_LISTED_MISSING:
        logger.info(f"Symbols not found: {', '.join(summary.not_found)}")
    elif summary.not_found:
        logger.info(f"{len(summary.not_found)} symbols not found (too many to display)")


def import_from_kite(path, kite: Optional[KiteConnect] = None, client=None) -> ImportSummary:
    symbols = read_symbols(path)
    summary = ImportSummary(in_file=len(symbols))
    if not symbols:
        logger.warning("No symbols found in spreadsheet")
        return summary

    kite = kite or get_kite()
    client = client or get_client()

    instruments = kite.instruments(EXCHANGE)
    logger.info(f"Loaded {len(instruments)} {EXCHANGE} instruments")

    rows = []
    for symbol in symbols:
        instrument = find_instrument(instruments, symbol)
        if instrument is None:
            summary.not_found.append(symbol)
            continue
        rows.append(EquitySymbolRow.from_instrument(instrument, EXCHANGE).to_dict())

    summary.matched = len(rows)
    summary.saved = upsert_symbols(client, rows)
    _report(summary)
    return summary


def import_from_master(path, client=None) -> ImportSummary:
    symbols = read_trading_symbols(path)
    summary = ImportSummary(in_file=len(symbols))
    if not symbols:
        logger.warning("No symbols found in spreadsheet")
        return summary

    client = client or get_client()
    response = (
        client.table(SOURCE_TABLE)
        .select("*")
        .in_("symbol", symbols)
        .eq("is_active", True)
        .execute()
    )
    matched = response.data or []
    logger.info(f"Found {len(matched)} matching symbols in {SOURCE_TABLE}")

    matched_names = {row["symbol"] for row in matched}
    summary.matched = len(matched)
    summary.not_found = [s for s in symbols if s not in matched_names]
    if matched:
        summary.saved = upsert_symbols(client, matched)
    _report(summary)
    return summary


def main(argv: Optional[List[str]] = None) -> int:
    config = get_config()
    parser = argparse.ArgumentParser(description="Import BSE symbols from a spreadsheet")
    parser.add_argument("source", choices=["kite", "master"])
    parser.add_argument("--path", default=None)
    args = parser.parse_args(argv)

    setup_logging(config.log_level)

    try:
        if args.source == "kite":
            import_from_kite(args.path or config.spreadsheet_path)
        else:
            import_from_master(args.path or config.top_symbols_excel_path)
    except Exception as e:
        logger.exception(f"FATAL ERROR: {e}")
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
