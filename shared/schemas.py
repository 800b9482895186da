"""
Shared schemas and row contracts between the ingestion jobs and the API.
"""

from dataclasses import asdict, dataclass
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, Optional


class Exchange(Enum):
    NSE = "NSE"
    BSE = "BSE"
    NFO = "NFO"
    BFO = "BFO"


class InstrumentType(Enum):
    EQ = "EQ"
    FUT = "FUT"
    CE = "CE"
    PE = "PE"


FO_INSTRUMENT_TYPES = (InstrumentType.FUT.value, InstrumentType.CE.value, InstrumentType.PE.value)
OPTION_TYPES = (InstrumentType.CE.value, InstrumentType.PE.value)

DEFAULT_LOT_SIZE = 1
DEFAULT_TICK_SIZE = 0.05


def _iso_date(value: Any) -> str:
    if isinstance(value, (date, datetime)):
        return value.strftime("%Y-%m-%d")
    return str(value or "")


@dataclass
class EquitySymbolRow:
    """Row of a per-exchange equity symbol master table."""
    symbol: str
    instrument_token: str
    exchange: str
    company_name: str
    type: str = InstrumentType.EQ.value
    segment: str = ""
    isin: Optional[str] = None
    lot_size: int = DEFAULT_LOT_SIZE
    tick_size: float = DEFAULT_TICK_SIZE
    is_active: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_instrument(cls, instrument: Dict[str, Any], exchange: str) -> "EquitySymbolRow":
        symbol = instrument["tradingsymbol"]
        return cls(
            symbol=symbol,
            instrument_token=str(instrument["instrument_token"]),
            exchange=exchange,
            segment=exchange,
            company_name=instrument.get("name") or symbol,
            lot_size=instrument.get("lot_size") or DEFAULT_LOT_SIZE,
            tick_size=instrument.get("tick_size") or DEFAULT_TICK_SIZE,
        )


@dataclass
class FoSymbolRow:
    """Row of a futures & options contract master table."""
    symbol: str
    instrument_token: str
    exchange: str
    segment: str
    instrument_type: str
    underlying: str
    expiry: str
    strike: Optional[float]
    option_type: Optional[str]
    company_name: str
    lot_size: int = DEFAULT_LOT_SIZE
    tick_size: float = DEFAULT_TICK_SIZE
    is_active: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class CandleRow:
    """One intraday OHLC candle as stored in a historical price table."""
    symbol: str
    date: str
    timestamp: str
    interval_type: str
    open: float
    high: float
    low: float
    close: float
    volume: int
    time: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_candle(
        cls, symbol: str, candle: Dict[str, Any], interval_type: str
    ) -> "CandleRow":
        ts: datetime = candle["date"]
        return cls(
            symbol=symbol,
            date=ts.strftime("%Y-%m-%d"),
            timestamp=ts.isoformat(),
            interval_type=interval_type,
            open=float(candle["open"]),
            high=float(candle["high"]),
            low=float(candle["low"]),
            close=float(candle["close"]),
            volume=int(candle.get("volume") or 0),
            time=ts.strftime("%H:%M"),
        )


@dataclass
class FoCandleRow(CandleRow):
    """Intraday candle for a derivatives contract, carrying contract metadata."""
    instrument_token: str = ""
    underlying: str = ""
    instrument_type: str = ""
    expiry: str = ""
    strike: Optional[float] = None
    option_type: Optional[str] = None

    @classmethod
    def from_contract(
        cls, contract: Dict[str, Any], candle: Dict[str, Any], interval_type: str
    ) -> "FoCandleRow":
        base = CandleRow.from_candle(contract["symbol"], candle, interval_type)
        return cls(
            **base.to_dict(),
            instrument_token=str(contract["instrument_token"]),
            underlying=contract.get("underlying") or "",
            instrument_type=contract.get("instrument_type") or "",
            expiry=_iso_date(contract.get("expiry")),
            strike=contract.get("strike"),
            option_type=contract.get("option_type"),
        )


@dataclass
class DailyCandleRow:
    """Daily (or hourly) swing candle; keyed by symbol + date."""
    symbol: str
    date: str
    timestamp: str
    interval_type: str
    open: float
    high: float
    low: float
    close: float
    volume: int
    open_interest: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_candle(
        cls, symbol: str, candle: Dict[str, Any], interval_type: str
    ) -> "DailyCandleRow":
        ts: datetime = candle["date"]
        oi = candle.get("oi")
        return cls(
            symbol=symbol,
            date=ts.strftime("%Y-%m-%d"),
            timestamp=ts.isoformat(),
            interval_type=interval_type,
            open=float(candle["open"]),
            high=float(candle["high"]),
            low=float(candle["low"]),
            close=float(candle["close"]),
            volume=int(candle.get("volume") or 0),
            open_interest=int(oi) if oi else None,
        )


@dataclass
class KiteTokenRow:
    """Stored Kite access token; Kite sessions lapse at 06:00 the next day."""
    access_token: str
    created_at: str
    expires_at: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
