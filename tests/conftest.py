"""Shared test fixtures."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from typing import Any, Callable, Dict, List, Optional, Tuple
from unittest.mock import MagicMock

import pytest

from screener.app.common.config import reset_config
from screener.app.common.supabase_client import reset_client
from screener.app.llm.cache import response_cache
from screener.app.llm.groq_client import reset_groq_client

IST = timezone(timedelta(hours=5, minutes=30))

ACTIONS = ("select", "insert", "upsert", "update", "delete")


class FakeQuery:
    """Records a chained PostgREST query and resolves it on execute()."""

    def __init__(self, db: "FakeSupabase", table: str):
        self.db = db
        self.table = table
        self.action: Optional[str] = None
        self.payload: Any = None
        self.ops: List[Tuple[str, tuple, dict]] = []

    def _record(self, name: str, *args, **kwargs) -> "FakeQuery":
        if name in ACTIONS and self.action is None:
            self.action = name
            if name in ("insert", "upsert", "update"):
                self.payload = args[0]
        self.ops.append((name, args, kwargs))
        return self

    def __getattr__(self, name: str) -> Callable[..., "FakeQuery"]:
        if name.startswith("_"):
            raise AttributeError(name)
        return lambda *args, **kwargs: self._record(name, *args, **kwargs)

    def filters(self, name: str) -> List[tuple]:
        return [args for op, args, _ in self.ops if op == name]

    def kwargs_of(self, name: str) -> dict:
        for op, _, kwargs in self.ops:
            if op == name:
                return kwargs
        return {}

    def execute(self):
        handler = self.db.handlers.get((self.table, self.action))
        if isinstance(handler, Exception):
            raise handler
        if callable(handler):
            result = handler(self)
        else:
            result = handler
        if isinstance(result, SimpleNamespace):
            return result
        return SimpleNamespace(data=result if result is not None else [], count=None)


class FakeSupabase:
    """Minimal stand-in for supabase.Client used by routes and jobs."""

    def __init__(self):
        self.handlers: Dict[Tuple[str, str], Any] = {}
        self.queries: List[FakeQuery] = []

    def table(self, name: str) -> FakeQuery:
        query = FakeQuery(self, name)
        self.queries.append(query)
        return query

    def on(self, table: str, action: str, result: Any) -> None:
        self.handlers[(table, action)] = result

    def calls(self, table: Optional[str] = None, action: Optional[str] = None) -> List[FakeQuery]:
        return [
            q for q in self.queries
            if (table is None or q.table == table) and (action is None or q.action == action)
        ]


@pytest.fixture(autouse=True)
def env(monkeypatch):
    """Deterministic configuration for every test."""
    monkeypatch.setenv("KITE_API_KEY", "kite-key")
    monkeypatch.setenv("KITE_API_SECRET", "kite-secret")
    monkeypatch.setenv("KITE_ACCESS_TOKEN", "kite-token")
    monkeypatch.setenv("SUPABASE_URL", "https://example.supabase.co")
    monkeypatch.setenv("SUPABASE_SERVICE_ROLE_KEY", "service-key")
    monkeypatch.setenv("GROQ_API_KEY", "groq-key")
    monkeypatch.setenv("APP_URL", "https://app.example.com")
    monkeypatch.delenv("GROQ_MODEL", raising=False)
    monkeypatch.setenv("DELAY_BETWEEN_REQUESTS_SEC", "0")
    monkeypatch.setenv("DELAY_BETWEEN_BATCHES_SEC", "0")
    reset_config()
    reset_client()
    reset_groq_client()
    response_cache.clear()
    yield
    reset_config()
    reset_client()
    reset_groq_client()
    response_cache.clear()


@pytest.fixture
def fake_db() -> FakeSupabase:
    return FakeSupabase()


@pytest.fixture
def fake_kite() -> MagicMock:
    kite = MagicMock()
    kite.instruments.return_value = []
    kite.historical_data.return_value = []
    return kite


def make_candles(start: datetime, count: int, step: timedelta = timedelta(minutes=5)) -> List[Dict[str, Any]]:
    return [
        {
            "date": start + i * step,
            "open": 100.0 + i,
            "high": 101.0 + i,
            "low": 99.0 + i,
            "close": 100.5 + i,
            "volume": 1000 + i,
        }
        for i in range(count)
    ]


def instrument(
    tradingsymbol: str,
    exchange: str,
    instrument_type: str,
    segment: Optional[str] = None,
    token: int = 1,
    name: str = "",
    expiry: Any = "",
    strike: float = 0.0,
    lot_size: int = 1,
    tick_size: float = 0.05,
) -> Dict[str, Any]:
    return {
        "instrument_token": token,
        "exchange_token": token // 256,
        "tradingsymbol": tradingsymbol,
        "name": name,
        "last_price": 0.0,
        "expiry": expiry,
        "strike": strike,
        "tick_size": tick_size,
        "lot_size": lot_size,
        "instrument_type": instrument_type,
        "segment": segment or exchange,
        "exchange": exchange,
    }
