"""Tests for the historical candle fetcher."""

from datetime import date, datetime, timedelta, timezone
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

from conftest import IST, make_candles
from screener.app.common.config import reset_config
from screener.app.ingest import historical as mod
from screener.app.ingest.historical import (
    HISTORY_TARGETS,
    HistoricalFetcher,
    batched,
    filter_near_expiries,
)

NOW = datetime(2024, 1, 20, 15, 30)


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def make_fetcher(fake_db, fake_kite, sleeps):
    def build(name, **kwargs):
        return HistoricalFetcher(
            HISTORY_TARGETS[name],
            kite=fake_kite,
            client=fake_db,
            pacer=MagicMock(),
            sleep=sleeps.append,
            now=lambda: NOW,
            **kwargs,
        )
    return build


def counts(per_symbol):
    def handler(query):
        symbol = dict(query.filters("eq")).get("symbol")
        return SimpleNamespace(data=[], count=per_symbol.get(symbol, 0))
    return handler


def test_near_expiries_per_underlying():
    """Each underlying keeps its next N expiries on or after today."""
    contracts = [
        {"symbol": "S1", "underlying": "SENSEX", "expiry": "2024-01-19"},
        {"symbol": "S2", "underlying": "SENSEX", "expiry": "2024-01-26"},
        {"symbol": "S3", "underlying": "SENSEX", "expiry": "2024-02-02"},
        {"symbol": "S4", "underlying": "SENSEX", "expiry": "2024-02-09"},
        {"symbol": "S5", "underlying": "SENSEX", "expiry": "2024-01-26"},
        {"symbol": "B1", "underlying": "BANKEX", "expiry": "2024-01-22"},
    ]

    kept = filter_near_expiries(contracts, 2, today=date(2024, 1, 20))

    assert [c["symbol"] for c in kept] == ["S2", "S5", "S3", "B1"]


def test_batched():
    """Items are split into consecutive fixed-size batches."""
    assert batched([1, 2, 3, 4, 5], 2) == [[1, 2], [3, 4], [5]]


class TestLoadSymbols:
    def test_equity_query(self, fake_db, make_fetcher):
        """Equity symbols are active, alphabetical and capped."""
        fake_db.on("kite_nse_equity_symbols", "select", [{"symbol": "A"}])

        symbols = make_fetcher("nse-equity").load_symbols()

        assert symbols == [{"symbol": "A"}]
        query = fake_db.calls("kite_nse_equity_symbols")[0]
        assert query.filters("eq") == [("is_active", True)]
        assert query.filters("order") == [("symbol",)]
        assert query.filters("limit") == [(1000,)]

    def test_bse_fo_keeps_near_expiries(self, fake_db, make_fetcher):
        """F&O contracts are restricted to index underlyings and near expiries."""
        fake_db.on(
            "kite_bse_fo_symbols",
            "select",
            [
                {"symbol": "SENSEX24JANFUT", "underlying": "SENSEX", "expiry": "2024-01-26"},
                {"symbol": "SENSEX24FEBFUT", "underlying": "SENSEX", "expiry": "2024-02-23"},
                {"symbol": "SENSEX24MARFUT", "underlying": "SENSEX", "expiry": "2024-03-29"},
            ],
        )

        symbols = make_fetcher("bse-fo").load_symbols()

        assert [s["symbol"] for s in symbols] == ["SENSEX24JANFUT", "SENSEX24FEBFUT"]
        query = fake_db.calls("kite_bse_fo_symbols")[0]
        assert query.filters("in_") == [("underlying", ["SENSEX", "BANKEX"])]
        assert query.filters("order") == [("expiry",)]
        assert query.filters("limit") == []


class TestRun:
    def test_skips_symbols_with_data(self, fake_db, fake_kite, make_fetcher):
        """Symbols that already have rows are skipped; the rest are fetched and saved."""
        fake_db.on(
            "kite_nse_equity_symbols",
            "select",
            [
                {"symbol": "INFY", "instrument_token": "408065"},
                {"symbol": "TCS", "instrument_token": "2953217"},
            ],
        )
        fake_db.on("historical_prices_nse_equity", "select", counts({"INFY": 10}))
        fake_kite.historical_data.return_value = make_candles(
            datetime(2024, 1, 19, 9, 15, tzinfo=IST), 3
        )

        summary = make_fetcher("nse-equity").run()

        assert (summary.total, summary.success, summary.skipped, summary.failed) == (2, 1, 1, 0)
        assert summary.candles == 3
        fake_kite.historical_data.assert_called_once_with(
            2953217, NOW - timedelta(days=90), NOW, "5minute"
        )

        upsert = fake_db.calls("historical_prices_nse_equity", "upsert")[0]
        assert upsert.kwargs_of("upsert") == {
            "on_conflict": "symbol,timestamp",
            "ignore_duplicates": True,
        }
        first = upsert.payload[0]
        assert first["symbol"] == "TCS"
        assert first["date"] == "2024-01-19"
        assert first["time"] == "09:15"
        assert first["timestamp"] == "2024-01-19T09:15:00+05:30"
        assert first["interval_type"] == "5min"
        assert first["volume"] == 1000

    def test_failed_fetch_recorded(self, fake_db, fake_kite, make_fetcher, sleeps):
        """A Kite error counts as a failure and rate limits trigger a backoff."""
        fake_db.on(
            "kite_bse_equity_symbols", "select", [{"symbol": "SBIN", "instrument_token": "1"}]
        )
        fake_kite.historical_data.side_effect = Exception("Too many requests")

        summary = make_fetcher("bse-equity").run()

        assert summary.failed == 1
        assert summary.failed_symbols == ["SBIN"]
        assert sleeps == [10.0]
        assert fake_db.calls("historical_prices_bse_equity", "upsert") == []

    def test_save_error_counts_as_failure(self, fake_db, fake_kite, make_fetcher):
        """An upsert error marks the symbol as failed."""
        fake_db.on(
            "kite_bse_equity_symbols", "select", [{"symbol": "SBIN", "instrument_token": "1"}]
        )
        fake_db.on("historical_prices_bse_equity", "upsert", RuntimeError("insert failed"))
        fake_kite.historical_data.return_value = make_candles(datetime(2024, 1, 19, 9, 15), 1)

        summary = make_fetcher("bse-equity").run()

        assert (summary.success, summary.failed) == (0, 1)

    def test_rolling_window_prunes_first(self, fake_db, fake_kite, make_fetcher):
        """The 20-day job deletes rows older than its window and refetches everything."""
        fake_db.on(
            "bse_equity_top_1000_symbols", "select", [{"symbol": "SBIN", "instrument_token": "1"}]
        )
        fake_db.on("historical_prices_bse_equity", "delete", [{"id": 1}, {"id": 2}])
        fake_kite.historical_data.return_value = make_candles(datetime(2024, 1, 19, 9, 15), 2)

        summary = make_fetcher("bse-equity-20d").run()

        assert summary.pruned == 2
        assert summary.success == 1
        delete = fake_db.calls("historical_prices_bse_equity", "delete")[0]
        cutoff = (NOW - timedelta(days=20)).astimezone(timezone.utc).isoformat()
        assert delete.filters("lt") == [("timestamp", cutoff)]
        assert fake_db.calls("historical_prices_bse_equity", "select") == []

    def test_prune_cutoff_is_utc(self, fake_db, fake_kite, sleeps):
        """The pruning cutoff is sent as a UTC timestamp regardless of local offset."""
        fetcher = HistoricalFetcher(
            HISTORY_TARGETS["bse-equity-20d"],
            kite=fake_kite,
            client=fake_db,
            pacer=MagicMock(),
            sleep=sleeps.append,
            now=lambda: datetime(2024, 1, 20, 15, 30, tzinfo=IST),
        )

        fetcher.prune_old_rows()

        delete = fake_db.calls("historical_prices_bse_equity", "delete")[0]
        assert delete.filters("lt") == [("timestamp", "2023-12-31T10:00:00+00:00")]

    def test_delay_between_batches(self, monkeypatch, fake_db, make_fetcher, sleeps):
        """The job pauses between batches, not after the last one."""
        monkeypatch.setenv("BATCH_SIZE", "1")
        monkeypatch.setenv("DELAY_BETWEEN_BATCHES_SEC", "2")
        reset_config()
        fake_db.on(
            "kite_nse_equity_symbols",
            "select",
            [{"symbol": "A", "instrument_token": "1"}, {"symbol": "B", "instrument_token": "2"}],
        )
        fake_db.on("historical_prices_nse_equity", "select", counts({"A": 1, "B": 1}))

        make_fetcher("nse-equity").run()

        assert sleeps == [2.0]

    def test_no_symbols(self, make_fetcher, fake_kite):
        """An empty symbol table ends the run early."""
        summary = make_fetcher("nse-equity").run()

        assert summary.total == 0
        fake_kite.historical_data.assert_not_called()


def test_fo_rows_carry_contract_fields(make_fetcher):
    """Derivatives candles include the contract metadata."""
    contract = {
        "symbol": "SENSEX24JAN72000CE",
        "instrument_token": 2001,
        "underlying": "SENSEX",
        "instrument_type": "CE",
        "expiry": "2024-01-26",
        "strike": 72000.0,
        "option_type": "CE",
    }
    candles = make_candles(datetime(2024, 1, 19, 9, 15, tzinfo=IST), 1)

    row = make_fetcher("bse-fo").transform(contract, candles)[0]

    assert row["instrument_token"] == "2001"
    assert row["underlying"] == "SENSEX"
    assert row["expiry"] == "2024-01-26"
    assert row["strike"] == 72000.0
    assert row["option_type"] == "CE"
    assert row["close"] == 100.5


def test_main_force_refetches(monkeypatch):
    """--force turns off skipping of symbols that already have rows."""
    seen = {}

    class FakeFetcher:
        def __init__(self, target, days=None, interval=None):
            seen.update(target=target, days=days, interval=interval)

        def run(self):
            return None

    monkeypatch.setattr(mod, "HistoricalFetcher", FakeFetcher)

    assert mod.main(["nse-equity", "--force", "--days", "5", "--interval", "15minute"]) == 0
    assert seen["target"].skip_existing is False
    assert seen["days"] == 5
    assert seen["interval"] == "15minute"
