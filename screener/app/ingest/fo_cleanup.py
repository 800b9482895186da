"""
Expired F&O contract housekeeping.

Marks contracts past expiry as inactive and deletes contracts whose expiry
is older than the retention window. Run daily or weekly.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Dict, List, Optional

from screener.app.common.config import get_config
from screener.app.common.logging import setup_logging
from screener.app.common.supabase_client import get_client

logger = logging.getLogger(__name__)

FO_TABLES = ("kite_nse_fo_symbols", "kite_bse_fo_symbols")


@dataclass
class CleanupStats:
    table: str
    total_records: int = 0
    active_records: int = 0
    expired_records: int = 0
    marked_inactive: int = 0
    deleted_records: int = 0


def _count(client, table: str, active_only: bool = False) -> int:
    query = client.table(table).select("instrument_token", count="exact", head=True)
    if active_only:
        query = query.eq("is_active", True)
    return query.execute().count or 0


def expired_active_contracts(client, table: str, today: date) -> List[Dict]:
    response = (
        client.table(table)
        .select("instrument_token, symbol, expiry")
        .lt("expiry", today.isoformat())
        .eq("is_active", True)
        .execute()
    )
    return response.data or []


def mark_inactive(client, table: str, contracts: List[Dict]) -> int:
    if not contracts:
        return 0
    tokens = [c["instrument_token"] for c in contracts]
    (
        client.table(table)
        .update({"is_active": False, "updated_at": datetime.now(timezone.utc).isoformat()})
        .in_("instrument_token", tokens)
        .execute()
    )
    return len(contracts)


def delete_old_contracts(client, table: str, today: date, days_old: int) -> int:
    cutoff = (today - timedelta(days=days_old)).isoformat()
    response = client.table(table).delete().lt("expiry", cutoff).execute()
    return len(response.data or [])


def cleanup_table(client, table: str, today: date, retention_days: int) -> CleanupStats:
    logger.info(f"Cleaning up {table}...")
    stats = CleanupStats(table=table)

    expired = expired_active_contracts(client, table, today)
    stats.expired_records = len(expired)
    logger.info(f"Found {len(expired)} expired active contracts")

    stats.marked_inactive = mark_inactive(client, table, expired)
    if stats.marked_inactive:
        logger.info(f"Marked {stats.marked_inactive} contracts as inactive")

    stats.deleted_records = delete_old_contracts(client, table, today, retention_days)
    if stats.deleted_records:
        logger.info(
            f"Deleted {stats.deleted_records} contracts expired more than {retention_days} days ago"
        )

    stats.total_records = _count(client, table)
    stats.active_records = _count(client, table, active_only=True)
    return stats


def run_cleanup(client=None, today: Optional[date] = None) -> Dict[str, CleanupStats]:
    """
    Clean every F&O table. The NSE table is required; failures on the
    other tables are logged and skipped.
    """
    client = client or get_client()
    today = today or date.today()
    retention = get_config().fo_retention_days

    results: Dict[str, CleanupStats] = {}
    primary, *others = FO_TABLES
    results[primary] = cleanup_table(client, primary, today, retention)

    for table in others:
        try:
            results[table] = cleanup_table(client, table, today, retention)
        except Exception as e:
            logger.error(f"Cleanup of {table} failed: {e}")

    for stats in results.values():
        logger.info(
            f"{stats.table}: total={stats.total_records} active={stats.active_records} "
            f"marked_inactive={stats.marked_inactive} deleted={stats.deleted_records}"
        )
    return results


def main() -> int:
    setup_logging(get_config().log_level)
    try:
        run_cleanup()
    except Exception as e:
        logger.error(f"F&O cleanup failed: {e}")
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
