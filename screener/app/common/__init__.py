# screener.app.common package
from screener.app.common.config import Config, get_config, reset_config
from screener.app.common.supabase_client import get_client, insert_row

__all__ = ["Config", "get_config", "reset_config", "get_client", "insert_row"]
