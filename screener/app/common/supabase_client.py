from typing import Any, Dict, Optional

import requests
from supabase import Client, create_client

from screener.app.common.config import get_config

_client: Optional[Client] = None


def get_client() -> Client:
    """
    Return the shared service-role Supabase client, creating it on first use.
    """
    global _client
    if _client is None:
        config = get_config()
        if not config.supabase_url or not config.supabase_service_key:
            raise RuntimeError("Supabase environment variables not set")
        _client = create_client(config.supabase_url, config.supabase_service_key)
    return _client


def reset_client() -> None:
    """Drop the cached client (tests, credential rotation)."""
    global _client
    _client = None


def _headers(key: str) -> Dict[str, str]:
    return {
        "apikey": key,
        "Authorization": f"Bearer {key}",
        "Content-Type": "application/json",
        "Prefer": "return=minimal",
    }


def insert_row(table: str, payload: Dict[str, Any]) -> None:
    """
    Insert a single row into a Supabase table via REST API.
    """
    config = get_config()
    if not config.supabase_url or not config.supabase_service_key:
        raise RuntimeError("Supabase environment variables not set")

    url = f"{config.supabase_url}/rest/v1/{table}"
    response = requests.post(
        url, json=payload, headers=_headers(config.supabase_service_key), timeout=10
    )

    if not response.ok:
        raise RuntimeError(
            f"Supabase insert failed [{response.status_code}]: {response.text}"
        )
