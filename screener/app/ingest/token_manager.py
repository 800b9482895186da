"""
Kite access token refresh.

Kite access tokens lapse at 06:00 the following day, so this runs once a
day before market open: log in through the browser, paste the redirect URL,
and the new token is stored in Supabase (kite_tokens) and the local .env.
"""

import logging
import webbrowser
from datetime import datetime, timedelta
from pathlib import Path
from typing import Callable, Optional
from urllib.parse import parse_qs, urlparse

from kiteconnect import KiteConnect

from screener.app.common.config import get_config
from screener.app.common.logging import setup_logging
from screener.app.common.supabase_client import insert_row
from shared.schemas import KiteTokenRow

logger = logging.getLogger(__name__)

TOKEN_TABLE = "kite_tokens"
ENV_KEY = "KITE_ACCESS_TOKEN"


def extract_request_token(redirect_url: str) -> str:
    values = parse_qs(urlparse(redirect_url.strip()).query).get("request_token")
    if not values or not values[0]:
        raise ValueError("Invalid redirect URL. Request token not found.")
    return values[0]


def token_expiry(now: datetime) -> datetime:
    """06:00 on the day after `now`."""
    return (now + timedelta(days=1)).replace(hour=6, minute=0, second=0, microsecond=0)


def authenticate(
    kite: Optional[KiteConnect] = None,
    prompt: Callable[[str], str] = input,
    open_browser: Callable[[str], bool] = webbrowser.open,
) -> str:
    config = get_config()
    if not config.kite_api_key or not config.kite_api_secret:
        raise RuntimeError("KITE_API_KEY and KITE_API_SECRET must be set")

    kite = kite or KiteConnect(api_key=config.kite_api_key)
    login_url = kite.login_url()

    logger.info("Log in on the Zerodha page, then paste the full redirect URL here")
    if not open_browser(login_url):
        logger.warning(f"Could not open browser automatically. Please open manually: {login_url}")

    request_token = extract_request_token(prompt("Redirect URL: "))
    logger.info(f"Request token obtained: {request_token[:20]}...")

    session = kite.generate_session(request_token, api_secret=config.kite_api_secret)
    access_token = session["access_token"]
    logger.info(f"Access token obtained: {access_token[:20]}...")
    return access_token


def save_token(access_token: str, now: Optional[datetime] = None) -> KiteTokenRow:
    now = now or datetime.now().astimezone()
    row = KiteTokenRow(
        access_token=access_token,
        created_at=now.isoformat(),
        expires_at=token_expiry(now).isoformat(),
    )
    insert_row(TOKEN_TABLE, row.to_dict())
    logger.info(f"Token saved to Supabase, valid until {row.expires_at}")
    return row


def update_env_file(access_token: str, env_path: Path = Path(".env")) -> None:
    """Replace or append the KITE_ACCESS_TOKEN line."""
    lines = env_path.read_text().splitlines() if env_path.exists() else []

    entry = f"{ENV_KEY}={access_token}"
    for i, line in enumerate(lines):
        if line.startswith(f"{ENV_KEY}="):
            lines[i] = entry
            break
    else:
        lines.append(entry)

    env_path.write_text("\n".join(lines) + "\n")
    logger.info(f"Local {env_path} updated")


def main() -> int:
    setup_logging(get_config().log_level)
    try:
        access_token = authenticate()
        save_token(access_token)
    except Exception as e:
        logger.error(f"Token refresh failed: {e}")
        return 1

    try:
        update_env_file(access_token)
    except OSError as e:
        logger.error(f"Error updating .env file: {e}")
        return 1

    logger.info("Token refresh completed; run again tomorrow before market open")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
