"""Configuration for the Solana address activity monitor."""
from __future__ import annotations

import argparse
import os
from dataclasses import dataclass
from typing import Optional, Sequence

from .env import DEFAULT_ENV_FILE, EnvSettings


# ──────────────────────────────────────────────────────────────
# Endpoints
# ──────────────────────────────────────────────────────────────

SOLANA_RPC = "https://api.mainnet-beta.solana.com"
SOLANA_WS = "wss://api.mainnet-beta.solana.com"
JUPITER_PRICE_API = "https://lite-api.jup.ag/price/v2"
JUPITER_TOKEN_API = "https://lite-api.jup.ag/tokens/v1/token"
COINGECKO_API = "https://api.coingecko.com/api/v3"

COMMANDS = ("run", "add", "remove", "list")


# ──────────────────────────────────────────────────────────────
# Config dataclass
# ──────────────────────────────────────────────────────────────

@dataclass(slots=True)
class Config:
    """Runtime configuration, populated from CLI + env."""

    # ── Solana endpoints ──
    rpc_url: str = SOLANA_RPC
    ws_url: str = SOLANA_WS
    commitment: str = "confirmed"
    request_timeout_s: float = 15.0

    # ── Polling backstop ──
    poll_interval_s: float = 15.0
    # Newest signatures fetched per address per tick
    signature_limit: int = 10

    # ── Push channel ──
    # Reconnect attempts before falling back to polling only
    max_retries: int = 3
    retry_delay_s: float = 5.0
    # Also open a logsSubscribe per address (mentions filter)
    subscribe_logs: bool = True
    ws_heartbeat_s: float = 30.0

    # ── Price / metadata ──
    price_api_url: str = JUPITER_PRICE_API
    coingecko_api_url: str = COINGECKO_API
    coingecko_api_key: Optional[str] = None
    token_api_url: Optional[str] = JUPITER_TOKEN_API
    price_ttl_s: float = 30.0
    metadata_ttl_s: float = 300.0

    # ── Persistence ──
    data_dir: str = "data"
    # Most recent processed signatures kept on disk
    processed_keep: int = 1000
    # Processed records older than this are dropped at startup
    processed_max_age_days: float = 7.0

    # ── Output ──
    events_file: Optional[str] = None
    status_interval_s: float = 60.0
    log_level: str = "INFO"

    @property
    def addresses_path(self) -> str:
        return os.path.join(self.data_dir, "monitored-addresses.json")

    @property
    def processed_path(self) -> str:
        return os.path.join(self.data_dir, "processed-transactions.json")

    def validate(self) -> None:
        """Raise ``ValueError`` on settings the monitor cannot run with."""
        if not self.rpc_url:
            raise ValueError("missing required configuration: rpc_url")
        if not self.ws_url:
            raise ValueError("missing required configuration: ws_url")
        if self.poll_interval_s <= 0:
            raise ValueError("poll_interval_s must be positive")
        if self.signature_limit <= 0:
            raise ValueError("signature_limit must be positive")
        if self.max_retries < 0:
            raise ValueError("max_retries must not be negative")


def from_env(env: Optional[EnvSettings] = None) -> Config:
    """Config with environment overrides applied (intervals in ms, as documented)."""
    if env is None:
        env = EnvSettings()
    cfg = Config()
    cfg.rpc_url = env.get_str("SOLANA_RPC_URL", cfg.rpc_url) or cfg.rpc_url
    cfg.ws_url = env.get_str("SOLANA_WS_URL", cfg.ws_url) or cfg.ws_url
    cfg.commitment = env.get_str("SOLANA_COMMITMENT", cfg.commitment) or cfg.commitment
    cfg.request_timeout_s = env.get_float("REQUEST_TIMEOUT", cfg.request_timeout_s)
    cfg.poll_interval_s = env.seconds_from_ms("POLLING_INTERVAL", cfg.poll_interval_s)
    cfg.signature_limit = env.get_int("SIGNATURE_LIMIT", cfg.signature_limit)
    cfg.max_retries = env.get_int("RETRY_ATTEMPTS", cfg.max_retries)
    cfg.retry_delay_s = env.seconds_from_ms("RETRY_DELAY", cfg.retry_delay_s)
    cfg.subscribe_logs = env.get_bool("SUBSCRIBE_LOGS", cfg.subscribe_logs)
    cfg.price_api_url = env.get_str("JUPITER_API_URL", cfg.price_api_url) or cfg.price_api_url
    cfg.coingecko_api_key = env.get_str("COINGECKO_API_KEY", cfg.coingecko_api_key)
    cfg.token_api_url = env.get_str("TOKEN_API_URL", cfg.token_api_url)
    cfg.data_dir = env.get_str("DATA_DIR", cfg.data_dir) or cfg.data_dir
    if env.get_bool("DEBUG", False):
        cfg.log_level = "DEBUG"
    cfg.log_level = (env.get_str("LOG_LEVEL", cfg.log_level) or cfg.log_level).upper()
    return cfg


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="Solana address activity monitor")
    p.add_argument("command", nargs="?", default="run", choices=COMMANDS,
                   help="run (default) | add <address> [label] | remove <address> | list")
    p.add_argument("args", nargs="*", help="address and optional label")
    p.add_argument("--env-file", default=None,
                   help=f"KEY=VALUE file loaded before reading env (default: {DEFAULT_ENV_FILE})")
    p.add_argument("--rpc-url", default=None)
    p.add_argument("--ws-url", default=None)
    p.add_argument("--poll-interval", type=float, default=None,
                   help="Polling interval in seconds")
    p.add_argument("--signature-limit", type=int, default=None)
    p.add_argument("--max-retries", type=int, default=None)
    p.add_argument("--retry-delay", type=float, default=None,
                   help="Seconds between push reconnect attempts")
    p.add_argument("--no-logs", action="store_true",
                   help="Do not open logsSubscribe channels")
    p.add_argument("--data-dir", default=None)
    p.add_argument("--events-file", default=None,
                   help="Append JSON events here instead of stdout")
    p.add_argument("--status-interval", type=float, default=None)
    p.add_argument("--log-level", default=None)
    return p


def parse_args(argv: Sequence[str] | None = None) -> tuple[Config, argparse.Namespace]:
    """Build Config from CLI args + environment variables.

    Precedence: CLI flag > environment > env file > default.
    """
    args = build_parser().parse_args(argv)
    env = EnvSettings.load(args.env_file or os.environ.get("ENV_FILE", DEFAULT_ENV_FILE))
    cfg = from_env(env)

    if args.rpc_url is not None:
        cfg.rpc_url = args.rpc_url
    if args.ws_url is not None:
        cfg.ws_url = args.ws_url
    if args.poll_interval is not None:
        cfg.poll_interval_s = args.poll_interval
    if args.signature_limit is not None:
        cfg.signature_limit = args.signature_limit
    if args.max_retries is not None:
        cfg.max_retries = args.max_retries
    if args.retry_delay is not None:
        cfg.retry_delay_s = args.retry_delay
    if args.no_logs:
        cfg.subscribe_logs = False
    if args.data_dir is not None:
        cfg.data_dir = args.data_dir
    if args.events_file is not None:
        cfg.events_file = args.events_file
    if args.status_interval is not None:
        cfg.status_interval_s = args.status_interval
    if args.log_level is not None:
        cfg.log_level = args.log_level.upper()

    return cfg, args
