from __future__ import annotations

from dataclasses import dataclass
from typing import Any, List, Optional
import os
import yaml


def _env_override(value: Any, env_key: str) -> Any:
    env_val = os.getenv(env_key)
    if env_val is None:
        return value
    # basic parsing
    if isinstance(value, bool):
        return env_val.strip().lower() in ("1", "true", "yes", "y", "on")
    if isinstance(value, int):
        try:
            return int(env_val)
        except ValueError:
            return value
    if isinstance(value, float):
        try:
            return float(env_val)
        except ValueError:
            return value
    return env_val


def _env_list(env_key: str) -> Optional[List[str]]:
    env_val = os.getenv(env_key)
    if not env_val:
        return None
    return [x.strip() for x in env_val.split(",") if x.strip()]


@dataclass
class StrategyConfig:
    # Primary trigger (4H MACD histogram flip)
    primary_tf: str = "240"
    primary_limit: int = 100
    primary_min_candles: int = 50

    # Daily StochRSI + MA filter
    confirmation_tf: str = "D"
    confirmation_limit: int = 50
    confirmation_min_candles: int = 30

    macd_fast: int = 12
    macd_slow: int = 26
    macd_signal: int = 9

    rsi_period: int = 14
    stoch_period: int = 14
    k_period: int = 3
    d_period: int = 3
    stoch_overbought: float = 80.0
    stoch_oversold: float = 20.0

    ma_period: int = 10

    # Cross-timeframe strength
    cross_check_tfs: List[str] = None
    cross_check_limit: int = 100
    cross_check_min_candles: int = 50
    strong_min_confirmations: int = 2

    def __post_init__(self) -> None:
        if self.cross_check_tfs is None:
            self.cross_check_tfs = ["5", "15", "60", "D"]
        self.cross_check_tfs = [str(tf) for tf in self.cross_check_tfs]


@dataclass
class ProviderConfig:
    type: str = "bybit"
    testnet: bool = False
    category: str = "linear"
    quote_coin: str = "USDT"
    symbols: List[str] = None  # optional whitelist; empty -> all tradable
    rest_timeout_s: int = 20
    rest_max_retries: int = 4
    rest_backoff_s: float = 0.8
    rest_conn_limit: int = 40
    rest_conn_limit_per_host: int = 10


@dataclass
class ScannerConfig:
    batch_size: int = 5
    batch_delay_s: float = 0.2
    scan_interval_s: int = 300
    seen_capacity: int = 1000
    seen_trim_to: int = 500
    visible_capacity: int = 100


@dataclass
class TelegramConfig:
    enabled: bool = True
    token: str = ""
    chat_ids: List[str] = None
    disable_web_page_preview: bool = True


@dataclass
class AlertsConfig:
    parse_mode: str = "HTML"
    timezone: str = "UTC"
    max_strong_listed: int = 25
    max_weak_listed: int = 10
    chart_url_base: str = "https://www.bybit.com/trade/usdt/"
    footer: str = ""


@dataclass
class ServerConfig:
    enabled: bool = True
    host: str = "0.0.0.0"
    http_port: int = 3000
    ws_port: int = 3001


@dataclass
class AppConfig:
    name: str = "Bullcross Screener"
    log_level: str = "INFO"


@dataclass
class Config:
    app: AppConfig
    provider: ProviderConfig
    strategy: StrategyConfig
    scanner: ScannerConfig
    telegram: TelegramConfig
    alerts: AlertsConfig
    server: ServerConfig


def default_config() -> Config:
    return Config(
        app=AppConfig(),
        provider=ProviderConfig(),
        strategy=StrategyConfig(),
        scanner=ScannerConfig(),
        telegram=TelegramConfig(),
        alerts=AlertsConfig(),
        server=ServerConfig(),
    )


def load_config(path: Optional[str] = None) -> Config:
    raw = {}
    if path:
        with open(path, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}

    cfg = Config(
        app=AppConfig(**raw.get("app", {})),
        provider=ProviderConfig(**raw.get("provider", {})),
        strategy=StrategyConfig(**raw.get("strategy", {})),
        scanner=ScannerConfig(**raw.get("scanner", {})),
        telegram=TelegramConfig(**raw.get("telegram", {})),
        alerts=AlertsConfig(**raw.get("alerts", {})),
        server=ServerConfig(**raw.get("server", {})),
    )
    _apply_env(cfg)
    return cfg


def _apply_env(cfg: Config) -> None:
    # env overrides (useful on servers)
    cfg.app.log_level = _env_override(cfg.app.log_level, "LOG_LEVEL")
    cfg.provider.testnet = _env_override(cfg.provider.testnet, "BYBIT_TESTNET")
    if cfg.provider.symbols is None:
        cfg.provider.symbols = []

    cfg.telegram.token = _env_override(cfg.telegram.token, "TELEGRAM_TOKEN")
    cfg.telegram.token = _env_override(cfg.telegram.token, "TELEGRAM_BOT_TOKEN")
    if cfg.telegram.chat_ids is None:
        cfg.telegram.chat_ids = []
    # Allow TELEGRAM_CHAT_IDS="id1,id2" or a single TELEGRAM_CHAT_ID
    chat_ids = _env_list("TELEGRAM_CHAT_IDS") or _env_list("TELEGRAM_CHAT_ID")
    if chat_ids:
        cfg.telegram.chat_ids = chat_ids
    cfg.telegram.chat_ids = [str(x) for x in cfg.telegram.chat_ids]

    cfg.server.http_port = _env_override(cfg.server.http_port, "PORT")
    cfg.server.ws_port = _env_override(cfg.server.ws_port, "WS_PORT")
