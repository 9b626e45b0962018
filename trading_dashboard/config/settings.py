"""
Dashboard Settings

pydantic-settings model loaded from environment variables and an optional
.env file. Holds the database URL, logging, the cash ledger code groups,
quote retry policy, metric freshness windows and the default P&L strategy
for each time window.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, field_validator
from typing import Dict, List, Optional
from pathlib import Path
from dotenv import load_dotenv
import logging
import sys

LOG_LEVELS = ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL')

ENV_LOCATIONS = (
    Path('.env'),
    Path(__file__).parent.parent / '.env',
    Path(__file__).parent.parent.parent / '.env',
)


def load_env_file() -> Optional[Path]:
    """Load the first .env found; returns its path"""
    for path in ENV_LOCATIONS:
        if path.exists():
            load_dotenv(path)
            return path
    return None


load_env_file()


class Settings(BaseSettings):
    """Dashboard settings"""

    model_config = SettingsConfigDict(
        env_file='.env',
        env_file_encoding='utf-8',
        case_sensitive=False,
        extra='ignore'
    )

    # ========================================================================
    # Database Configuration
    # ========================================================================

    database_url: str = Field(
        default="sqlite:///trading_dashboard.db",
        description="Database connection string"
    )

    # ========================================================================
    # Logging Configuration
    # ========================================================================

    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
    )

    log_file: Optional[Path] = Field(
        default=None,
        description="Log file path (None for stdout only)"
    )

    log_format: str = Field(
        default="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        description="Log message format"
    )

    # ========================================================================
    # Cash Ledger Codes
    # ========================================================================

    deposit_codes: List[str] = Field(
        default=['DEPOSIT', 'ACH', 'DCF', 'RTP', 'DEP'],
        description="Transaction codes counted toward initial investment"
    )

    excluded_cash_flow_codes: List[str] = Field(
        default=['FUTURES_MARGIN', 'FUTURES_MARGIN_RELEASE'],
        description="Reserved/released margin codes left out of net cash flow"
    )

    fee_codes: List[str] = Field(
        default=['FEE'],
        description="Transaction codes treated as trading fees"
    )

    # ========================================================================
    # Market Data
    # ========================================================================

    quote_retry_attempts: int = Field(
        default=1,
        ge=0,
        description="Retries after a failed quote batch before falling back to stored values"
    )

    # ========================================================================
    # Performance & Caching
    # ========================================================================

    quote_cache_ttl_seconds: int = Field(
        default=30,
        description="Live quote cache TTL"
    )

    metric_cache_ttl_seconds: Dict[str, int] = Field(
        default={
            'portfolio_value': 30,
            'net_cash_flow': 30,
            'daily_performance': 30,
            'win_rate': 60,
            'weekly_performance': 60,
            'monthly_performance': 60,
            'yearly_performance': 120,
            'initial_investment': 300,
        },
        description="Per-metric freshness windows"
    )

    default_metric_cache_ttl_seconds: int = Field(
        default=60,
        description="Freshness window for metrics without an explicit entry"
    )

    refresh_interval_seconds: int = Field(
        default=60,
        description="Background refresh polling interval"
    )

    # ========================================================================
    # Time-Window Performance
    # ========================================================================

    window_strategies: Dict[str, str] = Field(
        default={
            'daily': 'realized_window',
            'weekly': 'snapshot_comparison',
            'monthly': 'snapshot_comparison',
            'yearly': 'realized_window',
        },
        description="Default P&L strategy per time window"
    )

    fee_adjusted_windows: List[str] = Field(
        default=['weekly', 'monthly'],
        description="Windows whose realized-window P&L is reported net of fees"
    )

    # ========================================================================
    # Validators
    # ========================================================================

    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, v):
        level = v.upper()
        if level not in LOG_LEVELS:
            raise ValueError(f"log_level must be one of {LOG_LEVELS}")
        return level

    @field_validator('log_file')
    @classmethod
    def create_log_directory(cls, v):
        if v:
            Path(v).parent.mkdir(parents=True, exist_ok=True)
        return v

    @field_validator('window_strategies')
    @classmethod
    def validate_window_strategies(cls, v):
        valid = {'realized_window', 'snapshot_comparison'}
        for window, strategy in v.items():
            if strategy not in valid:
                raise ValueError(f"window_strategies[{window}] must be one of {sorted(valid)}")
        return v

    # ========================================================================
    # Helper Methods
    # ========================================================================

    def get_database_engine_kwargs(self, database_url: Optional[str] = None) -> dict:
        """SQLAlchemy engine kwargs for a URL (defaults to database_url)"""
        url = database_url or self.database_url
        kwargs = {'echo': self.log_level == 'DEBUG'}
        if url.startswith('sqlite'):
            kwargs['connect_args'] = {'check_same_thread': False}
        else:
            kwargs['pool_pre_ping'] = True
        return kwargs

    def get_cache_ttl(self, metric: str) -> int:
        """Freshness window (seconds) for a metric name, 'quotes' for live quotes"""
        if metric == 'quotes':
            return self.quote_cache_ttl_seconds
        return self.metric_cache_ttl_seconds.get(metric, self.default_metric_cache_ttl_seconds)


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reload_settings() -> Settings:
    """Rebuild from the current environment"""
    global _settings
    _settings = Settings()
    return _settings


# Libraries whose INFO chatter drowns out the report
QUIET_LOGGERS = ('urllib3', 'peewee', 'sqlalchemy.engine', 'yfinance')


def setup_logging(settings: Optional[Settings] = None):
    """Root logger to stdout and, if log_file is set, a file"""
    settings = settings or get_settings()
    formatter = logging.Formatter(settings.log_format)

    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if settings.log_file:
        handlers.append(logging.FileHandler(settings.log_file, encoding='utf-8'))

    root_logger = logging.getLogger()
    root_logger.setLevel(settings.log_level)
    root_logger.handlers.clear()
    for handler in handlers:
        handler.setLevel(settings.log_level)
        handler.setFormatter(formatter)
        root_logger.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    root_logger.debug(f"Logging configured: level={settings.log_level}, file={settings.log_file}")

