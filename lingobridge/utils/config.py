import os
from decimal import Decimal
from pathlib import Path
from functools import lru_cache
from typing import Dict

from pydantic import BaseModel
from pydantic_settings import BaseSettings, SettingsConfigDict
from dotenv import load_dotenv


dotenv_path = Path(__file__).resolve().parents[2] / '.env'
load_dotenv(dotenv_path)


class AppConfig(BaseModel):
    """Application configurations."""

    # Defines the root directory of the application.
    BASE_DIR: Path = Path(__file__).resolve().parent.parent


class Settings(BaseSettings):
    """Global configurations."""

    model_config = SettingsConfigDict(extra='ignore', case_sensitive=True)

    APP_CONFIG: AppConfig = AppConfig()
    API_NAME: str = 'LingoBridge Translation Engine'
    API_VERSION: str = '0.1.0'

    ENV_STATE: str = os.getenv('ENV_STATE', 'dev')
    LOG_LEVEL: str = os.getenv('LOG_LEVEL', 'INFO')

    HOST: str = '0.0.0.0'
    PORT: int = 8051
    UVICORN_WORKERS: int = 1

    # Providers. An empty key disables the provider.
    OPENAI_API_KEY: str = ''
    OPENAI_MODEL: str = 'gpt-4o-mini'
    ANTHROPIC_API_KEY: str = ''
    ANTHROPIC_MODEL: str = 'claude-3-5-haiku-latest'
    DEEPL_API_KEY: str = ''

    # Redis
    REDIS_HOST: str = os.getenv('REDIS_HOST', 'localhost')
    REDIS_PORT: int = int(os.getenv('REDIS_PORT', 6379))
    REDIS_PASSWORD: str = os.getenv('REDIS_PASSWORD', '')
    REDIS_DB: int = int(os.getenv('REDIS_DB', 0))

    # Translation cache
    CACHE_BACKEND: str = 'redis'  # redis | memory
    CACHE_TTL_TRANSLATION: int = 60 * 60 * 24
    CACHE_MAX_ENTRIES: int = 10_000
    CACHE_WARMUP_MIN_HITS: int = 5
    CACHE_WARMUP_LIMIT: int = 1_000

    # Circuit breaker
    CB_FAILURE_THRESHOLD: int = 5
    CB_SUCCESS_THRESHOLD: int = 2
    CB_RESET_TIMEOUT_MS: int = 60_000
    CB_CALL_TIMEOUT_MS: int = 15_000
    CB_HALF_OPEN_MAX_REQUESTS: int = 1

    # Routing
    REQUEST_DEADLINE_MS: int = 30_000
    # Overrides for ScoringWeights fields, e.g. {"healthy": 40, "max_cost": 10}
    ROUTING_WEIGHTS: Dict[str, float] = {}
    # Per-provider in-flight caps, e.g. {"claude": 20}; others keep their class default
    PROVIDER_MAX_CONCURRENT: Dict[str, int] = {}
    HEALTH_CHECK_INTERVAL_SECONDS: float = 60.0
    HEALTH_DEGRADED_LATENCY_MS: int = 3_000

    # Billing
    BILLING_CURRENCY: str = 'EUR'
    FREEMIUM_STARTING_BALANCE: Decimal = Decimal('3.00')
    AUTO_RECHARGE_ENABLED: bool = False
    AUTO_RECHARGE_THRESHOLD: Decimal = Decimal('1.00')
    AUTO_RECHARGE_AMOUNT: Decimal = Decimal('10.00')
    PAYMENT_API_URL: str = ''
    PAYMENT_API_KEY: str = ''
    LEDGER_WRITE_RETRIES: int = 3

    # Conversation context
    CONTEXT_MAX_MESSAGES: int = 10
    CONTEXT_INACTIVITY_TIMEOUT_SECONDS: int = 30 * 60
    CONTEXT_SWEEP_INTERVAL_SECONDS: int = 60

    # Usage tracking
    USAGE_FLUSH_BATCH_SIZE: int = 100
    USAGE_FLUSH_INTERVAL_SECONDS: float = 5.0

    # Database
    DATABASE_URL: str = os.getenv('DATABASE_URL', 'sqlite:///./lingobridge.db')
    DB_POOL_SIZE: int = 10
    DB_MAX_OVERFLOW: int = 20


# Avoid having to re-read the .env file and create the Settings object every time you access it
@lru_cache()
def get_settings():
    return Settings()


# Settings will be the object that contains all the configuration of the application.
settings = get_settings()
