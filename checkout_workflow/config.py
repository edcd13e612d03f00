from typing import Literal
from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    # Workflow Policy
    MAX_PAYMENT_RETRIES: int = 3
    PAYMENT_VALIDATION_DELAY_MS: int = 500
    ORDER_COMPLETE_RESET_MS: int = 10000

    # Snapshot Persistence
    # Switch storage just by changing this string
    SNAPSHOT_BACKEND: Literal["memory", "file", "sql"] = "memory"
    SNAPSHOT_FILE_PATH: str = ".checkout_snapshots"
    STORAGE_KEY: str = "checkout-workflow-state"

    # Database Configuration
    DATABASE_URL: str = "sqlite:///./checkout_workflow.db"

    # Mock backend: 1.0 = realistic latency, 0.0 = instant
    BACKEND_LATENCY_SCALE: float = 1.0

    LOG_LEVEL: str = "INFO"

    # Loads from a .env file in the root directory
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

# Singleton instance
settings = Settings()
