"""
MeterSync Configuration
Loads settings from .env file using Pydantic v2 with BaseSettings
"""
from functools import lru_cache
from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    # ==================== Project Info ====================
    PROJECT_NAME: str = "MeterSync"
    PROJECT_DESCRIPTION: str = "Offline-first sync for meter replacement field data"
    VERSION: str = "1.0.0"

    # ==================== Local Record Store ====================
    DATABASE_URL: str = "sqlite:///metersync_local.db"

    # ==================== Remote Backend ====================
    API_BASE_URL: str = "https://gescom.vishvin.com/api"
    MOBILE_APP_API_URL: str = "https://gescom.vishvin.com/mobile-app/api"
    SERIAL_DIRECTORY_URL: str = ""
    CONNECTIVITY_PROBE_URLS: List[str] = []

    # ==================== Credentials ====================
    API_TOKEN: str = ""
    USER_ID: str = ""

    # ==================== Network Timeouts (seconds) ====================
    INSTANCE_TIMEOUT_SECONDS: float = 20.0
    OLD_METER_UPLOAD_TIMEOUT_SECONDS: float = 45.0
    NEW_METER_UPLOAD_TIMEOUT_SECONDS: float = 60.0
    SERIAL_DIRECTORY_TIMEOUT_SECONDS: float = 30.0
    CONNECTIVITY_TIMEOUT_SECONDS: float = 5.0

    # ==================== Upload Pipeline ====================
    INSTANCE_MAX_RETRIES: int = 3
    INSTANCE_RETRY_DELAY_SECONDS: float = 2.0
    INSTANCE_SETTLE_SECONDS: float = 3.0
    UPLOAD_MAX_RETRIES: int = 2
    UPLOAD_RETRY_DELAY_SECONDS: float = 3.0
    MAX_ACCOUNTS_PER_RUN: int = 10

    # ==================== Serial Reconciliation ====================
    SERIAL_SYNC_COOLDOWN_SECONDS: float = 30.0
    SERIAL_FULL_SYNC_AFTER_FAILURES: int = 3

    # ==================== Background Scheduler ====================
    SCHEDULER_ENABLED: bool = True
    SERIAL_SYNC_INTERVAL_SECONDS: int = 5
    DATA_UPLOAD_INTERVAL_SECONDS: int = 180
    SERIAL_SYNC_TRIGGER_COOLDOWN_SECONDS: float = 0.5
    UPLOAD_TRIGGER_COOLDOWN_SECONDS: float = 5.0
    FOREGROUND_SERIAL_DELAY_SECONDS: float = 1.0
    FOREGROUND_UPLOAD_DELAY_SECONDS: float = 2.0

    # ==================== Features ====================
    DEBUG: bool = False
    TESTING: bool = False
    LOG_LEVEL: str = "INFO"

    # ==================== Configuration Loading ====================
    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="allow",  # Allow extra environment variables
    )

    # ==================== Properties ====================
    @property
    def serial_directory_url(self) -> str:
        """Serial directory endpoint, derived from the API base unless overridden"""
        return self.SERIAL_DIRECTORY_URL or f"{self.API_BASE_URL}/Contractort_meter_information"

    @property
    def old_meter_upload_url(self) -> str:
        return f"{self.API_BASE_URL}/old-meter-upload"

    @property
    def new_meter_upload_url(self) -> str:
        return f"{self.API_BASE_URL}/new-meter-upload"

    @property
    def account_instance_url(self) -> str:
        return f"{self.MOBILE_APP_API_URL}/fe/account_id_rr_no/search"

    @property
    def connectivity_probe_urls(self) -> List[str]:
        """Reachability probes, tried in order"""
        return self.CONNECTIVITY_PROBE_URLS or [
            f"{self.API_BASE_URL}/ping",
            "https://www.google.com",
        ]


# ==================== Settings Singleton ====================
@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()


# Create default settings instance
settings = get_settings()


# ==================== Helper Functions ====================
def is_development() -> bool:
    """Check if running in development"""
    return settings.DEBUG


def is_testing() -> bool:
    """Check if running in testing mode"""
    return settings.TESTING
