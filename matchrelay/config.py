from functools import lru_cache
from pathlib import Path
from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict

from dotenv import load_dotenv
load_dotenv()


class Settings(BaseSettings):
	# App
	APP_NAME: str = "MatchRelay"
	APP_VERSION: str = "1.0.0"
	API_V1_PREFIX: str = "/api/v1"
	DEBUG: bool = False
	LOG_LEVEL: str = "INFO"

	# Storage
	DATA_DIR: Path = Path("hockey-json")

	# Redis / Celery
	REDIS_URL: str = "redis://localhost:6379/0"

	# Document channel (Telegram bot)
	TELEGRAM_API_URL: str = "https://api.telegram.org"
	TELEGRAM_BOT_TOKEN: str = ""
	TELEGRAM_CHAT_ID: str = ""
	DOCUMENT_MAX_ATTEMPTS: int = 8

	# HTTP ingest channel (scoreboard server)
	RASPI_BASE_URL: str = ""
	RASPI_API_KEY: str = ""
	HTTP_MAX_ATTEMPTS: int = 30
	HTTP_CONNECT_TIMEOUT: float = 10.0
	HTTP_READ_TIMEOUT: float = 15.0

	# Retry scheduling
	RETRY_BACKOFF_BASE_SECONDS: int = 30
	RETRY_BACKOFF_MAX_SECONDS: int = 5 * 60 * 60
	RETRY_MAX_RETRIES: int = 10
	RETRY_SWEEP_INTERVAL_SECONDS: float = 300.0
	CLAIM_TIMEOUT_SECONDS: int = 10 * 60

	# Connectivity check
	CONNECTIVITY_CHECK_HOST: str = "api.telegram.org"
	CONNECTIVITY_CHECK_PORT: int = 443
	CONNECTIVITY_CHECK_TIMEOUT: float = 3.0

	# Security
	REQUIRE_API_KEY: bool = False
	API_KEYS: List[str] = []

	# Monitoring
	EXPOSE_METRICS: bool = True

	model_config = SettingsConfigDict(
		env_file=".env",
		env_file_encoding="utf-8",
		case_sensitive=True
	)

	@property
	def outbox_dir(self) -> Path:
		return self.DATA_DIR / "outbox"

	@property
	def exports_dir(self) -> Path:
		return self.DATA_DIR / "external-events-api"

	@property
	def finished_dir(self) -> Path:
		return self.DATA_DIR / "finished"

	@property
	def runtime_settings_file(self) -> Path:
		return self.DATA_DIR / "settings.json"


@lru_cache()
def get_settings() -> Settings:
	return Settings()


settings = get_settings()
