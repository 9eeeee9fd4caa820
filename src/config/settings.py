from pydantic_settings import BaseSettings
import os

class DatabaseSettings(BaseSettings):
    URL: str = os.getenv("DATABASE_URL", "postgresql://crawler_user:crawler_password@db:5432/crawler_db")

class RedisSettings(BaseSettings):
    URL: str = os.getenv("REDIS_URL", "redis://redis:6379/0")
    LEASE_PREFIX: str = "crawl_lease"

class ServerSettings(BaseSettings):
    HOST: str = "0.0.0.0"
    PORT: int = 8080
    DEBUG: bool = False

class CrawlerSettings(BaseSettings):
    # Browser-like fingerprint; many sites vary markup by client
    USER_AGENT: str = (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    )
    ACCEPT: str = "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8"
    ACCEPT_LANGUAGE: str = "en-US,en;q=0.5"

    # Timeouts (seconds)
    REQUEST_TIMEOUT: float = 30.0
    PROBE_TIMEOUT: float = 10.0
    PROBE_CONCURRENCY: int = 1  # 1 = probe anchors sequentially

    # Worker Pool
    WORKER_COUNT: int = 3
    QUEUE_CAPACITY: int = 100
    POLL_INTERVAL_SECONDS: float = 10.0
    WORKER_POLL_TIMEOUT: float = 0.5
    ERROR_BACKOFF_SECONDS: float = 30.0

    # Leases for stuck-item recovery
    LEASES_ENABLED: bool = True
    LEASE_TTL_SECONDS: int = 900

class AppSettings(BaseSettings):
    DB: DatabaseSettings = DatabaseSettings()
    REDIS: RedisSettings = RedisSettings()
    SERVER: ServerSettings = ServerSettings()
    CRAWLER: CrawlerSettings = CrawlerSettings()

    class Config:
        env_file = ".env"
        case_sensitive = True

settings = AppSettings()
