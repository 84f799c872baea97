from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # 数据库配置
    POSTGRES_USER: str = "postgres"
    POSTGRES_PASSWORD: str = "123456"
    POSTGRES_HOST: str = "localhost"
    POSTGRES_PORT: int = 5432
    POSTGRES_DB: str = "flash_sale"
    # 完整连接串（优先于 POSTGRES_* 配置）
    DATABASE_URL: Optional[str] = None

    # Redis 配置
    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0
    REDIS_HOSTS: Optional[str] = None  # 多实例 Redlock，逗号分隔

    # Celery 配置
    CELERY_BROKER_DB: int = 1
    CELERY_RESULT_DB: int = 2

    # 预占配置
    HOLD_TTL_MINUTES: int = 2
    HOLD_EXPIRY_GRACE_SECONDS: int = 5
    HOLD_SWEEP_BATCH_SIZE: int = 100

    # 事务重试配置
    HOLD_TRANSACTION_ATTEMPTS: int = 10
    TRANSACTION_ATTEMPTS: int = 5
    TRANSACTION_RETRY_BACKOFF_SECONDS: float = 0.05

    # Webhook 配置
    WEBHOOK_RETRY_BATCH_SIZE: int = 100
    WEBHOOK_PROCESS_MAX_RETRIES: int = 5

    # 定时任务间隔
    SWEEP_INTERVAL_SECONDS: int = 60

    # 事件输出：logging / redis
    EVENT_SINK: str = "logging"
    EVENT_STREAM_KEY: str = "checkout:events"
    EVENT_STREAM_MAXLEN: int = 100000

    LOG_LEVEL: str = "INFO"

    @property
    def database_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return (
            f"postgresql+psycopg://"
            f"{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/"
            f"{self.POSTGRES_DB}"
        )

    @property
    def redis_url(self) -> str:
        return f"redis://{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"

    def celery_url(self, db: int) -> str:
        return f"redis://{self.REDIS_HOST}:{self.REDIS_PORT}/{db}"


settings = Settings()
