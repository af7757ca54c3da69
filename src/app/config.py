"""Application configuration using Pydantic Settings."""
from typing import Optional
from pydantic import Field, computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings (environment variables override the defaults)."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    APP_NAME: str = Field("face-grouping-pipeline")
    ENVIRONMENT: str = Field("development")
    DEBUG: bool = Field(False)
    API_V1_PREFIX: str = Field("/api/v1")
    LOG_LEVEL: str = Field("INFO")

    # Database
    DB_USER: str = Field("postgres")
    DB_PASSWORD: str = Field("postgres")
    DB_HOST: str = Field("localhost")
    DB_PORT: int = Field(5432)
    DB_NAME: str = Field("face_grouping")
    DB_POOL_SIZE: int = Field(5)
    DB_MAX_OVERFLOW: int = Field(10)
    DATABASE_URL_OVERRIDE: Optional[str] = Field(None)

    @computed_field
    @property
    def DATABASE_URL(self) -> str:
        if self.DATABASE_URL_OVERRIDE:
            return self.DATABASE_URL_OVERRIDE
        return (
            f"postgresql://{self.DB_USER}:{self.DB_PASSWORD}"
            f"@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"
        )

    # Redis / Celery
    REDIS_HOST: str = Field("127.0.0.1")
    REDIS_PORT: int = Field(6379)
    REDIS_URL: str = Field("redis://127.0.0.1:6379/0")

    CELERY_BROKER_DB: int = Field(1)
    CELERY_RESULT_DB: int = Field(2)

    @computed_field
    @property
    def CELERY_BROKER_URL(self) -> str:
        return f"redis://{self.REDIS_HOST}:{self.REDIS_PORT}/{self.CELERY_BROKER_DB}"

    @computed_field
    @property
    def CELERY_RESULT_BACKEND(self) -> str:
        return f"redis://{self.REDIS_HOST}:{self.REDIS_PORT}/{self.CELERY_RESULT_DB}"

    # AWS / S3 / Rekognition
    AWS_ACCESS_KEY_ID: Optional[str] = Field(None)
    AWS_SECRET_ACCESS_KEY: Optional[str] = Field(None)
    AWS_REGION: str = Field("us-east-1")
    S3_BUCKET_NAME: str = Field("face-grouping-media")
    REKOGNITION_COLLECTION_PREFIX: str = Field("face-media-group")

    # Detection stage
    DETECTION_IMAGE_DELAY_SECONDS: float = Field(1.5)
    FACE_ENHANCED_SIZE: int = Field(600)

    # Clustering engine
    FACE_SIMILARITY_THRESHOLD: float = Field(85.0)
    FACE_SECOND_PASS_DELTA: float = Field(5.0)
    FACE_SEARCH_MAX_RESULTS: int = Field(100)
    FACE_SEARCH_BATCH_SIZE: int = Field(5)
    FACE_SEARCH_BATCH_DELAY_SECONDS: float = Field(1.0)
    FACE_MERGE_SAMPLE_SIZE: int = Field(3)
    FACE_MERGE_SEARCH_DELAY_SECONDS: float = Field(0.15)
    FACE_INCREMENTAL_DELAY_SECONDS: float = Field(0.2)

    # "discard" drops single-face clusters, "persist" stores them at reduced confidence
    FACE_SINGLETON_POLICY: str = Field("discard")
    FACE_SINGLETON_CONFIDENCE: float = Field(0.5)

    # Job execution
    JOB_MAX_RETRIES: int = Field(3)
    JOB_RETRY_BACKOFF_MAX: int = Field(600)
    JOB_TIME_LIMIT_SECONDS: int = Field(30 * 60)
    GROUPING_LOCK_TIMEOUT_SECONDS: int = Field(30 * 60)
    GROUPING_LOCK_RETRY_SECONDS: int = Field(15)
    JOB_RETENTION_HOURS: int = Field(24)


settings = Settings()
