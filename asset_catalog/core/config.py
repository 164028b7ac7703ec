from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True)

    PROJECT_NAME: str = "BI Asset Catalog"
    VERSION: str = "0.1.0"
    API_V1_STR: str = "/api/v1"
    LOG_LEVEL: str = "INFO"

    # CORS
    CORS_ORIGINS: list[str] = ["http://localhost:3000", "http://localhost:8080"]

    # Blob store: "filesystem" | "redis" | "s3"
    BLOB_STORE_BACKEND: str = "filesystem"
    BLOB_STORE_PATH: str = "./data"
    REDIS_URL: str = "redis://localhost:6379"
    REDIS_KEY_PREFIX: str = "asset-catalog:"
    S3_BUCKET: str = "asset-catalog"
    S3_PREFIX: str = ""
    S3_ENDPOINT_URL: str = ""

    # Asset source: "quicksight" | "offline"
    ASSET_SOURCE_MODE: str = "quicksight"
    AWS_ACCOUNT_ID: str = ""
    AWS_REGION: str = "us-east-1"
    AWS_PROFILE: str = ""
    OFFLINE_SOURCE_PATH: str = "./offline_export"

    # Listing / retry
    EXPORT_PAGE_SIZE: int = 100
    EXPORT_MAX_ATTEMPTS: int = 5
    EXPORT_RETRY_BASE_DELAY_S: float = 1.0
    EXPORT_RETRY_MAX_DELAY_S: float = 30.0
    EXPORT_PAGE_DELAY_S: float = 0.2
    EXPORT_LARGE_PAGE_DELAY_S: float = 0.5
    EXPORT_LARGE_LISTING_THRESHOLD: int = 1000
    EXPORT_CHECKPOINT_EVERY_PAGES: int = 5
    EXPORT_CHECKPOINT_EVERY_ITEMS: int = 500

    # Per-asset processing
    EXPORT_ASSET_CONCURRENCY: int = 3
    ASSET_CACHE_TTL_S: float = 3600.0

    # Sessions
    SESSION_STALE_AFTER_S: float = 3600.0
    SESSION_CANCEL_GRACE_S: float = 0.1
    SESSION_HISTORY_LIMIT: int = 6
    CHECKPOINT_QUEUE_SIZE: int = 32

    # Index
    INDEX_LOAD_CONCURRENCY: int = 5
    INDEX_LARGE_TYPE_CONCURRENCY: int = 3
    INDEX_LARGE_TYPE_THRESHOLD: int = 500


settings = Settings()
