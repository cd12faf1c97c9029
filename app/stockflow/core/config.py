from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env")

    APP_NAME: str = "STOCKFLOW"
    SECRET_KEY: str = "change-me"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60
    DATABASE_URL: str = "sqlite+pysqlite:///./stockflow.db"
    SUPERADMIN_USERNAME: str = "superadmin"
    SUPERADMIN_EMAIL: str = "superadmin@example.com"
    SUPERADMIN_PASSWORD: str = "change-me"
    OPERATIONAL_WAREHOUSE_CODE: str = ""
    TRANSFER_NUMBER_PREFIX: str = "TRF"
    TRANSFER_NUMBER_MAX_RETRIES: int = 5
    TRANSFER_REQUIRE_APPROVAL: bool = True
    ORDER_RELEASED_STATUS: str = "PENDING"
    TRANSFERS_LIST_MAX_PAGE_SIZE: int = 200
    OPS_ENABLE_INTEGRITY_SCAN: bool = True
    METRICS_ENABLED: bool = True


settings = Settings()
