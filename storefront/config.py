# storefront/config.py
from datetime import timedelta
from functools import lru_cache
from typing import Literal, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

# Settings are read once and handed to services through their constructors.


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="STOREFRONT_", env_file=".env", extra="ignore")

    environment: str = "development"
    log_level: Optional[str] = None

    # Database
    database_url: str = "sqlite:///./storefront.db"
    db_timeout: float = 5.0
    db_echo: bool = False

    # Tokens
    jwt_secret: str = "your-super-secret-jwt-key"
    jwt_algorithm: str = "HS256"
    access_token_ttl: timedelta = timedelta(hours=24)
    refresh_token_ttl: timedelta = timedelta(hours=720)
    bcrypt_rounds: int = 12

    # Uploads
    upload_provider: Literal["local", "s3"] = "local"
    upload_path: str = "./uploads"
    max_upload_size: int = 10 * 1024 * 1024

    # AWS (object storage + event queue)
    aws_region: str = "us-east-1"
    aws_access_key_id: Optional[str] = None
    aws_secret_access_key: Optional[str] = None
    s3_bucket: str = "ecommerce-uploads"
    s3_endpoint: Optional[str] = None
    event_queue_name: str = "ecommerce-events"

    # Events
    event_publisher: Literal["memory", "log", "sqs"] = "log"
    event_failure_policy: Literal["raise", "log"] = "raise"


@lru_cache
def get_settings() -> Settings:
    return Settings()
