"""
Environment-driven configuration for the upload service
"""
import os
from dataclasses import dataclass
from typing import Optional
from urllib.parse import quote


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() == "true"


@dataclass(frozen=True)
class Settings:
    # Object store (S3 or MinIO)
    storage_endpoint: str = "localhost:9000"
    storage_access_key: str = "minioadmin"
    storage_secret_key: str = "minioadmin"
    storage_use_ssl: bool = False
    bucket_name: str = "videos"
    region: str = "us-east-1"
    storage_connect_timeout: float = 5.0
    storage_read_timeout: float = 60.0
    presigned_url_expiration: int = 3600

    # Database
    db_host: str = "localhost"
    db_port: int = 5432
    db_user: str = "postgres"
    db_password: str = "postgres"
    db_name: str = "videos"
    database_url: Optional[str] = None
    db_max_open_conns: int = 90
    db_max_idle_conns: int = 10
    db_conn_max_lifetime: int = 300
    db_pool_timeout: int = 30

    # Logging
    log_level: str = "info"
    log_format: Optional[str] = None
    kubernetes: bool = False

    # Self-test fault injection
    crash_endpoint_enabled: bool = True
    crash_delay_seconds: float = 2.0

    port: int = 8080

    @property
    def storage_endpoint_url(self) -> str:
        """MINIO_ENDPOINT may be a bare host:port; boto3 needs a full URL"""
        if "://" in self.storage_endpoint:
            return self.storage_endpoint
        scheme = "https" if self.storage_use_ssl else "http"
        return f"{scheme}://{self.storage_endpoint}"

    @property
    def sqlalchemy_url(self) -> str:
        if self.database_url:
            return self.database_url
        # URL-encode password to handle special characters
        encoded_password = quote(self.db_password, safe="")
        return (
            f"postgresql+psycopg2://{self.db_user}:{encoded_password}"
            f"@{self.db_host}:{self.db_port}/{self.db_name}"
        )


def load_settings() -> Settings:
    """Read settings from the process environment"""
    return Settings(
        storage_endpoint=os.getenv("MINIO_ENDPOINT", "localhost:9000"),
        storage_access_key=os.getenv("MINIO_ACCESS_KEY", "minioadmin"),
        storage_secret_key=os.getenv("MINIO_SECRET_KEY", "minioadmin"),
        storage_use_ssl=_env_bool("MINIO_USE_SSL", "false"),
        bucket_name=os.getenv("MINIO_BUCKET", "videos"),
        region=os.getenv("AWS_REGION", "us-east-1"),
        storage_connect_timeout=float(os.getenv("STORAGE_CONNECT_TIMEOUT", "5")),
        storage_read_timeout=float(os.getenv("STORAGE_READ_TIMEOUT", "60")),
        presigned_url_expiration=int(os.getenv("PRESIGNED_URL_EXPIRATION", "3600")),
        db_host=os.getenv("DB_HOST", "localhost"),
        db_port=int(os.getenv("DB_PORT", "5432")),
        db_user=os.getenv("DB_USER", "postgres"),
        db_password=os.getenv("DB_PASSWORD", "postgres"),
        db_name=os.getenv("DB_NAME", "videos"),
        database_url=os.getenv("DATABASE_URL") or None,
        db_max_open_conns=int(os.getenv("DB_MAX_OPEN_CONNS", "90")),
        db_max_idle_conns=int(os.getenv("DB_MAX_IDLE_CONNS", "10")),
        db_conn_max_lifetime=int(os.getenv("DB_CONN_MAX_LIFETIME", "300")),
        db_pool_timeout=int(os.getenv("DB_POOL_TIMEOUT", "30")),
        log_level=os.getenv("LOG_LEVEL", "info"),
        log_format=os.getenv("LOG_FORMAT") or None,
        kubernetes=bool(os.getenv("KUBERNETES_SERVICE_HOST")),
        crash_endpoint_enabled=_env_bool("CRASH_ENDPOINT_ENABLED", "true"),
        crash_delay_seconds=float(os.getenv("CRASH_DELAY_SECONDS", "2")),
        port=int(os.getenv("PORT", "8080")),
    )
