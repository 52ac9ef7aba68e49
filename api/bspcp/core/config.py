"""Application configuration from environment variables."""

from decimal import Decimal
from pathlib import Path

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # App
    app_name: str = "BSPCP"
    debug: bool = True
    secret_key: str = "dev-secret-change-in-production"
    api_prefix: str = "/api"
    log_level: str = "INFO"
    # Slot times and "today" are Botswana wall-clock time.
    timezone: str = "Africa/Gaborone"

    # Database
    database_url: str = "postgresql+asyncpg://bspcp:bspcp@db:5432/bspcp"
    database_echo: bool = False

    # Redis (Celery broker for scheduled jobs)
    redis_url: str = "redis://redis:6379/0"

    # Auth
    jwt_algorithm: str = "HS256"
    member_token_expire_minutes: int = 60
    admin_token_expire_minutes: int = 120
    password_setup_expire_hours: int = 24
    password_reset_expire_minutes: int = 60
    payment_upload_expire_days: int = 31
    admin_max_login_attempts: int = 5
    admin_lockout_minutes: int = 30

    # First super admin, created by scripts/init_admin.py
    initial_admin_username: str = "superadmin"
    initial_admin_email: str = "admin@bspcp.org.bw"
    initial_admin_password: str | None = None

    # Email / SMTP
    smtp_host: str = "localhost"
    smtp_port: int = 1025
    smtp_username: str | None = None
    smtp_password: str | None = None
    smtp_start_tls: bool = False
    smtp_from: str = "BSPCP <noreply@bspcp.org.bw>"
    frontend_url: str = "http://localhost:5173"

    # File storage
    upload_dir: Path = Path("uploads")
    backup_dir: Path = Path("backup")
    max_upload_bytes: int = 5 * 1024 * 1024
    backup_retention: int = 7

    # pg_dump / tar collaborators
    pg_host: str = "localhost"
    pg_user: str = "postgres"
    pg_password: str = ""
    pg_database: str = "BSPCP"

    # Fees (BWP): P50 joining + P150 annual
    application_fee: Decimal = Decimal("200.00")

    model_config = {"env_prefix": "BSPCP_", "env_file": ".env", "extra": "ignore"}


settings = Settings()
