import os
from dataclasses import dataclass


@dataclass(frozen=True)
class Settings:
    secret_key: str
    env: str
    database_url: str

    storage_backend: str
    local_storage_root: str
    s3_endpoint: str
    s3_region: str
    s3_bucket: str
    s3_access_key_id: str
    s3_secret_access_key: str

    default_domain: str
    allowed_hosts: tuple[str, ...]
    cname_target: str

    notifications_enabled: bool
    notifications_timeout: int
    smtp_server: str
    smtp_port: str
    smtp_use_tls: bool
    smtp_username: str
    smtp_password: str
    email_from: str

    analytics_retention_days: int


def _getenv(name: str, default: str = "") -> str:
    return (os.environ.get(name) or default).strip()


def _getenv_int(name: str, default: int) -> int:
    raw = _getenv(name, str(default))
    try:
        return int(raw)
    except ValueError:
        return default


def load_settings() -> Settings:
    hosts = _getenv("BIOLINKS_ALLOWED_HOSTS", "bio.host.uk.com,link.host.uk.com,lnktr.fyi,localhost")
    return Settings(
        secret_key=_getenv("SECRET_KEY", "change-me"),
        env=_getenv("ENV", "development"),
        database_url=_getenv("DATABASE_URL", "sqlite:///biohost.db"),
        storage_backend=_getenv("STORAGE_BACKEND", "local"),
        local_storage_root=_getenv("LOCAL_STORAGE_ROOT", ""),
        s3_endpoint=_getenv("S3_ENDPOINT", ""),
        s3_region=_getenv("S3_REGION", "nyc3"),
        s3_bucket=_getenv("S3_BUCKET", ""),
        s3_access_key_id=_getenv("S3_ACCESS_KEY_ID", ""),
        s3_secret_access_key=_getenv("S3_SECRET_ACCESS_KEY", ""),
        default_domain=_getenv("BIOLINKS_DEFAULT_DOMAIN", "https://bio.host.uk.com").rstrip("/"),
        allowed_hosts=tuple(h.strip().lower() for h in hosts.split(",") if h.strip()),
        cname_target=_getenv("DOMAIN_CNAME_TARGET", "bio.host.uk.com"),
        notifications_enabled=_getenv("NOTIFICATIONS_ENABLED", "1") == "1",
        notifications_timeout=_getenv_int("NOTIFICATIONS_TIMEOUT", 10),
        smtp_server=_getenv("SMTP_SERVER", ""),
        smtp_port=_getenv("SMTP_PORT", "587"),
        smtp_use_tls=_getenv("SMTP_USE_TLS", "1") == "1",
        smtp_username=_getenv("SMTP_USERNAME", ""),
        smtp_password=_getenv("SMTP_PASSWORD", ""),
        email_from=_getenv("EMAIL_FROM", "") or _getenv("SMTP_USERNAME", ""),
        analytics_retention_days=_getenv_int("ANALYTICS_DEFAULT_RETENTION_DAYS", 30),
    )


def load_config() -> dict:
    s = load_settings()
    is_production = s.env in ("prod", "production")
    return {
        "SECRET_KEY": s.secret_key,
        "ENV": s.env,
        "DATABASE_URL": s.database_url,
        "STORAGE_BACKEND": s.storage_backend,
        "LOCAL_STORAGE_ROOT": s.local_storage_root,
        "S3_ENDPOINT": s.s3_endpoint,
        "S3_REGION": s.s3_region,
        "S3_BUCKET": s.s3_bucket,
        "S3_ACCESS_KEY_ID": s.s3_access_key_id,
        "S3_SECRET_ACCESS_KEY": s.s3_secret_access_key,
        # public serving
        "BIOLINKS_DEFAULT_DOMAIN": s.default_domain,
        "BIOLINKS_ALLOWED_HOSTS": s.allowed_hosts,
        "DOMAIN_CNAME_TARGET": s.cname_target,
        # outbound notifications
        "NOTIFICATIONS_ENABLED": s.notifications_enabled,
        "NOTIFICATIONS_TIMEOUT": s.notifications_timeout,
        "SMTP_SERVER": s.smtp_server,
        "SMTP_PORT": s.smtp_port,
        "SMTP_USE_TLS": s.smtp_use_tls,
        "SMTP_USERNAME": s.smtp_username,
        "SMTP_PASSWORD": s.smtp_password,
        "EMAIL_FROM": s.email_from,
        "ANALYTICS_DEFAULT_RETENTION_DAYS": s.analytics_retention_days,
        # security defaults
        "SESSION_COOKIE_HTTPONLY": True,
        "SESSION_COOKIE_SAMESITE": "Lax",
        "SESSION_COOKIE_SECURE": is_production,  # Require HTTPS in production
        # 50MB file links plus multipart overhead; per-kind limits live in the services
        "MAX_CONTENT_LENGTH": 51 * 1024 * 1024,
    }
