import os
from dataclasses import dataclass

DEFAULT_REVISION_EXTENSIONS = (".pdf", ".doc", ".docx", ".xls", ".xlsx", ".ppt", ".pptx", ".txt")


@dataclass(frozen=True)
class Settings:
    secret_key: str
    env: str
    database_url: str

    storage_backend: str
    file_dir: str
    s3_endpoint: str
    s3_region: str
    s3_bucket: str
    s3_access_key_id: str
    s3_secret_access_key: str

    revision_extensions: tuple[str, ...]
    revision_max_file_size: int


def _getenv(name: str, default: str = "") -> str:
    return (os.environ.get(name) or default).strip()


def _parse_extensions(raw: str) -> tuple[str, ...]:
    out = []
    for part in raw.split(","):
        ext = part.strip().lower()
        if not ext:
            continue
        if not ext.startswith("."):
            ext = "." + ext
        out.append(ext)
    return tuple(out) or DEFAULT_REVISION_EXTENSIONS


def load_settings() -> Settings:
    return Settings(
        secret_key=_getenv("SECRET_KEY", "change-me"),
        env=_getenv("ENV", "development"),
        database_url=_getenv("DATABASE_URL", "sqlite:///doctrack.db"),
        storage_backend=_getenv("STORAGE_BACKEND", "local"),
        file_dir=_getenv("FILE_DIR", os.path.join(os.getcwd(), "storage")),
        s3_endpoint=_getenv("S3_ENDPOINT", ""),
        s3_region=_getenv("S3_REGION", "nyc3"),
        s3_bucket=_getenv("S3_BUCKET", ""),
        s3_access_key_id=_getenv("S3_ACCESS_KEY_ID", ""),
        s3_secret_access_key=_getenv("S3_SECRET_ACCESS_KEY", ""),
        revision_extensions=_parse_extensions(_getenv("REVISION_EXTENSIONS", ",".join(DEFAULT_REVISION_EXTENSIONS))),
        revision_max_file_size=int(_getenv("REVISION_MAX_FILE_SIZE", str(25 * 1024 * 1024))),
    )


def load_config() -> dict:
    s = load_settings()
    is_production = s.env in ("prod", "production")
    return {
        "SECRET_KEY": s.secret_key,
        "ENV": s.env,
        "DATABASE_URL": s.database_url,
        "STORAGE_BACKEND": s.storage_backend,
        "FILE_DIR": s.file_dir,
        "S3_ENDPOINT": s.s3_endpoint,
        "S3_REGION": s.s3_region,
        "S3_BUCKET": s.s3_bucket,
        "S3_ACCESS_KEY_ID": s.s3_access_key_id,
        "S3_SECRET_ACCESS_KEY": s.s3_secret_access_key,
        # revision uploads
        "REVISION_EXTENSIONS": s.revision_extensions,
        "REVISION_MAX_FILE_SIZE": s.revision_max_file_size,
        # security defaults
        "SESSION_COOKIE_HTTPONLY": True,
        "SESSION_COOKIE_SAMESITE": "Lax",
        "SESSION_COOKIE_SECURE": is_production,  # Require HTTPS in production
        # whole-request cap; per-file limit is REVISION_MAX_FILE_SIZE
        "MAX_CONTENT_LENGTH": s.revision_max_file_size + 1024 * 1024,
    }
