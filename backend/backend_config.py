# backend/config.py - Application configuration

import os
from typing import List

class Settings:
    # Database
    DATABASE_URL: str = os.getenv(
        "DATABASE_URL",
        "sqlite:///./gridbase.db"
    )

    # CORS
    CORS_ORIGINS: List[str] = os.getenv(
        "CORS_ORIGINS",
        "http://localhost:3000,http://localhost:5173,http://localhost:8080"
    ).split(",")

    # Debug mode
    DEBUG: bool = os.getenv("DEBUG", "true").lower() == "true"

    # Server
    HOST: str = os.getenv("HOST", "0.0.0.0")
    PORT: int = int(os.getenv("PORT", "8000"))

    # Client side of the API
    API_URL: str = os.getenv("API_URL", "http://localhost:8000")
    HTTP_TIMEOUT: float = float(os.getenv("HTTP_TIMEOUT", "30"))

    # No auth layer: every base is stamped with this owner
    DEFAULT_OWNER_ID: str = os.getenv("DEFAULT_OWNER_ID", "local-user")

    # Bulk insertion
    BULK_BATCH_SIZE: int = int(os.getenv("BULK_BATCH_SIZE", "1000"))
    BULK_REFRESH_INTERVAL: float = float(os.getenv("BULK_REFRESH_INTERVAL", "2.0"))
    BULK_BATCH_DELAY: float = float(os.getenv("BULK_BATCH_DELAY", "0.1"))
    MAX_BULK_ROWS: int = int(os.getenv("MAX_BULK_ROWS", "100000"))

    # Grid paging and virtualization
    PAGE_SIZE: int = int(os.getenv("PAGE_SIZE", "50"))
    PREFETCH_THRESHOLD: int = int(os.getenv("PREFETCH_THRESHOLD", "10"))
    MAX_PAGE_LIMIT: int = int(os.getenv("MAX_PAGE_LIMIT", "1000"))
    ROW_HEIGHT: int = int(os.getenv("ROW_HEIGHT", "35"))
    OVERSCAN: int = int(os.getenv("OVERSCAN", "5"))
    VIEWPORT_HEIGHT: int = int(os.getenv("VIEWPORT_HEIGHT", "600"))

settings = Settings()
