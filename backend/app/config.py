import os
from typing import List

class Settings:
    def _split_csv(self, raw: str, *, default: List[str]) -> List[str]:
        parts = [p.strip() for p in (raw or "").split(",")]
        return [p for p in parts if p] or default

    def _int(self, name: str, default: int) -> int:
        raw = (os.getenv(name) or "").strip()
        if not raw:
            return default
        try:
            return int(raw)
        except ValueError:
            return default

    def __init__(self) -> None:
        self.env = os.getenv('APP_ENV', 'local')
        self.db_url = os.getenv('DATABASE_URL', 'postgresql://localhost/backoffice')
        # Comma-separated list of allowed CORS origins for the back-office UI.
        self.cors_origins = self._split_csv(
            os.getenv("CORS_ORIGINS", "").strip(),
            default=["http://localhost:3000", "http://127.0.0.1:3000"],
        )
        self.api_version = os.getenv("APP_VERSION", "0.1.0").strip() or "0.1.0"
        # Credit term applied to sales orders that do not carry their own.
        self.default_credit_days = max(0, self._int("DEFAULT_CREDIT_DAYS", 0))
        # Page size cap for list endpoints.
        self.max_page_size = max(1, self._int("MAX_PAGE_SIZE", 500))

settings = Settings()
