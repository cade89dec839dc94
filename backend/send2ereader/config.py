"""Application-wide configuration loader.

Every value is read from the environment once, at import time, and exposed
through the ``settings`` singleton that other modules import.
"""

import os
from pathlib import Path


class Settings:
    """Settings helper that gracefully falls back to sane defaults.

    An environment variable injected with an empty value (``PORT=""``) must not
    override the in-code default, so every lookup uses the idiom

        os.getenv(KEY) or DEFAULT

    which replaces *falsy* values ("", None) by the specified DEFAULT.
    """

    HOST: str = os.getenv('HOST') or '0.0.0.0'
    PORT: int = int(os.getenv('PORT') or '3001')

    UPLOAD_DIR: Path = Path(os.getenv('UPLOAD_DIR') or 'uploads')
    STATIC_DIR: Path = Path(os.getenv('STATIC_DIR') or 'static')
    LOG_DIR: Path = Path(os.getenv('LOG_DIR') or 'logs')

    # Idle window, renewed on every status poll, upload and download.
    EXPIRE_DELAY_SECONDS: float = float(os.getenv('EXPIRE_DELAY_SECONDS') or '600')
    # Absolute lifetime of a session, never renewed.
    MAX_EXPIRE_DURATION_SECONDS: float = float(os.getenv('MAX_EXPIRE_DURATION_SECONDS') or '3600')

    MAX_FILE_SIZE_MB: int = int(os.getenv('MAX_FILE_SIZE_MB') or '800')
    MAX_UPLOAD_FILES: int = int(os.getenv('MAX_UPLOAD_FILES') or '10')

    KINDLEGEN_PATH: str = os.getenv('KINDLEGEN_PATH') or 'kindlegen'
    KEPUBIFY_PATH: str = os.getenv('KEPUBIFY_PATH') or 'kepubify'

    @property
    def max_file_size_bytes(self) -> int:
        return self.MAX_FILE_SIZE_MB * 1024 * 1024


settings = Settings()
