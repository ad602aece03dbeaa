"""Persistence for the OpenRouter API key."""

import json
import os
import tempfile
import threading
from pathlib import Path
from typing import Optional, Union
import structlog

from ..core.errors import ValidationError


logger = structlog.get_logger()


CREDENTIAL_KEY = "openrouter_api_key"
CREDENTIAL_PREFIX = "sk-or-v1-"
DEFAULT_CREDENTIALS_PATH = "~/.voice-assistant/credentials.json"


class CredentialStore:
    """
    Stores a single API key in a JSON file.

    The file is read once on construction; afterwards the cached value is
    authoritative and is only replaced by a successful ``set``.
    """

    def __init__(
        self,
        path: Optional[Union[str, Path]] = None,
        default: str = "",
    ):
        self.path = Path(path or DEFAULT_CREDENTIALS_PATH).expanduser()
        self._lock = threading.Lock()
        self._value = self._load() or default

    def _load(self) -> str:
        """Read the stored credential, returning an empty string if absent."""
        if not self.path.exists():
            return ""

        try:
            with open(self.path, "r") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning(
                "Failed to read credential file", path=str(self.path), error=str(e)
            )
            return ""

        value = data.get(CREDENTIAL_KEY, "") if isinstance(data, dict) else ""
        return value if isinstance(value, str) else ""

    def _atomic_write(self, data: dict) -> None:
        """Atomically write data to the credential file."""
        self.path.parent.mkdir(parents=True, exist_ok=True)

        tmp_path = None
        try:
            with tempfile.NamedTemporaryFile(
                mode="w", dir=self.path.parent, delete=False, suffix=".tmp"
            ) as tmp_file:
                tmp_path = tmp_file.name
                json.dump(data, tmp_file, indent=2)
                tmp_file.flush()
                os.fsync(tmp_file.fileno())

            os.chmod(tmp_path, 0o600)
            os.replace(tmp_path, self.path)
        except OSError:
            if tmp_path and os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    @staticmethod
    def validate(value: str) -> str:
        """Return the normalized credential or raise ValidationError."""
        value = (value or "").strip()
        if not value:
            raise ValidationError("Please enter an API key")
        if not value.startswith(CREDENTIAL_PREFIX):
            raise ValidationError(
                "Invalid API key format. OpenRouter keys should start with "
                f'"{CREDENTIAL_PREFIX}"'
            )
        return value

    def get(self) -> str:
        """Return the stored credential, or an empty string."""
        with self._lock:
            return self._value

    def set(self, value: str) -> None:
        """
        Validate and persist a new credential.

        Raises:
            ValidationError: if the value is not an OpenRouter key
            OSError: if the file cannot be written; the previous value is kept
        """
        value = self.validate(value)

        with self._lock:
            self._atomic_write({CREDENTIAL_KEY: value})
            self._value = value

        logger.info("API key saved", path=str(self.path))

    def is_configured(self) -> bool:
        return bool(self.get())
