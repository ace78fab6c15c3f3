"""
API token storage strategies.

The sync core only ever calls :meth:`TokenStore.get_token` and
:meth:`TokenStore.set_token`; where and how the token is kept is up to the
strategy.
"""

import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional, Union

from cryptography.fernet import Fernet, InvalidToken

from ..utils.errors import StorageError
from ..utils.logging import get_logger


logger = get_logger("lexisync.auth.token_store")

KEY_ENV_VAR = "LEXISYNC_TOKEN_KEY"


class TokenStore(ABC):
    """Where the API token lives between runs."""

    @abstractmethod
    def get_token(self) -> Optional[str]:
        pass

    @abstractmethod
    def set_token(self, token: str) -> None:
        pass

    @abstractmethod
    def clear(self) -> None:
        pass


class MemoryTokenStore(TokenStore):
    """Keeps the token for the life of the process only."""

    def __init__(self, token: Optional[str] = None):
        self._token = token

    def get_token(self) -> Optional[str]:
        return self._token

    def set_token(self, token: str) -> None:
        self._token = token

    def clear(self) -> None:
        self._token = None


class EncryptedFileTokenStore(TokenStore):
    """
    Fernet-encrypted token file.

    The key comes from ``LEXISYNC_TOKEN_KEY`` when set, otherwise from a key
    file next to the token, generated on first use with mode 0600.
    """

    def __init__(self, path: Union[str, Path], key_path: Optional[Union[str, Path]] = None):
        self.path = Path(path)
        self.key_path = Path(key_path) if key_path else self.path.with_name(self.path.name + ".key")
        self._fernet: Optional[Fernet] = None

    def _get_fernet(self) -> Fernet:
        if self._fernet is None:
            self._fernet = Fernet(self._load_or_generate_key())
        return self._fernet

    def _load_or_generate_key(self) -> bytes:
        env_key = os.environ.get(KEY_ENV_VAR)
        if env_key:
            return env_key.encode("utf-8")

        if self.key_path.exists():
            key = self.key_path.read_bytes().strip()
            if key:
                return key

        key = Fernet.generate_key()
        self._write_private(self.key_path, key)
        logger.info("token_key_generated", path=str(self.key_path))
        return key

    @staticmethod
    def _write_private(path: Path, data: bytes) -> None:
        temp_path = path.with_name(path.name + ".tmp")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd = os.open(temp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
            with os.fdopen(fd, "wb") as f:
                f.write(data)
            os.replace(temp_path, path)
        except OSError as e:
            raise StorageError(f"Failed to write {path}: {e}", cause=e) from e

    def get_token(self) -> Optional[str]:
        if not self.path.exists():
            return None
        try:
            return self._get_fernet().decrypt(self.path.read_bytes().strip()).decode("utf-8")
        except InvalidToken:
            # Wrong or rotated key; treat as logged out
            logger.warning("token_decrypt_failed", path=str(self.path))
            return None

    def set_token(self, token: str) -> None:
        self._write_private(self.path, self._get_fernet().encrypt(token.encode("utf-8")))
        logger.debug("token_stored", path=str(self.path))

    def clear(self) -> None:
        if self.path.exists():
            self.path.unlink()
            logger.debug("token_cleared", path=str(self.path))


__all__ = ['TokenStore', 'MemoryTokenStore', 'EncryptedFileTokenStore', 'KEY_ENV_VAR']
