"""Durable storage for the Plex auth token and the stable client identifier.

Three backends share one tiny capability interface:

- ``KeyringSecretStore``: the OS credential store via ``keyring``
- ``EncryptedFileSecretStore``: a JSON file of AES-256-GCM encrypted values, the
  random key kept beside it in a 0600 key file
- ``InMemorySecretStore``: process-local, used by tests and throwaway sessions
"""

from __future__ import annotations

import base64
import json
import os
import threading
import uuid
from pathlib import Path
from typing import Dict, Optional, Protocol

import keyring
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from keyring.errors import KeyringError, PasswordDeleteError

from plex_mirror.backend.common.errors import SecretStoreError
from plex_mirror.backend.common.logging import get_logger
from plex_mirror.config.settings import Settings, get_secrets_dir

log = get_logger(__name__)

KEYRING_SERVICE = "plex-mirror"
CLIENT_IDENTIFIER_KEY = "client_identifier"
AUTH_TOKEN_KEY = "auth_token"

SECRETS_FILE_NAME = "secrets.json"
KEYFILE_NAME = "secrets.key"
NONCE_SIZE = 12


class SecretStore(Protocol):
    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str) -> None: ...

    def delete(self, key: str) -> None: ...


class InMemorySecretStore:
    def __init__(self, initial: Optional[Dict[str, str]] = None) -> None:
        self._values: Dict[str, str] = dict(initial or {})
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._values.get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            self._values[key] = value

    def delete(self, key: str) -> None:
        with self._lock:
            self._values.pop(key, None)


class KeyringSecretStore:
    def __init__(self, service: str = KEYRING_SERVICE) -> None:
        self._service = service

    def get(self, key: str) -> Optional[str]:
        try:
            return keyring.get_password(self._service, key)
        except KeyringError as e:
            raise SecretStoreError(f"Could not read '{key}' from the system keyring", cause=e) from e

    def set(self, key: str, value: str) -> None:
        try:
            keyring.set_password(self._service, key, value)
        except KeyringError as e:
            raise SecretStoreError(f"Could not write '{key}' to the system keyring", cause=e) from e

    def delete(self, key: str) -> None:
        try:
            keyring.delete_password(self._service, key)
        except PasswordDeleteError:
            return
        except KeyringError as e:
            raise SecretStoreError(f"Could not delete '{key}' from the system keyring", cause=e) from e


class EncryptedFileSecretStore:
    """Values are encrypted individually as ``nonce || ciphertext || tag``, base64 encoded."""

    def __init__(self, directory: Optional[Path] = None) -> None:
        self._dir = Path(directory or get_secrets_dir())
        self._data_path = self._dir / SECRETS_FILE_NAME
        self._key_path = self._dir / KEYFILE_NAME
        self._lock = threading.Lock()
        self._key: Optional[bytes] = None

    def _load_key(self) -> bytes:
        if self._key is not None:
            return self._key

        if self._key_path.exists():
            key = base64.b64decode(self._key_path.read_text(encoding="utf-8").strip())
            if len(key) != 32:
                raise SecretStoreError(f"Invalid key file at {self._key_path}")
        else:
            self._dir.mkdir(parents=True, exist_ok=True)
            key = AESGCM.generate_key(bit_length=256)
            fd = os.open(str(self._key_path), os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(base64.b64encode(key).decode())
            log.info("secret_key_created", extra={"path": str(self._key_path)})

        self._key = key
        return key

    def _read_all(self) -> Dict[str, str]:
        if not self._data_path.exists():
            return {}
        try:
            data = json.loads(self._data_path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise SecretStoreError(f"Corrupted secrets file: {e}", cause=e) from e

        return data if isinstance(data, dict) else {}

    def _write_all(self, data: Dict[str, str]) -> None:
        self._dir.mkdir(parents=True, exist_ok=True)
        temp = self._data_path.with_suffix(".tmp")
        temp.write_text(json.dumps(data, indent=2, sort_keys=True), encoding="utf-8")
        os.chmod(temp, 0o600)
        temp.replace(self._data_path)

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            encoded = self._read_all().get(key)
            if encoded is None:
                return None
            blob = base64.b64decode(encoded)
            try:
                plain = AESGCM(self._load_key()).decrypt(blob[:NONCE_SIZE], blob[NONCE_SIZE:], key.encode())
            except InvalidTag as e:
                raise SecretStoreError(f"Secret '{key}' could not be decrypted", cause=e) from e
            return plain.decode("utf-8")

    def set(self, key: str, value: str) -> None:
        with self._lock:
            nonce = os.urandom(NONCE_SIZE)
            cipher = AESGCM(self._load_key()).encrypt(nonce, value.encode("utf-8"), key.encode())
            data = self._read_all()
            data[key] = base64.b64encode(nonce + cipher).decode()
            self._write_all(data)

    def delete(self, key: str) -> None:
        with self._lock:
            data = self._read_all()
            if data.pop(key, None) is not None:
                self._write_all(data)


def open_secret_store(settings: Settings) -> SecretStore:
    backend = settings.secret_backend
    if backend == "memory":
        return InMemorySecretStore()
    if backend == "file":
        return EncryptedFileSecretStore()

    return KeyringSecretStore()


# ---------------- Helpers ----------------

def get_or_create_client_identifier(store: SecretStore) -> str:
    existing = store.get(CLIENT_IDENTIFIER_KEY)
    if existing:
        return existing

    identifier = str(uuid.uuid4())
    store.set(CLIENT_IDENTIFIER_KEY, identifier)
    log.info("client_identifier_created")
    return identifier


def get_auth_token(store: SecretStore) -> Optional[str]:
    return store.get(AUTH_TOKEN_KEY) or None


def store_auth_token(store: SecretStore, token: str) -> None:
    store.set(AUTH_TOKEN_KEY, token)


def clear_auth_token(store: SecretStore) -> None:
    store.delete(AUTH_TOKEN_KEY)


__all__ = [
    "AUTH_TOKEN_KEY",
    "CLIENT_IDENTIFIER_KEY",
    "EncryptedFileSecretStore",
    "InMemorySecretStore",
    "KeyringSecretStore",
    "SecretStore",
    "clear_auth_token",
    "get_auth_token",
    "get_or_create_client_identifier",
    "open_secret_store",
    "store_auth_token",
]
