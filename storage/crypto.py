"""
storage/crypto.py

Encryption capability used by the counseling platform.

The platform never handles ciphertext directly.  It asks an
:class:`EncryptionCapability` to turn a plaintext integer into an opaque
*handle*, and then to grant decryption rights on that handle:

- ``grant_self(handle)``       lets the runtime keep using the handle
  (required before a handle is stored anywhere).
- ``grant_decrypt(handle, p)`` lets principal *p* decrypt it off-platform.

:class:`FernetCapability` is the bundled implementation.  Each value is
wrapped in a small JSON document and encrypted with Fernet; handles are random
hex identifiers and the per-handle access lists live in memory.  Handles are
kept until the platform releases them, which it does once no stored record
references them.

Key lifecycle
-------------
The Fernet key is read from the environment variable APP_DATA_KEY.
APP_DATA_KEY must be a URL-safe base64-encoded 32-byte key as produced by
``Fernet.generate_key()``.

If APP_DATA_KEY is not set, a fresh key is generated at process start and
stored in memory only (suitable for local demo / testing). A warning is
emitted so the operator knows data will not survive a process restart.
"""

from __future__ import annotations

import json
import logging
import os
import secrets
import threading
from functools import lru_cache
from typing import Protocol

from cryptography.fernet import Fernet, InvalidToken

from storage.errors import CapabilityError

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Key management
# ---------------------------------------------------------------------------

_ENV_KEY_NAME = "APP_DATA_KEY"

SELF_PRINCIPAL = "__runtime__"


@lru_cache(maxsize=1)
def _get_fernet() -> Fernet:
    """
    Return a cached Fernet instance.

    Reads APP_DATA_KEY from the environment.  If absent, generates a
    one-time in-memory key and logs a warning.
    """
    raw_key = os.environ.get(_ENV_KEY_NAME)

    if raw_key:
        key = raw_key.encode()
        logger.debug("Fernet key loaded from environment variable '%s'.", _ENV_KEY_NAME)
    else:
        key = Fernet.generate_key()
        logger.warning(
            "APP_DATA_KEY environment variable is not set. "
            "A temporary in-memory Fernet key has been generated. "
            "Handles will NOT be decryptable after process restart."
        )

    return Fernet(key)


# ---------------------------------------------------------------------------
# Capability interface
# ---------------------------------------------------------------------------


class EncryptionCapability(Protocol):
    """What the platform needs from an encryption backend."""

    def encrypt(self, value: int) -> str: ...

    def grant_self(self, handle: str) -> None: ...

    def grant_decrypt(self, handle: str, principal: str) -> None: ...

    def require_self(self, handle: str) -> None: ...

    def decrypt(self, handle: str, principal: str) -> int: ...

    def release(self, handle: str) -> None: ...


# ---------------------------------------------------------------------------
# Fernet-backed implementation
# ---------------------------------------------------------------------------


class FernetCapability:
    """
    In-memory handle table backed by Fernet tokens.

    Args:
        fernet: Optional pre-built ``Fernet``.  Defaults to the key from
                APP_DATA_KEY (see module docstring).
    """

    def __init__(self, fernet: Fernet | None = None):
        self._fernet = fernet or _get_fernet()
        self._tokens: dict[str, bytes] = {}
        self._acl: dict[str, set[str]] = {}
        self._lock = threading.Lock()

    def encrypt(self, value: int) -> str:
        """
        Encrypt *value* and return a fresh handle.

        The new handle has an empty access list: not even the runtime may
        use it until :meth:`grant_self` is called.
        """
        plaintext = json.dumps({"v": int(value)}).encode("utf-8")
        token = self._fernet.encrypt(plaintext)
        handle = "0x" + secrets.token_hex(32)
        with self._lock:
            self._tokens[handle] = token
            self._acl[handle] = set()
        return handle

    def grant_self(self, handle: str) -> None:
        with self._lock:
            self._acl_for(handle).add(SELF_PRINCIPAL)
        logger.debug("grant_self handle=%s", handle[:10])

    def grant_decrypt(self, handle: str, principal: str) -> None:
        """
        Allow *principal* to decrypt *handle*.  Idempotent.

        Raises:
            CapabilityError: If the handle is unknown or the runtime does not
                hold it yet; a handle can only be shared by its holder.
        """
        with self._lock:
            acl = self._acl_for(handle)
            if SELF_PRINCIPAL not in acl:
                logger.error("grant_decrypt before grant_self on handle=%s", handle[:10])
                raise CapabilityError(f"Runtime does not hold handle {handle[:10]}...")
            acl.add(principal)
        logger.debug("grant_decrypt handle=%s principal=%s", handle[:10], principal)

    def require_self(self, handle: str) -> None:
        with self._lock:
            if SELF_PRINCIPAL not in self._acl_for(handle):
                logger.error("Handle %s used without grant_self", handle[:10])
                raise CapabilityError(f"Handle {handle[:10]}... was never self-granted")

    def is_allowed(self, handle: str, principal: str) -> bool:
        with self._lock:
            return principal in self._acl.get(handle, ())

    def decrypt(self, handle: str, principal: str) -> int:
        """
        Decrypt *handle* on behalf of *principal*.

        Raises:
            CapabilityError: If *principal* was never granted the handle, or
                the token cannot be decrypted with the current key.
        """
        with self._lock:
            if principal not in self._acl_for(handle):
                logger.warning("Decrypt denied: principal=%s handle=%s", principal, handle[:10])
                raise CapabilityError(f"{principal} may not decrypt {handle[:10]}...")
            token = self._tokens[handle]

        try:
            plaintext = self._fernet.decrypt(token)
        except InvalidToken as exc:
            logger.error("Fernet decryption failed: wrong key or corrupted token.")
            raise CapabilityError("Ciphertext could not be decrypted") from exc

        return int(json.loads(plaintext.decode("utf-8"))["v"])

    def release(self, handle: str) -> None:
        """
        Forget *handle*: its token and access list are dropped.

        Called for handles that no stored record references any more (an
        aborted operation or a superseded value).  Unknown handles are ignored.
        """
        with self._lock:
            self._tokens.pop(handle, None)
            self._acl.pop(handle, None)
        logger.debug("release handle=%s", handle[:10])

    def handle_count(self) -> int:
        with self._lock:
            return len(self._tokens)

    def _acl_for(self, handle: str) -> set[str]:
        # caller holds self._lock
        try:
            return self._acl[handle]
        except KeyError:
            raise CapabilityError(f"Unknown handle {handle[:10]}...") from None
