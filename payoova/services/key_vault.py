"""Key vault: authenticated encryption of wallet private keys at rest.

The vault talks to key material only through ``KeyCipher``. The default
cipher is AES-256-GCM under a static server secret; a KMS or HSM backed cipher
can replace it without touching callers.
"""
import base64
import binascii
import logging
import os
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from eth_account import Account
from eth_account.signers.local import LocalAccount

from payoova.exceptions import KeyDecryptionError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SealedKey:
    """Opaque ciphertext plus the tag of the algorithm that produced it."""
    algorithm: str
    ciphertext: str


class KeyCipher(ABC):
    """Capability to seal and open key material."""

    algorithm: str

    @abstractmethod
    def seal(self, plaintext: bytes, context: bytes) -> bytes:
        """Encrypt ``plaintext`` bound to ``context``."""

    @abstractmethod
    def open(self, blob: bytes, context: bytes) -> bytes:
        """Decrypt ``blob``; raise KeyDecryptionError if it was tampered with."""


class AESGCMCipher(KeyCipher):
    """AES-256-GCM with a random 96-bit nonce prepended to the ciphertext."""

    algorithm = "aes-256-gcm"
    NONCE_BYTES = 12
    TAG_BYTES = 16

    def __init__(self, master_secret: bytes):
        if len(master_secret) != 32:
            raise ValueError("AES-256-GCM requires a 32 byte master secret")
        self._aead = AESGCM(master_secret)

    def seal(self, plaintext: bytes, context: bytes) -> bytes:
        nonce = os.urandom(self.NONCE_BYTES)
        return nonce + self._aead.encrypt(nonce, plaintext, context)

    def open(self, blob: bytes, context: bytes) -> bytes:
        if len(blob) <= self.NONCE_BYTES + self.TAG_BYTES:
            raise KeyDecryptionError("Ciphertext is truncated")
        nonce, body = blob[:self.NONCE_BYTES], blob[self.NONCE_BYTES:]
        try:
            return self._aead.decrypt(nonce, body, context)
        except InvalidTag:
            raise KeyDecryptionError("Ciphertext failed authentication")


class KeyVaultService:
    """Seals private keys for storage and opens them for a single signature."""

    def __init__(self, cipher: KeyCipher):
        self.cipher = cipher

    @classmethod
    def from_secret(cls, master_secret: bytes) -> "KeyVaultService":
        return cls(AESGCMCipher(master_secret))

    @property
    def algorithm(self) -> str:
        return self.cipher.algorithm

    def encrypt(self, private_key: str, context: str = "") -> SealedKey:
        """Seal a hex private key. ``context`` (the wallet address) is authenticated too."""
        blob = self.cipher.seal(private_key.encode(), context.lower().encode())
        return SealedKey(
            algorithm=self.cipher.algorithm,
            ciphertext=base64.b64encode(blob).decode("ascii"),
        )

    def decrypt(self, sealed: SealedKey, context: str = "") -> str:
        """Open a sealed key. Any failure raises KeyDecryptionError."""
        try:
            if sealed.algorithm != self.cipher.algorithm:
                raise KeyDecryptionError(f"Unsupported key algorithm {sealed.algorithm!r}")
            try:
                blob = base64.b64decode(sealed.ciphertext, validate=True)
            except (binascii.Error, ValueError):
                raise KeyDecryptionError("Ciphertext is not valid base64")
            plaintext = self.cipher.open(blob, context.lower().encode())
            try:
                return plaintext.decode("ascii")
            except UnicodeDecodeError:
                raise KeyDecryptionError("Decrypted key is not valid text")
        except KeyDecryptionError as e:
            logger.error(f"Key decryption failed for context {context or '<none>'}: {e.message}")
            raise

    @contextmanager
    def unlocked_account(self, sealed: SealedKey, address: str) -> Iterator[LocalAccount]:
        """Yield a signing account for ``address``; the key lives only inside the block."""
        private_key = self.decrypt(sealed, context=address)
        try:
            account = Account.from_key(private_key)
        except (ValueError, TypeError):
            logger.error(f"Decrypted key for {address} is malformed")
            raise KeyDecryptionError("Decrypted key is malformed")
        finally:
            del private_key

        if account.address.lower() != address.lower():
            logger.error(f"Decrypted key does not derive wallet address {address}")
            raise KeyDecryptionError("Key material does not match wallet address")

        try:
            yield account
        finally:
            del account
