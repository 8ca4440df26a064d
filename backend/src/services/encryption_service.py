"""
Encryption primitives for ABDM PII and stored patient tokens.

Two concerns live here:
- Field encryption for outbound PII: RSA with OAEP padding and SHA-1, as
  mandated by the ABDM V3 wire protocol, under the gateway's public key.
- At-rest encryption for patient refresh tokens: AES-256-GCM packed as
  "iv:authTag:ciphertext" hex segments.
"""

import base64
import os
import re
from dataclasses import dataclass
from typing import Optional

from cryptography.exceptions import InvalidTag, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from core.config import ENCRYPTION_KEY
from core.exceptions import ConfigurationError, CryptoError, IntegrityError

AT_REST_IV_BYTES = 16
AT_REST_TAG_BYTES = 16
AT_REST_KEY_HEX_LENGTH = 64

_HEX_RE = re.compile(r"^[0-9a-fA-F]*$")
_OAEP_SHA1 = padding.OAEP(mgf=padding.MGF1(algorithm=hashes.SHA1()), algorithm=hashes.SHA1(), label=None)


@dataclass(frozen=True)
class RsaPaddingConfig:
    """Padding selected for a gateway public key."""
    oaep: bool
    hash_name: Optional[str] = None  # "sha1" or "sha256" for OAEP


def to_pem_public_key(key_base64_or_pem: str) -> str:
    """
    Convert a bare base64 DER public key to PEM. PEM input is returned unchanged.

    Raises:
        CryptoError: If the key is empty
    """
    if not key_base64_or_pem or not key_base64_or_pem.strip():
        raise CryptoError("Missing public key")
    key = key_base64_or_pem.strip()
    if "-----BEGIN" in key:
        return key

    body = "".join(key.split())
    lines = [body[i:i + 64] for i in range(0, len(body), 64)]
    return "-----BEGIN PUBLIC KEY-----\n" + "\n".join(lines) + "\n-----END PUBLIC KEY-----"


def parse_encryption_algorithm(algorithm: Optional[str]) -> RsaPaddingConfig:
    """
    Map the algorithm string advertised with the gateway key to a padding config.

    Observed values:
    - 'RSA/ECB/OAEPWithSHA-1AndMGF1Padding' -> OAEP + SHA-1
    - 'RSA/ECB/PKCS1Padding' -> PKCS#1 v1.5
    Missing values default to OAEP + SHA-1.
    """
    if not algorithm:
        return RsaPaddingConfig(oaep=True, hash_name="sha1")

    upper = algorithm.upper()
    if "OAEP" in upper:
        return RsaPaddingConfig(oaep=True, hash_name="sha256" if "SHA-256" in upper else "sha1")
    return RsaPaddingConfig(oaep=False)


def is_oaep_sha1(algorithm: Optional[str]) -> bool:
    """True when the advertised algorithm matches the padding encrypt_field applies."""
    return parse_encryption_algorithm(algorithm) == RsaPaddingConfig(oaep=True, hash_name="sha1")


def encrypt_field(public_key_pem: str, plaintext: str) -> str:
    """
    Encrypt one PII field for transmission to the gateway.

    Always RSA-OAEP with SHA-1 (MGF1 SHA-1, no label). The gateway decrypts
    with exactly this padding regardless of the algorithm string it advertises.

    Args:
        public_key_pem: Gateway public key (PEM or bare base64 DER)
        plaintext: Field value to encrypt

    Returns:
        Base64-encoded ciphertext

    Raises:
        CryptoError: If the key cannot be loaded or the plaintext exceeds
            the modulus/padding bound
    """
    if not isinstance(plaintext, str):
        raise CryptoError("Plaintext must be a string")

    try:
        public_key = serialization.load_pem_public_key(to_pem_public_key(public_key_pem).encode("utf-8"))
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise CryptoError(f"Invalid public key: {e}") from e

    if not isinstance(public_key, rsa.RSAPublicKey):
        raise CryptoError("Public key is not an RSA key")

    try:
        ciphertext = public_key.encrypt(plaintext.encode("utf-8"), _OAEP_SHA1)
    except ValueError as e:
        # Raised when the plaintext is too long for the key size and padding
        raise CryptoError(f"Failed to encrypt field: {e}") from e

    return base64.b64encode(ciphertext).decode("utf-8")


class TokenEncryptionService:
    """Service for encrypting and decrypting stored patient tokens."""

    def __init__(self, key: str = ENCRYPTION_KEY):
        """Initialize with the at-rest key from environment.

        Expects 64 hex characters (32 bytes). There is no fallback key: a missing
        or malformed key would make previously stored ciphertext unreadable, so
        construction fails instead.
        Generate with: python -c "import secrets; print(secrets.token_hex(32))"

        Raises:
            ConfigurationError: If the key is missing or malformed
        """
        if not key:
            raise ConfigurationError("ENCRYPTION_KEY environment variable must be set")

        if len(key) != AT_REST_KEY_HEX_LENGTH or not _HEX_RE.match(key):
            raise ConfigurationError(
                f"ENCRYPTION_KEY must be {AT_REST_KEY_HEX_LENGTH} hex characters (32 bytes), "
                f"got {len(key)} characters"
            )

        self._aesgcm = AESGCM(bytes.fromhex(key))

    def encrypt_text(self, text: str) -> str:
        """Encrypt a plain text string.

        Returns:
            "iv:authTag:ciphertext" as hex segments, with a fresh random IV per call
        """
        iv = os.urandom(AT_REST_IV_BYTES)
        sealed = self._aesgcm.encrypt(iv, text.encode("utf-8"), None)
        ciphertext, tag = sealed[:-AT_REST_TAG_BYTES], sealed[-AT_REST_TAG_BYTES:]
        return f"{iv.hex()}:{tag.hex()}:{ciphertext.hex()}"

    def decrypt_text(self, packed: str) -> str:
        """Decrypt an "iv:authTag:ciphertext" string back to plain text.

        Raises:
            IntegrityError: If the packing is malformed or authentication fails
        """
        parts = packed.split(":") if isinstance(packed, str) else []
        if len(parts) != 3:
            raise IntegrityError("Encrypted token must have exactly three segments")

        try:
            iv, tag, ciphertext = (bytes.fromhex(part) for part in parts)
        except ValueError as e:
            raise IntegrityError(f"Encrypted token is not valid hex: {e}") from e

        if len(iv) != AT_REST_IV_BYTES or len(tag) != AT_REST_TAG_BYTES:
            raise IntegrityError("Encrypted token has an invalid IV or auth tag length")

        try:
            decrypted = self._aesgcm.decrypt(iv, ciphertext + tag, None)
            return decrypted.decode("utf-8")
        except (InvalidTag, UnicodeDecodeError) as e:
            raise IntegrityError("Encrypted token failed authentication") from e

    def is_encrypted_text_valid(self, packed: str) -> bool:
        """Check if an encrypted string can be successfully decrypted."""
        try:
            self.decrypt_text(packed)
            return True
        except IntegrityError:
            return False


# Global instance, created on first use
encryption_service: Optional[TokenEncryptionService] = None


def get_encryption_service() -> TokenEncryptionService:
    """Get the encryption service, initializing it if necessary.

    Raises:
        ConfigurationError: If ENCRYPTION_KEY is missing or malformed
    """
    global encryption_service
    if encryption_service is None:
        encryption_service = TokenEncryptionService()
    return encryption_service
