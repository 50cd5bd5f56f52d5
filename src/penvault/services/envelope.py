"""Encryption envelope: password-sealed ``.pen.json`` containers.

A container wraps the UTF-8 JSON of a bundle:

- a 256-bit key is derived from the password with PBKDF2-HMAC-SHA256
  over a fresh 128-bit salt;
- the bundle is encrypted with AES-256-GCM under a fresh 96-bit nonce
  (the 16-byte tag is appended to the ciphertext);
- salt, nonce and ciphertext are stored as base64 text next to the
  clear-text format, version, work factor and metadata.

Nothing is cached between calls: every seal and open derives its key from
scratch using the parameters stored in the container itself, so raising
the default iteration count never breaks older files.
"""

import json
import logging
import os
from typing import Any, Dict, Optional, Union

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from pydantic import ValidationError as PydanticValidationError

from penvault.codec import b64decode_strict, b64encode_chunked
from penvault.config import MAX_KDF_ITERATIONS, MIN_KDF_ITERATIONS, config
from penvault.exceptions import DecryptError, UnsupportedContainerError, ValidationError
from penvault.models.bundle import Bundle
from penvault.models.envelope import (
    CIPHER_NAME,
    ENVELOPE_FORMAT,
    ENVELOPE_VERSION,
    KDF_HASH,
    KDF_NAME,
    AppInfo,
    CipherParams,
    EnvelopeMeta,
    KdfParams,
    PenContainerV1,
)
from penvault.models.schema import utc_now
from penvault.observability import timed_operation
from penvault.services.bundle_serializer import BundleSerializer

logger = logging.getLogger(__name__)

SALT_BYTES = 16
NONCE_BYTES = 12
KEY_BYTES = 32

EnvelopeSource = Union[PenContainerV1, Dict[str, Any], str, bytes]


def derive_key(password: str, salt: bytes, iterations: int) -> bytes:
    """Derive a 256-bit AES key from a password with PBKDF2-HMAC-SHA256."""
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=KEY_BYTES,
        salt=salt,
        iterations=iterations,
    )
    return kdf.derive(password.encode("utf-8"))


def _bundle_plaintext(bundle: Bundle) -> bytes:
    document = bundle.model_dump(mode="json", by_alias=True)
    return json.dumps(document, separators=(",", ":"), ensure_ascii=False).encode(
        "utf-8"
    )


def seal(
    password: str,
    bundle: Bundle,
    iterations: Optional[int] = None,
    hint: Optional[str] = None,
) -> PenContainerV1:
    """Encrypt a bundle into a version 1 container.

    Args:
        password: Password the container is sealed with.
        bundle: The plain bundle to protect.
        iterations: PBKDF2 work factor; defaults to the configured value and
            may not be lower than ``MIN_KDF_ITERATIONS``.
        hint: Optional clear-text password hint. It is stored unencrypted.

    Raises:
        ValidationError: If the password is empty or the work factor is
            out of range.
    """
    if not password:
        raise ValidationError("Password cannot be empty", field="password")
    iterations = iterations or config.kdf_iterations
    if not MIN_KDF_ITERATIONS <= iterations <= MAX_KDF_ITERATIONS:
        raise ValidationError(
            f"PBKDF2 iterations must be between {MIN_KDF_ITERATIONS} "
            f"and {MAX_KDF_ITERATIONS}",
            field="iterations",
            value=iterations,
        )

    with timed_operation("seal_envelope", iterations=iterations) as op:
        salt = os.urandom(SALT_BYTES)
        nonce = os.urandom(NONCE_BYTES)
        key = derive_key(password, salt, iterations)
        ciphertext = AESGCM(key).encrypt(nonce, _bundle_plaintext(bundle), None)

        chunk_size = config.b64_chunk_size
        envelope = PenContainerV1(
            format=ENVELOPE_FORMAT,
            version=ENVELOPE_VERSION,
            app=AppInfo(
                name=config.app_name,
                schema=config.bundle_schema,
                build=config.app_version,
            ),
            kdf=KdfParams(
                name=KDF_NAME,
                hash=KDF_HASH,
                iterations=iterations,
                salt=b64encode_chunked(salt, chunk_size),
            ),
            cipher=CipherParams(
                name=CIPHER_NAME, iv=b64encode_chunked(nonce, chunk_size)
            ),
            meta=EnvelopeMeta(
                created_at=utc_now(), notes_count=len(bundle.notes), hint=hint
            ),
            ciphertext=b64encode_chunked(ciphertext, chunk_size),
        )
        op["notes_count"] = len(bundle.notes)
        op["ciphertext_bytes"] = len(ciphertext)

    logger.info(f"Sealed envelope with {len(bundle.notes)} notes")
    return envelope


def _as_document(source: EnvelopeSource) -> Dict[str, Any]:
    if isinstance(source, PenContainerV1):
        return source.model_dump(by_alias=True)
    if isinstance(source, (str, bytes)):
        try:
            source = json.loads(source)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise UnsupportedContainerError("Container is not a JSON document") from e
    if not isinstance(source, dict):
        raise UnsupportedContainerError("Container must be a JSON object")
    return source


def check_container(document: Dict[str, Any]) -> None:
    """Reject containers this reader does not understand.

    Raises:
        UnsupportedContainerError: On an unknown format, version, key
            derivation function, cipher, or an excessive work factor.
    """
    fmt = document.get("format")
    version = document.get("version")
    if fmt != ENVELOPE_FORMAT:
        raise UnsupportedContainerError(
            f"Unsupported container format: {fmt!r}", format=fmt
        )
    if isinstance(version, bool) or version != ENVELOPE_VERSION:
        raise UnsupportedContainerError(
            f"Unsupported container version: {version!r}", version=version
        )

    kdf = document.get("kdf")
    cipher = document.get("cipher")
    if isinstance(kdf, dict):
        if kdf.get("name", KDF_NAME) != KDF_NAME or kdf.get("hash", KDF_HASH) != KDF_HASH:
            raise UnsupportedContainerError(
                "Unsupported key derivation", kdf=kdf.get("name"), hash=kdf.get("hash")
            )
        iterations = kdf.get("iterations")
        # A missing value is left to validation and fails as a DecryptError
        if iterations is not None:
            if not isinstance(iterations, int) or isinstance(iterations, bool):
                raise UnsupportedContainerError(
                    "Key derivation work factor must be an integer",
                    iterations=repr(iterations),
                )
            if iterations > MAX_KDF_ITERATIONS:
                raise UnsupportedContainerError(
                    "Key derivation work factor is too high", iterations=iterations
                )
    if isinstance(cipher, dict) and cipher.get("name", CIPHER_NAME) != CIPHER_NAME:
        raise UnsupportedContainerError(
            "Unsupported cipher", cipher=cipher.get("name")
        )


def is_envelope(document: Union[Dict[str, Any], str, bytes]) -> bool:
    """True if ``document`` looks like an encrypted container (any version)."""
    if isinstance(document, (str, bytes)):
        try:
            document = json.loads(document)
        except (json.JSONDecodeError, UnicodeDecodeError):
            return False
    return isinstance(document, dict) and document.get("format") == ENVELOPE_FORMAT


def open_envelope(password: str, source: EnvelopeSource) -> Bundle:
    """Decrypt a container back into its bundle.

    Raises:
        UnsupportedContainerError: If the container format or version is not
            recognised. Checked before any key derivation.
        DecryptError: For every decryption failure (wrong password,
            corrupted or tampered data, malformed fields). The cause is
            deliberately not reported.
        BundleValidationError: If the authenticated plaintext is JSON but
            not a valid bundle.
    """
    document = _as_document(source)
    check_container(document)

    with timed_operation("open_envelope") as op:
        try:
            envelope = PenContainerV1.model_validate(document)
            salt = b64decode_strict(envelope.kdf.salt)
            nonce = b64decode_strict(envelope.cipher.iv)
            ciphertext = b64decode_strict(envelope.ciphertext)
            key = derive_key(password or "", salt, envelope.kdf.iterations)
            plaintext = AESGCM(key).decrypt(nonce, ciphertext, None)
            payload = json.loads(plaintext.decode("utf-8"))
        except (InvalidTag, ValueError, TypeError, PydanticValidationError):
            # One opaque failure: never reveal which step went wrong
            logger.warning("Envelope could not be decrypted")
            raise DecryptError() from None

        bundle = BundleSerializer.loads(payload)
        op["notes_count"] = len(bundle.notes)

    logger.info(f"Opened envelope with {len(bundle.notes)} notes")
    return bundle
