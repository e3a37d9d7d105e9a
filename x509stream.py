"""
X509 Stream Encryption Engine
=============================

Envelope encryption of byte streams for the holder of an X.509 certificate:

- RSA PKCS#1 v1.5 key transport of a one-time data key and IV
- AES-CBC streaming encryption with PKCS#7 padding
- Length-prefixed binary framing of the wrapped key material

Uses the ``cryptography`` library exclusively.

Format specification
--------------------
::

    [WRAPPED DEK]
      Length : 4 bytes (signed int32, little-endian)
      Blob   : RSA PKCS#1 v1.5 ciphertext (modulus size, 256 bytes for RSA-2048)

    [WRAPPED IV]
      Length : 4 bytes (signed int32, little-endian)
      Blob   : RSA PKCS#1 v1.5 ciphertext

    [PAYLOAD]
      AES-CBC ciphertext, PKCS#7 padded to the block size

For an RSA-2048 recipient and the default AES-256 configuration the
envelope is ``2 * (4 + 256) + ceil((n + 1) / 16) * 16`` bytes long.

On failure the output stream is left holding whatever was written before
the error: a partial envelope when encrypting, a plaintext prefix when
decrypting.  Callers must discard it.
"""

from __future__ import annotations

import io
import logging
import os
import struct
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, BinaryIO, Callable, Iterable, Iterator, Optional, Union

from cryptography.hazmat.primitives import padding as sym_padding
from cryptography.hazmat.primitives.asymmetric import padding as asym_padding
from cryptography.hazmat.primitives.asymmetric.rsa import (
    RSAPrivateKey,
    RSAPublicKey,
)
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

LENGTH_PREFIX_SIZE: int = 4      # int32 blob length
MAX_BLOB_SIZE: int = 2048        # upper bound for a wrapped DEK / IV
PKCS1_OVERHEAD: int = 11         # PKCS#1 v1.5 encryption padding
PKCS1_MIN_PADDING: int = 8       # non-zero padding bytes in an EME-PKCS1-v1_5 block
DEFAULT_CHUNK: int = 64 * 1024   # 64 KiB streaming chunk

_LENGTH = struct.Struct("<i")

# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class ErrorKind(Enum):
    """Failure categories carried by every :class:`X509StreamError`."""

    ARGUMENT_INVALID = "argument_invalid"
    ALGORITHM_UNAVAILABLE = "algorithm_unavailable"
    KEY_MATERIAL_INVALID = "key_material_invalid"
    FRAMING_VIOLATION = "framing_violation"
    STREAM_TRUNCATED = "stream_truncated"
    KEY_ACCESS_ERROR = "key_access_error"


class X509StreamError(Exception):
    """Base exception for all x509stream errors."""

    kind: ErrorKind


class ArgumentInvalid(X509StreamError, ValueError):
    """A required stream, key or configuration is missing or of the wrong type."""

    kind = ErrorKind.ARGUMENT_INVALID


class AlgorithmUnavailable(X509StreamError):
    """The requested cipher configuration is not supported."""

    kind = ErrorKind.ALGORITHM_UNAVAILABLE


class KeyMaterialInvalid(X509StreamError):
    """Key unwrap failed, or key material has the wrong size."""

    kind = ErrorKind.KEY_MATERIAL_INVALID


class PaddingInvalid(KeyMaterialInvalid):
    """The final ciphertext block did not carry valid padding."""


class FramingViolation(X509StreamError):
    """A length prefix is missing, incomplete or out of bounds."""

    kind = ErrorKind.FRAMING_VIOLATION


class StreamTruncated(X509StreamError):
    """The input ended before a declared length or a full cipher block."""

    kind = ErrorKind.STREAM_TRUNCATED


class KeyAccessError(X509StreamError):
    """A key provider could not supply a usable key for an identifier."""

    kind = ErrorKind.KEY_ACCESS_ERROR


# ---------------------------------------------------------------------------
# Error values
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Outcome:
    """Result of :func:`attempt`: either a value or an x509stream error."""

    value: Any = None
    error: Optional[X509StreamError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def kind(self) -> Optional[ErrorKind]:
        return None if self.error is None else self.error.kind


def attempt(fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Outcome:
    """
    Call *fn* and capture any :class:`X509StreamError` as an :class:`Outcome`.

    Lets callers branch on ``outcome.kind`` instead of catching exceptions.
    Errors raised by the underlying streams (``OSError`` and friends) are
    not captured.
    """
    try:
        return Outcome(value=fn(*args, **kwargs))
    except X509StreamError as exc:
        return Outcome(error=exc)


# ---------------------------------------------------------------------------
# Cipher configurations
# ---------------------------------------------------------------------------


class CipherConfig(Enum):
    """Supported data-encryption configurations: (algorithm, key bits, block bits)."""

    AES_128_CBC = ("Aes", 128, 128)
    AES_192_CBC = ("Aes", 192, 128)
    AES_256_CBC = ("Aes", 256, 128)

    def __init__(self, algorithm: str, key_size: int, block_size: int) -> None:
        self.algorithm = algorithm
        self.key_size = key_size
        self.block_size = block_size

    @property
    def key_bytes(self) -> int:
        return self.key_size // 8

    @property
    def block_bytes(self) -> int:
        return self.block_size // 8

    @classmethod
    def resolve(
        cls,
        algorithm: str = "Aes",
        key_size: int = 256,
        block_size: int = 128,
    ) -> "CipherConfig":
        """
        Look up the configuration matching *algorithm*, *key_size* and
        *block_size* (sizes in bits, algorithm name case-insensitive).

        Raises
        ------
        ArgumentInvalid
            If *algorithm* is ``None``.
        AlgorithmUnavailable
            If no supported configuration matches.
        """
        if algorithm is None:
            raise ArgumentInvalid("algorithm is required.")
        for config in cls:
            if (
                config.algorithm.lower() == str(algorithm).lower()
                and config.key_size == key_size
                and config.block_size == block_size
            ):
                return config
        raise AlgorithmUnavailable(
            f"Unsupported cipher configuration: {algorithm} "
            f"key={key_size} bits, block={block_size} bits."
        )


DEFAULT_CONFIG: CipherConfig = CipherConfig.AES_256_CBC


def _coerce_config(config: Any) -> CipherConfig:
    if config is None:
        raise ArgumentInvalid("config is required.")
    if not isinstance(config, CipherConfig):
        raise AlgorithmUnavailable(f"Unsupported cipher configuration: {config!r}.")
    return config


# ---------------------------------------------------------------------------
# Key encapsulation (RSA PKCS#1 v1.5 key transport)
# ---------------------------------------------------------------------------


def _modulus_bytes(key: Union[RSAPublicKey, RSAPrivateKey]) -> int:
    return (key.key_size + 7) // 8


def wrap_key(public_key: RSAPublicKey, plaintext: bytes) -> bytes:
    """
    Encrypt a short secret (a data key or IV) under *public_key*.

    Raises
    ------
    KeyMaterialInvalid
        If *plaintext* is longer than ``modulus_bytes - 11``.
    """
    _require_public_key(public_key)
    if plaintext is None:
        raise ArgumentInvalid("plaintext is required.")
    limit = _modulus_bytes(public_key) - PKCS1_OVERHEAD
    if len(plaintext) > limit:
        raise KeyMaterialInvalid(
            f"Cannot wrap {len(plaintext)} bytes; RSA-{public_key.key_size} "
            f"transports at most {limit} bytes."
        )
    return public_key.encrypt(bytes(plaintext), asym_padding.PKCS1v15())


def unwrap_key(
    private_key: RSAPrivateKey,
    ciphertext: bytes,
    expected_length: Optional[int] = None,
) -> bytes:
    """
    Recover a secret wrapped by :func:`wrap_key`.

    The RSA operation is done on the key's private numbers and the
    EME-PKCS1-v1_5 block is parsed strictly: ``00 02``, at least eight
    non-zero padding bytes, a ``00`` separator.  Recent ``cryptography``
    releases decrypt PKCS#1 v1.5 with implicit rejection (bad padding yields
    random bytes instead of an error), so ``private_key.decrypt`` cannot be
    used to detect a wrong key or a tampered blob.

    Parameters
    ----------
    expected_length : int, optional
        When given, the recovered secret must be exactly this many bytes.

    Raises
    ------
    KeyMaterialInvalid
        If the blob length differs from the modulus size, the blob is not
        below the modulus, the padding is malformed (wrong key or corrupted
        blob), or the secret has an unexpected length.
    """
    _require_private_key(private_key)
    if ciphertext is None:
        raise ArgumentInvalid("ciphertext is required.")
    k = _modulus_bytes(private_key)
    if len(ciphertext) != k:
        raise KeyMaterialInvalid(
            f"Wrapped key is {len(ciphertext)} bytes; expected {k}."
        )

    numbers = private_key.private_numbers()
    n = numbers.public_numbers.n
    c = int.from_bytes(ciphertext, "big")
    if c >= n:
        raise KeyMaterialInvalid("Wrapped key is out of range for this private key.")

    # CRT: m = c^d mod n
    m1 = pow(c, numbers.dmp1, numbers.p)
    m2 = pow(c, numbers.dmq1, numbers.q)
    h = (numbers.iqmp * (m1 - m2)) % numbers.p
    em = (m2 + h * numbers.q).to_bytes(k, "big")

    separator = em.find(b"\x00", 2)
    if em[0] != 0 or em[1] != 2 or separator < 2 + PKCS1_MIN_PADDING:
        raise KeyMaterialInvalid(
            "Key unwrap failed: wrong private key or corrupted data."
        )
    secret = em[separator + 1:]
    if expected_length is not None and len(secret) != expected_length:
        raise KeyMaterialInvalid(
            f"Unwrapped key is {len(secret)} bytes; expected {expected_length}."
        )
    return secret


# ---------------------------------------------------------------------------
# Symmetric stream cipher (AES-CBC + PKCS#7)
# ---------------------------------------------------------------------------


def _new_cipher(config: CipherConfig, key: bytes, iv: bytes) -> Cipher:
    if key is None or iv is None:
        raise ArgumentInvalid("key and iv are required.")
    if len(key) != config.key_bytes:
        raise KeyMaterialInvalid(
            f"{config.name} needs a {config.key_bytes}-byte key (got {len(key)})."
        )
    if len(iv) != config.block_bytes:
        raise KeyMaterialInvalid(
            f"{config.name} needs a {config.block_bytes}-byte IV (got {len(iv)})."
        )
    return Cipher(algorithms.AES(bytes(key)), modes.CBC(bytes(iv)))


class _BlockEncryptor:
    """Pad-then-encrypt transform fed one chunk at a time."""

    def __init__(self, config: CipherConfig, key: bytes, iv: bytes) -> None:
        self._encryptor = _new_cipher(config, key, iv).encryptor()
        self._padder = sym_padding.PKCS7(config.block_size).padder()

    def update(self, chunk: bytes) -> bytes:
        return self._encryptor.update(self._padder.update(chunk))

    def finalize(self) -> bytes:
        return self._encryptor.update(self._padder.finalize()) + self._encryptor.finalize()


def encrypt_stream(
    key: bytes,
    iv: bytes,
    config: CipherConfig,
    chunks: Iterable[bytes],
) -> Iterator[bytes]:
    """
    Lazily encrypt an iterable of plaintext chunks.

    Configuration and key sizes are checked immediately; the returned
    iterator consumes *chunks* only as it is advanced.  Total output is
    ``ceil((n + 1) / block) * block`` bytes.
    """
    config = _coerce_config(config)
    transform = _BlockEncryptor(config, key, iv)
    return _encrypt_chunks(transform, chunks)


def _encrypt_chunks(transform: _BlockEncryptor, chunks: Iterable[bytes]) -> Iterator[bytes]:
    for chunk in chunks:
        out = transform.update(chunk)
        if out:
            yield out
    yield transform.finalize()


def decrypt_stream(
    key: bytes,
    iv: bytes,
    config: CipherConfig,
    chunks: Iterable[bytes],
) -> Iterator[bytes]:
    """
    Lazily decrypt an iterable of ciphertext chunks.

    The iterator raises :class:`StreamTruncated` if the ciphertext is not a
    whole number of blocks, and :class:`PaddingInvalid` if the final block's
    padding is malformed (usually a wrong key or IV).
    """
    config = _coerce_config(config)
    cipher = _new_cipher(config, key, iv)
    return _decrypt_chunks(cipher, config, chunks)


def _decrypt_chunks(cipher: Cipher, config: CipherConfig, chunks: Iterable[bytes]) -> Iterator[bytes]:
    decryptor = cipher.decryptor()
    unpadder = sym_padding.PKCS7(config.block_size).unpadder()
    total = 0
    for chunk in chunks:
        total += len(chunk)
        out = unpadder.update(decryptor.update(chunk))
        if out:
            yield out

    if total == 0 or total % config.block_bytes:
        raise StreamTruncated(
            f"Ciphertext is {total} bytes, not a positive multiple of "
            f"the {config.block_bytes}-byte block size."
        )
    try:
        tail = unpadder.update(decryptor.finalize()) + unpadder.finalize()
    except ValueError as exc:
        raise PaddingInvalid(
            "Invalid padding: wrong key or corrupted data."
        ) from exc
    if tail:
        yield tail


def _read(stream: BinaryIO, size: int) -> bytes:
    data = stream.read(size)
    if data is None:
        raise BlockingIOError(
            "Non-blocking stream returned no data; a blocking stream is required."
        )
    return data


def _iter_chunks(
    stream: BinaryIO,
    chunk_size: int,
    progress: Optional[Callable[[int], None]] = None,
) -> Iterator[bytes]:
    processed = 0
    while True:
        chunk = _read(stream, chunk_size)
        if not chunk:
            return
        processed += len(chunk)
        if progress:
            progress(processed)
        yield chunk


# ---------------------------------------------------------------------------
# Envelope framing
# ---------------------------------------------------------------------------


def write_blob(output_stream: BinaryIO, data: bytes) -> None:
    """Write ``int32le(len(data)) || data``."""
    _require_stream(output_stream, "output_stream")
    if data is None:
        raise ArgumentInvalid("data is required.")
    output_stream.write(_LENGTH.pack(len(data)))
    output_stream.write(data)


def _read_exact(stream: BinaryIO, size: int) -> bytes:
    buf = bytearray()
    while len(buf) < size:
        piece = _read(stream, size - len(buf))
        if not piece:
            break
        buf += piece
    return bytes(buf)


def read_blob(input_stream: BinaryIO, max_bytes: int = MAX_BLOB_SIZE) -> bytes:
    """
    Read one length-prefixed blob.

    Raises
    ------
    FramingViolation
        If the 4-byte prefix is incomplete, or declares a negative length or
        one above *max_bytes*.  Nothing beyond the prefix is read in that case.
    StreamTruncated
        If the stream ends before the declared number of bytes.
    """
    _require_stream(input_stream, "input_stream")
    raw_len = _read_exact(input_stream, LENGTH_PREFIX_SIZE)
    if len(raw_len) != LENGTH_PREFIX_SIZE:
        raise FramingViolation(
            f"Unexpected end of input: expected a {LENGTH_PREFIX_SIZE}-byte "
            f"length prefix, got {len(raw_len)} bytes."
        )
    (length,) = _LENGTH.unpack(raw_len)
    if length < 0 or length > max_bytes:
        raise FramingViolation(
            f"Unexpected blob size {length:,} bytes; expecting 0 to {max_bytes:,}."
        )
    data = _read_exact(input_stream, length)
    if len(data) != length:
        raise StreamTruncated(
            f"Unexpected end of input: expected {length:,} bytes, got {len(data):,}."
        )
    return data


# ---------------------------------------------------------------------------
# Argument validation (module-private)
# ---------------------------------------------------------------------------


def _require_stream(stream: Any, name: str) -> None:
    if stream is None:
        raise ArgumentInvalid(f"{name} is required.")


def _require_public_key(key: Any) -> None:
    if key is None:
        raise ArgumentInvalid("public_key is required.")
    if not isinstance(key, RSAPublicKey):
        raise ArgumentInvalid(
            f"Expected an RSA public key, got {type(key).__name__}."
        )


def _require_private_key(key: Any) -> None:
    if key is None:
        raise ArgumentInvalid("private_key is required.")
    if not isinstance(key, RSAPrivateKey):
        raise ArgumentInvalid(
            f"Expected an RSA private key, got {type(key).__name__}."
        )


def _require_chunk_size(chunk_size: Any) -> None:
    if (
        isinstance(chunk_size, bool)
        or not isinstance(chunk_size, int)
        or chunk_size <= 0
    ):
        raise ArgumentInvalid(
            f"chunk_size must be a positive integer, got {chunk_size!r}."
        )


def _close_owned(
    input_stream: Optional[BinaryIO], output_stream: Optional[BinaryIO]
) -> None:
    # A failing input close must not leave the output open.
    try:
        if input_stream is not None:
            input_stream.close()
    finally:
        if output_stream is not None:
            output_stream.close()


# ---------------------------------------------------------------------------
# Incremental writer
# ---------------------------------------------------------------------------


class EncryptingWriter:
    """
    File-like writer that produces an envelope as data is written to it.

    The wrapped DEK and IV are written to *output_stream* on construction;
    :meth:`close` writes the final padded block.  Closing the writer closes
    *output_stream* only when *owns_stream* is true.  Leaving a ``with``
    block on an exception skips the final block, so the envelope is
    incomplete and must be discarded.
    """

    def __init__(
        self,
        output_stream: BinaryIO,
        public_key: RSAPublicKey,
        config: CipherConfig = DEFAULT_CONFIG,
        *,
        owns_stream: bool = False,
    ) -> None:
        _require_stream(output_stream, "output_stream")
        _require_public_key(public_key)
        config = _coerce_config(config)

        dek = os.urandom(config.key_bytes)
        iv = os.urandom(config.block_bytes)
        self._transform = _BlockEncryptor(config, dek, iv)
        write_blob(output_stream, wrap_key(public_key, dek))
        write_blob(output_stream, wrap_key(public_key, iv))

        self._out = output_stream
        self._owns_stream = owns_stream
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def writable(self) -> bool:
        return True

    def write(self, data: bytes) -> int:
        if self._closed:
            raise ValueError("I/O operation on closed EncryptingWriter.")
        out = self._transform.update(data)
        if out:
            self._out.write(out)
        return len(data)

    def flush(self) -> None:
        self._out.flush()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            self._out.write(self._transform.finalize())
            self._out.flush()
        finally:
            if self._owns_stream:
                self._out.close()

    def _abandon(self) -> None:
        self._closed = True
        if self._owns_stream:
            self._out.close()

    def __enter__(self) -> "EncryptingWriter":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc_type is None:
            self.close()
        else:
            self._abandon()


# ---------------------------------------------------------------------------
# X509StreamEngine
# ---------------------------------------------------------------------------


class X509StreamEngine:
    """
    Envelope encryption over binary streams.

    All public methods are **static**; the class serves as a logical
    namespace.  Nothing is cached between calls; every call builds its own
    cipher context, so one key object may be shared by concurrent calls
    on disjoint streams.
    """

    # ------------------------------------------------------------------
    # Stream encrypt / decrypt
    # ------------------------------------------------------------------

    @staticmethod
    def encrypt(
        input_stream: BinaryIO,
        output_stream: BinaryIO,
        public_key: RSAPublicKey,
        config: CipherConfig = DEFAULT_CONFIG,
        *,
        chunk_size: int = DEFAULT_CHUNK,
        close_input: bool = False,
        close_output: bool = False,
        progress_callback: Optional[Callable[[int], None]] = None,
    ) -> None:
        """
        Encrypt *input_stream* into *output_stream* for the holder of the
        private key matching *public_key*.

        A fresh DEK and IV are generated, wrapped under *public_key* and
        written as two length-prefixed blobs, followed by the AES-CBC
        ciphertext of the input.

        Parameters
        ----------
        input_stream, output_stream : binary file-like
        public_key : RSAPublicKey
            Key-encryption key, usually from a certificate.
        config : CipherConfig
            Data-encryption configuration (default AES-256-CBC).
        chunk_size : int
            Plaintext bytes read per step; must be positive.
        close_input, close_output : bool
            Close the respective stream on return, including on failure.
        progress_callback : callable(bytes_read)

        Raises
        ------
        ArgumentInvalid, AlgorithmUnavailable, KeyMaterialInvalid
        """
        _require_stream(input_stream, "input_stream")
        _require_stream(output_stream, "output_stream")
        _require_public_key(public_key)
        _require_chunk_size(chunk_size)
        try:
            config = _coerce_config(config)
            dek = os.urandom(config.key_bytes)
            iv = os.urandom(config.block_bytes)
            logger.debug(
                "Encrypting. KEK: RSA/%d bits, DEK: %s/%d bits, block %d bits",
                public_key.key_size, config.algorithm, config.key_size, config.block_size,
            )

            wrapped_dek = wrap_key(public_key, dek)
            wrapped_iv = wrap_key(public_key, iv)
            write_blob(output_stream, wrapped_dek)
            write_blob(output_stream, wrapped_iv)

            chunks = _iter_chunks(input_stream, chunk_size, progress_callback)
            for block in encrypt_stream(dek, iv, config, chunks):
                output_stream.write(block)
            output_stream.flush()
        finally:
            _close_owned(
                input_stream if close_input else None,
                output_stream if close_output else None,
            )

    @staticmethod
    def decrypt(
        input_stream: BinaryIO,
        output_stream: BinaryIO,
        private_key: RSAPrivateKey,
        config: CipherConfig = DEFAULT_CONFIG,
        *,
        chunk_size: int = DEFAULT_CHUNK,
        close_input: bool = False,
        close_output: bool = False,
        progress_callback: Optional[Callable[[int], None]] = None,
    ) -> None:
        """
        Decrypt an envelope produced by :meth:`encrypt`.

        Both wrapped blobs are read and unwrapped before any ciphertext byte
        is consumed.  The unwrapped DEK and IV must match the sizes of
        *config*.

        Raises
        ------
        ArgumentInvalid, AlgorithmUnavailable
            Bad arguments; raised before anything is read.
        FramingViolation, StreamTruncated
            Malformed or short envelope.
        KeyMaterialInvalid
            Wrong private key, tampered key blobs, or invalid padding
            (:class:`PaddingInvalid`).
        """
        _require_stream(input_stream, "input_stream")
        _require_stream(output_stream, "output_stream")
        _require_private_key(private_key)
        _require_chunk_size(chunk_size)
        try:
            config = _coerce_config(config)
            wrapped_dek = read_blob(input_stream, MAX_BLOB_SIZE)
            wrapped_iv = read_blob(input_stream, MAX_BLOB_SIZE)

            dek = unwrap_key(private_key, wrapped_dek, config.key_bytes)
            iv = unwrap_key(private_key, wrapped_iv, config.block_bytes)
            logger.debug(
                "Decrypting. KEK: RSA/%d bits, DEK: %s/%d bits, block %d bits",
                private_key.key_size, config.algorithm, len(dek) * 8, len(iv) * 8,
            )

            chunks = _iter_chunks(input_stream, chunk_size, progress_callback)
            for block in decrypt_stream(dek, iv, config, chunks):
                output_stream.write(block)
            output_stream.flush()
        finally:
            _close_owned(
                input_stream if close_input else None,
                output_stream if close_output else None,
            )

    # ------------------------------------------------------------------
    # Key-provider entry points
    # ------------------------------------------------------------------

    @staticmethod
    def encrypt_with_certificate(
        input_stream: BinaryIO,
        output_stream: BinaryIO,
        cert_id: Any,
        provider: Any,
        config: CipherConfig = DEFAULT_CONFIG,
        **kwargs: Any,
    ) -> None:
        """
        Resolve the public key for *cert_id* through *provider*, then
        :meth:`encrypt`.  Provider failures surface as :class:`KeyAccessError`.
        """
        _require_stream(input_stream, "input_stream")
        _require_stream(output_stream, "output_stream")
        if cert_id is None:
            raise ArgumentInvalid("cert_id is required.")
        if provider is None:
            raise ArgumentInvalid("provider is required.")
        config = _coerce_config(config)
        public_key = provider.get_public_key(cert_id)
        X509StreamEngine.encrypt(input_stream, output_stream, public_key, config, **kwargs)

    @staticmethod
    def decrypt_with_certificate(
        input_stream: BinaryIO,
        output_stream: BinaryIO,
        cert_id: Any,
        provider: Any,
        config: CipherConfig = DEFAULT_CONFIG,
        **kwargs: Any,
    ) -> None:
        """Resolve the private key for *cert_id* through *provider*, then :meth:`decrypt`."""
        _require_stream(input_stream, "input_stream")
        _require_stream(output_stream, "output_stream")
        if cert_id is None:
            raise ArgumentInvalid("cert_id is required.")
        if provider is None:
            raise ArgumentInvalid("provider is required.")
        config = _coerce_config(config)
        private_key = provider.get_private_key(cert_id)
        X509StreamEngine.decrypt(input_stream, output_stream, private_key, config, **kwargs)

    # ------------------------------------------------------------------
    # In-memory helpers
    # ------------------------------------------------------------------

    @staticmethod
    def encrypt_bytes(
        data: bytes,
        public_key: RSAPublicKey,
        config: CipherConfig = DEFAULT_CONFIG,
    ) -> bytes:
        """Encrypt *data* and return the whole envelope."""
        if data is None:
            raise ArgumentInvalid("data is required.")
        out = io.BytesIO()
        X509StreamEngine.encrypt(io.BytesIO(data), out, public_key, config)
        return out.getvalue()

    @staticmethod
    def decrypt_bytes(
        data: bytes,
        private_key: RSAPrivateKey,
        config: CipherConfig = DEFAULT_CONFIG,
    ) -> bytes:
        """Decrypt an envelope held in memory."""
        if data is None:
            raise ArgumentInvalid("data is required.")
        out = io.BytesIO()
        X509StreamEngine.decrypt(io.BytesIO(data), out, private_key, config)
        return out.getvalue()

    # ------------------------------------------------------------------
    # File helpers
    # ------------------------------------------------------------------

    @staticmethod
    def encrypt_file(
        input_path: Union[str, Path],
        output_path: Union[str, Path],
        public_key: RSAPublicKey,
        config: CipherConfig = DEFAULT_CONFIG,
        *,
        chunk_size: int = DEFAULT_CHUNK,
        progress_callback: Optional[Callable[[int, int], None]] = None,
    ) -> None:
        """
        Encrypt the file at *input_path* into *output_path*.

        *progress_callback* receives ``(bytes_processed, total_bytes)``.
        """
        _require_public_key(public_key)
        _require_chunk_size(chunk_size)
        config = _coerce_config(config)
        input_path = Path(input_path)
        output_path = Path(output_path)
        total = input_path.stat().st_size
        progress = (lambda n: progress_callback(n, total)) if progress_callback else None

        with open(input_path, "rb") as fin, open(output_path, "wb") as fout:
            X509StreamEngine.encrypt(
                fin, fout, public_key, config,
                chunk_size=chunk_size, progress_callback=progress,
            )

    @staticmethod
    def decrypt_file(
        input_path: Union[str, Path],
        output_path: Union[str, Path],
        private_key: RSAPrivateKey,
        config: CipherConfig = DEFAULT_CONFIG,
        *,
        chunk_size: int = DEFAULT_CHUNK,
        progress_callback: Optional[Callable[[int, int], None]] = None,
    ) -> None:
        """Decrypt a file produced by :meth:`encrypt_file`."""
        _require_private_key(private_key)
        _require_chunk_size(chunk_size)
        config = _coerce_config(config)
        input_path = Path(input_path)
        output_path = Path(output_path)
        total = input_path.stat().st_size
        progress = (lambda n: progress_callback(n, total)) if progress_callback else None

        with open(input_path, "rb") as fin, open(output_path, "wb") as fout:
            X509StreamEngine.decrypt(
                fin, fout, private_key, config,
                chunk_size=chunk_size, progress_callback=progress,
            )

    # ------------------------------------------------------------------
    # Sizing
    # ------------------------------------------------------------------

    @staticmethod
    def encrypted_size(
        plaintext_length: int,
        modulus_bits: int = 2048,
        config: CipherConfig = DEFAULT_CONFIG,
    ) -> int:
        """Exact envelope size for a payload of *plaintext_length* bytes."""
        config = _coerce_config(config)
        if plaintext_length < 0:
            raise ArgumentInvalid("plaintext_length must be non-negative.")
        blob = (modulus_bits + 7) // 8
        block = config.block_bytes
        return 2 * (LENGTH_PREFIX_SIZE + blob) + (plaintext_length // block + 1) * block


# ---------------------------------------------------------------------------
# Module-level convenience functions
# ---------------------------------------------------------------------------

_engine = X509StreamEngine

encrypt = _engine.encrypt
decrypt = _engine.decrypt
encrypt_with_certificate = _engine.encrypt_with_certificate
decrypt_with_certificate = _engine.decrypt_with_certificate
encrypt_bytes = _engine.encrypt_bytes
decrypt_bytes = _engine.decrypt_bytes
encrypt_file = _engine.encrypt_file
decrypt_file = _engine.decrypt_file
encrypted_size = _engine.encrypted_size
