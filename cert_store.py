"""
X509 Certificate Store
======================

Key providers hand the stream engine RSA key handles for a certificate
identified by its thumbprint:

  1. In-memory provider: certificates registered at runtime
  2. Certificate store: PEM certificates (and optional private keys)
     kept in a per-user or machine-wide directory

Store layout::

    <root>/<StoreLocation>/<store_name>/<THUMBPRINT>.crt   PEM certificate
    <root>/<StoreLocation>/<store_name>/<THUMBPRINT>.key   PKCS#8 PEM private key

Private key files are restricted to the owner where the platform allows it.
"""

from __future__ import annotations

import logging
import os
import platform
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.asymmetric.rsa import (
    RSAPrivateKey,
    RSAPublicKey,
)
from cryptography.x509.oid import NameOID

from x509stream import ArgumentInvalid, KeyAccessError

logger = logging.getLogger(__name__)

STORE_ROOT_ENV = "X509STREAM_STORE_ROOT"
DEFAULT_STORE_NAME = "My"

_THUMBPRINT_RE = re.compile(r"^[0-9A-F]{40}$")


# ---------------------------------------------------------------------------
# Identifiers
# ---------------------------------------------------------------------------


class StoreLocation(str, Enum):
    CURRENT_USER = "CurrentUser"
    LOCAL_MACHINE = "LocalMachine"


def normalize_thumbprint(value: str) -> str:
    """Upper-case a SHA-1 thumbprint and strip spaces and colons."""
    if value is None:
        raise ArgumentInvalid("thumbprint is required.")
    cleaned = re.sub(r"[\s:]", "", str(value)).upper()
    if not _THUMBPRINT_RE.match(cleaned):
        raise ArgumentInvalid(f"Not a SHA-1 thumbprint: {value!r}.")
    return cleaned


def thumbprint(certificate: x509.Certificate) -> str:
    """SHA-1 fingerprint of the DER-encoded certificate, upper-case hex."""
    return certificate.fingerprint(hashes.SHA1()).hex().upper()


@dataclass(frozen=True)
class CertificateId:
    """Names one certificate: thumbprint plus store name and location."""

    thumbprint: str
    store_name: str = DEFAULT_STORE_NAME
    store_location: StoreLocation = StoreLocation.CURRENT_USER

    def __post_init__(self) -> None:
        object.__setattr__(self, "thumbprint", normalize_thumbprint(self.thumbprint))
        if not self.store_name:
            raise ArgumentInvalid("store_name is required.")
        object.__setattr__(self, "store_location", StoreLocation(self.store_location))


# ---------------------------------------------------------------------------
# Provider interface
# ---------------------------------------------------------------------------


class KeyProvider(ABC):
    """Supplies RSA key handles for certificate identifiers."""

    @abstractmethod
    def get_public_key(self, cert_id: CertificateId) -> RSAPublicKey:
        """Return the certificate's public key, or raise :class:`KeyAccessError`."""

    @abstractmethod
    def get_private_key(self, cert_id: CertificateId) -> RSAPrivateKey:
        """Return the certificate's private key, or raise :class:`KeyAccessError`."""


def _rsa_public_key(certificate: x509.Certificate, cert_id: CertificateId) -> RSAPublicKey:
    key = certificate.public_key()
    if not isinstance(key, RSAPublicKey):
        raise KeyAccessError(
            f"Certificate {cert_id.thumbprint} does not carry an RSA public key."
        )
    return key


def _check_pair(certificate: x509.Certificate, private_key: RSAPrivateKey) -> None:
    if not isinstance(private_key, RSAPrivateKey):
        raise KeyAccessError("Private key is not an RSA key.")
    if private_key.public_key().public_numbers() != certificate.public_key().public_numbers():
        raise KeyAccessError(
            f"Private key does not match certificate {thumbprint(certificate)}."
        )


# ---------------------------------------------------------------------------
# In-memory provider
# ---------------------------------------------------------------------------


class InMemoryKeyProvider(KeyProvider):
    """Keeps certificates and private keys registered at runtime."""

    def __init__(self) -> None:
        self._entries: Dict[CertificateId, Tuple[x509.Certificate, Optional[RSAPrivateKey]]] = {}

    def add(
        self,
        certificate: x509.Certificate,
        private_key: Optional[RSAPrivateKey] = None,
        *,
        store_name: str = DEFAULT_STORE_NAME,
        store_location: StoreLocation = StoreLocation.CURRENT_USER,
    ) -> CertificateId:
        if certificate is None:
            raise ArgumentInvalid("certificate is required.")
        if private_key is not None:
            _check_pair(certificate, private_key)
        cert_id = CertificateId(thumbprint(certificate), store_name, store_location)
        self._entries[cert_id] = (certificate, private_key)
        return cert_id

    def remove(self, cert_id: CertificateId) -> bool:
        return self._entries.pop(cert_id, None) is not None

    def list(self) -> List[CertificateId]:
        return list(self._entries)

    def _lookup(self, cert_id: CertificateId) -> Tuple[x509.Certificate, Optional[RSAPrivateKey]]:
        if cert_id is None:
            raise ArgumentInvalid("cert_id is required.")
        entry = self._entries.get(cert_id)
        if entry is None:
            raise KeyAccessError(f"Certificate {cert_id.thumbprint} not found.")
        return entry

    def get_public_key(self, cert_id: CertificateId) -> RSAPublicKey:
        certificate, _ = self._lookup(cert_id)
        return _rsa_public_key(certificate, cert_id)

    def get_private_key(self, cert_id: CertificateId) -> RSAPrivateKey:
        _, private_key = self._lookup(cert_id)
        if private_key is None:
            raise KeyAccessError(
                f"Certificate {cert_id.thumbprint} has no private key."
            )
        return private_key


# ---------------------------------------------------------------------------
# Store directories
# ---------------------------------------------------------------------------


def _location_root(location: StoreLocation) -> Path:
    """Return the OS-appropriate directory for a store location."""
    system = platform.system()
    if location == StoreLocation.LOCAL_MACHINE:
        if system == "Windows":
            base = Path(os.environ.get("PROGRAMDATA", r"C:\ProgramData"))
        elif system == "Darwin":
            base = Path("/Library/Application Support")
        else:
            base = Path("/etc")
        return base / "X509Stream"

    if system == "Windows":
        base = Path(os.environ.get("APPDATA", Path.home() / "AppData" / "Roaming"))
    elif system == "Darwin":
        base = Path.home() / "Library" / "Application Support"
    else:
        base = Path(os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config"))
    return base / "X509Stream"


# ---------------------------------------------------------------------------
# CertificateStore
# ---------------------------------------------------------------------------


class CertificateStore(KeyProvider):
    """
    Directory-backed certificate store.

    Parameters
    ----------
    root : path-like, optional
        Base directory; each location lives in ``root/<location>``.
        Defaults to ``$X509STREAM_STORE_ROOT`` when set, otherwise to the
        per-user or machine-wide config directory.
    passphrase : str, optional
        Protects private key files written by :meth:`add` and unlocks them
        on :meth:`get_private_key`.

    Loaded certificates and keys are cached by this instance only.
    """

    def __init__(
        self,
        root: Optional[Union[str, Path]] = None,
        passphrase: Optional[str] = None,
    ) -> None:
        if root is None and os.environ.get(STORE_ROOT_ENV):
            root = os.environ[STORE_ROOT_ENV]
        self._root = Path(root) if root is not None else None
        self._passphrase = passphrase
        self._certs: Dict[CertificateId, x509.Certificate] = {}
        self._keys: Dict[CertificateId, RSAPrivateKey] = {}

    # ----- paths -----

    def store_dir(
        self,
        store_name: str = DEFAULT_STORE_NAME,
        store_location: StoreLocation = StoreLocation.CURRENT_USER,
    ) -> Path:
        store_location = StoreLocation(store_location)
        if self._root is not None:
            return self._root / store_location.value / store_name
        return _location_root(store_location) / store_name

    def _cert_path(self, cert_id: CertificateId) -> Path:
        return self.store_dir(cert_id.store_name, cert_id.store_location) / f"{cert_id.thumbprint}.crt"

    def _key_path(self, cert_id: CertificateId) -> Path:
        return self.store_dir(cert_id.store_name, cert_id.store_location) / f"{cert_id.thumbprint}.key"

    # ----- operations -----

    def add(
        self,
        certificate: x509.Certificate,
        private_key: Optional[RSAPrivateKey] = None,
        *,
        store_name: str = DEFAULT_STORE_NAME,
        store_location: StoreLocation = StoreLocation.CURRENT_USER,
    ) -> CertificateId:
        """Write *certificate* (and *private_key*, if given) into the store."""
        if certificate is None:
            raise ArgumentInvalid("certificate is required.")
        if private_key is not None:
            _check_pair(certificate, private_key)

        cert_id = CertificateId(thumbprint(certificate), store_name, store_location)
        directory = self.store_dir(store_name, store_location)
        directory.mkdir(parents=True, exist_ok=True)

        self._cert_path(cert_id).write_bytes(
            certificate.public_bytes(serialization.Encoding.PEM)
        )
        self._certs[cert_id] = certificate

        if private_key is not None:
            enc: serialization.KeySerializationEncryption
            if self._passphrase:
                enc = serialization.BestAvailableEncryption(
                    self._passphrase.encode("utf-8")
                )
            else:
                enc = serialization.NoEncryption()
            key_path = self._key_path(cert_id)
            key_path.write_bytes(
                private_key.private_bytes(
                    encoding=serialization.Encoding.PEM,
                    format=serialization.PrivateFormat.PKCS8,
                    encryption_algorithm=enc,
                )
            )
            # Restrict permissions on the key file (owner-only)
            if platform.system() != "Windows":
                os.chmod(key_path, 0o600)
            self._keys[cert_id] = private_key

        logger.debug("Stored certificate %s in %s", cert_id.thumbprint, directory)
        return cert_id

    def remove(self, cert_id: CertificateId) -> bool:
        """Delete a certificate and its key. Returns True if anything was removed."""
        if cert_id is None:
            raise ArgumentInvalid("cert_id is required.")
        self._certs.pop(cert_id, None)
        self._keys.pop(cert_id, None)
        removed = False
        for path in (self._cert_path(cert_id), self._key_path(cert_id)):
            if path.exists():
                path.unlink()
                removed = True
        return removed

    def list(
        self,
        store_name: str = DEFAULT_STORE_NAME,
        store_location: StoreLocation = StoreLocation.CURRENT_USER,
    ) -> List[CertificateId]:
        """Return the certificates held in one store, sorted by thumbprint."""
        directory = self.store_dir(store_name, store_location)
        if not directory.is_dir():
            return []
        return [
            CertificateId(path.stem, store_name, store_location)
            for path in sorted(directory.glob("*.crt"))
            if _THUMBPRINT_RE.match(path.stem)
        ]

    def get_certificate(self, cert_id: CertificateId) -> x509.Certificate:
        """Load (or return the cached) certificate for *cert_id*."""
        if cert_id is None:
            raise ArgumentInvalid("cert_id is required.")
        cached = self._certs.get(cert_id)
        if cached is not None:
            return cached

        path = self._cert_path(cert_id)
        try:
            data = path.read_bytes()
        except FileNotFoundError as exc:
            raise KeyAccessError(
                f"Certificate {cert_id.thumbprint} not found in "
                f"{cert_id.store_location.value}/{cert_id.store_name}."
            ) from exc
        try:
            if data.lstrip().startswith(b"-----BEGIN"):
                certificate = x509.load_pem_x509_certificate(data)
            else:
                certificate = x509.load_der_x509_certificate(data)
        except ValueError as exc:
            raise KeyAccessError(f"Unreadable certificate file {path}.") from exc

        if thumbprint(certificate) != cert_id.thumbprint:
            raise KeyAccessError(
                f"Certificate in {path.name} has thumbprint {thumbprint(certificate)}."
            )
        logger.debug("Loaded certificate %s from %s", cert_id.thumbprint, path)
        self._certs[cert_id] = certificate
        return certificate

    # ----- KeyProvider -----

    def get_public_key(self, cert_id: CertificateId) -> RSAPublicKey:
        return _rsa_public_key(self.get_certificate(cert_id), cert_id)

    def get_private_key(self, cert_id: CertificateId) -> RSAPrivateKey:
        cached = self._keys.get(cert_id) if cert_id is not None else None
        if cached is not None:
            return cached
        certificate = self.get_certificate(cert_id)

        path = self._key_path(cert_id)
        try:
            data = path.read_bytes()
        except FileNotFoundError as exc:
            raise KeyAccessError(
                f"Certificate {cert_id.thumbprint} has no private key."
            ) from exc
        pwd = self._passphrase.encode("utf-8") if self._passphrase else None
        try:
            private_key = serialization.load_pem_private_key(data, password=pwd)
        except (ValueError, TypeError) as exc:
            raise KeyAccessError(
                f"Cannot load private key for {cert_id.thumbprint}: "
                "wrong passphrase or corrupted file."
            ) from exc

        _check_pair(certificate, private_key)
        self._keys[cert_id] = private_key
        return private_key


# ---------------------------------------------------------------------------
# Provisioning
# ---------------------------------------------------------------------------


def create_self_signed_certificate(
    common_name: str,
    key_size: int = 2048,
    days: int = 365,
) -> Tuple[x509.Certificate, RSAPrivateKey]:
    """Generate an RSA keypair and a self-signed key-encipherment certificate."""
    if not common_name:
        raise ArgumentInvalid("common_name is required.")
    if key_size < 2048:
        raise ArgumentInvalid("RSA key size must be at least 2048 bits.")
    private_key = rsa.generate_private_key(public_exponent=65537, key_size=key_size)
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])
    now = datetime.now(timezone.utc)
    certificate = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(private_key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(minutes=5))
        .not_valid_after(now + timedelta(days=days))
        .add_extension(
            x509.KeyUsage(
                digital_signature=False,
                content_commitment=False,
                key_encipherment=True,
                data_encipherment=True,
                key_agreement=False,
                key_cert_sign=False,
                crl_sign=False,
                encipher_only=False,
                decipher_only=False,
            ),
            critical=True,
        )
        .sign(private_key, hashes.SHA256())
    )
    return certificate, private_key
