"""
Certificate Store Backends
Snapshot reading and committing for the stores certificates are imported
into:
- PKCS#12 trust-store files (default)
- Java keystores through the JDK keytool
- In-memory store (tests, dry runs)

Configuration determines which backend is used.
"""

import logging
import os
import secrets
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.serialization import pkcs12

from certimport.core.errors import BackendRejected
from certimport.core.keystore import CertificateEntry, Keystore, StoreSnapshot

SYSTEM_TARGET_NAMES = ('system', '*system')


class StoreBackend(Enum):
    """Supported store backends"""
    PKCS12 = "pkcs12"
    KEYTOOL = "keytool"
    MEMORY = "memory"


@dataclass(frozen=True)
class StoreTarget:
    """Resolved target store location."""

    path: str
    is_system: bool = False

    def __str__(self):
        return f"system store ({self.path})" if self.is_system else self.path


@dataclass(frozen=True)
class TransferKeystore:
    """Keystore serialised to the transfer format (encrypted PKCS#12)."""

    data: bytes = field(repr=False)
    password: bytes = field(repr=False)
    count: int = 0


def export_keystore(keystore: Keystore, password: Optional[bytes] = None) -> TransferKeystore:
    """
    Serialise ``keystore`` to PKCS#12, one certificate bag per alias.

    Args:
        keystore: Final keystore to hand to a backend
        password: Transfer password; a random one is generated when omitted
    """
    password = password or secrets.token_urlsafe(24).encode('ascii')
    data = pkcs12_bytes(keystore, password)
    return TransferKeystore(data=data, password=password, count=len(keystore))


def pkcs12_bytes(keystore: Keystore, password: Optional[bytes]) -> bytes:
    bags = [
        pkcs12.PKCS12Certificate(entry.certificate, entry.alias.encode('utf-8'))
        for entry in keystore
    ]
    if password:
        encryption = serialization.BestAvailableEncryption(password)
    else:
        encryption = serialization.NoEncryption()
    return pkcs12.serialize_key_and_certificates(None, None, None, bags, encryption)


def pkcs12_entries(data: bytes, password: Optional[bytes]) -> Keystore:
    """
    Read every certificate of a PKCS#12 blob keyed by friendly name.

    Raises:
        ValueError: wrong password or corrupt data
    """
    bundle = pkcs12.load_pkcs12(data, password)
    bags = ([bundle.cert] if bundle.cert else []) + list(bundle.additional_certs)
    keystore = Keystore()
    for bag in bags:
        entry = CertificateEntry(alias='', certificate=bag.certificate)
        if bag.friendly_name:
            alias = bag.friendly_name.decode('utf-8', errors='replace')
        else:
            alias = entry.fingerprint[:16]
        keystore.put(entry.with_alias(alias))
    return keystore


def decode_transfer(transfer: TransferKeystore) -> Keystore:
    try:
        return pkcs12_entries(transfer.data, transfer.password)
    except ValueError as e:
        raise BackendRejected(f"unreadable transfer keystore: {e}")


class CertificateStore:
    """Abstract interface for certificate store backends"""

    # Stores that cannot be committed without a password
    requires_credential = False

    def __init__(self, config: Dict):
        self.config = config
        self.logger = logging.getLogger(__name__)

    def read_snapshot(self, target: StoreTarget, credential: Optional[str] = None) -> StoreSnapshot:
        """
        Capture the certificates currently in the store.

        Raises:
            BackendUnavailable: if the store cannot be opened
        """
        raise NotImplementedError

    def commit(self, transfer: TransferKeystore, target: StoreTarget,
               credential: Optional[str] = None) -> None:
        """
        Import every certificate of ``transfer`` into the store, atomically.

        Raises:
            BackendRejected: if the store refuses the import
        """
        raise NotImplementedError

    def export(self, keystore: Keystore) -> TransferKeystore:
        return export_keystore(keystore)


def resolve_target(config: Dict, target: Optional[str], backend: StoreBackend) -> StoreTarget:
    """
    Map the ``--target`` value to a store location.

    ``system`` and ``*system`` (any case) select the configured system store.
    """
    store_config = config.get('store', {})
    if target is None or target.strip().lower() in SYSTEM_TARGET_NAMES:
        if backend == StoreBackend.KEYTOOL:
            path = store_config.get('keytool_system_store') or _java_cacerts()
        else:
            path = store_config.get('system_store')
        if not path:
            raise BackendRejected(f"no system store configured for the {backend.value} backend")
        return StoreTarget(path=str(path), is_system=True)
    return StoreTarget(path=os.path.expanduser(target))


def _java_cacerts() -> Optional[str]:
    java_home = os.environ.get('JAVA_HOME')
    if not java_home:
        return None
    return os.path.join(java_home, 'lib', 'security', 'cacerts')


def get_certificate_store(config: Dict, backend: Optional[str] = None, temp_files=None) -> CertificateStore:
    """
    Factory function to get the configured store backend

    Configuration example:
    {
        "store": {
            "backend": "pkcs12",  // or "keytool", "memory"
            "system_store": "/etc/certimport/truststore.p12"
        }
    }
    """
    name = (backend or config.get('store', {}).get('backend', 'pkcs12')).lower()

    if name == StoreBackend.PKCS12.value:
        from certimport.stores.pkcs12_store import Pkcs12FileStore
        return Pkcs12FileStore(config)

    elif name == StoreBackend.KEYTOOL.value:
        from certimport.stores.keytool_store import KeytoolStore
        return KeytoolStore(config, temp_files=temp_files)

    elif name == StoreBackend.MEMORY.value:
        from certimport.stores.memory_store import InMemoryStore
        return InMemoryStore(config)

    raise ValueError(f"Unsupported store backend: {name}")
