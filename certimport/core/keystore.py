"""
Keystore model
In-memory alias -> certificate mappings used by the loader, the
reconciliation engine and the store backends.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterator, List, Optional

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.x509.oid import NameOID


@dataclass(frozen=True)
class CertificateEntry:
    """One certificate held under a store-unique alias."""

    alias: str
    certificate: x509.Certificate = field(repr=False)

    @property
    def der(self) -> bytes:
        return self.certificate.public_bytes(serialization.Encoding.DER)

    @property
    def issuer_name(self) -> str:
        return self.certificate.issuer.rfc4514_string()

    @property
    def subject_name(self) -> str:
        return self.certificate.subject.rfc4514_string()

    @property
    def common_name(self) -> str:
        attributes = self.certificate.subject.get_attributes_for_oid(NameOID.COMMON_NAME)
        return str(attributes[0].value) if attributes else ''

    @property
    def fingerprint(self) -> str:
        return self.certificate.fingerprint(hashes.SHA256()).hex()

    @property
    def is_ca(self) -> bool:
        try:
            constraints = self.certificate.extensions.get_extension_for_class(x509.BasicConstraints)
        except x509.ExtensionNotFound:
            return False
        return constraints.value.ca

    def same_certificate(self, other: 'CertificateEntry') -> bool:
        """Byte-identical encodings; matching subject and issuer is not enough."""
        return self.der == other.der

    def with_alias(self, alias: str) -> 'CertificateEntry':
        return CertificateEntry(alias=alias, certificate=self.certificate)

    def describe(self, indent: str = '') -> str:
        """Multi-line human readable summary of the certificate."""
        cert = self.certificate
        lines = [
            f"Subject: {self.subject_name}",
            f"Issuer: {self.issuer_name}",
            f"Serial Number: {cert.serial_number:x}",
            f"Valid From: {cert.not_valid_before_utc.isoformat()}",
            f"Valid Until: {cert.not_valid_after_utc.isoformat()}",
            f"SHA-256 Fingerprint: {self.fingerprint}",
        ]
        return '\n'.join(indent + line for line in lines)


class Keystore:
    """
    Mutable mapping of alias to CertificateEntry.

    Aliases are unique by construction. Insertion order is kept so reports
    list certificates in the order they were loaded.
    """

    def __init__(self, entries: Optional[List[CertificateEntry]] = None):
        self._entries: Dict[str, CertificateEntry] = {}
        for entry in entries or []:
            self.put(entry)

    def put(self, entry: CertificateEntry) -> Optional[CertificateEntry]:
        """Store an entry, returning the one it replaced (if any)."""
        previous = self._entries.get(entry.alias)
        self._entries[entry.alias] = entry
        return previous

    def get(self, alias: str) -> Optional[CertificateEntry]:
        return self._entries.get(alias)

    def delete(self, alias: str) -> None:
        del self._entries[alias]

    def aliases(self) -> List[str]:
        """Copy of the alias list, safe to iterate while deleting."""
        return list(self._entries)

    def entries(self) -> List[CertificateEntry]:
        return list(self._entries.values())

    def alias_of(self, entry: CertificateEntry) -> Optional[str]:
        """Alias holding a byte-identical copy of ``entry``'s certificate."""
        if entry.alias in self._entries and self._entries[entry.alias].same_certificate(entry):
            return entry.alias
        der = entry.der
        for candidate in self._entries.values():
            if candidate.der == der:
                return candidate.alias
        return None

    def merge(self, other: 'Keystore') -> List[str]:
        """
        Merge ``other`` into this keystore, later entries winning.

        Returns:
            Aliases that were overwritten by ``other``
        """
        overwritten = []
        for entry in other.entries():
            if self.put(entry) is not None:
                overwritten.append(entry.alias)
        return overwritten

    def freeze(self) -> 'StoreSnapshot':
        return StoreSnapshot(self.entries())

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, alias) -> bool:
        return alias in self._entries

    def __iter__(self) -> Iterator[CertificateEntry]:
        return iter(self.entries())

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.aliases()!r})"


class StoreSnapshot:
    """Read-only view of a keystore, captured once per run."""

    def __init__(self, entries: Optional[List[CertificateEntry]] = None):
        self._store = Keystore(entries)

    def get(self, alias: str) -> Optional[CertificateEntry]:
        return self._store.get(alias)

    def alias_of(self, entry: CertificateEntry) -> Optional[str]:
        return self._store.alias_of(entry)

    def aliases(self) -> List[str]:
        return self._store.aliases()

    def entries(self) -> List[CertificateEntry]:
        return self._store.entries()

    def __len__(self) -> int:
        return len(self._store)

    def __contains__(self, alias) -> bool:
        return alias in self._store

    def __iter__(self) -> Iterator[CertificateEntry]:
        return iter(self._store)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.aliases()!r})"


class ChangeKind(Enum):
    """What reconciliation decided for one alias"""
    NEW = "new"
    REPLACE = "replace"
    DUPLICATE_REMOVED = "duplicate_removed"
    DECLINED = "declined"


@dataclass(frozen=True)
class ChangeRecord:
    """One reconciliation decision, kept for reporting."""

    alias: str
    kind: ChangeKind
    detail: str
    conflicting_alias: Optional[str] = None
