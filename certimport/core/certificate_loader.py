"""
Certificate Source Loader
Turns certificate files (PEM, DER, PKCS#7, PKCS#12, JKS/JCEKS) and the
system's installed trust anchors into a single in-memory Keystore.
"""

import logging
import ssl
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Union

from cryptography import x509
from cryptography.hazmat.primitives.serialization import pkcs7, pkcs12

from certimport.core.errors import LoadError
from certimport.core.keystore import CertificateEntry, Keystore
from certimport.helpers.keytool_helper import KeytoolError, KeytoolHelper

PEM_BEGIN = b'-----BEGIN CERTIFICATE-----'
PEM_END = b'-----END CERTIFICATE-----'
PKCS7_PEM_BEGIN = b'-----BEGIN PKCS7-----'
JKS_MAGIC = b'\xfe\xed\xfe\xed'
JCEKS_MAGIC = b'\xce\xce\xce\xce'
INSTALLED_ALIAS_PREFIX = 'installed-'


class CertificateFormat(Enum):
    """Supported certificate source formats"""
    PEM = "pem"
    DER = "der"
    PKCS7_PEM = "pkcs7_pem"
    PKCS7_DER = "pkcs7_der"
    PKCS12 = "pkcs12"
    JKS = "jks"
    JCEKS = "jceks"
    UNKNOWN = "unknown"


class InstalledCerts:
    """Input descriptor standing for every installed system trust anchor"""

    def __repr__(self):
        return '<installed certificates>'


INSTALLED_CERTS = InstalledCerts()

Source = Union[str, Path, InstalledCerts]


def installed_alias(entry: CertificateEntry) -> str:
    """Alias for an installed trust anchor, stable across runs."""
    return INSTALLED_ALIAS_PREFIX + entry.fingerprint[:16]


def split_pem_certificates(data: bytes) -> List[bytes]:
    """Pull every PEM certificate block out of ``data``, ignoring other text"""
    blocks = []
    start = data.find(PEM_BEGIN)
    while start != -1:
        end = data.find(PEM_END, start)
        if end == -1:
            break
        end += len(PEM_END)
        blocks.append(data[start:end] + b'\n')
        start = data.find(PEM_BEGIN, end)
    return blocks


class CertificateLoader:
    """Load certificates from heterogeneous sources into one Keystore."""

    def __init__(self, config: Dict = None, keytool: KeytoolHelper = None):
        """
        Initialize the certificate loader.

        Args:
            config: Application configuration (``installed_certs`` and ``tools``)
            keytool: keytool wrapper used for Java keystores
        """
        self.config = config or {}
        self.logger = logging.getLogger(__name__)
        self.keytool = keytool or KeytoolHelper(self.config)
        self.extension_hints = {
            '.pem': CertificateFormat.PEM,
            '.crt': CertificateFormat.PEM,
            '.cer': CertificateFormat.DER,
            '.der': CertificateFormat.DER,
            '.p7b': CertificateFormat.PKCS7_DER,
            '.p7c': CertificateFormat.PKCS7_PEM,
            '.p12': CertificateFormat.PKCS12,
            '.pfx': CertificateFormat.PKCS12,
            '.jks': CertificateFormat.JKS,
            '.jceks': CertificateFormat.JCEKS,
        }

    def load(self, sources: List[Source], password: Optional[str] = None,
             alias: Optional[str] = None, ca_only: bool = False) -> Keystore:
        """
        Build one Keystore from every source.

        Args:
            sources: File paths and/or ``INSTALLED_CERTS``
            password: Password for protected inputs (PKCS#12, JKS)
            alias: Recommended alias, used when exactly one certificate results
            ca_only: Drop certificates that are not CA certificates

        Returns:
            Merged keystore; on alias clashes the later source wins

        Raises:
            LoadError: if a source cannot be read or nothing is left to load
        """
        if not sources:
            raise LoadError("No certificate sources given")

        keystore = Keystore()
        for source in sources:
            if isinstance(source, InstalledCerts):
                loaded = self.load_installed()
            else:
                loaded = self.load_file(source, password)
            for overwritten in keystore.merge(loaded):
                self.logger.warning(f"Alias '{overwritten}' defined more than once, keeping the one from {source!r}")

        if ca_only:
            for entry in keystore.entries():
                if not entry.is_ca:
                    self.logger.info(f"Skipping non-CA certificate '{entry.alias}' ({entry.subject_name})")
                    keystore.delete(entry.alias)
            if len(keystore) == 0:
                raise LoadError("No CA certificates found in the input")

        if alias:
            if len(keystore) == 1:
                entry = keystore.entries()[0]
                keystore.delete(entry.alias)
                keystore.put(entry.with_alias(alias))
            else:
                self.logger.warning(
                    f"Ignoring recommended alias '{alias}': {len(keystore)} certificates were loaded"
                )

        return keystore

    def load_file(self, file_path: Union[str, Path], password: Optional[str] = None) -> Keystore:
        """
        Load a single certificate file with automatic format detection.

        Raises:
            LoadError: if the file is unreadable, the password is wrong,
                the format is unknown or no certificate is found
        """
        path = Path(file_path)
        try:
            with open(path, 'rb') as f:
                data = f.read()
        except OSError as e:
            raise LoadError(f"Cannot read certificate file {path}: {e.strerror or e}")

        detected_format = self.detect_format(data, path.suffix)
        self.logger.debug(f"Detected format {detected_format.value} for {path}")

        if detected_format == CertificateFormat.PEM:
            certificates = self._parse_pem(data, path)
        elif detected_format == CertificateFormat.DER:
            certificates = [x509.load_der_x509_certificate(data)]
        elif detected_format in (CertificateFormat.PKCS7_PEM, CertificateFormat.PKCS7_DER):
            certificates = self._parse_pkcs7(data, path, detected_format)
        elif detected_format == CertificateFormat.PKCS12:
            return self._require_certificates(self._load_pkcs12(data, path, password), path)
        elif detected_format in (CertificateFormat.JKS, CertificateFormat.JCEKS):
            return self._require_certificates(self._load_java_keystore(path, password, detected_format), path)
        else:
            raise LoadError(f"Unrecognised certificate format: {path}")

        return self._require_certificates(self._name_by_file(certificates, path), path)

    def load_installed(self) -> Keystore:
        """
        Load every installed system trust anchor.

        Installed anchors carry no alias of their own, so each one is named
        after its fingerprint.
        """
        keystore = Keystore()
        for location in self.installed_locations():
            try:
                files = [location] if location.is_file() else sorted(
                    p for p in location.iterdir() if p.suffix.lower() in ('.pem', '.crt') and p.is_file()
                )
            except OSError as e:
                self.logger.warning(f"Error listing {location}: {e}")
                continue
            for file_path in files:
                try:
                    data = file_path.read_bytes()
                except OSError as e:
                    self.logger.warning(f"Error reading {file_path}: {e}")
                    continue
                for cert in self._parse_pem(data, file_path):
                    entry = CertificateEntry(alias='', certificate=cert)
                    keystore.put(entry.with_alias(installed_alias(entry)))

        if len(keystore) == 0:
            raise LoadError("No installed certificates found")
        self.logger.info(f"Loaded {len(keystore)} installed certificates")
        return keystore

    def installed_locations(self) -> List[Path]:
        """Existing bundle files and directories holding installed trust anchors"""
        installed_config = self.config.get('installed_certs', {})
        candidates = list(installed_config.get('paths') or [])
        if installed_config.get('include_default_verify_paths', True):
            defaults = ssl.get_default_verify_paths()
            candidates.extend([defaults.cafile, defaults.capath])

        locations = []
        seen = set()
        for candidate in candidates:
            if not candidate:
                continue
            path = Path(candidate)
            if not path.exists():
                continue
            key = path.resolve()
            if key in seen:
                continue
            seen.add(key)
            locations.append(path)
        return locations

    def detect_format(self, data: bytes, file_extension: str = None) -> CertificateFormat:
        """
        Detect certificate format from data content and file extension.

        Args:
            data: File content
            file_extension: File extension hint

        Returns:
            Detected certificate format
        """
        format_hint = self.extension_hints.get((file_extension or '').lower(), CertificateFormat.UNKNOWN)

        if data.startswith(JKS_MAGIC):
            return CertificateFormat.JKS
        if data.startswith(JCEKS_MAGIC):
            return CertificateFormat.JCEKS
        if PEM_BEGIN in data:
            return CertificateFormat.PEM
        if PKCS7_PEM_BEGIN in data:
            return CertificateFormat.PKCS7_PEM

        if data.startswith(b'\x30'):
            try:
                x509.load_der_x509_certificate(data)
                return CertificateFormat.DER
            except ValueError:
                pass
            try:
                pkcs7.load_der_pkcs7_certificates(data)
                return CertificateFormat.PKCS7_DER
            except ValueError:
                pass
            # Encrypted PKCS#12 cannot be confirmed without the password
            return CertificateFormat.PKCS12

        if format_hint in (CertificateFormat.PEM, CertificateFormat.PKCS12):
            return format_hint
        return CertificateFormat.UNKNOWN

    def _parse_pem(self, data: bytes, path: Path) -> List[x509.Certificate]:
        certificates = []
        for i, block in enumerate(split_pem_certificates(data)):
            try:
                certificates.append(x509.load_pem_x509_certificate(block))
            except ValueError as e:
                self.logger.warning(f"Error parsing certificate {i} in {path}: {e}")
        return certificates

    def _parse_pkcs7(self, data: bytes, path: Path, format_type: CertificateFormat) -> List[x509.Certificate]:
        try:
            if format_type == CertificateFormat.PKCS7_DER:
                return list(pkcs7.load_der_pkcs7_certificates(data))
            return list(pkcs7.load_pem_pkcs7_certificates(data))
        except ValueError as e:
            raise LoadError(f"Error parsing PKCS#7 file {path}: {e}")

    def _load_pkcs12(self, data: bytes, path: Path, password: Optional[str]) -> Keystore:
        secrets = [password.encode('utf-8')] if password else [None, b'']
        bundle = None
        for secret in secrets:
            try:
                bundle = pkcs12.load_pkcs12(data, secret)
                break
            except ValueError:
                continue
        if bundle is None:
            if password:
                raise LoadError(f"Cannot open {path}: incorrect password or corrupt PKCS#12 data")
            raise LoadError(f"Cannot open {path}: it may be password protected, try --password")

        bags = ([bundle.cert] if bundle.cert else []) + list(bundle.additional_certs)
        if bundle.key is not None:
            self.logger.info(f"Ignoring private key in {path}")

        unnamed = [bag.certificate for bag in bags if not bag.friendly_name]
        default_names = iter(self._name_by_file(unnamed, path).aliases())

        keystore = Keystore()
        for bag in bags:
            if bag.friendly_name:
                alias = bag.friendly_name.decode('utf-8', errors='replace')
            else:
                alias = next(default_names)
            keystore.put(CertificateEntry(alias=alias, certificate=bag.certificate))
        return keystore

    def _load_java_keystore(self, path: Path, password: Optional[str],
                            format_type: CertificateFormat) -> Keystore:
        store_type = 'JCEKS' if format_type == CertificateFormat.JCEKS else 'JKS'
        try:
            listing = self.keytool.list_certificates(str(path), password, store_type)
        except KeytoolError as e:
            raise LoadError(f"Cannot open {path}: {e}")

        keystore = Keystore()
        for alias, pem in listing:
            try:
                cert = x509.load_pem_x509_certificate(pem.encode('ascii'))
            except ValueError as e:
                self.logger.warning(f"Error parsing certificate '{alias}' in {path}: {e}")
                continue
            keystore.put(CertificateEntry(alias=alias, certificate=cert))
        return keystore

    def _name_by_file(self, certificates: List[x509.Certificate], path: Path) -> Keystore:
        """Name certificates after the file: ``stem`` or ``stem-1``, ``stem-2``..."""
        stem = path.stem or 'certificate'
        keystore = Keystore()
        if len(certificates) == 1:
            keystore.put(CertificateEntry(alias=stem, certificate=certificates[0]))
            return keystore
        for i, cert in enumerate(certificates, start=1):
            keystore.put(CertificateEntry(alias=f"{stem}-{i}", certificate=cert))
        return keystore

    def _require_certificates(self, keystore: Keystore, path: Path) -> Keystore:
        if len(keystore) == 0:
            raise LoadError(f"No certificates found in {path}")
        self.logger.info(f"Loaded {len(keystore)} certificates from {path}")
        return keystore
