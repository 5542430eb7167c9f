"""
Java keystore backend
Reads and updates JKS/PKCS12 keystores (including the JDK cacerts store)
through the keytool binary.
"""

import os
import shutil
import tempfile
from pathlib import Path
from typing import Dict, Optional

from cryptography import x509
from cryptography.hazmat.primitives import serialization

from certimport.core.errors import BackendRejected, BackendUnavailable
from certimport.core.keystore import CertificateEntry, StoreSnapshot
from certimport.helpers.keytool_helper import KeytoolError, KeytoolHelper
from certimport.helpers.temp_files import TempFileScope
from certimport.stores import CertificateStore, StoreTarget, TransferKeystore, decode_transfer


class KeytoolStore(CertificateStore):
    """
    Certificate store managed by keytool.

    Changes are applied to a working copy which replaces the original in
    one rename, so a failed import leaves the store untouched.
    """

    requires_credential = True

    def __init__(self, config: Dict, temp_files: TempFileScope = None, keytool: KeytoolHelper = None):
        super().__init__(config)
        self.temp_files = temp_files
        self.keytool = keytool or KeytoolHelper(config)

    def read_snapshot(self, target: StoreTarget, credential: Optional[str] = None) -> StoreSnapshot:
        if not Path(target.path).exists():
            self.logger.info(f"Keystore {target} does not exist yet, starting empty")
            return StoreSnapshot()
        try:
            listing = self.keytool.list_certificates(target.path, credential)
        except KeytoolError as e:
            raise BackendUnavailable(f"Cannot open certificate store {target}: {e}")

        entries = []
        for alias, pem in listing:
            try:
                cert = x509.load_pem_x509_certificate(pem.encode('ascii'))
            except ValueError as e:
                self.logger.warning(f"Skipping unreadable certificate '{alias}' in {target}: {e}")
                continue
            entries.append(CertificateEntry(alias=alias, certificate=cert))
        return StoreSnapshot(entries)

    def commit(self, transfer: TransferKeystore, target: StoreTarget,
               credential: Optional[str] = None) -> None:
        if not credential:
            raise BackendRejected("keytool stores require a store password")
        incoming = decode_transfer(transfer)
        original = Path(target.path)

        if self.temp_files is None:
            with TempFileScope() as temp_files:
                self._apply(incoming, original, credential, temp_files)
        else:
            self._apply(incoming, original, credential, self.temp_files)
        self.logger.info(f"Committed {len(incoming)} certificates to {target}")

    def _apply(self, incoming, original: Path, credential: str, temp_files: TempFileScope) -> None:
        working = temp_files.reserve(original.name)
        try:
            if original.exists():
                shutil.copyfile(original, working)
            existing = set()
            if working.exists():
                existing = {alias for alias, _ in self.keytool.list_certificates(str(working), credential)}

            for entry in incoming:
                if entry.alias in existing:
                    self.keytool.delete_entry(str(working), credential, entry.alias)
                pem = entry.certificate.public_bytes(serialization.Encoding.PEM)
                cert_file = temp_files.create(f'{entry.alias}.pem', pem)
                self.keytool.import_certificate(str(working), credential, entry.alias, str(cert_file))
        except KeytoolError as e:
            raise BackendRejected(str(e))
        except OSError as e:
            raise BackendRejected(f"cannot prepare {original}: {e}")

        self._replace(working, original)

    def _replace(self, working: Path, original: Path) -> None:
        # The rename must stay on one filesystem, so stage next to the original
        original.parent.mkdir(parents=True, exist_ok=True)
        fd, staged = tempfile.mkstemp(prefix=f'.{original.name}.', dir=original.parent)
        os.close(fd)
        try:
            shutil.copyfile(working, staged)
            if original.exists():
                shutil.copymode(original, staged)
            os.replace(staged, original)
        except OSError as e:
            try:
                os.unlink(staged)
            except FileNotFoundError:
                pass
            raise BackendRejected(f"cannot write {original}: {e}")
