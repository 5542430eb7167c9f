"""
PKCS#12 trust-store file backend
The store is a PKCS#12 file holding trusted certificates, each under its
friendly name.
"""

import os
import tempfile
from pathlib import Path
from typing import Optional

from certimport.core.errors import BackendRejected, BackendUnavailable
from certimport.core.keystore import Keystore, StoreSnapshot
from certimport.stores import (
    CertificateStore, StoreTarget, TransferKeystore, decode_transfer, pkcs12_bytes, pkcs12_entries
)


class Pkcs12FileStore(CertificateStore):
    """Certificate store kept in a single PKCS#12 file."""

    def read_snapshot(self, target: StoreTarget, credential: Optional[str] = None) -> StoreSnapshot:
        try:
            return self._read(target, credential).freeze()
        except (OSError, ValueError) as e:
            raise BackendUnavailable(f"Cannot open certificate store {target}: {e}")

    def commit(self, transfer: TransferKeystore, target: StoreTarget,
               credential: Optional[str] = None) -> None:
        incoming = decode_transfer(transfer)
        try:
            current = self._read(target, credential)
        except (OSError, ValueError) as e:
            raise BackendRejected(f"cannot open {target}: {e}")

        replaced = current.merge(incoming)
        if replaced:
            self.logger.info(f"Replacing aliases {', '.join(replaced)} in {target}")

        password = credential.encode('utf-8') if credential else None
        data = pkcs12_bytes(current, password)
        try:
            self._write_atomically(Path(target.path), data)
        except OSError as e:
            raise BackendRejected(f"cannot write {target}: {e}")
        self.logger.info(f"Committed {len(incoming)} certificates to {target}")

    def _read(self, target: StoreTarget, credential: Optional[str]) -> Keystore:
        path = Path(target.path)
        if not path.exists():
            self.logger.info(f"Certificate store {path} does not exist yet, starting empty")
            return Keystore()
        data = path.read_bytes()
        if not data:
            return Keystore()
        password = credential.encode('utf-8') if credential else None
        try:
            return pkcs12_entries(data, password)
        except ValueError:
            if password is None:
                # Stores written without a password may still use an empty one
                return pkcs12_entries(data, b'')
            raise ValueError("incorrect store password or corrupt store")

    def _write_atomically(self, path: Path, data: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f'.{path.name}.', dir=path.parent)
        try:
            with os.fdopen(fd, 'wb') as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            if path.exists():
                os.chmod(tmp_name, path.stat().st_mode & 0o777)
            else:
                os.chmod(tmp_name, 0o644)
            os.replace(tmp_name, path)
        except BaseException:
            try:
                os.unlink(tmp_name)
            except FileNotFoundError:
                pass
            raise
