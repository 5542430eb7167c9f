"""
In-memory store backend
Keeps stores in process memory, keyed by target path. Used by the test
suite and for dry runs.
"""

from typing import Dict, Optional

from certimport.core.errors import BackendRejected, BackendUnavailable
from certimport.core.keystore import Keystore, StoreSnapshot
from certimport.stores import CertificateStore, StoreTarget, TransferKeystore, decode_transfer


class InMemoryStore(CertificateStore):
    """Store double that can be told to be unavailable or to reject commits."""

    def __init__(self, config: Dict = None, stores: Dict[str, Keystore] = None,
                 reject_reason: Optional[str] = None, unavailable: bool = False):
        super().__init__(config or {})
        self.stores: Dict[str, Keystore] = stores if stores is not None else {}
        self.reject_reason = reject_reason
        self.unavailable = unavailable
        self.commits = []

    def read_snapshot(self, target: StoreTarget, credential: Optional[str] = None) -> StoreSnapshot:
        if self.unavailable:
            raise BackendUnavailable(f"Cannot open certificate store {target}")
        return self.stores.get(target.path, Keystore()).freeze()

    def commit(self, transfer: TransferKeystore, target: StoreTarget,
               credential: Optional[str] = None) -> None:
        if self.reject_reason:
            raise BackendRejected(self.reject_reason)
        incoming = decode_transfer(transfer)
        self.stores.setdefault(target.path, Keystore()).merge(incoming)
        self.commits.append((target, incoming.aliases()))
        self.logger.info(f"Committed {len(incoming)} certificates to in-memory store {target}")
