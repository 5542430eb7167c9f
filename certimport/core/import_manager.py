"""
Import Manager - runs one certificate import from sources to store commit
"""

import logging
from dataclasses import dataclass, field
from typing import Callable, List, Optional

import click

from certimport.core.certificate_loader import INSTALLED_CERTS, CertificateLoader, Source
from certimport.core.confirmation import ConfirmationGate, get_confirmation_gate
from certimport.core.errors import BackendRejected, UsageError
from certimport.core.reconciler import ReconciliationResult, Reconciler
from certimport.helpers.openssl_helper import OpenSSLHelper
from certimport.helpers.temp_files import TempFileScope
from certimport.stores import CertificateStore, StoreBackend, get_certificate_store, resolve_target

PasswordPrompt = Callable[[str], str]


def prompt_hidden(prompt: str) -> str:
    return click.prompt(prompt, hide_input=True, default='', show_default=False)


@dataclass
class ImportOptions:
    """Options for one import run."""

    yes_mode: bool = False
    password_protected: bool = False
    password: Optional[str] = None
    target: Optional[str] = None
    store_password: Optional[str] = None
    prompt_store_password: bool = False
    ca_only: bool = False
    alias: Optional[str] = None
    installed_certs: bool = False
    backend: Optional[str] = None
    files: List[str] = field(default_factory=list)
    fetch_from: List[str] = field(default_factory=list)


class ImportManager:
    """Main certificate import class."""

    def __init__(self, config: dict, confirm: ConfirmationGate = None, store: CertificateStore = None,
                 loader: CertificateLoader = None, openssl: OpenSSLHelper = None,
                 prompt_password: PasswordPrompt = prompt_hidden):
        self.config = config
        self.confirm = confirm
        self.store = store
        self.loader = loader or CertificateLoader(config)
        self.openssl = openssl or OpenSSLHelper(config)
        self.prompt_password = prompt_password
        self.logger = logging.getLogger(__name__)

    def validate(self, options: ImportOptions) -> None:
        """
        Reject invocations that cannot produce any input.

        Raises:
            UsageError: on conflicting or missing inputs
        """
        if options.fetch_from and (options.files or options.installed_certs):
            raise UsageError("Cannot specify file(s) when using '--fetch-from'")
        if not options.files and not options.installed_certs and not options.fetch_from:
            raise UsageError("No input files specified")

    def run(self, options: ImportOptions) -> ReconciliationResult:
        """
        Load, reconcile, confirm and commit.

        Every temporary file created on the way is removed before this
        returns or raises.

        Returns:
            ReconciliationResult describing what was committed
        """
        self.validate(options)
        confirm = self.confirm or get_confirmation_gate(options.yes_mode)
        # Live fetches are for trust anchors only
        ca_only = options.ca_only or bool(options.fetch_from)

        with TempFileScope(handle_sigterm=True) as temp_files:
            sources: List[Source] = list(options.files)
            if options.installed_certs:
                sources.append(INSTALLED_CERTS)
            for fetch_target in options.fetch_from:
                sources.append(self.openssl.fetch_certificates(fetch_target, confirm, temp_files))

            keystore = self.loader.load(
                sources,
                password=self._input_password(options),
                alias=options.alias,
                ca_only=ca_only,
            )
            click.secho("Sanity check successful", fg='green')

            backend = self._backend(options)
            store = self.store or get_certificate_store(self.config, backend.value, temp_files=temp_files)
            target = resolve_target(self.config, options.target, backend)
            credential = self._store_password(options, target.is_system, store.requires_credential)

            self.logger.info(f"Reading current contents of {target}")
            snapshot = store.read_snapshot(target, credential)

            result = Reconciler(confirm).reconcile(keystore, snapshot)

            transfer = store.export(result.final)
            store.commit(transfer, target, credential)
            self.logger.info(f"Imported {transfer.count} certificates into {target}")
            return result

    def _backend(self, options: ImportOptions) -> StoreBackend:
        name = options.backend or self.config.get('store', {}).get('backend', 'pkcs12')
        try:
            return StoreBackend(str(name).lower())
        except ValueError:
            raise UsageError(f"Unsupported store backend: {name}")

    def _input_password(self, options: ImportOptions) -> Optional[str]:
        if not options.password_protected:
            return None
        if not options.password and not options.yes_mode:
            options.password = self.prompt_password("Enter input file password")
        return options.password or None

    def _store_password(self, options: ImportOptions, is_system: bool,
                        required: bool = False) -> Optional[str]:
        """
        Pick the store password: explicit, prompted, or configured.

        A store that cannot be committed without a password is asked for one
        up front, before any snapshot is read or question asked.

        Raises:
            BackendRejected: if the store requires a password and none is available
        """
        if options.store_password:
            return options.store_password

        configured = self.config.get('store', {}).get('system_store_password') if is_system else None
        credential = None
        if options.prompt_store_password and not options.yes_mode:
            credential = self.prompt_password("Enter certificate store password") or None
        elif configured:
            credential = configured
        elif required and not options.yes_mode:
            credential = self.prompt_password("Enter certificate store password") or None

        if required and not credential:
            raise BackendRejected("this certificate store requires a store password")
        return credential
