"""
Reconciliation Engine
Compares the incoming keystore with a snapshot of the target store and prunes
it down to the certificates that should actually be imported.
"""

import logging
from typing import Callable, Dict, List

import click

from certimport.core.errors import NothingToImport
from certimport.core.keystore import ChangeKind, ChangeRecord, Keystore, StoreSnapshot

ConfirmFn = Callable[[str, bool], bool]

REPLACE_PROMPT = "Do you want to continue anyway and replace the above certificate?"
BULK_PROMPT = "Do you want to import ALL of the above certificates?"


class ReconciliationResult:
    """Final keystore plus the ordered decisions that produced it."""

    def __init__(self, final: Keystore, changes: List[ChangeRecord]):
        self.final = final
        self.changes = changes

    @property
    def report(self) -> 'ChangeReport':
        return ChangeReport(self.changes)


class ChangeReport:
    """Human readable rendering of reconciliation decisions."""

    headings = {
        ChangeKind.NEW: "New certificates",
        ChangeKind.REPLACE: "Certificates replacing an existing entry",
        ChangeKind.DUPLICATE_REMOVED: "Skipped, already in the store under another alias",
        ChangeKind.DECLINED: "Skipped, replacement declined",
    }

    def __init__(self, changes: List[ChangeRecord]):
        self.changes = list(changes)

    def counts(self) -> Dict[str, int]:
        counts = {kind.value: 0 for kind in ChangeKind}
        for change in self.changes:
            counts[change.kind.value] += 1
        return counts

    def by_kind(self, kind: ChangeKind) -> List[ChangeRecord]:
        return [change for change in self.changes if change.kind == kind]

    def format_lines(self) -> List[str]:
        lines = []
        for kind in ChangeKind:
            records = self.by_kind(kind)
            if not records:
                continue
            lines.append(f"{self.headings[kind]}:")
            for record in records:
                if record.conflicting_alias:
                    lines.append(f"    {record.alias} (existing alias '{record.conflicting_alias}'): {record.detail}")
                else:
                    lines.append(f"    {record.alias}: {record.detail}")
        return lines

    def __str__(self) -> str:
        return '\n'.join(self.format_lines())


class Reconciler:
    """
    Two-pass reconciliation of an incoming keystore against a store snapshot.

    Pass 1 removes certificates the store already trusts under another alias.
    Pass 2 asks before overwriting an existing alias. Duplicates must be gone
    before pass 2 so they are never offered as replacements.
    """

    def __init__(self, confirm: ConfirmFn):
        self.confirm = confirm
        self.logger = logging.getLogger(__name__)

    def reconcile(self, incoming: Keystore, snapshot: StoreSnapshot) -> ReconciliationResult:
        """
        Prune ``incoming`` in place and confirm the remaining set.

        Args:
            incoming: Keystore built by the loader, mutated in place
            snapshot: Contents of the target store at the start of the run

        Returns:
            ReconciliationResult holding the final keystore and change records

        Raises:
            NothingToImport: if nothing is left, or the final import is declined
        """
        changes: List[ChangeRecord] = []
        changes.extend(self.remove_duplicates(incoming, snapshot))
        changes.extend(self.resolve_collisions(incoming, snapshot))

        if len(incoming) == 0:
            raise NothingToImport()

        self.confirm_import(incoming)
        return ReconciliationResult(incoming, changes)

    def remove_duplicates(self, incoming: Keystore, snapshot: StoreSnapshot) -> List[ChangeRecord]:
        """Pass 1: drop certificates already trusted under a different alias."""
        changes = []
        click.echo("Checking if the certificates are already in the store....")
        for alias in incoming.aliases():
            entry = incoming.get(alias)
            self.logger.debug(f"Checking for a conflicting certificate for alias {alias}")
            existing_alias = snapshot.alias_of(entry)
            if existing_alias is None or existing_alias == alias:
                continue
            click.secho(
                f"WARNING: The following certificate already exists in the store with alias "
                f"'{existing_alias}':\n{entry.describe('    ')}",
                fg='yellow',
            )
            incoming.delete(alias)
            changes.append(ChangeRecord(
                alias=alias,
                kind=ChangeKind.DUPLICATE_REMOVED,
                detail=entry.subject_name,
                conflicting_alias=existing_alias,
            ))
        return changes

    def resolve_collisions(self, incoming: Keystore, snapshot: StoreSnapshot) -> List[ChangeRecord]:
        """Pass 2: confirm before overwriting an alias that already exists."""
        changes = []
        click.echo("Checking if the aliases already exist....")
        for alias in incoming.aliases():
            entry = incoming.get(alias)
            existing = snapshot.get(alias)
            if existing is None:
                changes.append(ChangeRecord(alias=alias, kind=ChangeKind.NEW, detail=entry.issuer_name))
                continue
            if existing.same_certificate(entry):
                # Already present under this alias, nothing to decide
                self.logger.debug(f"Alias {alias} already holds this certificate")
                continue

            click.secho(
                f"WARNING: The following certificate will be replaced with alias "
                f"'{alias}':\n{existing.describe('    ')}",
                fg='yellow',
            )
            if self.confirm(REPLACE_PROMPT, False):
                changes.append(ChangeRecord(
                    alias=alias,
                    kind=ChangeKind.REPLACE,
                    detail=entry.issuer_name,
                    conflicting_alias=alias,
                ))
            else:
                incoming.delete(alias)
                click.echo("OK, not importing this certificate")
                changes.append(ChangeRecord(alias=alias, kind=ChangeKind.DECLINED, detail=entry.issuer_name))
        return changes

    def confirm_import(self, incoming: Keystore) -> None:
        """Bulk confirmation of everything that is left."""
        click.echo("The following certificates will be processed:")
        for entry in incoming:
            click.echo(f"    {entry.alias}: " + click.style(entry.issuer_name or '<unknown issuer>', fg='cyan'))
        if not self.confirm(BULK_PROMPT, False):
            raise NothingToImport()
