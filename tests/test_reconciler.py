import pytest

from certimport.core.confirmation import ScriptedConfirmation
from certimport.core.errors import NothingToImport
from certimport.core.keystore import ChangeKind, Keystore, StoreSnapshot
from certimport.core.reconciler import BULK_PROMPT, REPLACE_PROMPT, ChangeReport, Reconciler


def kinds(result):
    return [(change.alias, change.kind) for change in result.changes]


def test_duplicate_under_other_alias_is_removed(make_cert, make_entry):
    cert = make_cert('Duplicate CA')
    incoming = Keystore([make_entry('mycert', cert)])
    snapshot = StoreSnapshot([make_entry('othercert', cert)])
    confirm = ScriptedConfirmation([True, True])

    with pytest.raises(NothingToImport):
        Reconciler(confirm).reconcile(incoming, snapshot)

    assert len(incoming) == 0
    # Nothing left, so no question was ever asked
    assert confirm.asked == []


def test_duplicate_record_names_the_existing_alias(make_cert, make_entry):
    cert = make_cert('Duplicate CA')
    incoming = Keystore([make_entry('mycert', cert)])
    snapshot = StoreSnapshot([make_entry('othercert', cert)])

    changes = Reconciler(ScriptedConfirmation()).remove_duplicates(incoming, snapshot)

    assert len(changes) == 1
    assert changes[0].kind == ChangeKind.DUPLICATE_REMOVED
    assert changes[0].alias == 'mycert'
    assert changes[0].conflicting_alias == 'othercert'


def test_duplicates_are_never_offered_for_replacement(make_cert, make_entry):
    # 'mycert' collides by alias AND is a duplicate of 'othercert'
    cert = make_cert('Duplicate CA')
    incoming = Keystore([make_entry('mycert', cert), make_entry('fresh')])
    snapshot = StoreSnapshot([make_entry('othercert', cert), make_entry('mycert')])
    confirm = ScriptedConfirmation([True])

    result = Reconciler(confirm).reconcile(incoming, snapshot)

    assert [prompt for prompt, _ in confirm.asked] == [BULK_PROMPT]
    assert result.final.aliases() == ['fresh']
    assert kinds(result) == [('mycert', ChangeKind.DUPLICATE_REMOVED), ('fresh', ChangeKind.NEW)]


def test_declined_replace_removes_only_that_alias(make_entry):
    incoming = Keystore([make_entry('mycert'), make_entry('keep'), make_entry('new')])
    snapshot = StoreSnapshot([make_entry('mycert'), make_entry('keep')])
    # decline mycert, accept keep, accept bulk import
    confirm = ScriptedConfirmation([False, True, True])

    result = Reconciler(confirm).reconcile(incoming, snapshot)

    assert result.final.aliases() == ['keep', 'new']
    assert kinds(result) == [
        ('mycert', ChangeKind.DECLINED),
        ('keep', ChangeKind.REPLACE),
        ('new', ChangeKind.NEW),
    ]
    assert [prompt for prompt, _ in confirm.asked] == [REPLACE_PROMPT, REPLACE_PROMPT, BULK_PROMPT]
    assert all(default is False for _, default in confirm.asked)


def test_declined_replace_of_only_entry_is_nothing_to_import(make_entry):
    incoming = Keystore([make_entry('mycert')])
    snapshot = StoreSnapshot([make_entry('mycert')])
    confirm = ScriptedConfirmation([False])

    with pytest.raises(NothingToImport):
        Reconciler(confirm).reconcile(incoming, snapshot)

    assert len(incoming) == 0
    assert len(confirm.asked) == 1


def test_same_alias_same_bytes_is_a_silent_no_op(make_cert, make_entry):
    cert = make_cert('Known CA')
    incoming = Keystore([make_entry('known', cert)])
    snapshot = StoreSnapshot([make_entry('known', cert)])
    confirm = ScriptedConfirmation([True])

    result = Reconciler(confirm).reconcile(incoming, snapshot)

    assert result.changes == []
    assert result.final.aliases() == ['known']
    assert [prompt for prompt, _ in confirm.asked] == [BULK_PROMPT]


def test_new_certificate_is_imported_after_bulk_approval(make_entry):
    entry = make_entry('new')
    incoming = Keystore([entry])
    confirm = ScriptedConfirmation([True])

    result = Reconciler(confirm).reconcile(incoming, StoreSnapshot())

    assert result.final.get('new') is entry
    assert kinds(result) == [('new', ChangeKind.NEW)]


def test_bulk_decline_is_nothing_to_import(make_entry):
    incoming = Keystore([make_entry('new')])

    with pytest.raises(NothingToImport):
        Reconciler(ScriptedConfirmation([False])).reconcile(incoming, StoreSnapshot())


def test_unanswered_questions_default_to_no(make_entry):
    incoming = Keystore([make_entry('new')])

    with pytest.raises(NothingToImport):
        Reconciler(ScriptedConfirmation()).reconcile(incoming, StoreSnapshot())


def test_auto_confirm_keeps_every_collision(make_entry):
    incoming = Keystore([make_entry('a'), make_entry('b')])
    snapshot = StoreSnapshot([make_entry('a'), make_entry('b')])

    result = Reconciler(lambda prompt, default: True).reconcile(incoming, snapshot)

    assert result.final.aliases() == ['a', 'b']
    assert result.report.counts()['replace'] == 2


def test_pass_one_removes_every_duplicate(make_cert, make_entry):
    certs = [make_cert(f'CA {i}') for i in range(4)]
    incoming = Keystore([make_entry(f'in-{i}', cert) for i, cert in enumerate(certs)])
    snapshot = StoreSnapshot([make_entry(f'store-{i}', cert) for i, cert in enumerate(certs[:3])])

    changes = Reconciler(ScriptedConfirmation()).remove_duplicates(incoming, snapshot)

    assert [change.alias for change in changes] == ['in-0', 'in-1', 'in-2']
    assert incoming.aliases() == ['in-3']


def test_report_lists_changes_by_kind(make_cert, make_entry):
    cert = make_cert('Duplicate CA')
    incoming = Keystore([make_entry('dup', cert), make_entry('new', issuer_cn='Issuing CA')])
    snapshot = StoreSnapshot([make_entry('existing', cert)])

    result = Reconciler(ScriptedConfirmation([True])).reconcile(incoming, snapshot)
    report = result.report

    assert isinstance(report, ChangeReport)
    assert report.counts() == {'new': 1, 'replace': 0, 'duplicate_removed': 1, 'declined': 0}
    lines = report.format_lines()
    assert lines[0] == 'New certificates:'
    assert lines[1] == '    new: CN=Issuing CA'
    assert "    dup (existing alias 'existing'): CN=Duplicate CA" in lines


def test_engine_output_mentions_aliases(make_entry, capsys):
    incoming = Keystore([make_entry('shown', issuer_cn='Shown Issuer')])

    Reconciler(ScriptedConfirmation([True])).reconcile(incoming, StoreSnapshot())

    out = capsys.readouterr().out
    assert 'The following certificates will be processed:' in out
    assert 'shown: CN=Shown Issuer' in out
