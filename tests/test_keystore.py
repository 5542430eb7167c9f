import pytest

from certimport.core.keystore import ChangeKind, ChangeRecord, Keystore, StoreSnapshot


def test_same_certificate_requires_identical_bytes(make_cert, make_entry):
    # Same subject and issuer, different key: not the same certificate
    first = make_entry('a', make_cert('Example CA'))
    second = make_entry('b', make_cert('Example CA'))

    assert first.subject_name == second.subject_name
    assert not first.same_certificate(second)
    assert first.same_certificate(first.with_alias('other'))


def test_entry_properties(make_cert, make_entry):
    ca = make_entry('root', make_cert('Root CA'))
    leaf = make_entry('leaf', make_cert('www.example.com', ca=False, issuer_cn='Root CA'))

    assert ca.is_ca
    assert not leaf.is_ca
    assert leaf.issuer_name == 'CN=Root CA'
    assert leaf.common_name == 'www.example.com'
    assert len(leaf.fingerprint) == 64

    description = leaf.describe('    ')
    assert '    Subject: CN=www.example.com' in description
    assert '    Issuer: CN=Root CA' in description
    assert leaf.fingerprint in description


def test_keystore_put_replaces_alias(make_entry):
    keystore = Keystore()
    first = make_entry('alias')
    second = make_entry('alias')

    assert keystore.put(first) is None
    assert keystore.put(second) is first
    assert len(keystore) == 1
    assert keystore.get('alias') is second


def test_aliases_is_a_stable_copy(make_entry):
    keystore = Keystore([make_entry('a'), make_entry('b'), make_entry('c')])

    for alias in keystore.aliases():
        keystore.delete(alias)

    assert len(keystore) == 0


def test_alias_of_prefers_the_same_alias(make_cert, make_entry):
    cert = make_cert('Shared CA')
    keystore = Keystore([make_entry('other', cert), make_entry('mine', cert)])

    assert keystore.alias_of(make_entry('mine', cert)) == 'mine'
    assert keystore.alias_of(make_entry('third', cert)) == 'other'
    assert keystore.alias_of(make_entry('unknown')) is None


def test_merge_is_last_write_wins(make_entry):
    first = Keystore([make_entry('shared'), make_entry('only-first')])
    later_shared = make_entry('shared')
    second = Keystore([later_shared, make_entry('only-second')])

    overwritten = first.merge(second)

    assert overwritten == ['shared']
    assert first.get('shared') is later_shared
    assert set(first.aliases()) == {'shared', 'only-first', 'only-second'}


def test_freeze_is_read_only_and_detached(make_entry):
    keystore = Keystore([make_entry('a')])
    snapshot = keystore.freeze()
    keystore.put(make_entry('b'))

    assert isinstance(snapshot, StoreSnapshot)
    assert snapshot.aliases() == ['a']
    assert 'b' not in snapshot
    assert not hasattr(snapshot, 'put')
    assert not hasattr(snapshot, 'delete')


def test_change_record_is_immutable():
    record = ChangeRecord(alias='a', kind=ChangeKind.NEW, detail='CN=Issuer')

    with pytest.raises(AttributeError):
        record.alias = 'b'
