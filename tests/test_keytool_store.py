import json
from pathlib import Path

import pytest

from certimport.core.errors import BackendRejected, BackendUnavailable
from certimport.core.keystore import Keystore
from certimport.helpers.keytool_helper import KeytoolError
from certimport.helpers.temp_files import TempFileScope
from certimport.stores import StoreTarget
from certimport.stores.keytool_store import KeytoolStore

from conftest import to_pem


class FakeKeytool:
    """Keeps a keystore as a JSON map of alias to PEM, guarded by one password."""

    def __init__(self, password='changeit', fail_on_alias=None):
        self.password = password
        self.fail_on_alias = fail_on_alias
        self.calls = []

    def _load(self, path, password):
        if password != self.password:
            raise KeytoolError('keytool failed: Keystore was tampered with, or password was incorrect')
        return json.loads(Path(path).read_text())

    def list_certificates(self, keystore_path, password=None, store_type=None):
        self.calls.append(('list', keystore_path))
        return sorted(self._load(keystore_path, password).items())

    def delete_entry(self, keystore_path, password, alias):
        self.calls.append(('delete', alias))
        entries = self._load(keystore_path, password)
        del entries[alias]
        Path(keystore_path).write_text(json.dumps(entries))

    def import_certificate(self, keystore_path, password, alias, cert_path):
        self.calls.append(('import', alias))
        if alias == self.fail_on_alias:
            raise KeytoolError(f'keytool failed: Certificate not imported, alias <{alias}> already exists')
        path = Path(keystore_path)
        entries = self._load(path, password) if path.exists() else {}
        entries[alias] = Path(cert_path).read_text()
        path.write_text(json.dumps(entries))


@pytest.fixture
def cacerts(tmp_path, make_cert):
    path = tmp_path / 'cacerts'
    path.write_text(json.dumps({'existing': to_pem(make_cert('Existing CA')).decode('ascii')}))
    return path


def test_read_snapshot(config, cacerts):
    snapshot = KeytoolStore(config, keytool=FakeKeytool()).read_snapshot(StoreTarget(str(cacerts)), 'changeit')

    assert snapshot.aliases() == ['existing']
    assert snapshot.get('existing').common_name == 'Existing CA'


def test_missing_keystore_reads_empty(config, tmp_path):
    snapshot = KeytoolStore(config, keytool=FakeKeytool()).read_snapshot(StoreTarget(str(tmp_path / 'none.jks')))

    assert len(snapshot) == 0


def test_wrong_password_is_unavailable(config, cacerts):
    with pytest.raises(BackendUnavailable, match='password was incorrect'):
        KeytoolStore(config, keytool=FakeKeytool()).read_snapshot(StoreTarget(str(cacerts)), 'wrong')


def test_commit_replaces_and_adds(config, cacerts, make_entry):
    keytool = FakeKeytool()
    store = KeytoolStore(config, keytool=keytool)
    replacement = make_entry('existing')
    target = StoreTarget(str(cacerts))

    store.commit(store.export(Keystore([replacement, make_entry('added')])), target, 'changeit')

    snapshot = store.read_snapshot(target, 'changeit')
    assert set(snapshot.aliases()) == {'existing', 'added'}
    assert snapshot.get('existing').same_certificate(replacement)
    assert ('delete', 'existing') in keytool.calls
    assert ('delete', 'added') not in keytool.calls


def test_commit_creates_new_keystore(config, tmp_path, make_entry):
    store = KeytoolStore(config, keytool=FakeKeytool())
    target = StoreTarget(str(tmp_path / 'new' / 'trust.jks'))

    store.commit(store.export(Keystore([make_entry('first')])), target, 'changeit')

    assert store.read_snapshot(target, 'changeit').aliases() == ['first']


def test_commit_requires_store_password(config, cacerts, make_entry):
    store = KeytoolStore(config, keytool=FakeKeytool())

    with pytest.raises(BackendRejected, match='store password'):
        store.commit(store.export(Keystore([make_entry('added')])), StoreTarget(str(cacerts)))


def test_failed_import_leaves_store_untouched(config, cacerts, make_entry):
    before = cacerts.read_bytes()
    store = KeytoolStore(config, keytool=FakeKeytool(fail_on_alias='second'))
    keystore = Keystore([make_entry('first'), make_entry('second')])

    with pytest.raises(BackendRejected, match='already exists'):
        store.commit(store.export(keystore), StoreTarget(str(cacerts)), 'changeit')

    assert cacerts.read_bytes() == before
    assert sorted(p.name for p in cacerts.parent.iterdir()) == ['cacerts']


def test_working_files_live_in_the_run_scope(config, cacerts, make_entry):
    with TempFileScope() as temp_files:
        store = KeytoolStore(config, temp_files=temp_files, keytool=FakeKeytool())
        store.commit(store.export(Keystore([make_entry('added')])), StoreTarget(str(cacerts)), 'changeit')
        leftovers = temp_files.paths
        assert leftovers

    assert not any(path.exists() for path in leftovers)
