import datetime
import json

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID

from certimport.config import DEFAULT_CONFIG, merge_config
from certimport.core.keystore import CertificateEntry


def build_certificate(common_name, ca=True, issuer_cn=None, key=None):
    key = key or ec.generate_private_key(ec.SECP256R1())
    subject = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])
    issuer = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, issuer_cn)]) if issuer_cn else subject
    now = datetime.datetime.now(datetime.timezone.utc)
    builder = (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(issuer)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - datetime.timedelta(days=1))
        .not_valid_after(now + datetime.timedelta(days=365))
        .add_extension(x509.BasicConstraints(ca=ca, path_length=None), critical=True)
    )
    return builder.sign(key, hashes.SHA256())


def to_pem(*certificates):
    return b''.join(cert.public_bytes(serialization.Encoding.PEM) for cert in certificates)


@pytest.fixture
def make_cert():
    return build_certificate


@pytest.fixture
def make_entry():
    def _make_entry(alias, certificate=None, **kwargs):
        return CertificateEntry(alias=alias, certificate=certificate or build_certificate(alias, **kwargs))
    return _make_entry


@pytest.fixture
def write_pem(tmp_path):
    def _write_pem(name, *certificates):
        path = tmp_path / name
        path.write_bytes(to_pem(*certificates))
        return str(path)
    return _write_pem


@pytest.fixture
def config(tmp_path):
    return merge_config(DEFAULT_CONFIG, {
        'store': {'system_store': str(tmp_path / 'system.p12')},
        'installed_certs': {'paths': [], 'include_default_verify_paths': False},
    })


@pytest.fixture
def config_file(tmp_path, config):
    path = tmp_path / 'config.json'
    path.write_text(json.dumps(config))
    return str(path)
