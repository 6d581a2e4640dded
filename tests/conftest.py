import datetime

import pytest

from cryptography import x509
from cryptography.hazmat.backends import default_backend
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import NameOID


def create_ca(name="kubernetes"):
    """a self signed CA like the one kubeadm creates"""
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048,
                                   backend=default_backend())
    subject = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, name)])
    now = datetime.datetime.utcnow()
    cert = (x509.CertificateBuilder()
            .subject_name(subject)
            .issuer_name(subject)
            .public_key(key.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(now)
            .not_valid_after(now + datetime.timedelta(days=1))
            .add_extension(x509.BasicConstraints(ca=True, path_length=None),
                           critical=True)
            .sign(key, hashes.SHA256(), default_backend()))
    return cert


@pytest.fixture(scope="session")
def ca_cert():
    return create_ca()


@pytest.fixture
def ca_file(tmp_path, ca_cert):
    path = tmp_path / "ca.crt"
    path.write_bytes(ca_cert.public_bytes(serialization.Encoding.PEM))
    return str(path)


@pytest.fixture
def params_dict():
    return {
        "address": "10.0.0.5:6443",
        "token": "abcdef.0123456789abcdef",
        "cert_hash": "0" * 63 + "1",
        "cert_key": "f" * 64,
    }
