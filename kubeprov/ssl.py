"""
ssl.py holds the certificate helpers needed to verify join parameters
"""
from cryptography import x509
from cryptography.hazmat.backends import default_backend
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives import serialization

CLUSTER_CA = "/etc/kubernetes/pki/ca.crt"


def discovery_hash(cert):
    """
    calculate a discovery hash based on the cert's public key

    This is the value kubeadm expects after ``sha256:`` in
    ``--discovery-token-ca-cert-hash``.
    """
    pub_key = cert.public_key()
    digest = hashes.Hash(hashes.SHA256(), backend=default_backend())
    digest.update(pub_key.public_bytes(
        serialization.Encoding.DER,
        format=serialization.PublicFormat.SubjectPublicKeyInfo))
    return digest.finalize().hex()


def load_cert(data):
    """load a PEM encoded certificate from bytes or str"""
    if isinstance(data, str):
        data = data.encode()

    return x509.load_pem_x509_certificate(data, default_backend())


def read_cert(cert):
    """
    read SSL certificate from path

    Args:
        cert (str) - path to a cert on a file system

    Return:
        cert (inst) - a certificate instance
    """

    with open(cert, "rb") as fh:
        cert = load_cert(fh.read())
    return cert
