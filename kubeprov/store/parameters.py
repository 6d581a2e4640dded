"""
parameters.py
=============

The kubeadm join parameters of a cluster and the stores that keep them.

The initialising control plane writes the parameters, joining nodes read
them. Writes replace the stored document completely, the last writer
wins.
"""
import json
import os
import re
import tempfile
from collections import namedtuple
from urllib.parse import urlparse

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from kubeprov import DEFAULT_PREFIX, PARAMETERS_NAME
from kubeprov.util.logger import Logger, register_secret
from kubeprov.util.net import split_host_port
from .errors import (ParameterStoreError, PreconditionError,  # noqa
                     TransportError, NotFoundError)

LOGGER = Logger(__name__)

FIELDS = ('address', 'token', 'cert_hash', 'cert_key')

TOKEN_RE = re.compile(r"^[a-z0-9]{6}\.[a-z0-9]{16}$")
HASH_RE = re.compile(r"^[0-9a-f]{64}$")
CERT_KEY_RE = re.compile(r"^[0-9a-f]{64}$")

NOT_FOUND_CODES = {"404", "NoSuchKey", "NotFound"}


def parameters_key(cluster_id):
    """Return the object key of a cluster's join parameters"""
    if not cluster_id or not cluster_id.strip():
        raise PreconditionError("a cluster id is required")

    return "/".join((cluster_id.strip(), PARAMETERS_NAME))


def _normalize(address, token, cert_hash, cert_key):
    values = dict(address=address, token=token, cert_hash=cert_hash,
                  cert_key=cert_key)
    missing = [k for k in FIELDS if not isinstance(values[k], str) or
               not values[k].strip()]
    if missing:
        raise PreconditionError("missing or empty join parameters: %s" %
                                ", ".join(missing))

    address = address.strip()
    token = token.strip().lower()
    cert_hash = cert_hash.strip().lower()
    if cert_hash.startswith("sha256:"):
        cert_hash = cert_hash[len("sha256:"):]
    cert_key = cert_key.strip().lower()

    try:
        split_host_port(address)
    except ValueError as exc:
        raise PreconditionError(str(exc)) from exc

    if not TOKEN_RE.match(token):
        raise PreconditionError("token must have the form "
                                "<6 character id>.<16 character secret>")
    if not HASH_RE.match(cert_hash):
        raise PreconditionError("cert_hash must be 64 hex characters")
    if not CERT_KEY_RE.match(cert_key):
        raise PreconditionError("cert_key must be 64 hex characters")

    return address, token, cert_hash, cert_key


class JoinParameters(namedtuple('JoinParameters', FIELDS)):
    """Everything a node needs to join a kubeadm cluster.

    Instances are validated on creation and can't be changed afterwards.

    Args:
        address (str): the control plane endpoint, ``host`` or ``host:port``
        token (str): the bootstrap token ``<id>.<secret>``
        cert_hash (str): SHA-256 of the cluster CA public key in hex, an
            optional ``sha256:`` prefix is removed
        cert_key (str): the key to decrypt the uploaded control plane
            certificates in hex

    Raises:
        PreconditionError if a field is empty or malformed
    """
    __slots__ = ()

    def __new__(cls, address, token, cert_hash, cert_key):
        self = super().__new__(cls, *_normalize(address, token, cert_hash,
                                                cert_key))
        register_secret(self.cert_key)
        register_secret(self.token)
        return self

    def __repr__(self):
        return "JoinParameters(address=%r, token=%r, cert_hash=%r, " \
            "cert_key='***')" % (self.address, self.token.split(".")[0] +
                                 ".***", self.cert_hash)

    @classmethod
    def from_dict(cls, data):
        """create an instance from a mapping with exactly the four fields"""
        if not isinstance(data, dict):
            raise PreconditionError("join parameters must be a JSON object")

        keys = set(data)
        if keys != set(FIELDS):
            missing = sorted(set(FIELDS) - keys)
            extra = sorted(keys - set(FIELDS))
            raise PreconditionError(
                "unexpected join parameters shape (missing: %s, extra: %s)" %
                (", ".join(missing) or "-", ", ".join(extra) or "-"))

        return cls(**data)

    @classmethod
    def from_json(cls, text):
        """parse a JSON document"""
        try:
            data = json.loads(text)
        except ValueError as exc:
            raise PreconditionError(f"malformed JSON: {exc}") from exc

        return cls.from_dict(data)

    @classmethod
    def from_env(cls, environ=None, prefix=DEFAULT_PREFIX):
        """read the parameters from ``<PREFIX>_ADDRESS`` and friends"""
        if environ is None:
            environ = os.environ

        values = {k: environ.get("_".join((prefix, k.upper())), "")
                  for k in FIELDS}
        return cls(**values)

    def to_dict(self):
        """the parameters as plain dict"""
        return dict(self._asdict())

    def to_json(self):
        """the JSON document which is stored"""
        return json.dumps(self.to_dict(), sort_keys=True)


class AWSCredentials:
    """Credentials and region handed to the S3 client.

    Fields left as None are resolved by boto3 itself (instance profile,
    shared config files and so on).
    """

    ENV = {'access_key_id': 'AWS_ACCESS_KEY_ID',
           'secret_access_key': 'AWS_SECRET_ACCESS_KEY',
           'session_token': 'AWS_SESSION_TOKEN',
           'region': 'AWS_REGION'}

    def __init__(self, access_key_id=None, secret_access_key=None,
                 region=None, session_token=None):
        if bool(access_key_id) != bool(secret_access_key):
            raise PreconditionError("AWS access key id and secret access key "
                                    "must be given together")
        self.access_key_id = access_key_id
        self.secret_access_key = secret_access_key
        self.region = region
        self.session_token = session_token

    @classmethod
    def from_env(cls, environ=None):
        """Read AWS_* variables, returns None if none of them is set"""
        if environ is None:
            environ = os.environ

        values = {attr: environ.get(var) or None
                  for attr, var in cls.ENV.items()}
        if not any(values.values()):
            return None

        return cls(**values)

    def client_kwargs(self):
        """keyword arguments for ``boto3.client``"""
        kwargs = {'aws_access_key_id': self.access_key_id,
                  'aws_secret_access_key': self.secret_access_key,
                  'aws_session_token': self.session_token,
                  'region_name': self.region}
        return {k: v for k, v in kwargs.items() if v}


def _as_parameters(params):
    if isinstance(params, JoinParameters):
        return params

    return JoinParameters.from_dict(params)


class S3ParameterStore:
    """Keep join parameters as private objects in an S3 bucket.

    Args:
        bucket (str): the bucket name
        prefix (str): optional key prefix inside the bucket
        credentials (AWSCredentials): explicit credentials, boto3 resolves
            them itself if None
        client: an existing S3 client
    """

    def __init__(self, bucket, prefix="", credentials=None, client=None):
        if not bucket:
            raise PreconditionError("a bucket name is required")

        self.bucket = bucket
        self.prefix = prefix.strip("/")
        if client is None:
            kwargs = credentials.client_kwargs() if credentials else {}
            client = boto3.client("s3", **kwargs)
        self._client = client

    def __str__(self):
        return f"s3://{self.bucket}/{self.prefix}".rstrip("/")

    def key(self, cluster_id):
        """the object key of cluster_id"""
        key = parameters_key(cluster_id)
        if not self.prefix:
            return key
        return f"{self.prefix}/{key}"

    def put(self, cluster_id, params):
        """Store params, replacing whatever is stored for cluster_id.

        Raises:
            PreconditionError if params are incomplete, nothing is written
            TransportError if S3 can't be reached or refuses the write
        """
        params = _as_parameters(params)
        key = self.key(cluster_id)
        LOGGER.info("Storing parameters of cluster %s in s3://%s/%s",
                    cluster_id, self.bucket, key)
        try:
            self._client.put_object(Bucket=self.bucket,
                                    Key=key,
                                    Body=params.to_json().encode("utf-8"),
                                    ACL="private",
                                    ContentType="application/json")
        except (ClientError, BotoCoreError) as exc:
            raise TransportError(
                f"unable to write s3://{self.bucket}/{key}: {exc}") from exc

        return f"s3://{self.bucket}/{key}"

    def get(self, cluster_id):
        """Read the parameters of cluster_id.

        Raises:
            NotFoundError if nothing (or an empty object) is stored
            TransportError if S3 can't be reached
            PreconditionError if the stored document is malformed
        """
        key = self.key(cluster_id)
        LOGGER.info("Retrieving parameters of cluster %s from s3://%s/%s",
                    cluster_id, self.bucket, key)
        try:
            response = self._client.get_object(Bucket=self.bucket, Key=key)
            body = response["Body"].read()
        except ClientError as exc:
            error_code = exc.response.get("Error", {}).get("Code")
            if error_code in NOT_FOUND_CODES:
                raise NotFoundError(
                    f"no parameters found for cluster ID {cluster_id}") \
                    from exc
            raise TransportError(
                f"unable to read s3://{self.bucket}/{key}: {exc}") from exc
        except BotoCoreError as exc:
            raise TransportError(
                f"unable to read s3://{self.bucket}/{key}: {exc}") from exc

        if isinstance(body, bytes):
            body = body.decode("utf-8")
        if not body.strip():
            raise NotFoundError(f"no parameters found for cluster ID {cluster_id}")

        return JoinParameters.from_json(body)


class LocalParameterStore:
    """Keep join parameters in files below root.

    The files are only readable by their owner. Useful when all nodes
    share a file system or the file is copied around by other means.
    """

    def __init__(self, root):
        self.root = os.path.abspath(root)

    def __str__(self):
        return self.root

    def path(self, cluster_id):
        """the file holding the parameters of cluster_id"""
        path = os.path.abspath(os.path.join(self.root,
                                            parameters_key(cluster_id)))
        if not path.startswith(self.root + os.sep):
            raise PreconditionError(f"invalid cluster ID {cluster_id}")
        return path

    def put(self, cluster_id, params):
        """atomically replace the parameters of cluster_id"""
        params = _as_parameters(params)
        path = self.path(cluster_id)
        LOGGER.info("Storing parameters of cluster %s in %s", cluster_id, path)
        tmp_path = None
        try:
            os.makedirs(os.path.dirname(path), mode=0o750, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=os.path.dirname(path),
                                            prefix=".parameters-")
            with os.fdopen(fd, "w") as fh:
                fh.write(params.to_json() + "\n")
            os.replace(tmp_path, path)
        except OSError as exc:
            if tmp_path and os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise TransportError(f"unable to write {path}: {exc}") from exc

        return path

    def get(self, cluster_id):
        """read the parameters of cluster_id"""
        path = self.path(cluster_id)
        LOGGER.info("Retrieving parameters of cluster %s from %s", cluster_id,
                    path)
        try:
            with open(path) as fh:
                body = fh.read()
        except FileNotFoundError as exc:
            raise NotFoundError(
                f"no parameters found for cluster ID {cluster_id}") from exc
        except OSError as exc:
            raise TransportError(f"unable to read {path}: {exc}") from exc

        if not body.strip():
            raise NotFoundError(f"no parameters found for cluster ID {cluster_id}")

        return JoinParameters.from_json(body)


def build_parameter_store(location, credentials=None):
    """Create a store from a location.

    ``s3://bucket[/prefix]`` selects S3, anything else is taken as a
    local directory (``file://`` is accepted).
    """
    if not location:
        raise PreconditionError("a parameter store location is required")

    url = urlparse(location)
    if url.scheme == "s3":
        return S3ParameterStore(url.netloc, url.path, credentials=credentials)

    if url.scheme == "file":
        return LocalParameterStore(url.path)

    if url.scheme:
        raise PreconditionError(f"unsupported parameter store '{location}'")

    return LocalParameterStore(location)
