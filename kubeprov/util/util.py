"""
General purpose utilities
"""
import json
import os
import re
import shlex
import subprocess as sp
import time

from functools import wraps

import yaml

from kubeprov.store.errors import PreconditionError
from kubeprov.util.logger import Logger

LOGGER = Logger(__name__)

CONFIG_KEYS = ('cluster-name', 'role', 'method', 'vip-address', 'store',
               'kubernetes-version', 'pod-subnet', 'prefix')

_NOT_ALNUM = re.compile(r"[^A-Za-z0-9]")


def run_cmd(cmd, check=True, timeout=300, input_=None):
    """
    run an external command and return the completed process

    Args:
        cmd (list): the command and its arguments
        check (bool): raise ``subprocess.CalledProcessError`` on a non
            zero exit code
        timeout (int): seconds before the process is killed
        input_ (str): optional text passed on stdin

    Return:
        ``subprocess.CompletedProcess`` with text stdout and stderr
    """
    LOGGER.debug("Running: %s", " ".join(cmd))
    proc = sp.run(cmd,
                  check=False,
                  encoding="utf-8",
                  input=input_,
                  timeout=timeout,
                  stdout=sp.PIPE,
                  stderr=sp.PIPE)

    LOGGER.debug("Exit code %s", proc.returncode)
    if proc.returncode and check:
        LOGGER.debug("STDERR: %s", proc.stderr)
        raise sp.CalledProcessError(proc.returncode, cmd,
                                    output=proc.stdout, stderr=proc.stderr)
    return proc


def name_validation(name):
    """
    Validates a cluster name. Each name should conform to the following
    convention: not too long (maximum 244 characters), only ASCII-letters,
    numbers and dashes.

    Args:
        name (str): The name to be checked

    Returns:
        Name if valid.

    Raises:
        ValueError if the name is invalid.
    """
    if not name:
        raise ValueError("cluster-name can't be empty")
    if len(name) > 244:
        raise ValueError("cluster-name is too long")
    allowed = re.compile(r"[a-zA-Z\d-]+")
    if not allowed.fullmatch(name):
        raise ValueError(f"cluster-name '{name}' is using illegal characters")
    return name


def k8s_version_validation(version):
    """Checks that version is a full ``X.Y.Z`` Kubernetes version"""
    if not isinstance(version, str):
        return False

    return bool(re.match(r"^\d+\.\d+\.\d+$", version))


def retry(exceptions, tries=4, delay=3, backoff=2, logger=None):
    """
    Retry calling the decorated function using an exponential backoff.

    Args:
        exceptions: The exception to check. may be a tuple of exceptions to check.
        tries: Number of times to try (not retry) before giving up.
        delay: Initial delay between retries in seconds.
        backoff: Backoff multiplier (e.g. value of 2 will double the delay each retry).
        logger: Logger to use. If None, print.
    """
    def deco_retry(f):  # pylint: disable=invalid-name

        @wraps(f)
        def f_retry(*args, **kwargs):
            mtries, mdelay = tries, delay
            while mtries > 1:
                try:
                    return f(*args, **kwargs)
                except exceptions as e:  # pylint: disable=invalid-name
                    msg = '{}, Retrying in {} seconds...'.format(e,
                                                                 int(mdelay))
                    if logger:
                        logger(msg)
                    time.sleep(mdelay)
                    mtries -= 1
                    mdelay *= backoff
            return f(*args, **kwargs)

        return f_retry  # true decorator

    return deco_retry


def env_name(prefix, path):
    """Derive an environment variable name from a prefix and a JSON path.

    Example:
        >>> env_name("KUBE_PROVISION", ["cert_hash"])
        'KUBE_PROVISION_CERT_HASH'
        >>> env_name("P", ["nodes", 0, "ip-address"])
        'P_NODES_0_IP_ADDRESS'
    """
    name = "_".join([prefix] + [str(part) for part in path])
    return _NOT_ALNUM.sub("_", name).upper()


def _leaves(node, path):
    """yield (path, value) of every scalar in document order"""
    if isinstance(node, dict):
        for key, value in node.items():
            yield from _leaves(value, path + [key])
    elif isinstance(node, list):
        for idx, value in enumerate(node):
            yield from _leaves(value, path + [idx])
    else:
        yield path, node


def _env_value(value):
    if isinstance(value, str):
        return value

    return json.dumps(value)


def flatten_json(data, prefix):
    """Flatten a JSON document into environment variables.

    Every scalar leaf becomes one variable. Its name is the prefix and
    the path of keys and array indices leading to the leaf, joined with
    ``_``, upper cased, with everything outside ``[A-Za-z0-9]`` replaced
    by ``_``. Strings are kept as they are, other scalars are written as
    JSON (``true``, ``null``, ``1.5``).

    Args:
        data (dict, list or str): parsed JSON or a JSON string
        prefix (str): the variable name prefix, e.g. ``KUBE_PROVISION``

    Returns:
        dict mapping variable names to string values

    Raises:
        PreconditionError if the prefix is empty or data is not valid JSON
    """
    if not prefix or not _NOT_ALNUM.sub("", prefix):
        raise PreconditionError("an environment variable prefix is required")

    if prefix[0].isdigit():
        raise PreconditionError(f"prefix '{prefix}' can't start with a digit")

    if isinstance(data, (str, bytes)):
        try:
            data = json.loads(data)
        except ValueError as exc:
            raise PreconditionError(f"malformed JSON: {exc}") from exc

    env = {}
    for path, value in _leaves(data, []):
        name = env_name(prefix, path)
        if name in env:
            LOGGER.warning("%s is defined more than once, keeping the last "
                           "value", name)
        env[name] = _env_value(value)

    return env


def export_lines(env):
    """Render a mapping as ``export NAME=value`` lines for a POSIX shell"""
    return "\n".join("export %s=%s" % (name, shlex.quote(value))
                     for name, value in env.items())


def load_environment(data, prefix, environ=None):
    """Flatten data and publish the variables in environ.

    Args:
        data (dict or str): parsed JSON or a JSON string
        prefix (str): the variable name prefix
        environ (dict): the mapping to update, ``os.environ`` if None

    Returns:
        the flattened variables as dict
    """
    env = flatten_json(data, prefix)
    if environ is None:
        environ = os.environ

    environ.update(env)
    return env


def load_config(path):
    """
    read a kubeprov yaml configuration file

    Unknown keys are ignored with a warning.

    Return:
        dict with the known keys
    """
    if not path:
        return {}

    with open(path, 'r') as stream:
        config = yaml.safe_load(stream) or {}

    if not isinstance(config, dict):
        raise ValueError(f"{path} does not contain a mapping")

    for key in set(config) - set(CONFIG_KEYS):
        LOGGER.warning("Ignoring unknown configuration key '%s'", key)

    return {k: v for k, v in config.items() if k in CONFIG_KEYS}
