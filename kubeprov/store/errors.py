"""
Errors raised while producing, storing and consuming join parameters.

Library code raises these, only the command line turns them into an
error message and a non-zero exit code.
"""


class ParameterStoreError(Exception):
    """Base class of all join parameter exchange errors"""


class PreconditionError(ParameterStoreError):
    """A required value is missing, empty or malformed"""


class TransportError(ParameterStoreError):
    """Talking to the backing object store failed"""


class NotFoundError(ParameterStoreError):
    """No parameters are stored for the requested cluster"""
