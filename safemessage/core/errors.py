"""
errors.py — Exception taxonomy for the admission core.

Only genuine failures are exceptions. Expected business outcomes
(quota exhausted, rate limited, already migrated) are returned as values
by the services so routes never have to catch them.

  SafeMessageError
   ├── NoValidCredential      resolution failed; caller is downgraded to anonymous
   │    ├── InvalidSignature  token bytes were tampered with or signed by another key
   │    └── Expired           token was authentic but its expiry has passed
   └── StoreUnavailable       the key-value backend could not be reached

InvalidSignature and Expired are distinguishable in logs and tests, but
HTTP responses must never say which one occurred.
"""


class SafeMessageError(Exception):
    """Base class for every error raised by this package."""


class NoValidCredential(SafeMessageError):
    """No credential in the request proves an authenticated identity."""


class InvalidSignature(NoValidCredential):
    """Token integrity check failed."""


class Expired(NoValidCredential):
    """Token integrity is fine but it is past its expiry."""


class StoreUnavailable(SafeMessageError):
    """The key-value store failed (network error, timeout, bad payload)."""

    def __init__(self, operation: str, key: str, cause: Exception | None = None):
        self.operation = operation
        self.key = key
        self.cause = cause
        detail = f"{operation} {key!r} failed"
        if cause is not None:
            detail += f": {cause}"
        super().__init__(detail)
