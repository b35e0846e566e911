"""Error taxonomy shared by the state managers and the HTTP layer."""


class StorefrontError(Exception):
    """Base class for errors raised by the storefront."""


class RemoteError(StorefrontError):
    """A query or mutation against the remote store or payment provider failed."""


class ValidationError(StorefrontError):
    """Rejected locally before any remote call (e.g. quantity beyond stock)."""


class AuthRequired(StorefrontError):
    """No session, or the credentials did not match."""


class NotFound(StorefrontError):
    pass
