"""
Service-layer exceptions.

Client-facing failures subclass ``ValueError`` or ``PermissionError`` so
route handlers can keep catching the builtin types; server-side failures
subclass ``LookupError``/``RuntimeError`` and surface as 500s.
"""


class NotFoundError(ValueError):
    """A referenced entity, relationship or request does not exist."""


class InvalidArgumentError(ValueError):
    """Malformed input: unknown change type, bad payload shape, bad field."""


class ConflictError(ValueError):
    """An active relationship already exists for the owner pair."""


class InvalidStateError(ValueError):
    """The operation is not valid from the record's current state."""


class ForbiddenError(PermissionError):
    """The actor is not allowed to perform the operation."""


class UnsupportedChangeTypeError(LookupError):
    """A stored change type has no policy or no resolver/apply handler."""


class PolicyConfigurationError(RuntimeError):
    """The policy table is internally inconsistent."""


class ApplyFailedError(RuntimeError):
    """Applying an accepted edit request failed; nothing was persisted."""
