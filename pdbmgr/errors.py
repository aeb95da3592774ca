from __future__ import annotations


class PdbMgrError(Exception):
    """Base class for every error raised by pdbmgr."""

    kind = "error"


# --- probe ---

class ProbeError(PdbMgrError):
    kind = "probe_error"


class ProbeConnectionError(ProbeError, ConnectionError):
    """Server unreachable: refused, DNS failure or timeout before a reply."""

    kind = "connection"


class MalformedResponseError(ProbeError):
    """Connected, but the reply violates the protocol or is unparsable."""

    kind = "malformed"


class TruncatedResponseError(ProbeError):
    """Reply ended before the declared frame length was read."""

    kind = "truncated"


# --- control plane ---

class ControlPlaneError(PdbMgrError):
    kind = "control_plane"


class ConflictError(ControlPlaneError):
    """Conditional update rejected: the object changed since it was read."""

    kind = "conflict"


class TransientApiError(ControlPlaneError):
    kind = "transient"


class MissingResourceVersionError(ControlPlaneError):
    """A write was attempted without the version it must be conditioned on."""

    kind = "no_version"


# --- configuration ---

class FatalConfigError(PdbMgrError):
    """Configuration cannot be resolved. Only raised at start-up."""

    kind = "config"


class PolicyNotFoundError(FatalConfigError, ControlPlaneError):
    kind = "not_found"
