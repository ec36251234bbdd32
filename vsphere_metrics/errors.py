"""Error taxonomy for a gather cycle.

Fatal (abort the cycle, nothing emitted):
  AuthenticationError, VSphereConnectionError, EndpointError

Per pattern (reported, sibling patterns keep running):
  ResolutionError, RetrievalError, GatherCancelledError

Per object (reported, rest of the batch is emitted):
  ExtractionError
"""

from __future__ import annotations

import re
from typing import Optional

from vsphere_metrics.models import ManagedObjectRef, ObjectKind

# Fault type -> short title used in reported messages
FAULT_TITLES: dict[str, str] = {
    "vim.fault.InvalidLogin": "Authentication failed",
    "vim.fault.NoPermission": "Permission denied",
    "vim.fault.NotAuthenticated": "Session not authenticated",
    "vmodl.fault.ManagedObjectNotFound": "Object no longer exists",
    "vmodl.fault.InvalidArgument": "Invalid argument",
    "vmodl.fault.RequestCanceled": "Request cancelled",
    "vim.fault.InvalidProperty": "Invalid property path",
}

_MSG_RE = re.compile(r"msg\s*=\s*['\"]([^'\"]+)['\"]")


def describe_fault(error: BaseException) -> str:
    """Return a readable one-line message for a pyVmomi fault or plain exception."""
    msg = getattr(error, "msg", None)
    if not msg:
        match = _MSG_RE.search(str(error))
        msg = match.group(1) if match else None

    fault_name = getattr(error, "_wsdlName", "") or type(error).__name__
    fault_name = fault_name.rsplit(".", 1)[-1]
    for fault_type, title in FAULT_TITLES.items():
        if fault_type.rsplit(".", 1)[-1] == fault_name:
            return f"{title}: {msg}" if msg else title

    if msg:
        return msg
    text = str(error).strip()
    return text or type(error).__name__


class CollectorError(Exception):
    """Base class for every error raised or reported by the collector."""


# --- fatal -----------------------------------------------------------------

class AuthenticationError(CollectorError):
    """The endpoint rejected the credentials."""


class VSphereConnectionError(CollectorError, ConnectionError):
    """Network or TLS failure while opening the session."""


class EndpointError(CollectorError):
    """The endpoint does not expose exactly one usable datacenter."""


# --- per pattern -----------------------------------------------------------

class PatternError(CollectorError):
    """An error scoped to one configured name pattern."""

    template = "Cannot process {kind} list for '{pattern}'"

    def __init__(self, kind: ObjectKind, pattern: str, cause: Optional[BaseException] = None):
        self.kind = kind
        self.pattern = pattern
        self.cause = cause
        message = self.template.format(kind=kind.label, pattern=pattern)
        if cause is not None:
            message = f"{message}: {describe_fault(cause)}"
        super().__init__(message)


class ResolutionError(PatternError):
    """Listing the objects matching a pattern failed."""

    template = "Cannot read {kind} list for '{pattern}'"


class RetrievalError(PatternError):
    """The batched property retrieval for a pattern's objects failed."""

    template = "Cannot read {kind} properties for '{pattern}'"


class GatherCancelledError(PatternError):
    """The cycle was cancelled or hit its deadline before the pattern finished."""

    template = "Collection of {kind} list for '{pattern}' was cancelled"

    def __init__(self, kind: ObjectKind, pattern: str, deadline: bool = False):
        self.deadline = deadline
        super().__init__(kind, pattern)
        if deadline:
            self.args = (f"{self.args[0]} (deadline exceeded)",)


# --- per object ------------------------------------------------------------

class ExtractionError(CollectorError):
    """A property bag could not be turned into a metric record."""

    def __init__(self, ref: ManagedObjectRef, reason: str, pattern: str = ""):
        self.ref = ref
        self.reason = reason
        self.pattern = pattern
        where = f" (pattern '{pattern}')" if pattern else ""
        super().__init__(f"Cannot extract metrics for {ref}{where}: {reason}")
