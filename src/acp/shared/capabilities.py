"""Capability negotiation and gating.

Both sides advertise a CapabilitySet during ``initialize``. The effective set is
the per-flag AND of the two and is fixed for the life of the connection.
Methods and prompt content that depend on a capability are refused with
CapabilityNotSupported when the effective flag is false.
"""

import logging
from collections.abc import Iterable, Mapping
from typing import Any, Final

from pydantic import BaseModel

from acp.shared.exceptions import AcpError
from acp.types import CapabilitySet

logger = logging.getLogger(__name__)

CAPABILITY_FLAGS: Final[tuple[str, ...]] = ("text_files", "terminal", "embedded_context", "audio", "image")

METHOD_GATES: Final[dict[str, str]] = {
    "fs/read_text_file": "text_files",
    "fs/write_text_file": "text_files",
    "terminal/create": "terminal",
    "terminal/output": "terminal",
    "terminal/wait_for_exit": "terminal",
    "terminal/kill": "terminal",
    "terminal/release": "terminal",
}

CONTENT_GATES: Final[dict[str, str]] = {
    "image": "image",
    "audio": "audio",
    "resource": "embedded_context",
}


def negotiate(local: CapabilitySet, remote: CapabilitySet) -> CapabilitySet:
    """Compute the effective capability set.

    Experimental capabilities survive only when both sides advertise the key;
    the remote side's value is kept.
    """
    flags = {name: bool(getattr(local, name)) and bool(getattr(remote, name)) for name in CAPABILITY_FLAGS}
    experimental = {key: value for key, value in remote.experimental.items() if key in local.experimental}
    return CapabilitySet(**flags, experimental=experimental)


class CapabilityNegotiator:
    """Holds the effective capability set of one connection and answers gate queries."""

    def __init__(self) -> None:
        self._effective: CapabilitySet | None = None
        self.local: CapabilitySet | None = None
        self.remote: CapabilitySet | None = None

    @property
    def negotiated(self) -> bool:
        return self._effective is not None

    @property
    def effective(self) -> CapabilitySet:
        if self._effective is None:
            raise AcpError.invalid_state("Capabilities have not been negotiated")
        return self._effective

    def negotiate(self, local: CapabilitySet, remote: CapabilitySet) -> CapabilitySet:
        if self._effective is not None:
            raise AcpError.invalid_state("Capabilities already negotiated")
        self.local = local
        self.remote = remote
        self._effective = negotiate(local, remote)
        logger.debug("Negotiated capabilities: %s", self._effective.model_dump(exclude_defaults=True))
        return self._effective

    def supports(self, capability: str) -> bool:
        if self._effective is None:
            return False
        if capability in CAPABILITY_FLAGS:
            return bool(getattr(self._effective, capability))
        return capability in self._effective.experimental

    def check_method(self, method: str) -> None:
        """Raise CapabilityNotSupported if ``method`` needs a capability that is off."""
        capability = METHOD_GATES.get(method)
        if capability is not None and not self.supports(capability):
            raise AcpError.capability_not_supported(capability, method)

    def check_content(self, blocks: Iterable[BaseModel | Mapping[str, Any]], method: str = "session/prompt") -> None:
        """Raise CapabilityNotSupported if any content block needs a capability that is off."""
        for block in blocks:
            kind = block.get("type") if isinstance(block, Mapping) else getattr(block, "type", None)
            capability = CONTENT_GATES.get(kind) if isinstance(kind, str) else None
            if capability is not None and not self.supports(capability):
                raise AcpError.capability_not_supported(capability, method)
