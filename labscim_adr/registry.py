"""Named ADR handlers available to the network server."""

from __future__ import annotations

import logging

from .adr import LabSCimHandler

logger = logging.getLogger(__name__)

DEFAULT_HANDLER_ID = "labscimadr"

# Mapping of handler ids to their implementation
ADR_HANDLERS = {}


def register(handler) -> None:
    """Register ``handler`` under its ``id()``, replacing any previous one."""
    handler_id = handler.id()
    if handler_id in ADR_HANDLERS:
        logger.debug(f"ADR handler {handler_id!r} replaced")
    ADR_HANDLERS[handler_id] = handler


def get_handler(handler_id: str = DEFAULT_HANDLER_ID):
    """Return the handler registered as ``handler_id``."""
    try:
        return ADR_HANDLERS[handler_id]
    except KeyError:
        known = ", ".join(sorted(ADR_HANDLERS))
        raise KeyError(f"Unknown ADR handler {handler_id!r} (available: {known})") from None


def available() -> list[tuple[str, str]]:
    """List ``(id, name)`` of every registered handler."""
    return [(hid, h.name()) for hid, h in sorted(ADR_HANDLERS.items())]


register(LabSCimHandler())
