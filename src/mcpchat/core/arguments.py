"""Lenient decoding of tool-call argument payloads."""

import json
import logging
from typing import (
    Any,
    Dict,
    Mapping,
)

logger = logging.getLogger(__name__)


def decode_arguments(raw: str | Mapping[str, Any] | None) -> Dict[str, Any]:
    """
    Turn a provider's raw argument payload into a keyword dict.

    Never raises.  Empty or whitespace-only input yields ``{}``; so does anything that is not
    a JSON object (the failure is logged, the tool still runs with no arguments).

    Parameters
    ----------
    raw:
        JSON text as sent by the provider, or an already-decoded mapping.

    Returns
    -------
    Dict[str, Any]
        The decoded arguments.
    """

    if raw is None:
        return {}
    if isinstance(raw, Mapping):
        return dict(raw)
    if not isinstance(raw, str) or not raw.strip():
        return {}

    try:
        parsed = json.loads(raw)
    except (json.JSONDecodeError, ValueError) as exc:
        logger.warning("Malformed tool arguments %r, using empty arguments: %s", raw, exc)
        return {}

    if not isinstance(parsed, dict):
        logger.warning(
            "Tool arguments decoded to %s instead of an object, using empty arguments",
            type(parsed).__name__,
        )
        return {}
    return parsed
