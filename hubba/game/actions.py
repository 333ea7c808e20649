"""
Action Kinds and Event Identifiers

Transport event names (socket events, bot commands, scheduler ticks) are
parsed once into ``ActionKind`` so that unknown kinds are rejected at the
boundary instead of deep in the engine.
"""

import secrets
import time
from enum import Enum
from typing import Optional

from .errors import UnknownActionError


class ActionKind(Enum):
    """Every action the engine accepts."""
    CREATE = "create"
    JOIN = "join"
    TRICK = "trick"
    PASS = "pass"
    BAIL = "bail"
    FORFEIT = "forfeit"
    DISCONNECT = "disconnect"
    RECONNECT = "reconnect"
    TIMEOUT = "timeout"
    DISCONNECT_TIMEOUT = "disconnect_timeout"
    VOTE = "vote"
    VOTE_INIT = "vote_init"
    VOTE_TIMEOUT = "vote_timeout"


def parse_action_kind(name: str) -> ActionKind:
    """
    Parse a transport event name such as ``game:pass`` or ``pass``.

    Args:
        name: Event name, optionally prefixed with ``game:`` or ``battle:``

    Returns:
        ActionKind: The matching action kind

    Raises:
        UnknownActionError: If the name is not a known action
    """
    key = (name or "").strip().lower()
    for prefix in ("game:", "battle:"):
        if key.startswith(prefix):
            key = key[len(prefix):]
            break
    try:
        return ActionKind(key)
    except ValueError:
        raise UnknownActionError(f"Unknown action: {name!r}") from None


def generate_event_id(kind: ActionKind, odv: str, entity_id: str, sequence_key: Optional[str] = None) -> str:
    """
    Build an event id for a game or battle action.

    With a ``sequence_key`` the id is deterministic, so a retried scheduler
    tick produces the same id and is deduplicated. Without one the id is
    unique; callers must keep it and reuse it when they retry.

    Args:
        kind: Action kind
        odv: Acting player
        entity_id: Game or battle id
        sequence_key: Optional stable suffix (e.g. ``deadline-<iso>``)

    Returns:
        str: Event id
    """
    if sequence_key:
        return f"{kind.value}-{entity_id}-{odv}-{sequence_key}"
    return f"{kind.value}-{entity_id}-{odv}-{int(time.time() * 1000)}-{secrets.token_hex(4)}"
