"""
Telegram Notification Channels

Telegram implementations of the dispatcher interfaces:
- ``TelegramNotifier`` sends a direct message to a player (a player's odv is
  their Telegram user id)
- ``TelegramRoomBroadcaster`` posts room events to the group chat a game or
  battle was started in

The room-to-chat map is a transport binding only; game state always comes
from the database.
"""

from typing import Any, Dict, Optional

from ..utils.logging_config import get_logger

logger = get_logger(__name__)


def _standings(payload: Dict[str, Any]) -> str:
    lines = []
    for entry in payload.get("finalStandings") or []:
        letters = entry.get("letters") or "-"
        lines.append(f"• {entry.get('odv', '')}: {letters}")
    return "\n".join(lines)


def render_event(event: str, payload: Dict[str, Any]) -> str:
    """
    Render a room event or notification as chat text.

    Args:
        event: Event name (``game:turn``, ``your_turn``, ...)
        payload: Event payload

    Returns:
        str: Message text
    """
    if event == "game:state":
        seats = ", ".join(p["odv"] for p in payload.get("players", []))
        return f"🛹 Game `{payload.get('id', '')}` is {payload.get('status', '')}\nPlayers: {seats}"
    if event == "game:trick":
        return f"🛹 {payload['odv']} set a trick: **{payload['trickName']}**"
    if event in ("game:turn", "your_turn"):
        verb = "set a trick" if payload.get("action") == "set" else f"land the {payload.get('trickName') or 'trick'}"
        who = "Your" if event == "your_turn" else f"{payload['currentPlayer']}'s"
        return f"⏱️ {who} turn to {verb} ({payload.get('timeLimit', 0)}s)"
    if event == "game:letter":
        total = payload.get("totalLetters", "")
        suffix = f" (now {total})" if total else ""
        out = " and is out!" if payload.get("eliminated") else ""
        return f"❌ {payload['odv']} takes a letter: {payload.get('letters') or '-'}{suffix}{out}"
    if event == "game:paused":
        return (f"⏸️ Game paused: {payload.get('disconnectedPlayer') or 'a player'} disconnected. "
                f"{payload.get('reconnectTimeout', 0)}s to reconnect.")
    if event == "game:resumed":
        return "▶️ Game resumed"
    if event in ("game:ended", "game_ended"):
        winner = payload.get("winnerId") or "nobody"
        standings = _standings(payload)
        return f"🏆 Game over! Winner: {winner}" + (f"\n\n{standings}" if standings else "")
    if event == "round:disputed":
        return f"⚖️ Round `{payload.get('roundId', '')}` is disputed and waits for review"
    if event == "dispute_filed":
        reason = payload.get("reason") or "no reason given"
        return f"⚖️ Your opponent disputed round `{payload.get('roundId', '')}`: {reason}"
    if event == "battle:vote":
        return f"🗳️ Vote received ({payload.get('votesCast', 0)}/2)"
    if event in ("battle:completed", "battle_completed"):
        score = ", ".join(f"{odv}: {points}" for odv, points in (payload.get("finalScore") or {}).items())
        text = f"🏁 Battle over! Winner: {payload.get('winnerId') or 'nobody'}"
        if score:
            text += f"\nScore: {score}"
        if payload.get("reason") and payload["reason"] != "votes":
            text += f"\n({payload['reason'].replace('_', ' ')})"
        return text
    return f"{event}: {payload}"


class TelegramNotifier:
    """Direct-message notifications over the Telegram bot API."""

    def __init__(self, bot):
        self.bot = bot

    async def notify(self, target_odv: str, event_type: str, payload: Dict[str, Any]) -> None:
        try:
            chat_id = int(target_odv)
        except (TypeError, ValueError):
            logger.debug(f"Player has no Telegram chat - odv={target_odv}")
            return
        await self.bot.send_message(chat_id=chat_id, text=render_event(event_type, payload))


class TelegramRoomBroadcaster:
    """Posts room events to the group chat bound to the room."""

    def __init__(self, bot):
        self.bot = bot
        self.rooms: Dict[str, int] = {}

    def bind(self, room: str, chat_id: int) -> None:
        self.rooms[room] = chat_id

    def unbind(self, room: str) -> None:
        self.rooms.pop(room, None)

    def chat_for(self, room: str) -> Optional[int]:
        return self.rooms.get(room)

    async def broadcast(self, room: str, event: str, payload: Dict[str, Any]) -> None:
        chat_id = self.rooms.get(room)
        if chat_id is None:
            logger.debug(f"No chat bound to room - room={room} event={event}")
            return
        await self.bot.send_message(chat_id=chat_id, text=render_event(event, payload))
        if event in ("game:ended", "battle:completed"):
            self.unbind(room)
