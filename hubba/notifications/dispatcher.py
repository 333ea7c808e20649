"""
Notification and Broadcast Dispatch

The engine never talks to players while it holds a row lock. Callers pass
the result of a committed operation to ``GameEventPublisher``, which turns
it into room broadcasts and direct notifications.

Payload values the transport could drop are sent as ``""`` instead of
None (``letters: ""``, ``winnerId: ""``). Dispatch failures are logged and
swallowed: the state change already committed and is not rolled back.
"""

from typing import Any, Dict, List, Optional, Protocol, Tuple

from ..game.actions import ActionKind
from ..game.results import GameView, JudgingResult, TransitionResult, VoteResult
from ..utils.config import get_settings
from ..utils.logging_config import get_logger

logger = get_logger(__name__)


class NotificationDispatcher(Protocol):
    """Delivers a direct notification to one player."""

    async def notify(self, target_odv: str, event_type: str, payload: Dict[str, Any]) -> None:
        ...


class BroadcastChannel(Protocol):
    """Fans an event out to every client subscribed to a room."""

    async def broadcast(self, room: str, event: str, payload: Dict[str, Any]) -> None:
        ...


class InMemoryBroadcastChannel:
    """Broadcast channel and dispatcher that records what it was asked to send."""

    def __init__(self):
        self.broadcasts: List[Tuple[str, str, Dict[str, Any]]] = []
        self.notifications: List[Tuple[str, str, Dict[str, Any]]] = []

    async def broadcast(self, room: str, event: str, payload: Dict[str, Any]) -> None:
        self.broadcasts.append((room, event, payload))

    async def notify(self, target_odv: str, event_type: str, payload: Dict[str, Any]) -> None:
        self.notifications.append((target_odv, event_type, payload))

    def events(self, room: Optional[str] = None) -> List[str]:
        return [event for r, event, _ in self.broadcasts if room is None or r == room]


def final_standings(game: GameView) -> List[Dict[str, Any]]:
    return [{"odv": p.odv, "letters": p.letters or "", "eliminated": p.eliminated} for p in game.players]


class GameEventPublisher:
    """
    Maps engine results to broadcast events and notifications.

    Room names are game ids and battle ids.

    Game events: ``game:state``, ``game:trick``, ``game:letter``,
    ``game:turn``, ``game:paused``, ``game:resumed``, ``game:ended``.
    Judging: ``round:disputed``. Battles: ``battle:vote``, ``battle:completed``.
    """

    def __init__(self, channel: Optional[BroadcastChannel] = None, notifier: Optional[NotificationDispatcher] = None):
        self.channel = channel
        self.notifier = notifier

    async def _broadcast(self, room: str, event: str, payload: Dict[str, Any]) -> None:
        if self.channel is None:
            return
        try:
            await self.channel.broadcast(room, event, payload)
        except Exception as e:
            logger.error(f"Broadcast failed - room={room} event={event} error={str(e)}")

    async def _notify(self, target_odv: Optional[str], event_type: str, payload: Dict[str, Any]) -> None:
        if self.notifier is None or not target_odv:
            return
        try:
            await self.notifier.notify(target_odv, event_type, payload)
        except Exception as e:
            logger.error(f"Notification failed - target={target_odv} event={event_type} error={str(e)}")

    async def publish_game_result(
        self,
        result: TransitionResult,
        kind: Optional[ActionKind] = None,
        actor: Optional[str] = None,
    ) -> None:
        """
        Publish the events of one committed game transition.

        Failed and already-processed results publish nothing.

        Args:
            result: Result returned by the engine
            kind: Action that produced it (None for sweep transitions)
            actor: Player who acted
        """
        if not result.success or result.already_processed or result.game is None:
            return
        game = result.game
        room = game.id

        if kind in (ActionKind.CREATE, ActionKind.JOIN):
            await self._broadcast(room, "game:state", game.to_dict())

        if kind == ActionKind.TRICK and game.setter_id == actor and game.current_trick:
            await self._broadcast(room, "game:trick", {
                "gameId": room,
                "odv": actor or "",
                "trickName": game.current_trick or "",
            })

        if kind in (ActionKind.PASS, ActionKind.BAIL):
            player = game.player(actor) if actor else None
            await self._broadcast(room, "game:letter", {
                "gameId": room,
                "odv": actor or "",
                "letters": result.letter_gained or "",
                "totalLetters": player.letters if player else "",
                "eliminated": result.is_eliminated,
            })

        if game.status == "completed":
            payload = {
                "gameId": room,
                "winnerId": game.winner_id or "",
                "finalStandings": final_standings(game),
            }
            await self._broadcast(room, "game:ended", payload)
            for player in game.players:
                await self._notify(player.odv, "game_ended", payload)
            return

        if game.status == "paused":
            await self._broadcast(room, "game:paused", {
                "gameId": room,
                "disconnectedPlayer": actor or "",
                "reconnectTimeout": get_settings().reconnect_window_seconds,
            })
            return

        if kind == ActionKind.RECONNECT:
            await self._broadcast(room, "game:resumed", {"gameId": room, "odv": actor or ""})

        if game.status == "active" and kind != ActionKind.DISCONNECT:
            await self.publish_turn(game)

    async def publish_turn(self, game: GameView) -> None:
        """Tell the room and the player whose turn it is."""
        payload = {
            "gameId": game.id,
            "currentPlayer": game.current_player or "",
            "action": game.current_action,
            "trickName": game.current_trick or "",
            "timeLimit": get_settings().turn_timeout_seconds,
        }
        await self._broadcast(game.id, "game:turn", payload)
        await self._notify(game.current_player, "your_turn", payload)

    async def publish_vote_result(self, result: VoteResult, voter: Optional[str] = None) -> None:
        """Publish a committed vote or battle completion."""
        if not result.success or result.already_processed or result.battle is None:
            return
        battle = result.battle
        room = battle.battle_id

        if voter:
            await self._broadcast(room, "battle:vote", {
                "battleId": room,
                "odv": voter,
                "votesCast": len(battle.votes),
            })

        if result.battle_complete:
            payload = {
                "battleId": room,
                "winnerId": result.winner_id or "",
                "finalScore": dict(result.final_score or {}),
                "reason": battle.completion_reason or "",
            }
            await self._broadcast(room, "battle:completed", payload)
            for participant in (battle.creator_id, battle.opponent_id):
                await self._notify(participant, "battle_completed", payload)

    async def publish_judging_result(self, result: JudgingResult, game_id: str, actor: Optional[str] = None) -> None:
        """
        Publish a round or dispute outcome.

        A dispute notifies the opponent; when no opponent is known the
        notification is skipped.
        """
        if not result.success or result.already_processed:
            return
        game_round = result.round

        if result.disputed and result.dispute is None and game_round and game_round.status == "disputed":
            # Claim and confirmation disagree
            await self._broadcast(game_id, "round:disputed", {
                "gameId": game_id,
                "roundId": game_round.id,
                "disputeId": "",
                "disputedBy": actor or "",
            })
        elif result.dispute is not None and result.dispute.status == "open":
            await self._broadcast(game_id, "round:disputed", {
                "gameId": game_id,
                "roundId": result.dispute.round_id,
                "disputeId": result.dispute.id,
                "disputedBy": result.dispute.disputed_by,
            })

        if result.disputed and result.result is None:
            if result.opponent_id:
                await self._notify(result.opponent_id, "dispute_filed", {
                    "gameId": game_id,
                    "roundId": game_round.id if game_round else "",
                    "reason": result.dispute.reason or "" if result.dispute else "",
                })
            else:
                logger.info(f"No opponent to notify about dispute - game_id={game_id}")

        if result.letter_gained and game_round is not None:
            await self._broadcast(game_id, "game:letter", {
                "gameId": game_id,
                "odv": game_round.defense_uid,
                "letters": result.letter_gained or "",
            })

        if result.game_over:
            await self._broadcast(game_id, "game:ended", {
                "gameId": game_id,
                "winnerId": result.winner_id or "",
                "finalStandings": [],
            })
