"""
S.K.A.T.E. Trick/Turn Engine

This module applies player actions to a game session. Every action runs in
its own transaction under the game row lock and is applied at most once
per event id (see ``idempotency.run_locked_transition``). The turn rules
themselves live in ``turn_machine``.

Results are returned as ``TransitionResult`` envelopes. Callers fan them
out to players after the call returns, never while the lock is held.
"""

import uuid
from typing import Callable, Dict, Optional

from sqlalchemy.exc import IntegrityError

from ..database.database import DatabaseSession
from ..database.models import GameSession, GameStatus, TurnAction, utcnow
from ..utils.config import get_settings
from ..utils.logging_config import get_logger, log_game_event, log_player_action
from . import turn_machine
from .errors import RuleViolation
from .idempotency import run_locked_transition
from .results import GameView, TransitionResult

logger = get_logger(__name__)

# Game ids are derived from the creating event so a replayed create finds its game
GAME_ID_NAMESPACE = uuid.UUID("6f1c2a0e-3b9d-4d62-9a57-5b7f0c1e8a42")

FORFEIT_REASONS = ("voluntary", "turn_timeout", "disconnect_timeout")


def game_id_for_event(event_id: str) -> str:
    return str(uuid.uuid5(GAME_ID_NAMESPACE, event_id))


def _replay(game: GameSession) -> TransitionResult:
    return TransitionResult(success=True, already_processed=True, game=GameView.from_row(game))


def _not_found() -> TransitionResult:
    return TransitionResult.failure("Game not found")


def _rejected(error: RuleViolation) -> TransitionResult:
    return TransitionResult.failure(error.message)


async def apply_game_move(
    event_id: Optional[str],
    game_id: str,
    move: Callable[[GameSession], Dict],
) -> TransitionResult:
    """
    Run one turn-machine move against a locked game row.

    Args:
        event_id: Idempotency key, or None for transport side effects
        game_id: Game to change
        move: Function that validates and mutates the row and returns the
            letter outcome (``letter_gained``, ``is_eliminated``, ``game_over``)

    Returns:
        TransitionResult: Result of the move
    """
    settings = get_settings()

    async def transition(session, game: GameSession) -> TransitionResult:
        outcome = move(game)
        return TransitionResult(
            success=True,
            game=GameView.from_row(game),
            letter_gained=outcome.get("letter_gained", "") or "",
            is_eliminated=outcome.get("is_eliminated", False),
            game_over=outcome.get("game_over", False),
        )

    return await run_locked_transition(
        GameSession,
        game_id,
        event_id,
        transition,
        replay=_replay,
        not_found=_not_found,
        rejected=_rejected,
        ledger_size=settings.max_processed_events,
    )


def _missing_event_id(event_id: str) -> Optional[TransitionResult]:
    if not event_id:
        return TransitionResult.failure("Event id is required")
    return None


async def create_game(
    event_id: str,
    spot_id: str,
    creator_id: str,
    max_players: int = 4,
    min_players: int = 2,
) -> TransitionResult:
    """
    Create a pending game with the creator in the first seat.

    The game id is derived from ``event_id``, so a retried create returns
    the game it already made.

    Args:
        event_id: Idempotency key
        spot_id: Skate spot of the game
        creator_id: Player creating the game
        max_players: Seat limit (capped by ``MAX_PLAYERS_CAP``)
        min_players: Seats needed before the game starts

    Returns:
        TransitionResult: Result with the new game
    """
    missing = _missing_event_id(event_id)
    if missing:
        return missing
    if not spot_id or not creator_id:
        return TransitionResult.failure("Spot and creator are required")

    settings = get_settings()
    max_players = max(2, min(max_players, settings.max_players_cap))
    min_players = max(2, min(min_players, max_players))
    game_id = game_id_for_event(event_id)
    now = utcnow()

    try:
        async with DatabaseSession() as session:
            existing = await session.get(GameSession, game_id)
            if existing is not None:
                return _replay(existing)

            game = GameSession(
                id=game_id,
                spot_id=spot_id,
                creator_id=creator_id,
                players=[{"odv": creator_id, "letters": "", "connected": True, "disconnected_at": None}],
                max_players=max_players,
                min_players=min_players,
                status=GameStatus.PENDING,
                current_turn_index=0,
                current_action=TurnAction.SET,
                round_had_miss=False,
                processed_event_ids=[event_id],
                created_at=now,
                updated_at=now,
            )
            session.add(game)
            await session.flush()
            result = TransitionResult(success=True, game=GameView.from_row(game))
    except IntegrityError:
        # Another worker created it with the same event id first
        game = await get_game(game_id)
        if game is None:
            raise
        return TransitionResult(success=True, already_processed=True, game=game)

    log_player_action(creator_id, "game_created", game_id=game_id, spot_id=spot_id)
    logger.info(f"Game created - game_id={game_id} creator={creator_id}")
    return result


async def join_game(event_id: str, game_id: str, odv: str) -> TransitionResult:
    """Seat a player in a pending game."""
    missing = _missing_event_id(event_id)
    if missing:
        return missing
    settings = get_settings()
    result = await apply_game_move(
        event_id, game_id,
        lambda game: turn_machine.apply_join(game, odv, utcnow(), settings.turn_timeout_seconds),
    )
    if result.success and not result.already_processed:
        log_player_action(odv, "game_joined", game_id=game_id)
        if result.game.status == GameStatus.ACTIVE.value:
            log_game_event(game_id, "game_started", players=len(result.game.players))
    return result


async def submit_trick(event_id: str, game_id: str, odv: str, trick_name: str) -> TransitionResult:
    """
    Set a trick, or record a landed attempt of the current trick.

    Args:
        event_id: Idempotency key
        game_id: Game ID
        odv: Acting player
        trick_name: Trick being set (ignored in the attempt phase)

    Returns:
        TransitionResult: Result of the move
    """
    missing = _missing_event_id(event_id)
    if missing:
        return missing
    settings = get_settings()
    result = await apply_game_move(
        event_id, game_id,
        lambda game: turn_machine.apply_submit_trick(game, odv, trick_name, utcnow(), settings.turn_timeout_seconds),
    )
    if result.success and not result.already_processed:
        log_game_event(game_id, "trick_submitted", odv=odv, trick=result.game.current_trick or trick_name)
    return result


async def pass_trick(event_id: str, game_id: str, odv: str) -> TransitionResult:
    """
    Record a missed attempt. The attempter takes the next letter.

    Args:
        event_id: Idempotency key
        game_id: Game ID
        odv: Acting player

    Returns:
        TransitionResult: Result with ``letter_gained`` and ``is_eliminated``
    """
    missing = _missing_event_id(event_id)
    if missing:
        return missing
    settings = get_settings()
    result = await apply_game_move(
        event_id, game_id,
        lambda game: turn_machine.apply_pass_trick(game, odv, utcnow(), settings.turn_timeout_seconds),
    )
    if result.success and not result.already_processed:
        log_game_event(game_id, "trick_passed", odv=odv, letter=result.letter_gained)
        if result.game_over:
            log_game_event(game_id, "game_completed", winner_id=result.game.winner_id)
    return result


async def bail_set(event_id: str, game_id: str, odv: str) -> TransitionResult:
    """The setter bails their own trick, takes a letter and loses offense."""
    missing = _missing_event_id(event_id)
    if missing:
        return missing
    settings = get_settings()
    result = await apply_game_move(
        event_id, game_id,
        lambda game: turn_machine.apply_bail_set(game, odv, utcnow(), settings.turn_timeout_seconds),
    )
    if result.success and not result.already_processed:
        log_game_event(game_id, "setter_bailed", odv=odv, letter=result.letter_gained)
        if result.game_over:
            log_game_event(game_id, "game_completed", winner_id=result.game.winner_id)
    return result


async def forfeit_game(event_id: str, game_id: str, odv: str, reason: str = "voluntary") -> TransitionResult:
    """
    End the game with ``odv`` conceding.

    Args:
        event_id: Idempotency key
        game_id: Game ID
        odv: Player forfeiting
        reason: voluntary, turn_timeout or disconnect_timeout

    Returns:
        TransitionResult: Result with the completed game
    """
    missing = _missing_event_id(event_id)
    if missing:
        return missing
    if reason not in FORFEIT_REASONS:
        return TransitionResult.failure(f"Unknown forfeit reason: {reason}")

    result = await apply_game_move(
        event_id, game_id,
        lambda game: turn_machine.apply_forfeit(game, odv, utcnow()),
    )
    if result.success and not result.already_processed:
        log_player_action(odv, "game_forfeited", game_id=game_id, reason=reason)
        log_game_event(game_id, "game_completed", winner_id=result.game.winner_id, reason=reason)
    return result


async def handle_disconnect(game_id: str, odv: str) -> TransitionResult:
    """
    Mark a player disconnected. Pauses the game if they held the turn.

    Disconnects come from the transport, not the player, so they are not
    keyed by an event id. The reconnect window is enforced by the timeout
    sweep.
    """
    result = await apply_game_move(
        None, game_id,
        lambda game: turn_machine.apply_disconnect(game, odv, utcnow()),
    )
    if result.success:
        logger.info(f"Player disconnected - game_id={game_id} odv={odv} status={result.game.status}")
    return result


async def handle_reconnect(event_id: str, game_id: str, odv: str) -> TransitionResult:
    """Mark a player connected again; resumes the game once everyone is back."""
    missing = _missing_event_id(event_id)
    if missing:
        return missing
    settings = get_settings()
    result = await apply_game_move(
        event_id, game_id,
        lambda game: turn_machine.apply_reconnect(game, odv, utcnow(), settings.turn_timeout_seconds),
    )
    if result.success and not result.already_processed:
        logger.info(f"Player reconnected - game_id={game_id} odv={odv} status={result.game.status}")
    return result


async def get_game(game_id: str) -> Optional[GameView]:
    """
    Get a read-only view of a game.

    Returns:
        Optional[GameView]: The game, or None if it does not exist
    """
    async with DatabaseSession() as session:
        game = await session.get(GameSession, game_id)
        return GameView.from_row(game) if game else None
