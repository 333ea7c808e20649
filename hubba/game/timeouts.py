"""
Timeout Sweep

Deadlines never change a game by themselves. This sweep looks for expired
turns, reconnect windows and voting windows, and settles each one through
the normal transactional operations with an event id derived from the
deadline, so a retried sweep or a second worker applies it once and a
late player action and a timeout cannot both win.

- attempt phase past its deadline: the defense takes the round, no letter
  is given and offense rotates
- set phase past its deadline: the setter forfeits (``turn_timeout``), or
  the turn moves on if the setter was already eliminated
- paused game whose disconnected player stayed away past the reconnect
  window: that player forfeits (``disconnect_timeout``);
  eliminated players are never forfeited
- battle past its voting deadline: force-completed
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy import select

from ..database.database import DatabaseSession
from ..database.models import BattleStatus, BattleVoteState, GameSession, GameStatus, TurnAction, utcnow
from ..utils.config import get_settings
from ..utils.logging_config import get_logger, log_game_event
from . import turn_machine
from .actions import ActionKind, generate_event_id
from .battles import force_complete_expired
from .engine import apply_game_move
from .errors import RuleViolation
from .letters import is_eliminated
from .results import TransitionResult, VoteResult

logger = get_logger(__name__)


@dataclass
class SweepReport:
    """Transitions applied by one sweep."""
    games: List[TransitionResult] = field(default_factory=list)
    battles: List[VoteResult] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.games) + len(self.battles)


def turn_timeout_event_id(game_id: str, odv: str, deadline: datetime) -> str:
    return generate_event_id(ActionKind.TIMEOUT, odv, game_id, f"deadline-{deadline.isoformat()}")


def disconnect_timeout_event_id(game_id: str, odv: str, disconnected_at: str) -> str:
    return generate_event_id(ActionKind.DISCONNECT_TIMEOUT, odv, game_id, f"disconnected-{disconnected_at}")


async def _expire_turn(game_id: str, odv: str, action: TurnAction, deadline: datetime, now: datetime) -> TransitionResult:
    settings = get_settings()
    event_id = turn_timeout_event_id(game_id, odv, deadline)

    if action == TurnAction.ATTEMPT:
        result = await apply_game_move(
            event_id, game_id,
            lambda game: turn_machine.apply_attempt_timeout(game, deadline, now, settings.turn_timeout_seconds),
        )
        if result.success and not result.already_processed:
            log_game_event(game_id, "attempt_timeout", odv=odv)
            logger.info(f"Turn timeout - defense takes the round - game_id={game_id} timed_out={odv}")
        return result

    result = await apply_game_move(
        event_id, game_id,
        lambda game: turn_machine.apply_set_timeout(game, odv, deadline, now, settings.turn_timeout_seconds),
    )
    if result.success and not result.already_processed:
        if result.game_over:
            log_game_event(game_id, "game_completed", winner_id=result.game.winner_id, reason="turn_timeout")
            logger.info(f"Turn timeout - setter forfeits - game_id={game_id} odv={odv}")
        else:
            logger.info(f"Turn passed on from eliminated player - game_id={game_id} odv={odv}")
    return result


async def _expire_disconnect(game_id: str, odv: str, disconnected_at: str, now: datetime) -> TransitionResult:
    event_id = disconnect_timeout_event_id(game_id, odv, disconnected_at)

    def forfeit_absent(game: GameSession):
        seat = game.seat_of(odv)
        if seat is None or seat.get("connected", True) or seat.get("disconnected_at") != disconnected_at:
            raise RuleViolation("Player reconnected")
        return turn_machine.apply_forfeit(game, odv, now)

    result = await apply_game_move(event_id, game_id, forfeit_absent)
    if result.success and not result.already_processed:
        log_game_event(game_id, "game_completed", winner_id=result.game.winner_id, reason="disconnect_timeout")
        logger.info(f"Reconnect window expired - game_id={game_id} odv={odv}")
    return result


async def process_timeouts(now: Optional[datetime] = None) -> SweepReport:
    """
    Settle every expired deadline once.

    Args:
        now: Sweep time as naive UTC (defaults to the current time)

    Returns:
        SweepReport: The transitions that were applied
    """
    settings = get_settings()
    now = now or utcnow()
    reconnect_cutoff = now - timedelta(seconds=settings.reconnect_window_seconds)
    report = SweepReport()

    async with DatabaseSession() as session:
        expired_turns = (await session.execute(
            select(GameSession).where(
                GameSession.status == GameStatus.ACTIVE,
                GameSession.turn_deadline_at < now,
            )
        )).scalars().all()
        paused_games = (await session.execute(
            select(GameSession).where(GameSession.status == GameStatus.PAUSED)
        )).scalars().all()
        expired_battles = (await session.execute(
            select(BattleVoteState.battle_id).where(
                BattleVoteState.status == BattleStatus.VOTING,
                BattleVoteState.vote_deadline_at < now,
            )
        )).scalars().all()

        turn_jobs = []
        for game in expired_turns:
            players = game.players or []
            if 0 <= game.current_turn_index < len(players):
                turn_jobs.append((game.id, players[game.current_turn_index]["odv"], game.current_action, game.turn_deadline_at))

        disconnect_jobs = []
        for game in paused_games:
            for player in game.players or []:
                disconnected_at = player.get("disconnected_at")
                if player.get("connected", True) or not disconnected_at or is_eliminated(player.get("letters", "")):
                    continue
                if datetime.fromisoformat(disconnected_at) < reconnect_cutoff:
                    disconnect_jobs.append((game.id, player["odv"], disconnected_at))
                    # One forfeit ends the game
                    break

    for game_id, odv, action, deadline in turn_jobs:
        result = await _expire_turn(game_id, odv, action, deadline, now)
        if result.success and not result.already_processed:
            report.games.append(result)

    for game_id, odv, disconnected_at in disconnect_jobs:
        result = await _expire_disconnect(game_id, odv, disconnected_at, now)
        if result.success and not result.already_processed:
            report.games.append(result)

    for battle_id in expired_battles:
        result = await force_complete_expired(battle_id, now)
        if result.success and not result.already_processed:
            report.battles.append(result)

    if report.total:
        logger.info(f"Timeout sweep applied {len(report.games)} game and {len(report.battles)} battle transitions")
    return report


async def run_timeout_sweeper(interval: Optional[int] = None, publisher=None) -> None:
    """
    Run ``process_timeouts`` forever as a background task.

    A failing sweep is logged and retried on the next tick; cancel the task
    to stop it.

    Args:
        interval: Seconds between sweeps (defaults to ``TIMEOUT_SWEEP_INTERVAL``)
        publisher: Optional ``GameEventPublisher`` told about every applied transition
    """
    interval = interval or get_settings().timeout_sweep_interval
    logger.info(f"Timeout sweeper started - interval={interval}s")

    while True:
        try:
            report = await process_timeouts()
            if publisher is not None:
                for result in report.games:
                    await publisher.publish_game_result(result)
                for result in report.battles:
                    await publisher.publish_vote_result(result)
        except Exception as e:
            logger.error(f"Error in timeout sweep: {e}")
        await asyncio.sleep(interval)
