"""
Round Judging and Disputes

Video-judged rounds are settled between the two players: the offense sets
a trick on video, the defense replies, the offense claims a result and the
defense confirms it. When the two disagree, or either player files a formal
dispute, the round waits for ``resolve_dispute``.

A letter only reaches the game session once a round is settled, so letters
never have to be taken back.

Locks are always taken game row first, then round or dispute row.
"""

from typing import Optional

from sqlalchemy import func, select

from ..database.models import (
    DisputeStatus,
    GameDispute,
    GameRound,
    GameSession,
    RoundResult,
    RoundStatus,
    utcnow,
)
from ..utils.config import get_settings
from ..utils.logging_config import get_logger, log_game_event
from . import turn_machine
from .errors import RuleViolation
from .idempotency import lock_row, run_locked_transition
from .letters import is_eliminated
from .results import DisputeView, JudgingResult, RoundView

logger = get_logger(__name__)

# Disputed clips replay at quarter speed: a 15 second clip takes 60 seconds to review
SLOW_MOTION_RATE = 0.25
REVIEW_SLOWDOWN = 4


def review_duration(clip_seconds: float) -> float:
    """
    Time needed to watch a clip in slow-motion review.

    Args:
        clip_seconds: Clip length at normal speed

    Returns:
        float: Playback time at ``SLOW_MOTION_RATE``
    """
    if clip_seconds < 0:
        raise ValueError("Clip length cannot be negative")
    return clip_seconds / SLOW_MOTION_RATE


def _parse_result(value: str) -> RoundResult:
    try:
        return RoundResult((value or "").strip().lower())
    except ValueError:
        raise RuleViolation("Result must be landed or missed") from None


def _require_running(game: GameSession) -> None:
    if game.status in turn_machine.TERMINAL_STATUSES:
        raise RuleViolation("Game is no longer active")


async def _lock_round(session, game: GameSession, round_id: str) -> GameRound:
    game_round = await lock_row(session, GameRound, round_id)
    if game_round is None or game_round.game_id != game.id:
        raise RuleViolation("Round not found", status=404)
    return game_round


def _apply_defense_letter(game: GameSession, game_round: GameRound, result: JudgingResult) -> None:
    """
    Give the defense player their letter for a missed round.

    If the letter knocks out the turn holder or the setter while the game
    goes on, the turn is handed on.
    """
    players = turn_machine.copy_players(game)
    index = turn_machine.find_seat(players, game_round.defense_uid)
    if index < 0 or is_eliminated(players[index].get("letters", "")):
        return
    now = utcnow()
    outcome = turn_machine.give_letter(game, players, index, now)
    if not outcome["game_over"]:
        turn_machine.repair_turn(game, now, get_settings().turn_timeout_seconds)
    result.letter_gained = outcome["letter_gained"]
    result.game_over = outcome["game_over"]
    result.winner_id = game.winner_id


async def _run(game_id: str, action) -> JudgingResult:
    return await run_locked_transition(
        GameSession,
        game_id,
        None,
        action,
        replay=lambda game: JudgingResult(success=True, already_processed=True),
        not_found=lambda: JudgingResult.failure("Game not found", status=404),
        rejected=lambda e: JudgingResult.failure(e.message, status=e.status),
        ledger_size=0,
    )


async def open_round(game_id: str, offense_uid: str, defense_uid: str) -> JudgingResult:
    """
    Open a judged round between two seated players.

    Returns:
        JudgingResult: Result with the new round
    """
    async def action(session, game: GameSession) -> JudgingResult:
        _require_running(game)
        seated = {p["odv"] for p in game.players or []}
        if offense_uid not in seated or defense_uid not in seated:
            raise RuleViolation("Player not in game")
        if offense_uid == defense_uid:
            raise RuleViolation("Offense and defense must be different players")

        now = utcnow()
        game_round = GameRound(
            game_id=game.id,
            offense_uid=offense_uid,
            defense_uid=defense_uid,
            status=RoundStatus.AWAITING_SET,
            disputed=False,
            created_at=now,
            updated_at=now,
        )
        session.add(game_round)
        await session.flush()
        return JudgingResult(success=True, round=RoundView.from_row(game_round))

    result = await _run(game_id, action)
    if result.success:
        log_game_event(game_id, "round_opened", round_id=result.round.id, offense=offense_uid)
    return result


async def record_set(game_id: str, round_id: str, odv: str, trick_description: str, video_ref: str) -> JudgingResult:
    """The offense records the trick they set."""
    async def action(session, game: GameSession) -> JudgingResult:
        _require_running(game)
        game_round = await _lock_round(session, game, round_id)
        if odv != game_round.offense_uid:
            raise RuleViolation("Only offense can set the trick", status=403)
        if game_round.status != RoundStatus.AWAITING_SET:
            raise RuleViolation("Round is not awaiting a set")
        if not (trick_description or "").strip() or not video_ref:
            raise RuleViolation("Trick description and clip are required")

        game_round.trick_description = trick_description.strip()
        game_round.set_video_ref = video_ref
        game_round.status = RoundStatus.AWAITING_RESPONSE
        game_round.updated_at = utcnow()
        return JudgingResult(success=True, round=RoundView.from_row(game_round))

    return await _run(game_id, action)


async def record_reply(game_id: str, round_id: str, odv: str, video_ref: str) -> JudgingResult:
    """The defense records their reply clip."""
    async def action(session, game: GameSession) -> JudgingResult:
        _require_running(game)
        game_round = await _lock_round(session, game, round_id)
        if odv != game_round.defense_uid:
            raise RuleViolation("Only defense can reply", status=403)
        if game_round.status != RoundStatus.AWAITING_RESPONSE or game_round.reply_video_ref:
            raise RuleViolation("Round is not awaiting a reply")
        if not video_ref:
            raise RuleViolation("Reply clip is required")

        game_round.reply_video_ref = video_ref
        game_round.updated_at = utcnow()
        return JudgingResult(success=True, round=RoundView.from_row(game_round))

    return await _run(game_id, action)


async def claim_round(game_id: str, round_id: str, odv: str, result: str) -> JudgingResult:
    """The offense claims whether the defense landed the trick."""
    async def action(session, game: GameSession) -> JudgingResult:
        _require_running(game)
        game_round = await _lock_round(session, game, round_id)
        if odv != game_round.offense_uid:
            raise RuleViolation("Only offense can claim a result", status=403)
        if game_round.status != RoundStatus.AWAITING_RESPONSE:
            raise RuleViolation("Round is not awaiting a claim")
        if not game_round.set_video_ref or not game_round.reply_video_ref:
            raise RuleViolation("Both clips are required before judging")
        claim = _parse_result(result)

        game_round.offense_claim = claim
        game_round.status = RoundStatus.AWAITING_CONFIRMATION
        game_round.updated_at = utcnow()
        return JudgingResult(success=True, round=RoundView.from_row(game_round), result=claim.value)

    return await _run(game_id, action)


async def confirm_round(game_id: str, round_id: str, odv: str, result: str) -> JudgingResult:
    """
    The defense confirms the result of a round.

    If the offense claimed something else the round goes to dispute and no
    letter is applied. Otherwise the round is resolved and a ``missed``
    result gives the defense player their next letter.

    Args:
        game_id: Game ID
        round_id: Round ID
        odv: Acting player (must be the defense)
        result: ``landed`` or ``missed``

    Returns:
        JudgingResult: ``disputed`` and ``result`` describe the outcome;
        a call from the offense fails with status 403
    """
    async def action(session, game: GameSession) -> JudgingResult:
        _require_running(game)
        game_round = await _lock_round(session, game, round_id)
        if odv != game_round.defense_uid:
            raise RuleViolation("Only defense can confirm", status=403)
        if game_round.status not in (RoundStatus.AWAITING_RESPONSE, RoundStatus.AWAITING_CONFIRMATION):
            raise RuleViolation("Round is not awaiting confirmation")
        confirmed = _parse_result(result)

        game_round.defense_claim = confirmed
        game_round.updated_at = utcnow()
        if game_round.offense_claim is not None and game_round.offense_claim != confirmed:
            game_round.status = RoundStatus.DISPUTED
            game_round.disputed = True
            return JudgingResult(
                success=True,
                round=RoundView.from_row(game_round),
                disputed=True,
                opponent_id=game_round.offense_uid,
            )

        game_round.result = confirmed
        game_round.status = RoundStatus.RESOLVED
        outcome = JudgingResult(success=True, disputed=False, result=confirmed.value)
        if confirmed == RoundResult.MISSED:
            _apply_defense_letter(game, game_round, outcome)
        outcome.round = RoundView.from_row(game_round)
        return outcome

    outcome = await _run(game_id, action)
    if outcome.success:
        log_game_event(game_id, "round_confirmed", round_id=round_id, disputed=outcome.disputed, result=outcome.result)
    return outcome


async def _dispute_count(session, game_id: str, odv: str) -> int:
    query = select(func.count()).select_from(GameDispute).where(
        GameDispute.game_id == game_id,
        GameDispute.disputed_by == odv,
    )
    return (await session.execute(query)).scalar_one()


async def file_dispute(game_id: str, round_id: str, odv: str, reason: Optional[str] = None) -> JudgingResult:
    """
    File a formal dispute against an unresolved round.

    Each player may dispute once per game. The opponent to notify is
    returned in ``opponent_id``; it is None when no opponent can be found,
    in which case the caller skips the notification.

    Returns:
        JudgingResult: Result with the new dispute
    """
    async def action(session, game: GameSession) -> JudgingResult:
        _require_running(game)
        game_round = await _lock_round(session, game, round_id)
        participants = (game_round.offense_uid, game_round.defense_uid)
        if odv not in participants:
            raise RuleViolation("You are not a player in this round", status=403)
        if game_round.status == RoundStatus.RESOLVED:
            raise RuleViolation("Round already resolved")
        if await _dispute_count(session, game.id, odv) > 0:
            raise RuleViolation("You have already used your dispute for this game")

        opponent_id = next((uid for uid in participants if uid and uid != odv), None)
        now = utcnow()
        dispute = GameDispute(
            game_id=game.id,
            round_id=game_round.id,
            disputed_by=odv,
            against_player_id=opponent_id,
            reason=(reason or "").strip() or None,
            status=DisputeStatus.OPEN,
            created_at=now,
        )
        session.add(dispute)
        game_round.status = RoundStatus.DISPUTED
        game_round.disputed = True
        game_round.updated_at = now
        await session.flush()
        return JudgingResult(
            success=True,
            round=RoundView.from_row(game_round),
            dispute=DisputeView.from_row(dispute),
            disputed=True,
            opponent_id=opponent_id,
        )

    result = await _run(game_id, action)
    if result.success:
        log_game_event(game_id, "dispute_filed", round_id=round_id, odv=odv)
    return result


async def resolve_dispute(game_id: str, dispute_id: str, ruling: str) -> JudgingResult:
    """
    Settle a dispute. Resolution is final.

    Resolving again with the same ruling is reported as already processed;
    a different ruling is rejected. A ``missed`` ruling gives the defense
    player their letter. The penalty goes to the judging player when the
    ruling is ``landed`` and to the disputing player when it is ``missed``.
    """
    async def action(session, game: GameSession) -> JudgingResult:
        final = _parse_result(ruling)
        dispute = await lock_row(session, GameDispute, dispute_id)
        if dispute is None or dispute.game_id != game.id:
            raise RuleViolation("Dispute not found", status=404)
        if dispute.status == DisputeStatus.RESOLVED:
            if dispute.final_result == final:
                return JudgingResult(
                    success=True,
                    already_processed=True,
                    dispute=DisputeView.from_row(dispute),
                    result=final.value,
                )
            raise RuleViolation("Dispute already resolved")
        _require_running(game)
        game_round = await _lock_round(session, game, dispute.round_id)

        now = utcnow()
        dispute.status = DisputeStatus.RESOLVED
        dispute.final_result = final
        dispute.resolved_at = now
        dispute.penalty_applied_to = dispute.against_player_id if final == RoundResult.LANDED else dispute.disputed_by

        outcome = JudgingResult(success=True, result=final.value, disputed=True)
        if game_round.status != RoundStatus.RESOLVED:
            game_round.result = final
            game_round.status = RoundStatus.RESOLVED
            game_round.updated_at = now
            if final == RoundResult.MISSED:
                _apply_defense_letter(game, game_round, outcome)
        outcome.round = RoundView.from_row(game_round)
        outcome.dispute = DisputeView.from_row(dispute)
        return outcome

    result = await _run(game_id, action)
    if result.success and not result.already_processed:
        log_game_event(game_id, "dispute_resolved", dispute_id=dispute_id, ruling=result.result,
                       penalty=result.dispute.penalty_applied_to)
    return result
