"""
Battle Voting State Machine

A battle is a head-to-head trick contest: each participant judges the
other's clip as ``clean`` or ``sketch``. States only move forward:

    voting -> completed

A battle completes when both participants have voted, or when the timeout
sweep finds its deadline passed. Votes go through the same transactional
idempotent operation as game moves.
"""

from datetime import datetime, timedelta
from typing import Dict, Optional, Tuple

from sqlalchemy.exc import IntegrityError

from ..database.database import DatabaseSession
from ..database.models import BattleStatus, BattleVoteState, utcnow
from ..utils.config import get_settings
from ..utils.logging_config import get_logger, log_battle_event, log_player_action
from .actions import ActionKind, generate_event_id
from .errors import RuleViolation
from .idempotency import run_locked_transition
from .results import BattleView, VoteResult

logger = get_logger(__name__)

VOTE_VALUES = ("clean", "sketch")


def calculate_winner(votes: Dict[str, Dict], creator_id: str, opponent_id: str) -> Tuple[str, Dict[str, int]]:
    """
    Score a battle.

    Each ``clean`` vote is a point for the other participant, since players
    judge each other's trick. Equal scores go to the creator.

    Args:
        votes: Votes keyed by voter
        creator_id: Battle creator
        opponent_id: Battle opponent

    Returns:
        Tuple[str, Dict[str, int]]: Winner and score per participant
    """
    scores = {creator_id: 0, opponent_id: 0}
    for voter, entry in votes.items():
        if voter not in scores or entry.get("vote") != "clean":
            continue
        other = opponent_id if voter == creator_id else creator_id
        scores[other] += 1

    if scores[opponent_id] > scores[creator_id]:
        return opponent_id, scores
    if scores[opponent_id] == scores[creator_id]:
        logger.info(f"Battle tie resolved for creator - creator={creator_id} scores={scores}")
    return creator_id, scores


def _completed_result(state: BattleVoteState, already_processed: bool = False) -> VoteResult:
    complete = state.status == BattleStatus.COMPLETED
    scores: Dict[str, int] = {}
    if complete and state.completion_reason == "votes":
        _, scores = calculate_winner(state.votes or {}, state.creator_id, state.opponent_id)
    return VoteResult(
        success=True,
        already_processed=already_processed,
        battle=BattleView.from_row(state),
        battle_complete=complete,
        winner_id=state.winner_id,
        final_score=scores,
    )


def _not_found() -> VoteResult:
    return VoteResult.failure("Battle not found")


def _rejected(error: RuleViolation) -> VoteResult:
    return VoteResult.failure(error.message)


async def initialize_voting(event_id: str, battle_id: str, creator_id: str, opponent_id: str) -> VoteResult:
    """
    Open the voting window of a battle.

    Voting opens once per battle; any later call returns
    ``already_initialized=True`` without changing the state.

    Args:
        event_id: Idempotency key
        battle_id: Battle ID
        creator_id: Battle creator
        opponent_id: Battle opponent

    Returns:
        VoteResult: Result with the voting state
    """
    if not event_id:
        return VoteResult.failure("Event id is required")
    if not creator_id or not opponent_id or creator_id == opponent_id:
        return VoteResult.failure("A battle needs two different participants")

    settings = get_settings()
    now = utcnow()
    try:
        async with DatabaseSession() as session:
            existing = await session.get(BattleVoteState, battle_id, with_for_update=True)
            if existing is not None:
                logger.info(f"Voting already initialized - battle_id={battle_id} status={existing.status.value}")
                return VoteResult(success=True, already_initialized=True, battle=BattleView.from_row(existing))

            state = BattleVoteState(
                battle_id=battle_id,
                creator_id=creator_id,
                opponent_id=opponent_id,
                status=BattleStatus.VOTING,
                votes={},
                voting_started_at=now,
                vote_deadline_at=now + timedelta(seconds=settings.vote_window_seconds),
                processed_event_ids=[event_id],
                created_at=now,
                updated_at=now,
            )
            session.add(state)
            await session.flush()
            result = VoteResult(success=True, battle=BattleView.from_row(state))
    except IntegrityError:
        view = await get_vote_state(battle_id)
        if view is None:
            raise
        return VoteResult(success=True, already_initialized=True, battle=view)

    log_battle_event(battle_id, "voting_started", creator=creator_id, opponent=opponent_id)
    return result


async def cast_vote(event_id: str, battle_id: str, odv: str, vote: str) -> VoteResult:
    """
    Record a participant's vote; a second vote from the same player replaces
    the first. When both participants have voted the battle is scored in
    the same transaction.

    Args:
        event_id: Idempotency key
        battle_id: Battle ID
        odv: Voting participant
        vote: ``clean`` or ``sketch``

    Returns:
        VoteResult: ``battle_complete``, ``winner_id`` and ``final_score``
        are set once the battle is decided
    """
    if not event_id:
        return VoteResult.failure("Event id is required")
    settings = get_settings()

    async def transition(session, state: BattleVoteState) -> VoteResult:
        now = utcnow()
        if odv not in state.participants:
            raise RuleViolation("Not a participant in this battle")
        if state.status != BattleStatus.VOTING:
            raise RuleViolation("Voting is not active")
        if state.vote_deadline_at and now > state.vote_deadline_at:
            raise RuleViolation("Voting deadline has passed")
        if vote not in VOTE_VALUES:
            raise RuleViolation("Vote must be clean or sketch")

        votes = dict(state.votes or {})
        if odv in votes:
            logger.info(f"Vote updated - battle_id={battle_id} odv={odv} vote={vote}")
        votes[odv] = {"vote": vote, "voted_at": now.isoformat()}
        state.votes = votes
        state.updated_at = now

        if all(participant in votes for participant in state.participants):
            winner_id, scores = calculate_winner(votes, state.creator_id, state.opponent_id)
            state.status = BattleStatus.COMPLETED
            state.winner_id = winner_id
            state.completion_reason = "votes"
            return VoteResult(
                success=True,
                battle=BattleView.from_row(state),
                battle_complete=True,
                winner_id=winner_id,
                final_score=scores,
            )
        return VoteResult(success=True, battle=BattleView.from_row(state))

    result = await run_locked_transition(
        BattleVoteState,
        battle_id,
        event_id,
        transition,
        replay=lambda state: _completed_result(state, already_processed=True),
        not_found=_not_found,
        rejected=_rejected,
        ledger_size=settings.battle_max_processed_events,
    )
    if result.success and not result.already_processed:
        log_player_action(odv, "battle_voted", battle_id=battle_id, vote=vote)
        if result.battle_complete:
            log_battle_event(battle_id, "battle_completed", winner_id=result.winner_id, reason="votes")
    return result


def timeout_outcome(state: BattleVoteState) -> Tuple[str, str]:
    """
    Decide an expired battle from the votes that did arrive.

    Returns:
        Tuple[str, str]: Winner and completion reason
    """
    votes = state.votes or {}
    creator_voted = state.creator_id in votes
    opponent_voted = state.opponent_id in votes
    if creator_voted and not opponent_voted:
        return state.creator_id, "opponent_timeout"
    if opponent_voted and not creator_voted:
        return state.opponent_id, "creator_timeout"
    return state.creator_id, "both_timeout"


def vote_timeout_event_id(battle_id: str, deadline: datetime) -> str:
    return generate_event_id(ActionKind.VOTE_TIMEOUT, battle_id, battle_id, f"deadline-{deadline.isoformat()}")


async def force_complete_expired(battle_id: str, now: Optional[datetime] = None) -> VoteResult:
    """
    Complete a battle whose voting deadline has passed.

    The event id is derived from the deadline, so repeated sweeps complete
    a battle once.

    Args:
        battle_id: Battle ID
        now: Sweep time (defaults to the current time)

    Returns:
        VoteResult: Result with the winner; rejected while voting is still open
    """
    settings = get_settings()
    now = now or utcnow()
    snapshot = await get_vote_state(battle_id)
    if snapshot is None:
        return _not_found()
    deadline = datetime.fromisoformat(snapshot.vote_deadline_at)
    event_id = vote_timeout_event_id(battle_id, deadline)

    async def transition(session, state: BattleVoteState) -> VoteResult:
        if state.status != BattleStatus.VOTING:
            raise RuleViolation("Voting is not active")
        if state.vote_deadline_at is None or now <= state.vote_deadline_at:
            raise RuleViolation("Voting deadline has not passed")

        winner_id, reason = timeout_outcome(state)
        state.status = BattleStatus.COMPLETED
        state.winner_id = winner_id
        state.completion_reason = reason
        state.updated_at = now
        return VoteResult(
            success=True,
            battle=BattleView.from_row(state),
            battle_complete=True,
            winner_id=winner_id,
        )

    result = await run_locked_transition(
        BattleVoteState,
        battle_id,
        event_id,
        transition,
        replay=lambda state: _completed_result(state, already_processed=True),
        not_found=_not_found,
        rejected=_rejected,
        ledger_size=settings.battle_max_processed_events,
    )
    if result.success and not result.already_processed:
        log_battle_event(battle_id, "battle_completed", winner_id=result.winner_id, reason=result.battle.completion_reason)
        logger.info(f"Vote timeout processed - battle_id={battle_id} winner={result.winner_id} reason={result.battle.completion_reason}")
    return result


async def get_vote_state(battle_id: str) -> Optional[BattleView]:
    """
    Get a read-only view of a battle's voting state.

    Returns:
        Optional[BattleView]: The state, or None if voting was never opened
    """
    async with DatabaseSession() as session:
        state = await session.get(BattleVoteState, battle_id)
        return BattleView.from_row(state) if state else None
