from datetime import timedelta

import pytest

from hubba.database.database import DatabaseSession
from hubba.database.models import BattleVoteState, utcnow
from hubba.game import battles


async def open_battle(battle_id="b1"):
    result = await battles.initialize_voting(f"init-{battle_id}", battle_id, "creator", "opponent")
    assert result.success
    return battle_id


async def expire(battle_id):
    """Move a battle's deadline into the past."""
    async with DatabaseSession() as session:
        state = await session.get(BattleVoteState, battle_id)
        state.vote_deadline_at = utcnow() - timedelta(seconds=1)


# ---- Scoring --------------------------------------------------

def test_calculate_winner_scores_other_participant():
    votes = {"creator": {"vote": "sketch"}, "opponent": {"vote": "clean"}}
    winner, scores = battles.calculate_winner(votes, "creator", "opponent")
    assert winner == "creator"
    assert scores == {"creator": 1, "opponent": 0}


def test_calculate_winner_tie_goes_to_creator():
    votes = {"creator": {"vote": "sketch"}, "opponent": {"vote": "sketch"}}
    assert battles.calculate_winner(votes, "creator", "opponent") == ("creator", {"creator": 0, "opponent": 0})


# ---- Initialization -------------------------------------------

@pytest.mark.asyncio
async def test_initialize_opens_voting_window(db):
    result = await battles.initialize_voting("init-1", "b1", "creator", "opponent")

    assert result.success
    assert not result.already_initialized
    assert result.battle.status == "voting"
    assert result.battle.votes == {}
    assert result.battle.vote_deadline_at is not None


@pytest.mark.asyncio
async def test_initialize_twice_reports_already_initialized(db):
    await battles.initialize_voting("init-1", "b1", "creator", "opponent")
    again = await battles.initialize_voting("init-2", "b1", "creator", "opponent")

    assert again.success
    assert again.already_initialized


@pytest.mark.asyncio
async def test_initialize_needs_two_participants(db):
    result = await battles.initialize_voting("init-1", "b1", "creator", "creator")
    assert not result.success


# ---- Voting ---------------------------------------------------

@pytest.mark.asyncio
async def test_both_clean_votes_tie_for_creator(db):
    await open_battle()
    first = await battles.cast_vote("v1", "b1", "creator", "clean")
    assert first.success
    assert not first.battle_complete

    second = await battles.cast_vote("v2", "b1", "opponent", "clean")

    assert second.battle_complete
    assert second.winner_id == "creator"
    assert second.final_score == {"creator": 1, "opponent": 1}
    assert second.battle.completion_reason == "votes"


@pytest.mark.asyncio
async def test_outsider_vote_is_rejected(db):
    await open_battle()
    result = await battles.cast_vote("v1", "b1", "stranger", "clean")

    assert not result.success
    assert result.error == "Not a participant in this battle"


@pytest.mark.asyncio
async def test_outsider_vote_on_completed_battle_is_still_outsider(db):
    await open_battle()
    await battles.cast_vote("v1", "b1", "creator", "clean")
    await battles.cast_vote("v2", "b1", "opponent", "clean")

    result = await battles.cast_vote("v3", "b1", "stranger", "clean")
    assert result.error == "Not a participant in this battle"


@pytest.mark.asyncio
@pytest.mark.parametrize("creator_vote,opponent_vote,winner", [
    ("clean", "clean", "creator"),
    ("clean", "sketch", "opponent"),
    ("sketch", "clean", "creator"),
    ("sketch", "sketch", "creator"),
])
async def test_outcome_does_not_depend_on_vote_order(db, creator_vote, opponent_vote, winner):
    await open_battle("forward")
    await battles.cast_vote("f1", "forward", "creator", creator_vote)
    forward = await battles.cast_vote("f2", "forward", "opponent", opponent_vote)

    await open_battle("reverse")
    await battles.cast_vote("r1", "reverse", "opponent", opponent_vote)
    reverse = await battles.cast_vote("r2", "reverse", "creator", creator_vote)

    assert forward.winner_id == reverse.winner_id == winner
    assert forward.final_score == reverse.final_score


@pytest.mark.asyncio
async def test_second_vote_replaces_first(db):
    await open_battle()
    await battles.cast_vote("v1", "b1", "creator", "clean")
    result = await battles.cast_vote("v2", "b1", "creator", "sketch")

    assert result.success
    assert not result.battle_complete
    assert result.battle.votes["creator"]["vote"] == "sketch"


@pytest.mark.asyncio
async def test_replayed_vote_reports_completed_battle(db):
    await open_battle()
    await battles.cast_vote("v1", "b1", "creator", "clean")
    final = await battles.cast_vote("v2", "b1", "opponent", "sketch")

    replay = await battles.cast_vote("v2", "b1", "opponent", "sketch")

    assert replay.already_processed
    assert replay.battle_complete
    assert replay.winner_id == final.winner_id
    assert replay.final_score == final.final_score


@pytest.mark.asyncio
async def test_invalid_vote_value(db):
    await open_battle()
    result = await battles.cast_vote("v1", "b1", "creator", "gnarly")
    assert result.error == "Vote must be clean or sketch"


@pytest.mark.asyncio
async def test_vote_after_deadline_is_rejected(db):
    await open_battle()
    await expire("b1")

    result = await battles.cast_vote("v1", "b1", "creator", "clean")
    assert result.error == "Voting deadline has passed"


@pytest.mark.asyncio
async def test_vote_on_unknown_battle(db):
    result = await battles.cast_vote("v1", "nope", "creator", "clean")
    assert result.error == "Battle not found"


# ---- Timeouts -------------------------------------------------

@pytest.mark.asyncio
@pytest.mark.parametrize("voters,winner,reason", [
    (["creator"], "creator", "opponent_timeout"),
    (["opponent"], "opponent", "creator_timeout"),
    ([], "creator", "both_timeout"),
])
async def test_expired_battle_completes_from_votes_cast(db, voters, winner, reason):
    await open_battle()
    for i, voter in enumerate(voters):
        await battles.cast_vote(f"v{i}", "b1", voter, "clean")
    later = utcnow() + timedelta(seconds=120)

    result = await battles.force_complete_expired("b1", now=later)

    assert result.success
    assert result.battle_complete
    assert result.winner_id == winner
    assert result.battle.completion_reason == reason

    again = await battles.force_complete_expired("b1", now=later)
    assert again.already_processed


@pytest.mark.asyncio
async def test_open_battle_is_not_force_completed(db):
    await open_battle()
    result = await battles.force_complete_expired("b1")

    assert not result.success
    assert result.error == "Voting deadline has not passed"
    assert (await battles.get_vote_state("b1")).status == "voting"
