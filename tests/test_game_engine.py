import pytest

from hubba.database.database import DatabaseSession
from hubba.database.models import GameSession
from hubba.game import engine
from hubba.utils.config import get_settings


async def start_game(*players, min_players=2):
    """Create a game with the first player and seat the rest."""
    created = await engine.create_game("create-1", "spot-1", players[0], max_players=4, min_players=min_players)
    assert created.success
    game_id = created.game.id
    for odv in players[1:]:
        joined = await engine.join_game(f"join-{odv}", game_id, odv)
        assert joined.success
    return game_id


async def ledger(game_id):
    async with DatabaseSession() as session:
        game = await session.get(GameSession, game_id)
        return list(game.processed_event_ids)


# ---- Create and join ------------------------------------------

@pytest.mark.asyncio
async def test_create_game_seats_creator(db):
    result = await engine.create_game("create-1", "spot-1", "p1")

    assert result.success
    assert result.game.status == "pending"
    assert [p.odv for p in result.game.players] == ["p1"]
    assert result.game.id == engine.game_id_for_event("create-1")


@pytest.mark.asyncio
async def test_replayed_create_returns_same_game(db):
    first = await engine.create_game("create-1", "spot-1", "p1")
    second = await engine.create_game("create-1", "spot-1", "p1")

    assert second.success
    assert second.already_processed
    assert second.game.id == first.game.id


@pytest.mark.asyncio
async def test_create_caps_max_players(db, monkeypatch):
    monkeypatch.setenv("MAX_PLAYERS_CAP", "3")
    get_settings.cache_clear()
    result = await engine.create_game("create-1", "spot-1", "p1", max_players=10)
    assert result.game.max_players == 3


@pytest.mark.asyncio
async def test_create_requires_event_id(db):
    result = await engine.create_game("", "spot-1", "p1")
    assert not result.success
    assert result.error == "Event id is required"


@pytest.mark.asyncio
async def test_second_player_starts_game(db):
    game_id = await start_game("p1", "p2")
    game = await engine.get_game(game_id)

    assert game.status == "active"
    assert game.current_player == "p1"
    assert game.current_action == "set"
    assert game.turn_deadline_at is not None


@pytest.mark.asyncio
async def test_join_after_start_is_rejected(db):
    game_id = await start_game("p1", "p2")
    result = await engine.join_game("join-late", game_id, "p3")
    assert not result.success
    assert result.error == "Game has already started"


# ---- Turn flow ------------------------------------------------

@pytest.mark.asyncio
async def test_set_trick_hands_turn_to_attempter(db):
    game_id = await start_game("p1", "p2")
    result = await engine.submit_trick("e1", game_id, "p1", "kickflip")

    assert result.success
    assert not result.already_processed
    assert result.game.current_trick == "kickflip"
    assert result.game.setter_id == "p1"
    assert result.game.current_action == "attempt"
    assert result.game.current_turn_index == 1


@pytest.mark.asyncio
async def test_replayed_event_is_not_applied_twice(db):
    game_id = await start_game("p1", "p2")
    await engine.submit_trick("e1", game_id, "p1", "kickflip")
    before = await engine.get_game(game_id)

    replay = await engine.submit_trick("e1", game_id, "p1", "kickflip")

    assert replay.success
    assert replay.already_processed
    assert await engine.get_game(game_id) == before


@pytest.mark.asyncio
async def test_missed_attempt_gives_letter_and_returns_turn(db):
    game_id = await start_game("p1", "p2")
    await engine.submit_trick("e1", game_id, "p1", "kickflip")
    result = await engine.pass_trick("e2", game_id, "p2")

    assert result.success
    assert result.letter_gained == "S"
    assert not result.is_eliminated
    assert result.game.player("p2").letters == "S"
    assert result.game.status == "active"
    assert result.game.current_turn_index == 0
    assert result.game.current_action == "set"


@pytest.mark.asyncio
async def test_replayed_pass_gives_no_second_letter(db):
    game_id = await start_game("p1", "p2")
    await engine.submit_trick("e1", game_id, "p1", "kickflip")
    await engine.pass_trick("e2", game_id, "p2")
    replay = await engine.pass_trick("e2", game_id, "p2")

    assert replay.already_processed
    game = await engine.get_game(game_id)
    assert game.player("p2").letters == "S"


@pytest.mark.asyncio
async def test_five_misses_end_the_game(db):
    game_id = await start_game("p1", "p2")
    result = None
    for i in range(5):
        await engine.submit_trick(f"set-{i}", game_id, "p1", "kickflip")
        result = await engine.pass_trick(f"pass-{i}", game_id, "p2")

    assert result.letter_gained == "E"
    assert result.is_eliminated
    assert result.game_over
    assert result.game.status == "completed"
    assert result.game.winner_id == "p1"
    assert result.game.player("p2").letters == "SKATE"

    late = await engine.submit_trick("set-late", game_id, "p1", "heelflip")
    assert not late.success
    assert late.error == "Game is not active"


@pytest.mark.asyncio
async def test_out_of_turn_move_is_rejected_without_change(db):
    game_id = await start_game("p1", "p2")
    before = await engine.get_game(game_id)

    result = await engine.submit_trick("e1", game_id, "p2", "kickflip")

    assert not result.success
    assert result.error == "Not your turn"
    assert await engine.get_game(game_id) == before


@pytest.mark.asyncio
async def test_rejected_event_is_not_recorded(db):
    game_id = await start_game("p1", "p2")
    await engine.submit_trick("e1", game_id, "p2", "kickflip")
    assert "e1" not in await ledger(game_id)

    # The same id may be used once the move is legal
    result = await engine.submit_trick("e1", game_id, "p1", "kickflip")
    assert result.success
    assert not result.already_processed


@pytest.mark.asyncio
async def test_pass_in_set_phase_is_rejected(db):
    game_id = await start_game("p1", "p2")
    result = await engine.pass_trick("e1", game_id, "p1")
    assert not result.success
    assert result.error == "Can only pass during attempt phase"


@pytest.mark.asyncio
async def test_unknown_game(db):
    result = await engine.submit_trick("e1", "missing-game", "p1", "kickflip")
    assert not result.success
    assert result.error == "Game not found"
    assert await engine.get_game("missing-game") is None


@pytest.mark.asyncio
async def test_ledger_is_capped(db, monkeypatch):
    game_id = await start_game("p1", "p2")
    monkeypatch.setenv("MAX_PROCESSED_EVENTS", "3")
    get_settings.cache_clear()

    for i in range(3):
        await engine.submit_trick(f"set-{i}", game_id, "p1", "kickflip")
        await engine.pass_trick(f"pass-{i}", game_id, "p2")

    assert await ledger(game_id) == ["pass-1", "set-2", "pass-2"]


# ---- Bail and forfeit -----------------------------------------

@pytest.mark.asyncio
async def test_bail_gives_setter_letter(db):
    game_id = await start_game("p1", "p2")
    result = await engine.bail_set("b1", game_id, "p1")

    assert result.success
    assert result.letter_gained == "S"
    assert result.game.player("p1").letters == "S"
    assert result.game.current_player == "p2"


@pytest.mark.asyncio
async def test_forfeit_gives_win_to_opponent(db):
    game_id = await start_game("p1", "p2")
    result = await engine.forfeit_game("f1", game_id, "p2")

    assert result.success
    assert result.game_over
    assert result.game.status == "completed"
    assert result.game.winner_id == "p1"

    again = await engine.forfeit_game("f2", game_id, "p1")
    assert not again.success
    assert again.error == "Game already completed"


@pytest.mark.asyncio
async def test_forfeit_by_stranger_and_bad_reason(db):
    game_id = await start_game("p1", "p2")

    stranger = await engine.forfeit_game("f1", game_id, "p9")
    assert stranger.error == "Player not in game"

    bad_reason = await engine.forfeit_game("f2", game_id, "p1", reason="bored")
    assert not bad_reason.success
    assert (await engine.get_game(game_id)).status == "active"


@pytest.mark.asyncio
async def test_forfeit_with_three_players_picks_fewest_letters(db):
    game_id = await start_game("p1", "p2", "p3", min_players=3)
    await engine.submit_trick("s1", game_id, "p1", "kickflip")
    await engine.pass_trick("m1", game_id, "p2")
    await engine.submit_trick("l1", game_id, "p3", "")

    result = await engine.forfeit_game("f1", game_id, "p1")
    assert result.game.winner_id == "p3"


@pytest.mark.asyncio
async def test_three_player_round_where_everyone_lands_rotates_offense(db):
    game_id = await start_game("p1", "p2", "p3", min_players=3)
    await engine.submit_trick("s1", game_id, "p1", "kickflip")
    await engine.submit_trick("l1", game_id, "p2", "")
    result = await engine.submit_trick("l2", game_id, "p3", "")

    assert result.game.current_player == "p2"
    assert result.game.current_action == "set"
    assert result.game.current_trick is None


# ---- Connection -----------------------------------------------

@pytest.mark.asyncio
async def test_disconnect_pauses_and_reconnect_resumes(db):
    game_id = await start_game("p1", "p2")

    paused = await engine.handle_disconnect(game_id, "p1")
    assert paused.success
    assert paused.game.status == "paused"
    assert not paused.game.player("p1").connected

    blocked = await engine.submit_trick("e1", game_id, "p1", "kickflip")
    assert blocked.error == "Game is not active"

    resumed = await engine.handle_reconnect("r1", game_id, "p1")
    assert resumed.game.status == "active"
    assert resumed.game.paused_at is None
    assert resumed.game.player("p1").connected


@pytest.mark.asyncio
async def test_disconnect_of_waiting_player_keeps_game_active(db):
    game_id = await start_game("p1", "p2")
    result = await engine.handle_disconnect(game_id, "p2")

    assert result.game.status == "active"
    assert not result.game.player("p2").connected
