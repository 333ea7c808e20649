import asyncio

import pytest

from hubba.game import engine


@pytest.mark.asyncio
async def test_concurrent_moves_apply_exactly_one(db):
    created = await engine.create_game("create-1", "spot-1", "p1")
    game_id = created.game.id
    await engine.join_game("join-1", game_id, "p2")

    first, second = await asyncio.gather(
        engine.submit_trick("e-a", game_id, "p1", "kickflip"),
        engine.submit_trick("e-b", game_id, "p1", "heelflip"),
    )

    outcomes = sorted([first.success, second.success])
    assert outcomes == [False, True]
    loser = first if not first.success else second
    assert loser.error == "Not your turn"

    game = await engine.get_game(game_id)
    assert game.current_trick in ("kickflip", "heelflip")
    assert game.current_action == "attempt"


@pytest.mark.asyncio
async def test_concurrent_duplicates_apply_once(db):
    created = await engine.create_game("create-1", "spot-1", "p1")
    game_id = created.game.id
    await engine.join_game("join-1", game_id, "p2")
    await engine.submit_trick("e1", game_id, "p1", "kickflip")

    results = await asyncio.gather(*[engine.pass_trick("e2", game_id, "p2") for _ in range(3)])

    assert all(r.success for r in results)
    assert sum(1 for r in results if not r.already_processed) == 1
    game = await engine.get_game(game_id)
    assert game.player("p2").letters == "S"
