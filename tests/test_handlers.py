from types import SimpleNamespace

import pytest
from sqlalchemy.exc import OperationalError
from telegram.error import Forbidden

from hubba.handlers import battle_handlers, game_handlers, round_handlers
from hubba.handlers.error_handlers import error_reply_text
from hubba.notifications.dispatcher import GameEventPublisher, InMemoryBroadcastChannel

CHAT_ID = -100


# ---- Utilities ------------------------------------------------

class DummyBot:
    def __init__(self):
        self.msg_count = 0
        self.sent_messages = []

    async def send_message(self, *args, **kwargs):
        # just record a send for assertions
        self.msg_count += 1
        self.sent_messages.append((args, kwargs))

    def texts(self):
        return [kwargs.get("text", "") for _, kwargs in self.sent_messages]


class DummyContext:
    def __init__(self, bot, channel):
        self.bot = bot
        self.bot_data = {"publisher": GameEventPublisher(channel=channel, notifier=channel)}
        self.chat_data = {}
        self.args = []


def make_update(update_id, user_id, text, reply_to=None):
    message = SimpleNamespace(
        text=text,
        message_id=1000 + update_id,
        reply_to_message=SimpleNamespace(from_user=SimpleNamespace(id=reply_to)) if reply_to else None,
    )
    return SimpleNamespace(
        update_id=update_id,
        effective_user=SimpleNamespace(id=user_id),
        effective_chat=SimpleNamespace(id=CHAT_ID),
        effective_message=message,
    )


async def send(handler, context, update_id, user_id, text, reply_to=None):
    context.args = text.split()[1:]
    await handler(make_update(update_id, user_id, text, reply_to), context)


# ---- Fixtures -------------------------------------------------

@pytest.fixture
def channel():
    return InMemoryBroadcastChannel()


@pytest.fixture
def ctx(channel):
    return DummyContext(DummyBot(), channel)


# ---- Game commands --------------------------------------------

def test_command_name_strips_bot_username():
    assert game_handlers.command_name(make_update(1, 1, "/join@HubbaBot")) == "join"
    assert game_handlers.command_name(make_update(1, 1, "/trick tre flip")) == "trick"
    assert game_handlers.command_name(make_update(1, 1, "hello")) == ""


@pytest.mark.asyncio
async def test_game_played_through_commands(db, ctx, channel):
    await send(game_handlers.new_game_command, ctx, 1, 1, "/newgame")
    assert "game_id" in ctx.chat_data

    await send(game_handlers.game_action_command, ctx, 2, 2, "/join")
    await send(game_handlers.game_action_command, ctx, 3, 1, "/trick kickflip")
    await send(game_handlers.game_action_command, ctx, 4, 2, "/pass")

    assert channel.events().count("game:trick") == 1
    letters = [payload for _, event, payload in channel.broadcasts if event == "game:letter"]
    assert letters[0]["odv"] == "2"
    assert letters[0]["letters"] == "S"


@pytest.mark.asyncio
async def test_redelivered_update_is_applied_once(db, ctx, channel):
    await send(game_handlers.new_game_command, ctx, 1, 1, "/newgame")
    await send(game_handlers.game_action_command, ctx, 2, 2, "/join")
    await send(game_handlers.game_action_command, ctx, 3, 1, "/trick kickflip")
    await send(game_handlers.game_action_command, ctx, 3, 1, "/trick kickflip")

    assert channel.events().count("game:trick") == 1
    assert not any(text.startswith("❌") for text in ctx.bot.texts())


@pytest.mark.asyncio
async def test_out_of_turn_command_is_answered(db, ctx):
    await send(game_handlers.new_game_command, ctx, 1, 1, "/newgame")
    await send(game_handlers.game_action_command, ctx, 2, 2, "/join")
    await send(game_handlers.game_action_command, ctx, 3, 2, "/trick kickflip")

    assert ctx.bot.texts()[-1] == "❌ Not your turn"


@pytest.mark.asyncio
async def test_action_without_game(ctx):
    await send(game_handlers.game_action_command, ctx, 1, 1, "/join")
    assert "No game in this chat" in ctx.bot.texts()[-1]


@pytest.mark.asyncio
async def test_unknown_action_is_rejected(ctx):
    await send(game_handlers.game_action_command, ctx, 1, 1, "/kickflip")
    assert ctx.bot.texts()[-1] == "Unknown game action."


@pytest.mark.asyncio
async def test_status_shows_scoreboard(db, ctx):
    await send(game_handlers.new_game_command, ctx, 1, 1, "/newgame")
    await send(game_handlers.game_action_command, ctx, 2, 2, "/join")
    await send(game_handlers.status_command, ctx, 3, 1, "/status")

    text = ctx.bot.texts()[-1]
    assert "(active)" in text
    assert "Waiting for 1 to set a trick" in text


# ---- Battle commands ------------------------------------------

@pytest.mark.asyncio
async def test_battle_voted_through_commands(db, ctx, channel):
    await send(battle_handlers.battle_command, ctx, 1, 1, "/battle", reply_to=2)
    assert ctx.chat_data["battle_id"] == f"{CHAT_ID}-1001"

    await send(battle_handlers.vote_command, ctx, 2, 1, "/vote clean")
    await send(battle_handlers.vote_command, ctx, 3, 2, "/vote sketch")

    completed = [payload for _, event, payload in channel.broadcasts if event == "battle:completed"]
    assert completed[0]["winnerId"] == "2"
    assert "battle_id" not in ctx.chat_data


@pytest.mark.asyncio
async def test_battle_needs_reply(ctx):
    await send(battle_handlers.battle_command, ctx, 1, 1, "/battle")
    assert "Reply to your opponent" in ctx.bot.texts()[-1]


@pytest.mark.asyncio
async def test_vote_usage(ctx):
    ctx.chat_data["battle_id"] = "b1"
    await send(battle_handlers.vote_command, ctx, 1, 1, "/vote maybe")
    assert ctx.bot.texts()[-1] == "Usage: /vote clean|sketch"


# ---- Judging commands -----------------------------------------

@pytest.mark.asyncio
async def test_resolve_is_for_reviewers_only(ctx):
    ctx.chat_data["game_id"] = "g1"
    await send(round_handlers.resolve_command, ctx, 1, 1, "/resolve d1 landed")
    assert ctx.bot.texts()[-1] == "Only reviewers can resolve disputes."


@pytest.mark.asyncio
async def test_round_judged_through_commands(db, ctx):
    await send(game_handlers.new_game_command, ctx, 1, 1, "/newgame")
    await send(game_handlers.game_action_command, ctx, 2, 2, "/join")
    await send(round_handlers.round_command, ctx, 3, 1, "/round", reply_to=2)
    round_text = ctx.bot.texts()[-1]
    round_id = round_text.split("`")[1]

    await send(round_handlers.set_clip_command, ctx, 4, 1, f"/setclip {round_id} clip://set tre flip")
    await send(round_handlers.reply_clip_command, ctx, 5, 2, f"/replyclip {round_id} clip://reply")
    await send(round_handlers.claim_command, ctx, 6, 1, f"/claim {round_id} missed")
    await send(round_handlers.confirm_command, ctx, 7, 2, f"/confirm {round_id} missed")

    assert ctx.bot.texts()[-1] == "✅ Round resolved: missed"
    game = await game_handlers.get_game(ctx.chat_data["game_id"])
    assert game.player("2").letters == "S"


# ---- Errors ---------------------------------------------------

def test_database_errors_ask_for_a_retry():
    error = OperationalError("BEGIN IMMEDIATE", {}, Exception("database is locked"))
    assert "Send the same command again" in error_reply_text(error)


def test_blocked_chat_gets_no_reply():
    assert error_reply_text(Forbidden("bot was blocked by the user")) is None
