"""
S.K.A.T.E. Game Command Handlers

This module routes game commands from a group chat into the engine.
Handlers only parse input and report rejections; every rule lives in the
engine, and committed results are fanned out by the publisher stored in
``bot_data``.

The game of a chat is remembered in ``chat_data['game_id']``. Event ids are
built from the Telegram update id, so a redelivered update is applied once.
"""

from typing import Optional

from telegram import Update
from telegram.ext import ContextTypes

from ..game.actions import ActionKind, generate_event_id, parse_action_kind
from ..game.engine import (
    bail_set,
    create_game,
    forfeit_game,
    get_game,
    handle_disconnect,
    handle_reconnect,
    join_game,
    pass_trick,
    submit_trick,
)
from ..game.errors import UnknownActionError
from ..game.results import GameView, TransitionResult
from ..notifications.dispatcher import GameEventPublisher
from ..utils.logging_config import get_logger, log_player_action

# Logger setup
logger = get_logger(__name__)


def get_publisher(context: ContextTypes.DEFAULT_TYPE) -> GameEventPublisher:
    publisher = context.bot_data.get("publisher")
    if publisher is None:
        publisher = GameEventPublisher()
        context.bot_data["publisher"] = publisher
    return publisher


def bind_room(context: ContextTypes.DEFAULT_TYPE, room: str, chat_id: int) -> None:
    """Route a room's broadcasts to this chat."""
    broadcaster = context.bot_data.get("broadcaster")
    if broadcaster is not None:
        broadcaster.bind(room, chat_id)


def update_event_id(update: Update, kind: ActionKind, odv: str, entity_id: str) -> str:
    return generate_event_id(kind, odv, entity_id, f"update-{update.update_id}")


def command_name(update: Update) -> str:
    """Command word of a message, without the slash and bot username."""
    text = (update.effective_message.text or "").strip()
    if not text.startswith("/"):
        return ""
    return text.split()[0][1:].split("@")[0]


async def reply(update: Update, context: ContextTypes.DEFAULT_TYPE, text: str) -> None:
    await context.bot.send_message(chat_id=update.effective_chat.id, text=text)


def format_game(game: GameView) -> str:
    """Render a game's scoreboard."""
    lines = [f"🛹 **Game of S.K.A.T.E.** ({game.status})"]
    for index, player in enumerate(game.players):
        marker = "👉 " if index == game.current_turn_index and game.status == "active" else ""
        status = " (out)" if player.eliminated else ("" if player.connected else " (disconnected)")
        lines.append(f"{marker}{player.odv}: {player.letters or '-'}{status}")
    if game.status == "active":
        if game.current_action == "set":
            lines.append(f"\nWaiting for {game.current_player} to set a trick")
        else:
            lines.append(f"\nTrick: **{game.current_trick}** (set by {game.setter_id})")
            lines.append(f"Waiting for {game.current_player} to attempt it")
    if game.status == "completed":
        lines.append(f"\n🏆 Winner: {game.winner_id or 'nobody'}")
    return "\n".join(lines)


async def new_game_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """
    Handle /newgame [spot] [max_players].

    Creates a game in this chat with the caller seated first.
    """
    user = update.effective_user
    chat_id = update.effective_chat.id
    odv = str(user.id)
    args = context.args or []

    log_player_action(odv, "new_game_command", chat_id=chat_id)

    spot_id = args[0] if args else f"chat-{chat_id}"
    max_players = 4
    if len(args) > 1:
        try:
            max_players = int(args[1])
        except ValueError:
            await reply(update, context, "Usage: /newgame [spot] [max_players]")
            return

    event_id = update_event_id(update, ActionKind.CREATE, odv, str(chat_id))
    result = await create_game(event_id, spot_id, odv, max_players=max_players)
    if not result.success:
        await reply(update, context, f"❌ {result.error}")
        return

    context.chat_data["game_id"] = result.game.id
    bind_room(context, result.game.id, chat_id)
    await get_publisher(context).publish_game_result(result, ActionKind.CREATE, odv)
    logger.info(f"Game created from chat - chat_id={chat_id} game_id={result.game.id}")
    await reply(update, context, f"🛹 New game of S.K.A.T.E.! Send /join to play (up to {result.game.max_players} players).")


async def run_game_action(
    update: Update,
    context: ContextTypes.DEFAULT_TYPE,
    kind: ActionKind,
    game_id: str,
    odv: str,
) -> TransitionResult:
    """
    Apply one player action to the chat's game.

    Args:
        update: Telegram update (its id keys the event)
        context: Bot context
        kind: Action to apply
        game_id: Game ID
        odv: Acting player

    Returns:
        TransitionResult: Engine result

    Raises:
        UnknownActionError: If ``kind`` is not a player action
    """
    event_id = update_event_id(update, kind, odv, game_id)

    if kind == ActionKind.JOIN:
        return await join_game(event_id, game_id, odv)
    if kind == ActionKind.TRICK:
        return await submit_trick(event_id, game_id, odv, " ".join(context.args or []))
    if kind == ActionKind.PASS:
        return await pass_trick(event_id, game_id, odv)
    if kind == ActionKind.BAIL:
        return await bail_set(event_id, game_id, odv)
    if kind == ActionKind.FORFEIT:
        return await forfeit_game(event_id, game_id, odv, reason="voluntary")
    if kind == ActionKind.RECONNECT:
        return await handle_reconnect(event_id, game_id, odv)
    if kind == ActionKind.DISCONNECT:
        return await handle_disconnect(game_id, odv)
    raise UnknownActionError(f"Not a player action: {kind.value}")


async def game_action_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """
    Handle /join, /trick [name], /pass, /bail, /forfeit, /disconnect and /reconnect.

    The command word is parsed into an ``ActionKind``; anything else is
    rejected before it reaches the engine.
    """
    user = update.effective_user
    chat_id = update.effective_chat.id
    odv = str(user.id)

    try:
        kind = parse_action_kind(command_name(update))
    except UnknownActionError as e:
        logger.warning(f"Rejected command - user_id={user.id} error={e}")
        await reply(update, context, "Unknown game action.")
        return

    log_player_action(odv, f"{kind.value}_command", chat_id=chat_id)

    game_id: Optional[str] = context.chat_data.get("game_id")
    if not game_id:
        await reply(update, context, "No game in this chat. Use /newgame to start one.")
        return

    try:
        result = await run_game_action(update, context, kind, game_id, odv)
    except UnknownActionError:
        await reply(update, context, "That action can't be sent as a command.")
        return

    if not result.success:
        await reply(update, context, f"❌ {result.error}")
        return
    if result.already_processed:
        return

    bind_room(context, game_id, chat_id)
    await get_publisher(context).publish_game_result(result, kind, odv)


async def status_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /status: show the chat's game."""
    game_id = context.chat_data.get("game_id")
    if not game_id:
        await reply(update, context, "No game in this chat. Use /newgame to start one.")
        return

    game = await get_game(game_id)
    if game is None:
        context.chat_data.pop("game_id", None)
        await reply(update, context, "That game no longer exists.")
        return
    await context.bot.send_message(chat_id=update.effective_chat.id, text=format_game(game), parse_mode="Markdown")


HELP_TEXT = """
🛹 **SkateHubba S.K.A.T.E.**

**Game**
/newgame [spot] [max_players] - start a game in this chat
/join - take a seat
/trick <name> - set a trick, or say you landed the current one
/pass - you missed the trick (take a letter)
/bail - you can't land your own trick (take a letter)
/forfeit - concede the game
/disconnect, /reconnect - step away and come back
/status - scoreboard

**Judged rounds**
/round, /setclip, /replyclip, /claim, /confirm, /dispute

**Battles**
/battle (reply to your opponent), /vote clean|sketch

Miss a trick and you get a letter. Spell S.K.A.T.E. and you're out.
"""


async def help_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /start and /help."""
    user = update.effective_user
    log_player_action(str(user.id), "help_command")
    await context.bot.send_message(chat_id=update.effective_chat.id, text=HELP_TEXT, parse_mode="Markdown")
