"""
Battle Command Handlers

/battle (as a reply to the opponent's message) opens a voting window in the
chat; /vote clean|sketch casts or replaces the caller's vote.
"""

from telegram import Update
from telegram.ext import ContextTypes

from ..game.actions import ActionKind
from ..game.battles import VOTE_VALUES, cast_vote, initialize_voting
from ..utils.config import get_settings
from ..utils.logging_config import get_logger, log_player_action
from .game_handlers import bind_room, get_publisher, reply, update_event_id

# Logger setup
logger = get_logger(__name__)


async def battle_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /battle: open voting between the caller and the replied-to player."""
    user = update.effective_user
    chat_id = update.effective_chat.id
    message = update.effective_message

    replied = message.reply_to_message
    if replied is None or replied.from_user is None:
        await reply(update, context, "Reply to your opponent's clip with /battle to start voting.")
        return

    creator_id = str(user.id)
    opponent_id = str(replied.from_user.id)
    battle_id = f"{chat_id}-{message.message_id}"
    log_player_action(creator_id, "battle_command", battle_id=battle_id, opponent=opponent_id)

    event_id = update_event_id(update, ActionKind.VOTE_INIT, creator_id, battle_id)
    result = await initialize_voting(event_id, battle_id, creator_id, opponent_id)
    if not result.success:
        await reply(update, context, f"❌ {result.error}")
        return

    context.chat_data["battle_id"] = battle_id
    bind_room(context, battle_id, chat_id)
    if not result.already_initialized:
        window = get_settings().vote_window_seconds
        await reply(update, context, f"🗳️ Battle on! Both riders vote on the other's clip with /vote clean or /vote sketch ({window}s).")


async def vote_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /vote clean|sketch."""
    user = update.effective_user
    odv = str(user.id)
    args = context.args or []

    battle_id = context.chat_data.get("battle_id")
    if not battle_id:
        await reply(update, context, "No battle is open in this chat. Start one with /battle.")
        return
    vote = args[0].lower() if args else ""
    if vote not in VOTE_VALUES:
        await reply(update, context, "Usage: /vote clean|sketch")
        return

    log_player_action(odv, "vote_command", battle_id=battle_id, vote=vote)
    result = await cast_vote(update_event_id(update, ActionKind.VOTE, odv, battle_id), battle_id, odv, vote)
    if not result.success:
        await reply(update, context, f"❌ {result.error}")
        return
    if result.battle_complete:
        context.chat_data.pop("battle_id", None)
    await get_publisher(context).publish_vote_result(result, voter=odv)
