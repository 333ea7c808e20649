"""
Round Judging Command Handlers

Commands for video-judged rounds in the chat's game:

/round (as a reply to the defense player's message) - open a round
/setclip <round_id> <clip_ref> <trick...> - offense records the set
/replyclip <round_id> <clip_ref> - defense records the reply
/claim <round_id> landed|missed - offense claims a result
/confirm <round_id> landed|missed - defense confirms
/dispute <round_id> [reason] - file a formal dispute
/resolve <dispute_id> landed|missed - reviewer settles a dispute
"""

from telegram import Update
from telegram.ext import ContextTypes

from ..game.disputes import (
    REVIEW_SLOWDOWN,
    claim_round,
    confirm_round,
    file_dispute,
    open_round,
    record_reply,
    record_set,
    resolve_dispute,
    review_duration,
)
from ..game.results import JudgingResult
from ..utils.config import is_admin_user
from ..utils.logging_config import get_logger, log_player_action
from .game_handlers import get_publisher, reply

# Logger setup
logger = get_logger(__name__)

# Clip length assumed when telling players how long a review takes
DEFAULT_CLIP_SECONDS = 15


async def _game_id(update: Update, context: ContextTypes.DEFAULT_TYPE):
    game_id = context.chat_data.get("game_id")
    if not game_id:
        await reply(update, context, "No game in this chat. Use /newgame to start one.")
    return game_id


async def _report(update: Update, context: ContextTypes.DEFAULT_TYPE, result: JudgingResult, game_id: str, ok_text: str) -> None:
    if not result.success:
        await reply(update, context, f"❌ {result.error}")
        return
    if ok_text:
        await reply(update, context, ok_text)
    await get_publisher(context).publish_judging_result(result, game_id, str(update.effective_user.id))


async def round_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /round: the caller sets, the replied-to player defends."""
    user = update.effective_user
    game_id = await _game_id(update, context)
    if not game_id:
        return

    replied = update.effective_message.reply_to_message
    if replied is None or replied.from_user is None:
        await reply(update, context, "Reply to your opponent's message with /round to challenge them.")
        return

    log_player_action(str(user.id), "round_command", game_id=game_id)
    result = await open_round(game_id, str(user.id), str(replied.from_user.id))
    text = f"🎬 Round `{result.round.id}` opened. Record your set with /setclip." if result.success else ""
    await _report(update, context, result, game_id, text)


async def set_clip_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /setclip <round_id> <clip_ref> <trick...>."""
    args = context.args or []
    game_id = await _game_id(update, context)
    if not game_id:
        return
    if len(args) < 3:
        await reply(update, context, "Usage: /setclip <round_id> <clip_ref> <trick>")
        return

    result = await record_set(game_id, args[0], str(update.effective_user.id), " ".join(args[2:]), args[1])
    await _report(update, context, result, game_id, "🎬 Set recorded. Defense, reply with /replyclip.")


async def reply_clip_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /replyclip <round_id> <clip_ref>."""
    args = context.args or []
    game_id = await _game_id(update, context)
    if not game_id:
        return
    if len(args) < 2:
        await reply(update, context, "Usage: /replyclip <round_id> <clip_ref>")
        return

    result = await record_reply(game_id, args[0], str(update.effective_user.id), args[1])
    await _report(update, context, result, game_id, "🎬 Reply recorded. Offense, judge it with /claim.")


async def claim_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /claim <round_id> landed|missed."""
    args = context.args or []
    game_id = await _game_id(update, context)
    if not game_id:
        return
    if len(args) < 2:
        await reply(update, context, "Usage: /claim <round_id> landed|missed")
        return

    result = await claim_round(game_id, args[0], str(update.effective_user.id), args[1])
    await _report(update, context, result, game_id, "⚖️ Claim recorded. Defense, /confirm the result.")


async def confirm_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /confirm <round_id> landed|missed."""
    args = context.args or []
    game_id = await _game_id(update, context)
    if not game_id:
        return
    if len(args) < 2:
        await reply(update, context, "Usage: /confirm <round_id> landed|missed")
        return

    result = await confirm_round(game_id, args[0], str(update.effective_user.id), args[1])
    if result.success and result.disputed:
        text = "⚖️ The claims don't match. The round is disputed and waits for review."
    else:
        text = f"✅ Round resolved: {result.result}" if result.success else ""
    await _report(update, context, result, game_id, text)


async def dispute_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /dispute <round_id> [reason]."""
    user = update.effective_user
    args = context.args or []
    game_id = await _game_id(update, context)
    if not game_id:
        return
    if not args:
        await reply(update, context, "Usage: /dispute <round_id> [reason]")
        return

    log_player_action(str(user.id), "dispute_command", game_id=game_id, round_id=args[0])
    result = await file_dispute(game_id, args[0], str(user.id), " ".join(args[1:]))
    text = ""
    if result.success:
        text = (f"⚖️ Dispute `{result.dispute.id}` filed. Clips are reviewed at {REVIEW_SLOWDOWN}x slow motion "
                f"(a {DEFAULT_CLIP_SECONDS}s clip takes {review_duration(DEFAULT_CLIP_SECONDS):.0f}s).")
    await _report(update, context, result, game_id, text)


async def resolve_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /resolve <dispute_id> landed|missed (reviewers only)."""
    user = update.effective_user
    args = context.args or []
    if not is_admin_user(user.id):
        await reply(update, context, "Only reviewers can resolve disputes.")
        return
    game_id = await _game_id(update, context)
    if not game_id:
        return
    if len(args) < 2:
        await reply(update, context, "Usage: /resolve <dispute_id> landed|missed")
        return

    result = await resolve_dispute(game_id, args[0], args[1])
    text = ""
    if result.success:
        penalty = result.dispute.penalty_applied_to if result.dispute else None
        text = f"⚖️ Dispute resolved: {result.result}" + (f" (penalty: {penalty})" if penalty else "")
    await _report(update, context, result, game_id, text)
