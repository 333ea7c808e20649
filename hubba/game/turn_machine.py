"""
S.K.A.T.E. Turn State Machine

This module holds the legal-move rules of a game session. Each ``apply_*``
function validates a move against a ``GameSession`` row and then mutates
it; a move that is not legal raises ``RuleViolation`` before anything is
changed. The functions do no I/O: the engine calls them while it holds
the row lock.

Turn order:
- set phase: the player at ``current_turn_index`` sets a trick
- attempt phase: every other live player attempts it in seat order
- when the attempt loop gets back to the setter the round closes; the
  setter keeps offense if anyone missed, otherwise offense rotates
"""

from datetime import datetime, timedelta
from typing import Dict, List, Optional

from ..database.models import GameSession, GameStatus, TurnAction
from .errors import RuleViolation
from .letters import get_next_letter, is_eliminated

TERMINAL_STATUSES = (GameStatus.COMPLETED, GameStatus.CANCELED)


def copy_players(game: GameSession) -> List[Dict]:
    """
    Copy the seat list so it can be changed and reassigned.

    JSON columns only register a change on reassignment.
    """
    return [dict(p) for p in game.players or []]


def live_players(players: List[Dict]) -> List[Dict]:
    return [p for p in players if not is_eliminated(p.get("letters", ""))]


def find_seat(players: List[Dict], odv: str) -> int:
    for index, player in enumerate(players):
        if player["odv"] == odv:
            return index
    return -1


def next_seat(players: List[Dict], start: int, include_start: bool = False) -> Optional[int]:
    """
    Find the next seat after ``start`` that can take a turn.

    Eliminated players are always skipped. Disconnected players are skipped
    too, unless nobody connected is left, in which case any live seat is used.

    Args:
        players: Seat list
        start: Seat to search from
        include_start: Whether ``start`` itself may be returned (after a full loop)

    Returns:
        Optional[int]: Seat index, or None if no live player qualifies
    """
    count = len(players)
    if count == 0:
        return None
    offsets = range(1, count + 1) if include_start else range(1, count)
    candidates = [(start + offset) % count for offset in offsets]
    live = [i for i in candidates if not is_eliminated(players[i].get("letters", ""))]
    for index in live:
        if players[index].get("connected", True):
            return index
    return live[0] if live else None


def pick_winner(players: List[Dict], start: int, exclude: Optional[str] = None) -> Optional[str]:
    """
    Choose the winner of a game that ends early.

    The remaining live player with the fewest letters wins; ties go to the
    earliest seat counting from ``start`` (the current turn).
    """
    count = len(players)
    best = None
    for offset in range(count):
        player = players[(start + offset) % count]
        letters = player.get("letters", "")
        if player["odv"] == exclude or is_eliminated(letters):
            continue
        if best is None or len(letters) < len(best.get("letters", "")):
            best = player
    return best["odv"] if best else None


def _start_turn(game: GameSession, now: datetime, turn_timeout: int) -> None:
    game.turn_deadline_at = now + timedelta(seconds=turn_timeout)
    game.updated_at = now


def _complete(game: GameSession, winner_id: Optional[str], now: datetime) -> None:
    game.status = GameStatus.COMPLETED
    game.winner_id = winner_id
    game.turn_deadline_at = None
    game.paused_at = None
    game.updated_at = now


def _require_turn(game: GameSession, odv: str) -> Dict:
    """Return the seat of the turn holder, or reject anyone else."""
    if game.status != GameStatus.ACTIVE:
        raise RuleViolation("Game is not active")
    players = game.players or []
    if not 0 <= game.current_turn_index < len(players):
        raise RuleViolation("Not your turn")
    current = players[game.current_turn_index]
    if current["odv"] != odv or is_eliminated(current.get("letters", "")):
        raise RuleViolation("Not your turn")
    return current


def _close_round(game: GameSession, players: List[Dict]) -> None:
    setter_index = find_seat(players, game.setter_id) if game.setter_id else game.current_turn_index
    setter_live = setter_index >= 0 and not is_eliminated(players[setter_index].get("letters", ""))
    if game.round_had_miss and setter_live:
        game.current_turn_index = setter_index
    else:
        next_setter = next_seat(players, max(setter_index, 0), include_start=True)
        game.current_turn_index = next_setter if next_setter is not None else 0
    game.current_action = TurnAction.SET
    game.current_trick = None
    game.setter_id = None
    game.round_had_miss = False


def _advance_attempt(game: GameSession, players: List[Dict]) -> None:
    """Move to the next attempter, closing the round when the loop is back at the setter."""
    setter_index = find_seat(players, game.setter_id)
    count = len(players)
    for offset in range(1, count):
        index = (game.current_turn_index + offset) % count
        if index == setter_index:
            break
        player = players[index]
        if not is_eliminated(player.get("letters", "")) and player.get("connected", True):
            game.current_turn_index = index
            return
    _close_round(game, players)


def give_letter(game: GameSession, players: List[Dict], index: int, now: datetime) -> Dict:
    """
    Give the player at ``index`` their next letter and complete the game if
    only one live player remains.

    Returns:
        Dict: letter_gained, is_eliminated and game_over
    """
    player = players[index]
    letter = get_next_letter(player.get("letters", ""))
    player["letters"] = player.get("letters", "") + letter
    eliminated = is_eliminated(player["letters"])
    game.players = players

    game_over = False
    if eliminated:
        remaining = live_players(players)
        if len(remaining) <= 1:
            _complete(game, remaining[0]["odv"] if remaining else None, now)
            game_over = True
    return {"letter_gained": letter, "is_eliminated": eliminated, "game_over": game_over}


def repair_turn(game: GameSession, now: datetime, turn_timeout: int) -> bool:
    """
    Move the turn off a player who is already out of the game.

    Judged rounds hand out letters outside the turn order, so the turn
    holder or the setter of the open trick can be eliminated while the game
    goes on. A paused game resumes if every live player is connected.

    Returns:
        bool: Whether the turn moved
    """
    if game.status not in (GameStatus.ACTIVE, GameStatus.PAUSED):
        return False
    players = copy_players(game)
    if not live_players(players) or not 0 <= game.current_turn_index < len(players):
        return False

    holder_out = is_eliminated(players[game.current_turn_index].get("letters", ""))
    if game.current_action == TurnAction.ATTEMPT:
        setter_index = find_seat(players, game.setter_id) if game.setter_id else -1
        if setter_index < 0 or is_eliminated(players[setter_index].get("letters", "")):
            _close_round(game, players)
        elif holder_out:
            _advance_attempt(game, players)
        else:
            return False
    elif holder_out:
        game.current_turn_index = next_seat(players, game.current_turn_index)
        game.current_trick = None
        game.setter_id = None
        game.round_had_miss = False
    else:
        return False

    if game.status == GameStatus.PAUSED and all(p.get("connected", True) for p in live_players(players)):
        game.status = GameStatus.ACTIVE
        game.paused_at = None
    _start_turn(game, now, turn_timeout)
    return True


def apply_submit_trick(game: GameSession, odv: str, trick_name: str, now: datetime, turn_timeout: int) -> Dict:
    """
    Set a trick (set phase) or record a landed attempt (attempt phase).

    Raises:
        RuleViolation: If the game is not active or it is not ``odv``'s turn
    """
    _require_turn(game, odv)
    players = copy_players(game)

    if game.current_action == TurnAction.SET:
        trick_name = (trick_name or "").strip()
        if not trick_name:
            raise RuleViolation("Trick name is required")
        attempter = next_seat(players, game.current_turn_index)
        if attempter is None:
            raise RuleViolation("No opponent left to attempt the trick")
        game.current_trick = trick_name
        game.setter_id = odv
        game.current_action = TurnAction.ATTEMPT
        game.round_had_miss = False
        game.current_turn_index = attempter
    else:
        _advance_attempt(game, players)

    _start_turn(game, now, turn_timeout)
    return {"letter_gained": "", "is_eliminated": False, "game_over": False}


def apply_pass_trick(game: GameSession, odv: str, now: datetime, turn_timeout: int) -> Dict:
    """
    Record a missed attempt: the attempter takes a letter.

    Raises:
        RuleViolation: Outside the attempt phase or out of turn
    """
    _require_turn(game, odv)
    if game.current_action != TurnAction.ATTEMPT:
        raise RuleViolation("Can only pass during attempt phase")

    players = copy_players(game)
    outcome = give_letter(game, players, game.current_turn_index, now)
    if outcome["game_over"]:
        return outcome

    game.round_had_miss = True
    _advance_attempt(game, players)
    _start_turn(game, now, turn_timeout)
    return outcome


def apply_bail_set(game: GameSession, odv: str, now: datetime, turn_timeout: int) -> Dict:
    """
    The setter could not land their own trick: they take a letter and
    offense rotates.

    Raises:
        RuleViolation: Outside the set phase or out of turn
    """
    _require_turn(game, odv)
    if game.current_action != TurnAction.SET:
        raise RuleViolation("Can only bail while setting a trick")

    players = copy_players(game)
    index = game.current_turn_index
    outcome = give_letter(game, players, index, now)
    if outcome["game_over"]:
        return outcome

    next_setter = next_seat(players, index)
    game.current_turn_index = next_setter if next_setter is not None else index
    game.current_trick = None
    game.setter_id = None
    game.round_had_miss = False
    _start_turn(game, now, turn_timeout)
    return outcome


def apply_forfeit(game: GameSession, odv: str, now: datetime) -> Dict:
    """
    End the game with ``odv`` conceding.

    Raises:
        RuleViolation: If the game already ended, ``odv`` is not seated or
            ``odv`` is already out of the game
    """
    if game.status in TERMINAL_STATUSES:
        raise RuleViolation("Game already completed")
    players = game.players or []
    index = find_seat(players, odv)
    if index < 0:
        raise RuleViolation("Player not in game")
    if is_eliminated(players[index].get("letters", "")):
        raise RuleViolation("Player already eliminated")

    _complete(game, pick_winner(players, game.current_turn_index, exclude=odv), now)
    return {"letter_gained": "", "is_eliminated": False, "game_over": True}


def apply_disconnect(game: GameSession, odv: str, now: datetime) -> Dict:
    """
    Mark a player disconnected; pause the game if they held the turn.

    Games that are not running are left untouched.
    """
    players = copy_players(game)
    index = find_seat(players, odv)
    if index < 0:
        raise RuleViolation("Player not in game")
    if game.status not in (GameStatus.ACTIVE, GameStatus.PAUSED):
        return {"paused": False}

    players[index]["connected"] = False
    players[index]["disconnected_at"] = now.isoformat()
    game.players = players
    game.updated_at = now

    paused = game.status == GameStatus.ACTIVE and index == game.current_turn_index
    if paused:
        game.status = GameStatus.PAUSED
        game.paused_at = now
    return {"paused": paused}


def apply_reconnect(game: GameSession, odv: str, now: datetime, turn_timeout: int) -> Dict:
    """
    Mark a player connected again; resume a paused game once every live
    player is back.
    """
    players = copy_players(game)
    index = find_seat(players, odv)
    if index < 0:
        raise RuleViolation("Player not in game")

    players[index]["connected"] = True
    players[index]["disconnected_at"] = None
    game.players = players
    game.updated_at = now

    resumed = False
    if all(p.get("connected", True) for p in live_players(players)):
        if game.status == GameStatus.PAUSED:
            game.status = GameStatus.ACTIVE
            game.turn_deadline_at = now + timedelta(seconds=turn_timeout)
            resumed = True
        game.paused_at = None
    return {"resumed": resumed}


def apply_join(game: GameSession, odv: str, now: datetime, turn_timeout: int) -> Dict:
    """
    Seat a player in a pending game; start it once enough players are seated.
    """
    if game.status != GameStatus.PENDING:
        raise RuleViolation("Game has already started")
    players = copy_players(game)
    if len(players) >= game.max_players:
        raise RuleViolation("Game is full")
    if find_seat(players, odv) >= 0:
        raise RuleViolation("Already in game")

    players.append({"odv": odv, "letters": "", "connected": True, "disconnected_at": None})
    game.players = players
    game.updated_at = now

    started = len(players) >= min(max(game.min_players or 2, 2), game.max_players)
    if started:
        game.status = GameStatus.ACTIVE
        game.current_turn_index = 0
        game.current_action = TurnAction.SET
        game.turn_deadline_at = now + timedelta(seconds=turn_timeout)
    return {"started": started}


def apply_attempt_timeout(game: GameSession, deadline: datetime, now: datetime, turn_timeout: int) -> Dict:
    """
    The attempter ran out of time: the round goes to the defense without a
    letter and offense rotates to the next live player after the setter.

    Raises:
        RuleViolation: If the deadline moved or the game left the attempt phase
    """
    _require_deadline(game, deadline, now, TurnAction.ATTEMPT)
    players = game.players or []
    setter_index = find_seat(players, game.setter_id) if game.setter_id else game.current_turn_index
    next_setter = next_seat(players, max(setter_index, 0), include_start=True)
    game.current_turn_index = next_setter if next_setter is not None else 0
    game.current_action = TurnAction.SET
    game.current_trick = None
    game.setter_id = None
    game.round_had_miss = False
    _start_turn(game, now, turn_timeout)
    return {"letter_gained": "", "is_eliminated": False, "game_over": False}


def _require_deadline(game: GameSession, deadline: datetime, now: datetime, action: TurnAction) -> None:
    if game.status != GameStatus.ACTIVE:
        raise RuleViolation("Game is not active")
    if game.turn_deadline_at is None or game.turn_deadline_at != deadline or deadline >= now:
        raise RuleViolation("Turn deadline has moved")
    if game.current_action != action:
        raise RuleViolation("Turn phase has changed")


def require_set_timeout(game: GameSession, deadline: datetime, now: datetime) -> None:
    """Check that a set-phase deadline is still the one that expired."""
    _require_deadline(game, deadline, now, TurnAction.SET)


def apply_set_timeout(game: GameSession, odv: str, deadline: datetime, now: datetime, turn_timeout: int) -> Dict:
    """
    The setter ran out of time and forfeits. A turn left with a player who
    is already eliminated is handed on instead.

    Raises:
        RuleViolation: If the deadline moved or the game left the set phase
    """
    require_set_timeout(game, deadline, now)
    if repair_turn(game, now, turn_timeout):
        return {"letter_gained": "", "is_eliminated": False, "game_over": False}
    return apply_forfeit(game, odv, now)
