import logging

import pytest

from hubba.game.actions import ActionKind, generate_event_id, parse_action_kind
from hubba.game.errors import RuleViolation, UnknownActionError
from hubba.game.idempotency import append_event_id
from hubba.game.letters import SKATE, get_next_letter, is_eliminated
from hubba.utils.config import _int_env, get_settings, is_admin_user
from hubba.utils.logging_config import log_battle_event, log_game_event, log_player_action


# ---- Letters --------------------------------------------------

def test_letters_follow_skate_order():
    letters = ""
    earned = []
    for _ in range(5):
        letter = get_next_letter(letters)
        earned.append(letter)
        letters += letter
    assert earned == ["S", "K", "A", "T", "E"]
    assert letters == SKATE


def test_no_letter_after_word_complete():
    assert get_next_letter("SKATE") == ""


def test_eliminated_only_on_full_word():
    assert is_eliminated("SKATE")
    assert not is_eliminated("SKAT")
    assert not is_eliminated("")


# ---- Action kinds ---------------------------------------------

def test_parse_action_kind_strips_prefix():
    assert parse_action_kind("game:pass") == ActionKind.PASS
    assert parse_action_kind("battle:vote") == ActionKind.VOTE
    assert parse_action_kind("TRICK") == ActionKind.TRICK


def test_parse_unknown_action_is_rejected():
    with pytest.raises(UnknownActionError):
        parse_action_kind("game:kickflip")
    with pytest.raises(UnknownActionError):
        parse_action_kind("")


def test_event_id_with_sequence_key_is_deterministic():
    first = generate_event_id(ActionKind.TIMEOUT, "p1", "g1", "deadline-2024-01-01T00:00:00")
    second = generate_event_id(ActionKind.TIMEOUT, "p1", "g1", "deadline-2024-01-01T00:00:00")
    assert first == second == "timeout-g1-p1-deadline-2024-01-01T00:00:00"


def test_event_id_without_sequence_key_is_unique():
    ids = {generate_event_id(ActionKind.PASS, "p1", "g1") for _ in range(20)}
    assert len(ids) == 20
    assert all(i.startswith("pass-g1-p1-") for i in ids)


def test_rule_violation_defaults_to_bad_request():
    error = RuleViolation("Not your turn")
    assert error.message == "Not your turn"
    assert error.status == 400


# ---- Ledger ---------------------------------------------------

def test_ledger_keeps_newest_ids():
    ledger = []
    for i in range(5):
        ledger = append_event_id(ledger, f"e{i}", 3)
    assert ledger == ["e2", "e3", "e4"]


def test_ledger_append_returns_new_list():
    ledger = ["e1"]
    updated = append_event_id(ledger, "e2", 10)
    assert ledger == ["e1"]
    assert updated == ["e1", "e2"]


# ---- Config ---------------------------------------------------

def test_int_env_strips_trailing_comment(monkeypatch):
    monkeypatch.setenv("TURN_TIMEOUT_SECONDS", "45  # seconds")
    assert _int_env("TURN_TIMEOUT_SECONDS", "60") == 45


def test_int_env_rejects_garbage(monkeypatch):
    monkeypatch.setenv("TURN_TIMEOUT_SECONDS", "soon")
    with pytest.raises(ValueError, match="TURN_TIMEOUT_SECONDS"):
        _int_env("TURN_TIMEOUT_SECONDS", "60")


def test_settings_defaults():
    settings = get_settings()
    assert settings.turn_timeout_seconds == 60
    assert settings.reconnect_window_seconds == 120
    assert settings.vote_window_seconds == 60
    assert settings.max_processed_events == 100
    assert settings.battle_max_processed_events == 50


def test_admin_users_from_env(monkeypatch):
    monkeypatch.setenv("ADMIN_USER_IDS", "11, 22")
    get_settings.cache_clear()
    assert is_admin_user(22)
    assert not is_admin_user(33)


# ---- Audit logging --------------------------------------------

def test_audit_helpers_log_to_their_own_streams(caplog):
    caplog.set_level(logging.DEBUG)

    log_player_action("p1", "trick_command", game_id="g1", chat_id=None)
    log_game_event("g1", "game_completed", winner_id="p2", reason="turn_timeout")
    log_battle_event("b1", "battle_completed", winner_id=None)

    by_logger = {record.name: record for record in caplog.records}
    assert by_logger["player_actions"].levelno == logging.DEBUG
    assert by_logger["player_actions"].getMessage() == "Player action: odv=p1 action=trick_command game_id=g1"
    assert by_logger["game_events"].getMessage() == (
        "Game event: game_id=g1 event_type=game_completed winner_id=p2 reason=turn_timeout"
    )
    assert by_logger["battle_events"].levelno == logging.INFO
    assert by_logger["battle_events"].getMessage() == "Battle event: battle_id=b1 event_type=battle_completed"
