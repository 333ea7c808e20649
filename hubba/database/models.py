"""
Database Models for the S.K.A.T.E. Game Engine

This module defines all SQLAlchemy models for the game engine.
Each model represents a table in the database:
- Game sessions with their turn state and idempotency ledger
- Rounds and disputes for video-judged play
- Battle voting state with its own idempotency ledger

Timestamps are stored as naive UTC so that SQLite and PostgreSQL compare
them the same way.
"""

import enum
import uuid
from datetime import datetime, timezone
from typing import Dict, List, Optional

from sqlalchemy import Boolean, Column, DateTime, Enum, ForeignKey, Index, Integer, JSON, String, Text

from .database import Base


def generate_uuid() -> str:
    """Generate a UUID string for SQLite compatibility."""
    return str(uuid.uuid4())


def utcnow() -> datetime:
    """Current time as naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


# Enums for consistent data types
class GameStatus(enum.Enum):
    PENDING = "pending"
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"
    CANCELED = "canceled"


class TurnAction(enum.Enum):
    SET = "set"
    ATTEMPT = "attempt"


class RoundStatus(enum.Enum):
    AWAITING_SET = "awaiting_set"
    AWAITING_RESPONSE = "awaiting_response"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    RESOLVED = "resolved"
    DISPUTED = "disputed"


class RoundResult(enum.Enum):
    LANDED = "landed"
    MISSED = "missed"


class DisputeStatus(enum.Enum):
    OPEN = "open"
    RESOLVED = "resolved"


class BattleStatus(enum.Enum):
    VOTING = "voting"
    COMPLETED = "completed"


class GameSession(Base):
    """
    One S.K.A.T.E. match.

    ``players`` is an ordered JSON list of seats, each
    ``{"odv", "letters", "connected", "disconnected_at"}``. The row is the
    only shared mutable resource of a game: turn state, letters and the
    ``processed_event_ids`` ledger all change together under one row lock.
    """
    __tablename__ = "game_sessions"

    # Primary key - using String for SQLite compatibility
    id = Column(String(36), primary_key=True, default=generate_uuid, doc="Unique game ID")

    spot_id = Column(String(64), nullable=False, doc="Skate spot where the game is played")
    creator_id = Column(String(128), nullable=False, doc="Player who created the game")

    # Seats and progression
    players = Column(JSON, nullable=False, default=list, doc="Ordered player seats")
    max_players = Column(Integer, nullable=False, default=4, doc="Maximum number of seats")
    min_players = Column(Integer, nullable=False, default=2, doc="Seats needed to start the game")

    # Turn state
    status = Column(Enum(GameStatus), nullable=False, default=GameStatus.PENDING, doc="Lifecycle status")
    current_turn_index = Column(Integer, nullable=False, default=0, doc="Seat whose turn it is")
    current_action = Column(Enum(TurnAction), nullable=False, default=TurnAction.SET, doc="Set or attempt phase")
    current_trick = Column(String(255), nullable=True, doc="Trick set this round")
    setter_id = Column(String(128), nullable=True, doc="Player who set the current trick")
    round_had_miss = Column(Boolean, nullable=False, default=False, doc="Whether an attempter missed the current trick")
    winner_id = Column(String(128), nullable=True, doc="Winner once completed")

    # Deadlines
    turn_deadline_at = Column(DateTime, nullable=True, doc="Soft deadline of the current turn")
    paused_at = Column(DateTime, nullable=True, doc="When the game was paused by a disconnect")

    # Idempotency ledger
    processed_event_ids = Column(JSON, nullable=False, default=list, doc="Recently applied event ids")

    # Timestamps
    created_at = Column(DateTime, nullable=False, default=utcnow, doc="Game creation timestamp")
    updated_at = Column(DateTime, nullable=False, default=utcnow, doc="Last transition timestamp")

    __table_args__ = (
        Index("ix_game_sessions_status_deadline", "status", "turn_deadline_at"),
    )

    def seat_of(self, odv: str) -> Optional[Dict]:
        """Return the seat of a player, or None if they are not in the game."""
        for player in self.players or []:
            if player["odv"] == odv:
                return player
        return None

    def __repr__(self) -> str:
        return f"<GameSession(id={self.id}, status={self.status.value}, turn={self.current_turn_index})>"


class GameRound(Base):
    """
    A video-judged round between an offense and a defense player.

    Rounds feed the judging and dispute flow; a confirmed ``missed`` result
    gives the defense player a letter in the owning game session.
    """
    __tablename__ = "game_rounds"

    id = Column(String(36), primary_key=True, default=generate_uuid, doc="Unique round ID")
    game_id = Column(String(36), ForeignKey("game_sessions.id", ondelete="CASCADE"), nullable=False, doc="Game ID")

    offense_uid = Column(String(128), nullable=False, doc="Player setting the trick")
    defense_uid = Column(String(128), nullable=False, doc="Player answering the trick")

    status = Column(Enum(RoundStatus), nullable=False, default=RoundStatus.AWAITING_SET, doc="Round status")
    trick_description = Column(Text, nullable=True, doc="Trick described by the offense")

    # Opaque references to stored clips
    set_video_ref = Column(String(512), nullable=True, doc="Offense clip reference")
    reply_video_ref = Column(String(512), nullable=True, doc="Defense clip reference")

    # Judging
    offense_claim = Column(Enum(RoundResult), nullable=True, doc="Result claimed by the offense")
    defense_claim = Column(Enum(RoundResult), nullable=True, doc="Result given by the defense")
    result = Column(Enum(RoundResult), nullable=True, doc="Agreed or ruled result")
    disputed = Column(Boolean, nullable=False, default=False, doc="Whether the round went to dispute")

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        Index("ix_game_rounds_game", "game_id"),
    )

    def __repr__(self) -> str:
        return f"<GameRound(id={self.id}, game_id={self.game_id}, status={self.status.value})>"


class GameDispute(Base):
    """A formal dispute filed against a round's judgment."""
    __tablename__ = "game_disputes"

    id = Column(String(36), primary_key=True, default=generate_uuid, doc="Unique dispute ID")
    game_id = Column(String(36), ForeignKey("game_sessions.id", ondelete="CASCADE"), nullable=False, doc="Game ID")
    round_id = Column(String(36), ForeignKey("game_rounds.id", ondelete="CASCADE"), nullable=False, doc="Round ID")

    disputed_by = Column(String(128), nullable=False, doc="Player who filed the dispute")
    against_player_id = Column(String(128), nullable=True, doc="Opponent in the disputed round")
    reason = Column(Text, nullable=True, doc="Free-text reason")

    status = Column(Enum(DisputeStatus), nullable=False, default=DisputeStatus.OPEN, doc="Dispute status")
    final_result = Column(Enum(RoundResult), nullable=True, doc="Ruling once resolved")
    penalty_applied_to = Column(String(128), nullable=True, doc="Player penalized by the ruling")

    created_at = Column(DateTime, nullable=False, default=utcnow)
    resolved_at = Column(DateTime, nullable=True)

    __table_args__ = (
        Index("ix_game_disputes_game_player", "game_id", "disputed_by"),
    )

    def __repr__(self) -> str:
        return f"<GameDispute(id={self.id}, round_id={self.round_id}, status={self.status.value})>"


class BattleVoteState(Base):
    """
    Voting session of a head-to-head trick battle.

    ``votes`` maps a voter's odv to ``{"vote": "clean"|"sketch", "voted_at": iso}``.
    """
    __tablename__ = "battle_vote_states"

    battle_id = Column(String(64), primary_key=True, doc="Battle ID")
    creator_id = Column(String(128), nullable=False, doc="Battle creator")
    opponent_id = Column(String(128), nullable=False, doc="Battle opponent")

    status = Column(Enum(BattleStatus), nullable=False, default=BattleStatus.VOTING, doc="Voting status")
    votes = Column(JSON, nullable=False, default=dict, doc="Votes keyed by voter")

    voting_started_at = Column(DateTime, nullable=False, default=utcnow)
    vote_deadline_at = Column(DateTime, nullable=False)

    winner_id = Column(String(128), nullable=True, doc="Winner once completed")
    completion_reason = Column(String(32), nullable=True, doc="votes, opponent_timeout, creator_timeout or both_timeout")

    processed_event_ids = Column(JSON, nullable=False, default=list, doc="Recently applied event ids")

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        Index("ix_battle_vote_states_status_deadline", "status", "vote_deadline_at"),
    )

    @property
    def participants(self) -> List[str]:
        return [self.creator_id, self.opponent_id]

    def __repr__(self) -> str:
        return f"<BattleVoteState(battle_id={self.battle_id}, status={self.status.value}, votes={len(self.votes or {})})>"
