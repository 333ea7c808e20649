"""
Result Envelopes

Every engine operation returns one of these envelopes. Views are detached
snapshots of a row taken inside the transaction, so callers can read them
after the session is closed.
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from ..database.models import BattleVoteState, GameDispute, GameRound, GameSession
from .letters import is_eliminated


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass
class PlayerView:
    odv: str
    letters: str = ""
    connected: bool = True
    disconnected_at: Optional[str] = None

    @property
    def eliminated(self) -> bool:
        return is_eliminated(self.letters)


@dataclass
class GameView:
    """Read-only snapshot of a game session."""
    id: str
    spot_id: str
    creator_id: str
    players: List[PlayerView]
    status: str
    current_turn_index: int
    current_action: str
    current_trick: Optional[str]
    setter_id: Optional[str]
    winner_id: Optional[str]
    turn_deadline_at: Optional[str]
    paused_at: Optional[str]
    max_players: int
    updated_at: Optional[str] = None

    @classmethod
    def from_row(cls, game: GameSession) -> "GameView":
        return cls(
            id=game.id,
            spot_id=game.spot_id,
            creator_id=game.creator_id,
            players=[
                PlayerView(
                    odv=p["odv"],
                    letters=p.get("letters", ""),
                    connected=p.get("connected", True),
                    disconnected_at=p.get("disconnected_at"),
                )
                for p in game.players or []
            ],
            status=game.status.value,
            current_turn_index=game.current_turn_index,
            current_action=game.current_action.value,
            current_trick=game.current_trick,
            setter_id=game.setter_id,
            winner_id=game.winner_id,
            turn_deadline_at=_iso(game.turn_deadline_at),
            paused_at=_iso(game.paused_at),
            max_players=game.max_players,
            updated_at=_iso(game.updated_at),
        )

    @property
    def current_player(self) -> Optional[str]:
        if 0 <= self.current_turn_index < len(self.players):
            return self.players[self.current_turn_index].odv
        return None

    def player(self, odv: str) -> Optional[PlayerView]:
        for p in self.players:
            if p.odv == odv:
                return p
        return None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class TransitionResult:
    """Outcome of a game transition."""
    success: bool
    already_processed: bool = False
    error: Optional[str] = None
    game: Optional[GameView] = None
    letter_gained: str = ""
    is_eliminated: bool = False
    # Set when this transition completed the game
    game_over: bool = False

    @classmethod
    def failure(cls, error: str) -> "TransitionResult":
        return cls(success=False, error=error)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "already_processed": self.already_processed,
            "error": self.error,
            "game": self.game.to_dict() if self.game else None,
            "letter_gained": self.letter_gained,
            "is_eliminated": self.is_eliminated,
            "game_over": self.game_over,
        }


@dataclass
class BattleView:
    battle_id: str
    creator_id: str
    opponent_id: str
    status: str
    votes: Dict[str, Dict[str, str]]
    voting_started_at: Optional[str]
    vote_deadline_at: Optional[str]
    winner_id: Optional[str]
    completion_reason: Optional[str]

    @classmethod
    def from_row(cls, state: BattleVoteState) -> "BattleView":
        return cls(
            battle_id=state.battle_id,
            creator_id=state.creator_id,
            opponent_id=state.opponent_id,
            status=state.status.value,
            votes=dict(state.votes or {}),
            voting_started_at=_iso(state.voting_started_at),
            vote_deadline_at=_iso(state.vote_deadline_at),
            winner_id=state.winner_id,
            completion_reason=state.completion_reason,
        )


@dataclass
class VoteResult:
    """Outcome of a battle voting operation."""
    success: bool
    already_processed: bool = False
    already_initialized: bool = False
    error: Optional[str] = None
    battle: Optional[BattleView] = None
    battle_complete: bool = False
    winner_id: Optional[str] = None
    final_score: Dict[str, int] = field(default_factory=dict)

    @classmethod
    def failure(cls, error: str) -> "VoteResult":
        return cls(success=False, error=error)


@dataclass
class RoundView:
    id: str
    game_id: str
    offense_uid: str
    defense_uid: str
    status: str
    trick_description: Optional[str]
    set_video_ref: Optional[str]
    reply_video_ref: Optional[str]
    offense_claim: Optional[str]
    defense_claim: Optional[str]
    result: Optional[str]
    disputed: bool

    @classmethod
    def from_row(cls, game_round: GameRound) -> "RoundView":
        return cls(
            id=game_round.id,
            game_id=game_round.game_id,
            offense_uid=game_round.offense_uid,
            defense_uid=game_round.defense_uid,
            status=game_round.status.value,
            trick_description=game_round.trick_description,
            set_video_ref=game_round.set_video_ref,
            reply_video_ref=game_round.reply_video_ref,
            offense_claim=game_round.offense_claim.value if game_round.offense_claim else None,
            defense_claim=game_round.defense_claim.value if game_round.defense_claim else None,
            result=game_round.result.value if game_round.result else None,
            disputed=bool(game_round.disputed),
        )


@dataclass
class DisputeView:
    id: str
    game_id: str
    round_id: str
    disputed_by: str
    against_player_id: Optional[str]
    reason: Optional[str]
    status: str
    final_result: Optional[str]
    penalty_applied_to: Optional[str]

    @classmethod
    def from_row(cls, dispute: GameDispute) -> "DisputeView":
        return cls(
            id=dispute.id,
            game_id=dispute.game_id,
            round_id=dispute.round_id,
            disputed_by=dispute.disputed_by,
            against_player_id=dispute.against_player_id,
            reason=dispute.reason,
            status=dispute.status.value,
            final_result=dispute.final_result.value if dispute.final_result else None,
            penalty_applied_to=dispute.penalty_applied_to,
        )


@dataclass
class JudgingResult:
    """
    Outcome of a round or dispute operation.

    ``status`` mirrors HTTP semantics for the caller: 200 on success,
    400/403/404 on rejection.
    """
    success: bool
    status: int = 200
    error: Optional[str] = None
    already_processed: bool = False
    round: Optional[RoundView] = None
    dispute: Optional[DisputeView] = None
    disputed: bool = False
    result: Optional[str] = None
    letter_gained: str = ""
    game_over: bool = False
    winner_id: Optional[str] = None
    # Opponent to notify after commit; None skips the notification
    opponent_id: Optional[str] = None

    @classmethod
    def failure(cls, error: str, status: int = 400) -> "JudgingResult":
        return cls(success=False, status=status, error=error)
