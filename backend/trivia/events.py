"""Typed server-to-client events.

Each payload class below is one member of a closed set; ``Event`` wraps a
payload with the session code and a timestamp and serialises to the wire
envelope ``{type, session_code, timestamp, data}``.
"""
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import ClassVar, List, Optional, Union


@dataclass(frozen=True)
class ConnectionAck:
    type: ClassVar[str] = 'connection_ack'
    client_id: str
    session_state: Optional[str] = None
    player_count: Optional[int] = None


@dataclass(frozen=True)
class PlayerJoined:
    type: ClassVar[str] = 'player_joined'
    player: dict
    total_players: int


@dataclass(frozen=True)
class PlayerLeft:
    type: ClassVar[str] = 'player_left'
    player_id: int
    nickname: str
    total_players: int


@dataclass(frozen=True)
class GameStarted:
    type: ClassVar[str] = 'game_started'
    question_count: int
    first_question: dict


@dataclass(frozen=True)
class QuestionRevealed:
    type: ClassVar[str] = 'question_revealed'
    question_number: int
    total_questions: int
    question: dict
    # Only set on the copy sent to the host
    correct_answer: Optional[str] = None


@dataclass(frozen=True)
class AnswerSubmitted:
    type: ClassVar[str] = 'answer_submitted'
    player_id: int
    nickname: str
    answered_count: int
    total_players: int
    all_answered: bool


@dataclass(frozen=True)
class AnswerRevealed:
    type: ClassVar[str] = 'answer_revealed'
    question_id: int
    correct_answer_index: int
    auto_revealed: bool
    players: List[dict]


@dataclass(frozen=True)
class QuestionCompleted:
    type: ClassVar[str] = 'question_completed'
    question_id: int
    correct_answer: Optional[str]
    scores: List[dict]
    timeout_players: Optional[List[int]] = None


@dataclass(frozen=True)
class GameFinished:
    type: ClassVar[str] = 'game_finished'
    final_scores: List[dict]
    winner: Optional[dict]


@dataclass(frozen=True)
class Error:
    type: ClassVar[str] = 'error'
    message: str
    code: Optional[str] = None


EventData = Union[
    ConnectionAck,
    PlayerJoined,
    PlayerLeft,
    GameStarted,
    QuestionRevealed,
    AnswerSubmitted,
    AnswerRevealed,
    QuestionCompleted,
    GameFinished,
    Error,
]


def _timestamp():
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class Event:
    session_code: str
    data: EventData
    timestamp: str = field(default_factory=_timestamp)

    @property
    def type(self) -> str:
        return self.data.type

    def to_dict(self) -> dict:
        return {
            'type': self.type,
            'session_code': self.session_code,
            'timestamp': self.timestamp,
            'data': asdict(self.data),
        }
