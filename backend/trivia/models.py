from trivia import db
from trivia.errors import Exhausted
from datetime import datetime, timezone
import json
import random

SESSION_CODE_ALPHABET = 'ABCDEFGHJKLMNPQRSTUVWXYZ23456789'

STATUS_WAITING = 'waiting'
STATUS_PLAYING = 'playing'
STATUS_FINISHED = 'finished'

TIMED_OUT_INDEX = -1


def _utcnow():
    return datetime.now(timezone.utc)


def _iso(value):
    return value.isoformat() if value else None


class QuestionPack(db.Model):
    __tablename__ = 'question_pack'
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False)
    description = db.Column(db.Text, nullable=False, default='')
    difficulty = db.Column(db.String(16), nullable=False, default='medium')  # easy, medium, hard
    category = db.Column(db.String(64), nullable=False, default='general')
    question_count = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    questions = db.relationship('Question', back_populates='pack', order_by='Question.order')

    def to_dict(self, include_questions=False):
        data = {
            'id': self.id,
            'name': self.name,
            'description': self.description,
            'difficulty': self.difficulty,
            'category': self.category,
            'question_count': self.question_count,
            'created_at': _iso(self.created_at),
        }
        if include_questions:
            data['questions'] = [q.to_dict() for q in self.questions]
        return data


class Question(db.Model):
    __tablename__ = 'question'
    id = db.Column(db.Integer, primary_key=True)
    pack_id = db.Column(db.Integer, db.ForeignKey('question_pack.id'), nullable=False, index=True)
    text = db.Column(db.Text, nullable=False)
    options_json = db.Column(db.Text, nullable=False)  # JSON-encoded list of option strings
    correct_answer_index = db.Column(db.Integer, nullable=False)
    time_limit = db.Column(db.Integer, nullable=False, default=30)
    points = db.Column(db.Integer, nullable=False, default=100)
    order = db.Column(db.Integer, nullable=False)
    pack = db.relationship('QuestionPack', back_populates='questions')

    __table_args__ = (db.UniqueConstraint('pack_id', 'order', name='uq_question_pack_order'),)

    @property
    def options(self):
        return json.loads(self.options_json) if self.options_json else []

    @options.setter
    def options(self, value):
        self.options_json = json.dumps(list(value))

    @property
    def correct_answer(self):
        options = self.options
        if 0 <= self.correct_answer_index < len(options):
            return options[self.correct_answer_index]
        return None

    def to_dict(self, include_answer=False):
        data = {
            'id': self.id,
            'pack_id': self.pack_id,
            'text': self.text,
            'options': self.options,
            'time_limit': self.time_limit,
            'points': self.points,
            'order': self.order,
        }
        if include_answer:
            data['correct_answer_index'] = self.correct_answer_index
        return data


def generate_session_code(length=6):
    """Random code from an alphabet without look-alike characters (0/O, 1/I)."""
    return ''.join(random.choices(SESSION_CODE_ALPHABET, k=length))


def allocate_session_code(length=6, max_attempts=10, code_factory=None):
    """Return a session code not used by any stored session.

    Raises Exhausted after ``max_attempts`` collisions.
    """
    code_factory = code_factory or generate_session_code
    for _ in range(max_attempts):
        code = code_factory(length).upper()
        if not GameSession.query.filter_by(code=code).first():
            return code
    raise Exhausted()


class GameSession(db.Model):
    __tablename__ = 'game_session'
    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(6), unique=True, nullable=False, index=True)
    host_device_id = db.Column(db.String(128), nullable=False)
    question_pack_id = db.Column(db.Integer, db.ForeignKey('question_pack.id'), nullable=False)
    status = db.Column(db.String(16), nullable=False, default=STATUS_WAITING)  # waiting, playing, finished
    current_question_id = db.Column(db.Integer, db.ForeignKey('question.id'), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    question_pack = db.relationship('QuestionPack')
    current_question = db.relationship('Question')
    players = db.relationship('Player', back_populates='session', order_by='Player.joined_at')

    @classmethod
    def by_code(cls, code):
        if not code:
            return None
        return cls.query.filter_by(code=code.strip().upper()).first()

    def to_dict(self, include_players=False, include_pack=False):
        data = {
            'id': self.id,
            'code': self.code,
            'host_device_id': self.host_device_id,
            'question_pack_id': self.question_pack_id,
            'status': self.status,
            'current_question_id': self.current_question_id,
            'created_at': _iso(self.created_at),
            'updated_at': _iso(self.updated_at),
        }
        if include_players:
            data['players'] = [p.to_dict() for p in self.players]
        if include_pack and self.question_pack:
            data['question_pack'] = self.question_pack.to_dict()
        return data


class Player(db.Model):
    __tablename__ = 'player'
    id = db.Column(db.Integer, primary_key=True)
    session_id = db.Column(db.Integer, db.ForeignKey('game_session.id'), nullable=False, index=True)
    device_id = db.Column(db.String(128), nullable=False)
    nickname = db.Column(db.String(20), nullable=False)
    score = db.Column(db.Integer, nullable=False, default=0)
    joined_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    session = db.relationship('GameSession', back_populates='players')

    __table_args__ = (db.UniqueConstraint('session_id', 'device_id', name='uq_player_session_device'),)

    def to_dict(self):
        return {
            'id': self.id,
            'session_id': self.session_id,
            'device_id': self.device_id,
            'nickname': self.nickname,
            'score': self.score,
            'joined_at': _iso(self.joined_at),
        }


class Answer(db.Model):
    __tablename__ = 'answer'
    id = db.Column(db.Integer, primary_key=True)
    player_id = db.Column(db.Integer, db.ForeignKey('player.id'), nullable=False, index=True)
    question_id = db.Column(db.Integer, db.ForeignKey('question.id'), nullable=False, index=True)
    selected_option_index = db.Column(db.Integer, nullable=False)  # -1 when timed out
    is_correct = db.Column(db.Boolean, nullable=False, default=False)
    points_earned = db.Column(db.Integer, nullable=False, default=0)
    answered_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    player = db.relationship('Player')

    __table_args__ = (db.UniqueConstraint('player_id', 'question_id', name='uq_answer_player_question'),)

    @property
    def timed_out(self):
        return self.selected_option_index == TIMED_OUT_INDEX

    def to_dict(self):
        return {
            'id': self.id,
            'player_id': self.player_id,
            'question_id': self.question_id,
            'selected_option_index': self.selected_option_index,
            'is_correct': self.is_correct,
            'points_earned': self.points_earned,
            'answered_at': _iso(self.answered_at),
        }
