"""Session state machine: waiting -> playing -> finished.

Host actions, player answers and timer expiry for one session all run under
that session's lock, so events leave in the same order as the state changes
that produced them. The answer ledger insert is the point where a late
answer and the question timeout are decided: whichever takes the lock first
wins, the other sees the result.
"""
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, Optional

from flask import has_app_context

from trivia import db
from trivia.broadcast import Audience
from trivia.errors import AlreadyAnswered, EmptyPack, InvalidState, NotFound, PlayerNotFound, Unauthorized, ValidationError
from trivia.events import (
    AnswerRevealed,
    AnswerSubmitted,
    Event,
    GameFinished,
    GameStarted,
    QuestionCompleted,
    QuestionRevealed,
)
from trivia.models import Answer, GameSession, Player, STATUS_FINISHED, STATUS_PLAYING, STATUS_WAITING
from . import ledger, lobby
from .sequencer import first_question, next_question, pack_questions, question_number


@dataclass
class SessionRuntime:
    question_id: int
    started_at: float
    completed: bool = False
    auto_revealed: bool = False


class GameEngine:
    def __init__(self, app, timers, channel, clock=time.time, sleep=time.sleep, start_task=None):
        self.app = app
        self.timers = timers
        self.channel = channel
        self.clock = clock
        self.sleep = sleep
        self.start_task = start_task
        self.min_reveal_delay = float(app.config.get('MIN_REVEAL_DELAY_SEC', 5))
        self.reveal_pause = float(app.config.get('REVEAL_PAUSE_SEC', 0.5))
        self.default_time_limit = int(app.config.get('DEFAULT_QUESTION_TIME_SEC', 30))
        self._runtime: Dict[str, SessionRuntime] = {}
        self._locks: Dict[str, threading.RLock] = {}
        self._locks_guard = threading.Lock()

    @property
    def logger(self):
        return self.app.logger

    def runtime(self, code) -> Optional[SessionRuntime]:
        return self._runtime.get(code.upper())

    # ---- host actions ----

    def start(self, code, host_device_id):
        session = self._load(code)
        with self._lock(session.code):
            db.session.refresh(session)
            self._require_host(session, host_device_id)
            if session.status != STATUS_WAITING:
                raise InvalidState('Game already started or finished')
            questions = pack_questions(session.question_pack_id)
            first = first_question(questions)
            if first is None:
                raise EmptyPack()

            # Conditional update so only one start can ever flip the status
            flipped = GameSession.query.filter_by(id=session.id, status=STATUS_WAITING).update(
                {
                    GameSession.status: STATUS_PLAYING,
                    GameSession.current_question_id: first.id,
                    GameSession.updated_at: datetime.now(timezone.utc),
                },
                synchronize_session=False,
            )
            db.session.commit()
            if not flipped:
                raise InvalidState('Game already started or finished')
            db.session.refresh(session)

            self._open_question(session, first)
            self.logger.info(f"[start] session={session.code} questions={len(questions)} first={first.id}")
            self._broadcast(session.code, GameStarted(
                question_count=len(questions),
                first_question=first.to_dict(),
            ))
            return {'session': session.to_dict(), 'question': first.to_dict()}

    def reveal_answer(self, code, host_device_id):
        session = self._load(code)
        with self._lock(session.code):
            db.session.refresh(session)
            self._require_host(session, host_device_id)
            question = self._require_current_question(session)
            self._reveal_and_complete(session, question, auto=False)
            status = self._answer_status(session, question)
            status['correct_answer_index'] = question.correct_answer_index
            return status

    def next_question(self, code, host_device_id):
        session = self._load(code)
        with self._lock(session.code):
            db.session.refresh(session)
            self._require_host(session, host_device_id)
            if session.status != STATUS_PLAYING:
                raise InvalidState('Game is not in progress')

            questions = pack_questions(session.question_pack_id)
            if session.current_question_id:
                upcoming = next_question(questions, session.current_question_id)
            else:
                upcoming = first_question(questions)
            self.timers.cancel(session.code)

            if upcoming is not None:
                session.current_question_id = upcoming.id
                db.session.commit()
                self._open_question(session, upcoming)
                number = question_number(questions, upcoming.id)
                view = upcoming.to_dict()
                self.logger.info(f"[next] session={session.code} question={upcoming.id} number={number}/{len(questions)}")
                self._broadcast(session.code, QuestionRevealed(
                    question_number=number,
                    total_questions=len(questions),
                    question=view,
                ), Audience.PLAYERS)
                self._broadcast(session.code, QuestionRevealed(
                    question_number=number,
                    total_questions=len(questions),
                    question=view,
                    correct_answer=upcoming.correct_answer,
                ), Audience.HOST)
                return {
                    'has_next': True,
                    'question': view,
                    'question_number': number,
                    'total_questions': len(questions),
                    'session': session.to_dict(),
                }

            session.status = STATUS_FINISHED
            db.session.commit()
            self._runtime.pop(session.code, None)
            with self._locks_guard:
                self._locks.pop(session.code, None)
            final_scores = ledger.ranked_players(session)
            winner = None
            if final_scores:
                top = final_scores[0]
                winner = {k: top[k] for k in ('player_id', 'nickname', 'total_score')}
            self.logger.info(f"[finish] session={session.code} players={len(final_scores)} winner={winner and winner['player_id']}")
            self._broadcast(session.code, GameFinished(final_scores=final_scores, winner=winner))
            return {
                'has_next': False,
                'session': session.to_dict(),
                'final_scores': final_scores,
                'winner': winner,
            }

    # ---- player actions ----

    def submit_answer(self, code, device_id, answer_index):
        session = self._load(code)
        with self._lock(session.code):
            db.session.refresh(session)
            question = self._require_current_question(session)
            if isinstance(answer_index, bool) or not isinstance(answer_index, int) \
                    or not 0 <= answer_index < len(question.options):
                raise ValidationError('answer_index must be one of the option positions')
            player = Player.query.filter_by(session_id=session.id, device_id=device_id).first()
            if not player:
                raise PlayerNotFound()
            # A player with a row (real or timed out) is a duplicate, closed or not
            if Answer.query.filter_by(player_id=player.id, question_id=question.id).first():
                raise AlreadyAnswered()
            runtime = self._runtime.get(session.code)
            if runtime and runtime.question_id == question.id and runtime.completed:
                raise InvalidState('Answers are closed for this question')

            answer = ledger.submit_answer(session, player, question, answer_index)
            answered = ledger.count_answered(session, question.id)
            total = Player.query.filter_by(session_id=session.id).count()
            all_answered = answered >= total
            self.logger.info(
                f"[answer] session={session.code} player={player.id} question={question.id} "
                f"correct={answer.is_correct} answered={answered}/{total}"
            )
            self._broadcast(session.code, AnswerSubmitted(
                player_id=player.id,
                nickname=player.nickname,
                answered_count=answered,
                total_players=total,
                all_answered=all_answered,
            ))
            if all_answered:
                self._on_all_answered(session, question)
            return {
                'correct': answer.is_correct,
                'points_earned': answer.points_earned,
                'total_score': player.score,
                'answered_count': answered,
                'total_players': total,
                'all_answered': all_answered,
            }

    def leave(self, player_id):
        """Remove a player; a departure can leave everyone remaining answered."""
        player = db.session.get(Player, player_id)
        if player is None:
            raise PlayerNotFound()
        code = player.session.code
        with self._lock(code):
            lobby.leave_session(player_id, channel=self.channel)
            session = self._load(code)
            if session.status != STATUS_PLAYING or not session.current_question_id:
                return
            question = session.current_question
            runtime = self._runtime.get(code)
            if runtime and runtime.question_id == question.id and runtime.completed:
                return
            total = Player.query.filter_by(session_id=session.id).count()
            if total and ledger.count_answered(session, question.id) >= total:
                self.logger.info(f"[leave-all-answered] session={code} question={question.id} total={total}")
                self._on_all_answered(session, question)

    # ---- timer callbacks ----

    def handle_timeout(self, code, question_id):
        session = GameSession.by_code(code)
        if session is None:
            return False
        with self._lock(session.code):
            db.session.refresh(session)
            if session.status != STATUS_PLAYING or session.current_question_id != question_id:
                self.logger.info(
                    f"[timeout-abort] session={session.code} expected={question_id} actual={session.current_question_id}"
                )
                return False
            question = session.current_question
            filled = ledger.fill_timeouts(session, question)
            total = Player.query.filter_by(session_id=session.id).count()
            answered = ledger.count_answered(session, question.id)
            already = answered - len(filled)
            for idx, player in enumerate(filled):
                count = already + idx + 1
                self._broadcast(session.code, AnswerSubmitted(
                    player_id=player.id,
                    nickname=player.nickname,
                    answered_count=count,
                    total_players=total,
                    all_answered=count >= total,
                ))
            self.logger.info(f"[timeout] session={session.code} question={question.id} timed_out={len(filled)}")
            return self._reveal_and_complete(
                session, question, auto=True, timeout_players=[p.id for p in filled]
            )

    def _auto_reveal(self, code, question_id):
        session = GameSession.by_code(code)
        if session is None:
            return False
        with self._lock(session.code):
            db.session.refresh(session)
            if session.status != STATUS_PLAYING or session.current_question_id != question_id:
                self.logger.info(f"[reveal-abort] session={session.code} expected={question_id}")
                return False
            return self._reveal_and_complete(session, session.current_question, auto=True)

    # ---- queries ----

    def get_scores(self, code):
        session = self._load(code)
        return {'players': ledger.ranked_players(session), 'game_status': session.status}

    def get_answer_status(self, code):
        session = self._load(code)
        question = session.current_question if session.current_question_id else None
        if question is None:
            return {
                'question_id': None,
                'answered_count': 0,
                'total_players': Player.query.filter_by(session_id=session.id).count(),
                'all_answered': False,
                'revealed': False,
                'players': [],
            }
        return self._answer_status(session, question)

    def get_current_question(self, code, include_answer=False):
        session = self._load(code)
        if session.status != STATUS_PLAYING or not session.current_question_id:
            raise NotFound('No active question')
        question = session.current_question
        questions = pack_questions(session.question_pack_id)
        data = question.to_dict(include_answer=include_answer)
        data['question_number'] = question_number(questions, question.id)
        data['total_questions'] = len(questions)
        runtime = self._runtime.get(session.code)
        if runtime and runtime.question_id == question.id:
            elapsed = self.clock() - runtime.started_at
            data['time_remaining'] = max(0.0, question.time_limit - elapsed)
            data['revealed'] = runtime.completed
        return data

    def shutdown(self):
        self.timers.cancel_all()
        self.channel.stop()

    # ---- internals ----

    def _load(self, code) -> GameSession:
        session = GameSession.by_code(code)
        if session is None:
            raise NotFound('Session not found')
        return session

    def _lock(self, code) -> threading.RLock:
        with self._locks_guard:
            return self._locks.setdefault(code, threading.RLock())

    def _require_host(self, session, host_device_id):
        if not host_device_id or host_device_id != session.host_device_id:
            raise Unauthorized()

    def _require_current_question(self, session):
        if session.status != STATUS_PLAYING or not session.current_question_id:
            raise InvalidState('Game is not in progress')
        return session.current_question

    def _in_app(self, fn, *args):
        def run():
            if has_app_context():
                return fn(*args)
            with self.app.app_context():
                return fn(*args)
        return run

    def _open_question(self, session, question):
        self._runtime[session.code] = SessionRuntime(question_id=question.id, started_at=self.clock())
        limit = question.time_limit or self.default_time_limit
        self.timers.arm(session.code, limit, self._in_app(self.handle_timeout, session.code, question.id))

    def _on_all_answered(self, session, question):
        self.timers.cancel(session.code)
        runtime = self._runtime.get(session.code)
        elapsed = self.clock() - runtime.started_at if runtime else None
        if elapsed is None or elapsed >= self.min_reveal_delay:
            self._reveal_and_complete(session, question, auto=True)
            return
        remaining = self.min_reveal_delay - elapsed
        self.logger.info(f"[reveal-delay] session={session.code} question={question.id} in={remaining:.2f}s")
        self.timers.arm(
            session.code,
            remaining,
            self._in_app(self._auto_reveal, session.code, question.id),
            kind='reveal',
        )

    def _reveal_and_complete(self, session, question, auto, timeout_players=None):
        runtime = self._runtime.get(session.code)
        if runtime is None or runtime.question_id != question.id:
            runtime = SessionRuntime(question_id=question.id, started_at=self.clock())
            self._runtime[session.code] = runtime
        if runtime.completed:
            self.logger.info(f"[reveal-skip] session={session.code} question={question.id} already completed")
            return False
        runtime.completed = True
        runtime.auto_revealed = auto
        self.timers.cancel(session.code)

        statuses = ledger.player_statuses(session, question)
        self.logger.info(f"[reveal] session={session.code} question={question.id} auto={auto}")
        self._broadcast(session.code, AnswerRevealed(
            question_id=question.id,
            correct_answer_index=question.correct_answer_index,
            auto_revealed=auto,
            players=statuses,
        ))
        scores = [
            {
                'player_id': s['player_id'],
                'nickname': s['nickname'],
                'score': s['score'],
                'is_correct': s['is_correct'],
                'selected_option_index': s['selected_option_index'],
            }
            for s in statuses
        ]
        completed = QuestionCompleted(
            question_id=question.id,
            correct_answer=question.correct_answer,
            scores=scores,
            timeout_players=timeout_players,
        )
        if self.reveal_pause > 0 and self.start_task is not None:
            # Pause off the caller's thread so the request or timer returns now
            self.start_task(self._complete_later, session.code, completed)
        else:
            self._broadcast(session.code, completed)
        return True

    def _complete_later(self, code, completed):
        self.sleep(self.reveal_pause)
        with self._lock(code):
            self._broadcast(code, completed)

    def _answer_status(self, session, question):
        statuses = ledger.player_statuses(session, question)
        answered = ledger.count_answered(session, question.id)
        runtime = self._runtime.get(session.code)
        return {
            'question_id': question.id,
            'answered_count': answered,
            'total_players': len(statuses),
            'all_answered': bool(statuses) and answered >= len(statuses),
            'revealed': bool(runtime and runtime.question_id == question.id and runtime.completed),
            'players': statuses,
        }

    def _broadcast(self, code, data, audience=Audience.ALL):
        return self.channel.broadcast(code, Event(code, data), audience)
