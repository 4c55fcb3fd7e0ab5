import os
import sys
import pytest

# Ensure the backend root (containing the `trivia` package) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
BACKEND_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if BACKEND_ROOT not in sys.path:
    sys.path.insert(0, BACKEND_ROOT)

from trivia import create_app, db, socketio
from trivia.models import GameSession, Player, Question, QuestionPack


class TestConfig:
    TESTING = True
    SECRET_KEY = os.environ.get('SECRET_KEY', 'test-secret')
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    CORS_ORIGINS = ['http://localhost:5173']
    SOCKETIO_NAMESPACE = '/ws'
    DEFAULT_QUESTION_TIME_SEC = 30
    MIN_REVEAL_DELAY_SEC = 5
    REVEAL_PAUSE_SEC = 0
    PING_INTERVAL_SEC = 30
    CONNECTION_TIMEOUT_SEC = 60
    SESSION_CODE_LENGTH = 6
    SESSION_CODE_MAX_ATTEMPTS = 10
    CONTROLLER_DEBOUNCE_MS = 0
    TIMERS_AUTOSTART = False


HOST = 'host-123'


@pytest.fixture()
def flask_app():
    application = create_app(TestConfig)
    with application.app_context():
        db.create_all()
        yield application
        application.extensions['trivia'].shutdown()
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def client(flask_app):
    return flask_app.test_client()


@pytest.fixture()
def engine(flask_app):
    return flask_app.extensions['trivia']


@pytest.fixture()
def events(engine, monkeypatch):
    """Every event the engine hands to the broadcast channel, in order."""
    sent = []
    original = engine.channel.broadcast

    def recording_broadcast(session_code, event, *args, **kwargs):
        sent.append(event)
        return original(session_code, event, *args, **kwargs)

    monkeypatch.setattr(engine.channel, 'broadcast', recording_broadcast)
    return sent


@pytest.fixture()
def pack(flask_app):
    """Three questions worth 100/200/300 with correct indices 0/1/2."""
    p = QuestionPack(name='Test Pack', description='Test Description', difficulty='easy',
                     category='general', question_count=3)
    db.session.add(p)
    db.session.flush()
    for idx, points in enumerate((100, 200, 300)):
        q = Question(pack_id=p.id, text=f'Question {idx + 1}?', correct_answer_index=idx,
                     time_limit=20, points=points, order=idx + 1)
        q.options = ['A', 'B', 'C', 'D']
        db.session.add(q)
    db.session.commit()
    return p


@pytest.fixture()
def questions(pack):
    return Question.query.filter_by(pack_id=pack.id).order_by(Question.order).all()


@pytest.fixture()
def make_session(pack):
    def _make(code='TEST01', status='waiting', current_question_id=None, players=()):
        session = GameSession(code=code, host_device_id=HOST, question_pack_id=pack.id,
                              status=status, current_question_id=current_question_id)
        db.session.add(session)
        db.session.flush()
        for i, nickname in enumerate(players, start=1):
            db.session.add(Player(session_id=session.id, device_id=f'device-{i}', nickname=nickname))
        db.session.commit()
        return session
    return _make


@pytest.fixture()
def sio_client(flask_app):
    test_client = socketio.test_client(
        flask_app,
        flask_test_client=flask_app.test_client(),
        namespace='/ws'
    )
    yield test_client
    try:
        test_client.disconnect(namespace='/ws')
    except Exception:
        pass
