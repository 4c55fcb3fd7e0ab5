from flask import Blueprint, jsonify, request, current_app
import time
from trivia.errors import GameError, NotFound
from trivia.models import GameSession
from trivia.services.game import lobby


sessions = Blueprint('sessions', __name__)

_last_host_action: dict[str, float] = {}


def _engine():
    return current_app.extensions['trivia']


def _debounced(action: str, code: str, device_id) -> bool:
    try:
        debounce_ms = int(current_app.config.get('CONTROLLER_DEBOUNCE_MS', 0))
    except (TypeError, ValueError):
        debounce_ms = 0
    if debounce_ms <= 0:
        return False
    key = f"{action}:{code.upper()}:{device_id}"
    now = time.time() * 1000.0
    # Entries outside the window can never debounce again
    for stale in [k for k, t in _last_host_action.items() if now - t >= debounce_ms]:
        del _last_host_action[stale]
    last = _last_host_action.get(key, 0)
    if now - last < debounce_ms:
        return True
    _last_host_action[key] = now
    return False


@sessions.app_errorhandler(GameError)
def handle_game_error(exc):
    if exc.status_code >= 500:
        current_app.logger.error(f"[error] kind={exc.kind} {exc.message}")
    return jsonify(exc.to_dict()), exc.status_code


@sessions.route('', methods=['POST'])
def create_session():
    data = request.get_json(silent=True) or {}
    session = lobby.create_session(data.get('host_device_id'), data.get('question_pack_id'))
    return jsonify({'session': session.to_dict(include_pack=True)}), 201


@sessions.route('/<string:code>', methods=['GET'])
def get_session(code):
    session = GameSession.by_code(code)
    if session is None:
        raise NotFound('Session not found')
    return jsonify({'session': session.to_dict(include_players=True, include_pack=True)})


@sessions.route('/<string:code>/players', methods=['POST'])
def join_session(code):
    data = request.get_json(silent=True) or {}
    player, created = lobby.join_session(
        code, data.get('device_id'), data.get('nickname'), channel=_engine().channel
    )
    return jsonify({'player': player.to_dict()}), 201 if created else 200


@sessions.route('/<string:code>/start', methods=['POST'])
def start_game(code):
    data = request.get_json(silent=True) or {}
    host_device_id = data.get('host_device_id')
    if _debounced('start', code, host_device_id):
        return jsonify({'message': 'debounced'}), 202
    return jsonify(_engine().start(code, host_device_id))


@sessions.route('/<string:code>/current-question', methods=['GET'])
def current_question(code):
    include_answer = request.args.get('include_answer', '').lower() in ('1', 'true', 'yes')
    return jsonify({'question': _engine().get_current_question(code, include_answer=include_answer)})


@sessions.route('/<string:code>/answers', methods=['POST'])
def submit_answer(code):
    data = request.get_json(silent=True) or {}
    return jsonify(_engine().submit_answer(code, data.get('device_id'), data.get('answer_index')))


@sessions.route('/<string:code>/reveal', methods=['POST'])
def reveal_answer(code):
    data = request.get_json(silent=True) or {}
    host_device_id = data.get('host_device_id')
    if _debounced('reveal', code, host_device_id):
        return jsonify({'message': 'debounced'}), 202
    return jsonify(_engine().reveal_answer(code, host_device_id))


@sessions.route('/<string:code>/next-question', methods=['POST'])
def next_question(code):
    data = request.get_json(silent=True) or {}
    host_device_id = data.get('host_device_id')
    if _debounced('next', code, host_device_id):
        return jsonify({'message': 'debounced'}), 202
    return jsonify(_engine().next_question(code, host_device_id))


@sessions.route('/<string:code>/scores', methods=['GET'])
def get_scores(code):
    return jsonify(_engine().get_scores(code))


@sessions.route('/<string:code>/answer-status', methods=['GET'])
def get_answer_status(code):
    return jsonify(_engine().get_answer_status(code))
