from flask import Blueprint, jsonify, current_app

main = Blueprint('main', __name__)


@main.route('/')
def index():
    return jsonify({'message': 'Trivia API'})


@main.route('/health')
def health():
    engine = current_app.extensions['trivia']
    return jsonify({'status': 'ok', 'timers_autostart': engine.timers.autostart})
