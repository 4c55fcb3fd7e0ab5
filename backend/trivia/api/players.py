from flask import Blueprint, jsonify, request, current_app
from trivia.services.game import lobby

players = Blueprint('players', __name__)


@players.route('/<int:player_id>', methods=['PATCH'])
def update_player(player_id):
    data = request.get_json(silent=True) or {}
    player = lobby.rename_player(player_id, data.get('nickname'))
    return jsonify({'player': player.to_dict()})


@players.route('/<int:player_id>', methods=['DELETE'])
def leave_session(player_id):
    current_app.extensions['trivia'].leave(player_id)
    return jsonify({'success': True})
