from flask import Blueprint, jsonify
from trivia import db
from trivia.errors import NotFound
from trivia.models import QuestionPack

question_packs = Blueprint('question_packs', __name__)


@question_packs.route('', methods=['GET'])
def list_question_packs():
    packs = QuestionPack.query.order_by(QuestionPack.id).all()
    return jsonify({'question_packs': [p.to_dict() for p in packs]})


@question_packs.route('/<int:pack_id>', methods=['GET'])
def get_question_pack(pack_id):
    pack = db.session.get(QuestionPack, pack_id)
    if pack is None:
        raise NotFound('Question pack not found')
    return jsonify({'question_pack': pack.to_dict(include_questions=True)})
