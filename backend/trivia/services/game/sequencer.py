from trivia.models import Question


def pack_questions(pack_id):
    return Question.query.filter_by(pack_id=pack_id).order_by(Question.order, Question.id).all()


def ordered(questions):
    return sorted(questions, key=lambda q: (q.order, q.id))


def first_question(questions):
    seq = ordered(questions)
    return seq[0] if seq else None


def next_question(questions, current_id):
    """Question after ``current_id``; None at the end or when it is unknown."""
    seq = ordered(questions)
    for idx, q in enumerate(seq):
        if q.id == current_id:
            return seq[idx + 1] if idx + 1 < len(seq) else None
    return None


def question_number(questions, question_id):
    for idx, q in enumerate(ordered(questions)):
        if q.id == question_id:
            return idx + 1
    return None
