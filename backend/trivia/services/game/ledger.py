from sqlalchemy.exc import IntegrityError

from trivia import db
from trivia.errors import AlreadyAnswered, PlayerNotFound
from trivia.models import Answer, Player, TIMED_OUT_INDEX


def submit_answer(session, player, question, selected_option_index: int) -> Answer:
    """Record ``player``'s answer to ``question`` exactly once and award points.

    The unique (player_id, question_id) constraint backs the existence check,
    so a racing duplicate that slips past it still ends in AlreadyAnswered and
    never awards points twice.
    """
    if player.session_id != session.id:
        raise PlayerNotFound()
    if Answer.query.filter_by(player_id=player.id, question_id=question.id).first():
        raise AlreadyAnswered()

    is_correct = selected_option_index == question.correct_answer_index
    points = question.points if is_correct else 0
    answer = Answer(
        player_id=player.id,
        question_id=question.id,
        selected_option_index=selected_option_index,
        is_correct=is_correct,
        points_earned=points,
    )
    db.session.add(answer)
    try:
        db.session.flush()
        if points:
            Player.query.filter_by(id=player.id).update(
                {Player.score: Player.score + points}, synchronize_session=False
            )
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise AlreadyAnswered()
    db.session.refresh(player)
    return answer


def fill_timeouts(session, question) -> list:
    """Insert a -1 answer for every player in ``session`` without one.

    Returns the players that were filled; players who already answered,
    including ones whose answer lands concurrently, are skipped.
    """
    answered = _answered_player_ids(session, question.id)
    filled = []
    for player in Player.query.filter_by(session_id=session.id).order_by(Player.joined_at, Player.id).all():
        if player.id in answered:
            continue
        db.session.add(Answer(
            player_id=player.id,
            question_id=question.id,
            selected_option_index=TIMED_OUT_INDEX,
            is_correct=False,
            points_earned=0,
        ))
        try:
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            continue
        filled.append(player)
    return filled


def count_answered(session, question_id) -> int:
    # Packs are shared between sessions, so count only this session's players
    return (
        Answer.query.join(Player, Answer.player_id == Player.id)
        .filter(Player.session_id == session.id, Answer.question_id == question_id)
        .count()
    )


def _answered_player_ids(session, question_id) -> set:
    rows = (
        db.session.query(Answer.player_id)
        .join(Player, Answer.player_id == Player.id)
        .filter(Player.session_id == session.id, Answer.question_id == question_id)
        .all()
    )
    return {pid for (pid,) in rows}


def player_statuses(session, question) -> list:
    answers = {
        a.player_id: a
        for a in Answer.query.join(Player, Answer.player_id == Player.id)
        .filter(Player.session_id == session.id, Answer.question_id == question.id)
        .all()
    }
    statuses = []
    for player in Player.query.filter_by(session_id=session.id).order_by(Player.joined_at, Player.id).all():
        answer = answers.get(player.id)
        statuses.append({
            'player_id': player.id,
            'nickname': player.nickname,
            'answered': answer is not None and not answer.timed_out,
            'timed_out': answer is not None and answer.timed_out,
            'is_correct': bool(answer and answer.is_correct),
            'selected_option_index': answer.selected_option_index if answer else None,
            'points_earned': answer.points_earned if answer else 0,
            'score': player.score,
        })
    return statuses


def ranked_players(session) -> list:
    """Players by score, highest first; equal scores go to the earliest joiner."""
    players = (
        Player.query.filter_by(session_id=session.id)
        .order_by(Player.score.desc(), Player.joined_at, Player.id)
        .all()
    )
    return [
        {
            'player_id': p.id,
            'nickname': p.nickname,
            'total_score': p.score,
            'rank': idx + 1,
        }
        for idx, p in enumerate(players)
    ]
