from flask import current_app
from sqlalchemy.exc import IntegrityError

from trivia import db
from trivia.errors import InvalidState, NotFound, PlayerNotFound, ValidationError
from trivia.events import Event, PlayerJoined, PlayerLeft
from trivia.models import Answer, GameSession, Player, QuestionPack, STATUS_WAITING, allocate_session_code

NICKNAME_MAX_LENGTH = 20


def _clean_nickname(nickname):
    if not isinstance(nickname, str) or not nickname.strip():
        raise ValidationError('Nickname is required')
    nickname = nickname.strip()
    if len(nickname) > NICKNAME_MAX_LENGTH:
        raise ValidationError(f'Nickname must be at most {NICKNAME_MAX_LENGTH} characters')
    return nickname


def _require_device(device_id, field='device_id'):
    if not isinstance(device_id, str) or not device_id.strip():
        raise ValidationError(f'{field} is required')
    return device_id.strip()


def create_session(host_device_id, question_pack_id, code_factory=None) -> GameSession:
    host_device_id = _require_device(host_device_id, 'host_device_id')
    try:
        question_pack_id = int(question_pack_id)
    except (TypeError, ValueError):
        raise ValidationError('question_pack_id is required')
    pack = db.session.get(QuestionPack, question_pack_id)
    if pack is None:
        raise NotFound('Question pack not found')

    cfg = current_app.config
    code = allocate_session_code(
        length=int(cfg.get('SESSION_CODE_LENGTH', 6)),
        max_attempts=int(cfg.get('SESSION_CODE_MAX_ATTEMPTS', 10)),
        code_factory=code_factory,
    )
    session = GameSession(code=code, host_device_id=host_device_id, question_pack_id=pack.id)
    db.session.add(session)
    db.session.commit()
    current_app.logger.info(f"[session-create] code={code} pack={pack.id}")
    return session


def join_session(code, device_id, nickname, channel=None):
    """Add a player, or return the one this device already has.

    Returns ``(player, created)``.
    """
    device_id = _require_device(device_id)
    nickname = _clean_nickname(nickname)
    session = GameSession.by_code(code)
    if session is None:
        raise NotFound('Session not found')
    if session.status != STATUS_WAITING:
        raise InvalidState('Session is not accepting new players')

    existing = Player.query.filter_by(session_id=session.id, device_id=device_id).first()
    if existing:
        return existing, False

    player = Player(session_id=session.id, device_id=device_id, nickname=nickname)
    db.session.add(player)
    try:
        db.session.commit()
    except IntegrityError:
        # Same device joined concurrently; keep the first record
        db.session.rollback()
        return Player.query.filter_by(session_id=session.id, device_id=device_id).first(), False

    total = Player.query.filter_by(session_id=session.id).count()
    current_app.logger.info(f"[player-join] session={session.code} player={player.id} total={total}")
    if channel is not None:
        channel.broadcast(session.code, Event(session.code, PlayerJoined(player=player.to_dict(), total_players=total)))
    return player, True


def rename_player(player_id, nickname) -> Player:
    nickname = _clean_nickname(nickname)
    player = db.session.get(Player, player_id)
    if player is None:
        raise PlayerNotFound()
    player.nickname = nickname
    db.session.commit()
    return player


def leave_session(player_id, channel=None) -> None:
    player = db.session.get(Player, player_id)
    if player is None:
        raise PlayerNotFound()
    session = player.session
    nickname = player.nickname
    Answer.query.filter_by(player_id=player.id).delete()
    db.session.delete(player)
    db.session.commit()

    total = Player.query.filter_by(session_id=session.id).count()
    current_app.logger.info(f"[player-leave] session={session.code} player={player_id} total={total}")
    if channel is not None:
        channel.broadcast(session.code, Event(session.code, PlayerLeft(
            player_id=player_id, nickname=nickname, total_players=total,
        )))
