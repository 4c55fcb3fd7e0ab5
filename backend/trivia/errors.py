"""Recoverable game errors.

Every error carries a stable ``kind`` that HTTP and socket callers can
switch on, plus the HTTP status the API layer renders it with.
"""


class GameError(Exception):
    kind = 'game_error'
    status_code = 400
    message = 'Game error'

    def __init__(self, message=None):
        super().__init__(message or self.message)
        self.message = message or self.message

    def to_dict(self):
        return {'error': self.message, 'kind': self.kind}


class NotFound(GameError):
    kind = 'not_found'
    status_code = 404
    message = 'Not found'


class PlayerNotFound(NotFound):
    kind = 'player_not_found'
    message = 'Player not found'


class Unauthorized(GameError):
    kind = 'unauthorized'
    status_code = 401
    message = 'Unauthorized'


class InvalidState(GameError):
    kind = 'invalid_state'
    message = 'Action not allowed in the current game state'


class AlreadyAnswered(GameError):
    kind = 'already_answered'
    message = 'Already answered this question'


class ValidationError(GameError):
    kind = 'validation_error'
    message = 'Invalid request data'


class EmptyPack(GameError):
    kind = 'empty_pack'
    message = 'Question pack has no questions'


class Exhausted(GameError):
    kind = 'exhausted'
    status_code = 500
    message = 'Failed to generate unique code'
