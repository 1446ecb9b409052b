from __future__ import annotations


class GameError(Exception):
    """Base for per-action failures; never fatal to the server."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidActionError(GameError):
    pass


class NotYourTurnError(InvalidActionError):
    def __init__(self, message: str = 'Not your turn!'):
        super().__init__(message)


class NotFoundError(GameError):
    pass


class PersistenceError(GameError):
    pass


class StateInconsistencyError(GameError):
    pass
