from __future__ import annotations


class GameError(ValueError):
    """Base class for rejections a caller can recover from.

    ``str(exc)`` is the human readable reason sent back to the actor and
    ``code`` is a stable identifier for the kind of failure.
    """

    code = "GAME_ERROR"
    default_message = "Game error"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.default_message)


class SessionNotFound(GameError):
    code = "NOT_FOUND"
    default_message = "Session not found"


class InvalidPhase(GameError):
    code = "INVALID_PHASE"
    default_message = "Operation not allowed in the current phase"


class DuplicateAnswer(GameError):
    code = "DUPLICATE_ANSWER"
    default_message = "Already answered"


class NoCurrentQuestion(GameError):
    code = "NO_CURRENT_QUESTION"
    default_message = "No current question"


class JoinCodeUnavailable(GameError):
    code = "JOIN_CODE_UNAVAILABLE"
    default_message = "Could not allocate a free join code"


class PlayerNotFound(GameError):
    code = "PLAYER_NOT_FOUND"
    default_message = "Not a player in this session"
