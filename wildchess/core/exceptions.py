"""
Error taxonomy shared by the domain and service layers.

Every error carries a machine-readable `code`, so a client can tell
"your action was illegal" (turn/legality/phase) apart from "your session is stale" (room/game not found).
"""


class GameError(Exception):
    """Top-level custom exception. Anything deriving from it is recovered at the room manager boundary."""

    code: str = "GAME_ERROR"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


# --- SESSION / ROOM ERRORS ---
class RoomNotFoundError(GameError):
    code = "ROOM_NOT_FOUND"


class GameNotFoundError(GameError):
    """The room exists, but its game has not started yet."""

    code = "GAME_NOT_FOUND"


class PlayerNotInRoomError(GameError):
    code = "PLAYER_NOT_IN_ROOM"


class RoomFullError(GameError):
    code = "ROOM_FULL"


class AlreadyInRoomError(GameError):
    code = "ALREADY_IN_ROOM"


class NotAllowedError(GameError):
    """The requester is a member of the room, but their role does not allow the action."""

    code = "NOT_ALLOWED"


# --- GAME RULE ERRORS ---
class NotYourTurnError(GameError):
    code = "NOT_YOUR_TURN"


class WrongPlacementColorError(GameError):
    code = "WRONG_PLACEMENT_COLOR"


class SquareOccupiedError(GameError):
    code = "SQUARE_OCCUPIED"


class IllegalMoveError(GameError):
    code = "INVALID_MOVE"


class GameStateError(GameError):
    """Operation not valid in the current phase of the game."""

    code = "PHASE_VIOLATION"


class PlacementIncompleteError(GameStateError):
    code = "PLACEMENT_INCOMPLETE"


class NoDrawOfferError(GameStateError):
    code = "NO_DRAW_OFFER"


# --- BOUNDARY ERRORS ---
class InvalidRequestError(GameError):
    code = "INVALID_REQUEST"


class RepositoryError(GameError):
    code = "REPOSITORY_ERROR"
