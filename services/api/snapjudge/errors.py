"""
Game exceptions.

Raised by the state machine, coordinators and stores; the REST layer maps
them to HTTP error responses.
"""


class SnapJudgeError(Exception):
    """Base class for all game errors."""
    code = "SERVER_ERROR"


# ============================================================================
# Lookup / validation
# ============================================================================

class LobbyNotFound(SnapJudgeError):
    """No lobby with this id or room code."""
    code = "NOT_FOUND"

    def __init__(self, lobby_ref: str):
        self.lobby_ref = lobby_ref
        super().__init__(f"Lobby '{lobby_ref}' not found")


class PlayerNotFound(SnapJudgeError):
    """No player with this id."""
    code = "NOT_FOUND"

    def __init__(self, player_id: str):
        self.player_id = player_id
        super().__init__(f"Player '{player_id}' not found")


class RoundNotFound(SnapJudgeError):
    """No judged round with this number."""
    code = "NOT_FOUND"

    def __init__(self, lobby_ref: str, round_number: int):
        self.lobby_ref = lobby_ref
        self.round_number = round_number
        super().__init__(f"Round {round_number} of lobby '{lobby_ref}' has not been judged")


class InvalidNickname(SnapJudgeError):
    """Nickname empty after trimming or too long."""
    code = "VALIDATION"


class LobbyNotJoinable(SnapJudgeError):
    """Lobby has already left the waiting room."""
    code = "VALIDATION"


class NotHost(SnapJudgeError):
    """A host-only action was requested by another player."""
    code = "UNAUTHORIZED"


# ============================================================================
# State machine
# ============================================================================

class InvalidTransition(SnapJudgeError):
    """Requested status change is not legal from the current status."""
    code = "CONFLICT"

    def __init__(self, current: str, target: str, action: str = ""):
        self.current = current
        self.target = target
        self.action = action
        label = f"{action}: " if action else ""
        super().__init__(f"{label}cannot move lobby from '{current}' to '{target}'")


class InsufficientPlayers(SnapJudgeError):
    """Start requested with fewer players than the minimum."""
    code = "VALIDATION"

    def __init__(self, count: int, required: int):
        self.count = count
        self.required = required
        super().__init__(f"Need at least {required} players to start, have {count}")


# ============================================================================
# Judging workflow
# ============================================================================

class NoSubmissions(SnapJudgeError):
    """Judging dispatched but no player has a photo on record."""


class JudgingFailed(SnapJudgeError):
    """AI judge unreachable, timed out, or returned an unusable response."""


# ============================================================================
# Store
# ============================================================================

class ConflictError(SnapJudgeError):
    """A conditional write lost a race: the stored value was not the expected one."""
    code = "CONFLICT"


class DuplicateKeyError(SnapJudgeError):
    """An insert collided with an existing unique key."""
    code = "CONFLICT"
