"""Exception hierarchy for the follow loop.

All errors inherit from FollowLoopError so routers can map them in one
place. Each carries a stable ``code`` the API returns to clients.
"""


class FollowLoopError(Exception):
    """Base exception for all follow loop errors."""

    code = "follow_loop_error"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class NotFoundError(FollowLoopError):
    """Referenced loop, participant or interaction does not exist."""

    code = "not_found"

    def __init__(self, kind: str, identifier: str):
        self.kind = kind
        self.identifier = identifier
        super().__init__(f"{kind} {identifier} not found")


class ConflictError(FollowLoopError):
    """Duplicate claim, self-claim or cross-loop claim."""

    code = "conflict"


class InvalidInputError(FollowLoopError):
    """Identifier or field value the loop cannot store."""

    code = "invalid_input"


class InvalidStateError(FollowLoopError):
    """Transition is not legal from the interaction's current status."""

    code = "invalid_state"

    def __init__(self, interaction_id: str, current_status, requested_status):
        self.interaction_id = interaction_id
        self.current_status = current_status
        self.requested_status = requested_status
        current = getattr(current_status, "value", current_status)
        requested = getattr(requested_status, "value", requested_status)
        super().__init__(
            f"Interaction {interaction_id} cannot move from {current} to {requested}"
        )


class ForbiddenError(FollowLoopError):
    """Banned participant, inactive loop, failed eligibility or wrong actor."""

    code = "forbidden"


class NotEligibleError(ForbiddenError):
    """Person's task completion rate is below the organization threshold."""

    def __init__(self, current_rate: int, required_rate: int):
        self.current_rate = current_rate
        self.required_rate = required_rate
        super().__init__(
            f"Task completion rate {current_rate}% is below the required {required_rate}%"
        )
