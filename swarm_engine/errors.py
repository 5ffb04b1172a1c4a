"""Exceptions raised by the swarm engine."""


class SwarmEngineError(Exception):
    """Base exception for swarm engine errors."""

    pass


class CapacityExceeded(SwarmEngineError):
    """A swarm (or the coordinator) is already at its member/swarm limit."""

    pass


class InvalidState(SwarmEngineError):
    """Operation is not allowed in the swarm's current lifecycle state."""

    pass


class NotFound(SwarmEngineError):
    """Unknown swarm, member, action or trail."""

    pass


class Unauthorized(SwarmEngineError):
    """Reserved for permission checks enforced by collaborators."""

    pass
