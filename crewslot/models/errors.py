"""
Domain exceptions for availability and assignment logic.

Raised by the engine and storage layers; route handlers translate them into
HTTP responses. Exhaustion has no exception here: running out of candidates
is an outcome, not an error.
"""


class CrewSlotError(Exception):
    """Base exception for all CrewSlot domain errors"""
    pass


class InvalidRuleError(CrewSlotError, ValueError):
    """Raised when an availability rule is malformed (e.g. overnight span)"""
    pass


class StorageError(CrewSlotError):
    """Raised when persisting or reading state fails; retryable"""
    pass


class ResourceConflictError(StorageError):
    """Raised when a resource is already claimed for an overlapping interval"""

    def __init__(self, resource_id: str, message: str = ""):
        self.resource_id = resource_id
        super().__init__(message or f"Resource {resource_id} already claimed for an overlapping interval")


class NotFoundError(CrewSlotError):
    """Raised when a job, resource or assignment does not exist"""
    pass


class InvalidTransitionError(CrewSlotError):
    """Raised when an assignment status change is not allowed"""
    pass
