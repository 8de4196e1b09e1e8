"""
Queue domain exceptions.

These carry no HTTP knowledge; the API layer maps them to responses.
"""
from typing import Optional


class QueueError(Exception):
    """Base class for queue domain errors."""
    
    def __init__(self, message: str, queue_id: Optional[str] = None):
        self.message = message
        self.queue_id = queue_id
        super().__init__(message)


class CapacityExceeded(QueueError):
    """Add or requeue attempted while active entries already fill the queue."""
    
    def __init__(self, queue_id: str, max_capacity: int):
        self.max_capacity = max_capacity
        super().__init__(f"Queue is at maximum capacity ({max_capacity})", queue_id)


class QueueClosed(QueueError):
    """Add attempted while the queue is not accepting customers."""
    
    def __init__(self, queue_id: str):
        super().__init__("Queue is not accepting customers", queue_id)


class EntryNotFound(QueueError):
    """Entry id (or id/status combination) does not exist in the queue."""
    
    def __init__(self, entry_id: str, queue_id: Optional[str] = None, expected_status: Optional[str] = None):
        self.entry_id = entry_id
        self.expected_status = expected_status
        message = f"Entry '{entry_id}' not found"
        if expected_status:
            message = f"Entry '{entry_id}' not found with status '{expected_status}'"
        super().__init__(message, queue_id)


# Name used throughout the queue contract
NotFound = EntryNotFound


class QueueNotFound(EntryNotFound):
    """Queue id unknown to the persistence boundary."""
    
    def __init__(self, queue_id: str):
        QueueError.__init__(self, f"Queue '{queue_id}' not found", queue_id)
        self.entry_id = None
        self.expected_status = None


class CodeGenerationExhausted(QueueError):
    """Every verification code draw collided with one already issued today."""
    
    def __init__(self, attempts: int, queue_id: Optional[str] = None):
        self.attempts = attempts
        super().__init__(f"Could not generate a unique verification code after {attempts} attempts", queue_id)


class InvalidTransition(QueueError):
    """Requested status change is not part of the entry lifecycle."""
