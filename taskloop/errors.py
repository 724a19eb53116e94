"""Exceptions raised by the worker task loop."""


class TaskLoopError(Exception):
    """Base class for every error raised by this package."""


class NotInitialized(TaskLoopError):
    """A control operation was called on an agent that has no state yet."""

    def __init__(self, worker_id: str):
        super().__init__(f"Worker agent '{worker_id}' has not been initialized")
        self.worker_id = worker_id


class AlreadyInitialized(TaskLoopError):
    """``initialize`` was called on an agent that already has state."""

    def __init__(self, worker_id: str):
        super().__init__(f"Worker agent '{worker_id}' is already initialized")
        self.worker_id = worker_id


class EmptyQueue(TaskLoopError):
    """The task queue has no head to dequeue."""


class InvalidTransition(TaskLoopError):
    """A task status change that would move backwards."""


class InferenceError(TaskLoopError):
    """The inference call failed or returned data that does not fit the schema."""


class UnrecognizedTaskKind(TaskLoopError):
    """No phase is registered for the task's kind."""

    def __init__(self, kind: str):
        super().__init__(f"Unhandled task type: {kind}")
        self.kind = kind


class StorageError(TaskLoopError):
    """Reading or writing the durable agent state failed."""


class UnknownOperation(TaskLoopError):
    """A control-surface call named an operation that is not registered."""

    def __init__(self, name: str):
        super().__init__(f"Unknown operation: {name}")
        self.name = name
