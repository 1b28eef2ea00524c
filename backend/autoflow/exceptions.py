"""Error types shared by the stores, the engine and the HTTP layer."""


class AutoflowError(Exception):
    """Base error. ``status_code`` is what the API answers with when it escapes a route."""

    def __init__(self, message: str, status_code: int = 500):
        self.message = message
        self.status_code = status_code
        super().__init__(self.message)


class WorkflowNotFoundError(AutoflowError):
    def __init__(self, workflow_id: str):
        super().__init__(f"Workflow {workflow_id} not found", 404)
        self.workflow_id = workflow_id


class ExecutionNotFoundError(AutoflowError):
    def __init__(self, execution_id: str):
        super().__init__(f"Execution {execution_id} not found", 404)
        self.execution_id = execution_id


class DefinitionError(AutoflowError):
    """A workflow definition is structurally unusable (unknown step kind, bad config, no steps)."""

    def __init__(self, message: str, errors: list[str] | None = None):
        super().__init__(message, 422)
        self.errors = errors or [message]


class ConflictError(AutoflowError):
    def __init__(self, message: str):
        super().__init__(message, 409)


class ExecutionStateError(ConflictError):
    """An execution record was asked to do something its current status forbids."""


class StepRuntimeError(AutoflowError):
    """A step handler could not complete. Recorded in the execution log, never raised to callers."""

    def __init__(self, message: str, step_id: str | None = None):
        super().__init__(message, 500)
        self.step_id = step_id
