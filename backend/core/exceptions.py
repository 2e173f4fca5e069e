"""Custom exceptions for the workflow automation engine."""


class WorkflowAutomationError(Exception):
    """Base exception for the workflow automation engine."""

    def __init__(self, message: str, status_code: int = 500):
        """Initialize exception with message and status code.

        Args:
            message: Exception message
            status_code: HTTP status code used when surfaced through the API
        """
        self.message = message
        self.status_code = status_code
        super().__init__(self.message)


class NotFoundError(WorkflowAutomationError):
    """Resource not found exception."""

    def __init__(self, message: str = "Resource not found"):
        super().__init__(message, 404)


class UnauthorizedError(WorkflowAutomationError):
    """Missing or invalid credentials (cron secret, webhook signature)."""

    def __init__(self, message: str = "Unauthorized"):
        super().__init__(message, 401)


class WorkflowValidationError(WorkflowAutomationError):
    """A workflow definition or step config is malformed."""

    def __init__(self, message: str = "Workflow validation failed"):
        super().__init__(message, 422)


class WorkflowEngineError(WorkflowAutomationError):
    """The engine could not start or persist a run."""

    def __init__(self, message: str = "Workflow engine error"):
        super().__init__(message, 500)


class ActionError(WorkflowAutomationError):
    """Hard failure of an action handler; fails the step and the run."""

    def __init__(self, message: str, action_type: str = ""):
        self.action_type = action_type
        super().__init__(message, 500)


class UnsafeUrlError(ActionError):
    """Outbound URL rejected by the SSRF guard."""

    def __init__(self, message: str = "URL not allowed"):
        super().__init__(message, action_type="webhook_call")
        self.status_code = 400


class WebhookTimeoutError(ActionError):
    """Outbound webhook did not answer within its timeout."""

    def __init__(self, url: str, timeout_ms: int):
        self.url = url
        self.timeout_ms = timeout_ms
        super().__init__(
            f"Webhook request to {url} timed out after {timeout_ms}ms",
            action_type="webhook_call",
        )
        self.status_code = 504


class IntegrationError(WorkflowAutomationError):
    """An external provider (email, Slack, AI, push) returned an error."""

    def __init__(self, message: str, provider: str = ""):
        self.provider = provider
        super().__init__(message, 502)


class StoreError(WorkflowAutomationError):
    """Storage layer failure."""

    def __init__(self, message: str = "Storage error"):
        super().__init__(message, 500)


class StoreTableMissingError(StoreError):
    """The backing table for a record set does not exist."""

    def __init__(self, table: str):
        self.table = table
        super().__init__(f"Table '{table}' does not exist")
