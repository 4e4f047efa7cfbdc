"""Exception types raised by the ingestion pipeline and task lifecycle."""


class ComplianceIntakeError(Exception):
    """Base error for the compliance intake service."""


class InputMissingError(ComplianceIntakeError):
    """Inbound message has no plain-text body to parse."""


class TaskNotFoundError(ComplianceIntakeError):
    """No active task exists with the requested id."""

    def __init__(self, task_id: int):
        super().__init__(f"Task {task_id} not found")
        self.task_id = task_id


class WebhookVerificationError(ComplianceIntakeError):
    """Inbound webhook signature could not be verified."""


class ProviderFetchError(ComplianceIntakeError):
    """Full message content could not be fetched from the mail provider."""


class MailDeliveryError(ComplianceIntakeError):
    """Outbound mail could not be sent."""


class DuplicateDeliveryError(ComplianceIntakeError):
    """A concurrent delivery of the same message stored its email row first."""

    def __init__(self, provider_message_id: str | None):
        super().__init__(f"Message {provider_message_id} was stored by another delivery")
        self.provider_message_id = provider_message_id
