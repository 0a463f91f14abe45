class EntitlementError(Exception):
    """Base for unexpected failures inside the entitlement layer."""


class ExternalServiceError(EntitlementError):
    """The link shortener (or another remote dependency) could not produce a result."""

    def __init__(self, service: str, reason: str) -> None:
        super().__init__(f"{service}: {reason}")
        self.service = service
        self.reason = reason


class ContentNotFoundError(EntitlementError):
    pass
