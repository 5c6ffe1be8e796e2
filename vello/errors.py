from __future__ import annotations

from typing import List


class VelloError(Exception):
    """Base class for errors the CLI reports without a traceback."""


class TemplateValidationError(VelloError):
    def __init__(self, errors: List[str]) -> None:
        self.errors = list(errors)
        super().__init__("Invalid template schema: " + "; ".join(self.errors))


class TemplateNotFoundError(VelloError):
    pass


class SmtpConfigurationError(VelloError):
    pass


class SmtpConnectionError(VelloError):
    pass


class MissingRecipientError(VelloError):
    def __init__(self, missing: int) -> None:
        self.missing = missing
        super().__init__(f"{missing} record(s) are missing an Email field")


class EncryptionError(VelloError):
    pass
