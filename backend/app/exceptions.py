from typing import List, Optional


class CRMError(Exception):
    """Base error for CRM operations; carries the HTTP status the API should answer with"""

    status_code = 400

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class ValidationError(CRMError):
    status_code = 400


class AutomationValidationError(ValidationError):
    def __init__(self, errors: List[str]):
        super().__init__(errors[0] if errors else "Invalid automation configuration")
        self.errors = list(errors)


class AuthError(CRMError):
    status_code = 401


class ConflictError(CRMError):
    status_code = 409
