# ==========================================================
#                  EXCEPTIONS
# ==========================================================
class PanelError(Exception):
    """Base panel exception, rendered as the response envelope."""
    status_code = 400

    def __init__(self, reason, status_code=None, **extra):
        super().__init__(reason)
        self.reason = reason
        if status_code is not None:
            self.status_code = status_code
        self.extra = extra


class ValidationError(PanelError):
    status_code = 400


class InsufficientBalanceError(PanelError):
    status_code = 400


class KeyGenerationError(PanelError):
    status_code = 400


class UnauthorizedError(PanelError):
    status_code = 401


class ForbiddenError(PanelError):
    status_code = 403


class NotFoundError(PanelError):
    status_code = 404


class ConflictError(PanelError):
    status_code = 409
