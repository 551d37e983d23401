class AppError(Exception):
    """Base class for all application exceptions."""
    def __init__(self, message: str, status_code: int = 500, details: dict = None):
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)

class InvalidConfig(AppError):
    """Raised before a run starts when the optimizer configuration is unusable."""
    def __init__(self, message: str, details: dict = None):
        super().__init__(message, status_code=400, details=details)

class AssignmentNotFound(AppError):
    """Raised when an offering is not part of the current proposal."""
    def __init__(self, offering_id: int):
        super().__init__(f"Offering {offering_id} is not part of the current proposal", status_code=404)

class RunAlreadyActive(AppError):
    def __init__(self, run_id: str):
        super().__init__("An allocation run is already in progress", status_code=409, details={"run_id": run_id})

class NoActiveProposal(AppError):
    def __init__(self):
        super().__init__("No allocation proposal is available", status_code=409)

class RemoteError(AppError):
    """Raised when the optimization call fails on the scheduling API side."""
    def __init__(self, message: str, details: dict = None):
        super().__init__(message, status_code=502, details=details)

class PersistError(AppError):
    """Raised when the scheduling API rejects an allocation write."""
    def __init__(self, message: str, details: dict = None):
        super().__init__(message, status_code=502, details=details)

class ConfigUnavailable(AppError):
    def __init__(self, message: str):
        super().__init__(message, status_code=503)
