class ResourceNotFoundError(Exception):
    """Raised when a user or an owned task cannot be resolved.

    Absence and foreign ownership raise the same error with the same message.
    """


class ResourceAlreadyExistsError(Exception):
    pass


class InvalidCredentialsError(Exception):
    pass


class ValidationFailedError(ValueError):
    def __init__(self, field: str, message: str):
        super().__init__(message)
        self.field = field
        self.message = message
