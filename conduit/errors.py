"""
Error taxonomy shared by the services and the HTTP layer.

Services raise ``NotFoundError``, ``AlreadyExistsError`` and
``InvalidInputError``; ``UnauthorizedError`` is reserved for the HTTP
layer (token checks, ownership checks).  ``main.py`` maps each class to a
status code and renders ``{"errors": {"body": [message]}}``.
"""


class ConduitError(Exception):
    status_code: int = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class NotFoundError(ConduitError):
    status_code = 404


class AlreadyExistsError(ConduitError):
    status_code = 422


class InvalidInputError(ConduitError):
    status_code = 422


class UnauthorizedError(ConduitError):
    status_code = 401

    def __init__(self, message: str = "unauthorized") -> None:
        super().__init__(message)
