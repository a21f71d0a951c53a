from .errors import (
    ParleyError,
    ConfigurationError,
    TransportError,
    MessageValidationError,
    CollaboratorError
)

__all__ = [
    "ParleyError",
    "ConfigurationError",
    "TransportError",
    "MessageValidationError",
    "CollaboratorError"
]
