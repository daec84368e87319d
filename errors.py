# errors.py
# Exceptions surfaced to HTTP clients by api_server.py.

from typing import Optional


class ServiceError(Exception):
    """Base class for errors that map onto an HTTP status."""

    status = 500

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if status is not None:
            self.status = status


class RequestError(ServiceError):
    """Malformed JSON, missing fields, undecodable payloads."""

    status = 400


class ConfigurationError(ServiceError):
    """A required backend (vector index, object store) is not configured."""

    status = 500
