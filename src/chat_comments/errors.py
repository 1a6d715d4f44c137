"""Exceptions raised by the comment stream."""

from __future__ import annotations


class ChatCommentsError(Exception):
    """Base class for comment stream errors."""


class ConfigurationError(ChatCommentsError):
    """Endpoint, nonce or post id missing from the app config."""


class CommentValidationError(ChatCommentsError):
    """Submission rejected before reaching the server."""


class ServerError(ChatCommentsError):
    """The endpoint answered with a failure envelope."""

    def __init__(self, message: str, data: object = None):
        super().__init__(message)
        self.message = message
        self.data = data


class TransportError(ChatCommentsError):
    """Network failure or a response that could not be understood."""
