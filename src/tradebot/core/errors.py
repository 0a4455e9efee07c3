from __future__ import annotations


class TradeBotError(Exception):
    """Base exception for this project."""


class ConfigError(TradeBotError):
    """Raised when configuration is invalid or incomplete."""

    def __init__(self, message: str, *, path: str | None = None):
        super().__init__(f"{path}: {message}" if path else message)
        self.path = path


class ToolRegistrationError(TradeBotError, ValueError):
    """Raised when a tool declaration violates the registry contract."""


class SessionBusyError(TradeBotError, RuntimeError):
    """Raised when a turn is started while another one is still in flight."""


class ModelStreamError(TradeBotError):
    """Raised when the model stream yields content that cannot be interpreted."""
