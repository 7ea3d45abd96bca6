"""Custom exception hierarchy for switchboard.

Load-time registry failures, handler failures and infrastructure problems
each get their own class so callers can catch precisely. Policy denials
are not exceptions; see :mod:`switchboard.policy`.
"""

from enum import Enum
from typing import Any, Optional


class ErrorCategory(str, Enum):
    """Classification of errors for retry decisions."""
    TRANSIENT = "transient"          # Worth retrying (network, locked database)
    PERMANENT = "permanent"          # Not worth retrying (bad command source)
    INFRASTRUCTURE = "infrastructure"  # Missing directory, bad config


class SwitchboardError(Exception):
    """Base exception for all switchboard errors.

    Attributes:
        message: Human-readable error description.
        category: Error classification for retry/escalation decisions.
        module: Originating module name (e.g. "loader").
        context: Arbitrary key-value pairs for structured logging.
    """

    def __init__(
        self,
        message: str = "",
        *,
        category: ErrorCategory = ErrorCategory.PERMANENT,
        module: Optional[str] = None,
        **context: Any,
    ) -> None:
        self.message = message
        self.category = category
        self.module = module
        self.context = context
        super().__init__(message)

    @property
    def is_retryable(self) -> bool:
        """Whether this error is worth retrying."""
        return self.category == ErrorCategory.TRANSIENT

    def __str__(self) -> str:
        parts = [self.message or self.__class__.__name__]
        if self.module:
            parts.append(f"[module={self.module}]")
        if self.context:
            ctx = ", ".join(f"{k}={v}" for k, v in self.context.items())
            parts.append(f"({ctx})")
        return " ".join(parts)

    def __repr__(self) -> str:
        cls = self.__class__.__name__
        return (
            f"{cls}({self.message!r}, category={self.category.value!r}, "
            f"module={self.module!r})"
        )


# ---------------------------------------------------------------------------
# Command loading / registry exceptions
# ---------------------------------------------------------------------------

class CommandLoadError(SwitchboardError):
    """A command source unit could not be added to the registry.

    The registry is left exactly as it was before the attempt.

    Attributes:
        path: Source file that triggered the load (if known).
    """

    def __init__(
        self,
        message: str = "",
        *,
        path: Optional[str] = None,
        category: ErrorCategory = ErrorCategory.PERMANENT,
        module: Optional[str] = None,
        **context: Any,
    ) -> None:
        self.path = path
        super().__init__(
            message, category=category, module=module or "loader", **context
        )


class InvalidDescriptor(CommandLoadError):
    """Source unit is malformed: missing name/handler, bad field types,
    or the module failed to execute."""


class NameConflict(CommandLoadError):
    """Command name is already owned by a different source.

    Attributes:
        name: The contested command name.
        owner: Origin (path) currently owning the name.
    """

    def __init__(
        self,
        message: str = "",
        *,
        name: Optional[str] = None,
        owner: Optional[str] = None,
        path: Optional[str] = None,
        category: ErrorCategory = ErrorCategory.PERMANENT,
        module: Optional[str] = None,
        **context: Any,
    ) -> None:
        self.name = name
        self.owner = owner
        super().__init__(
            message,
            path=path,
            category=category,
            module=module or "registry",
            **context,
        )


class AliasConflict(CommandLoadError):
    """An alias collides with another command's name or alias.

    Attributes:
        alias: The contested alias.
        owner: Name of the command currently holding the token.
    """

    def __init__(
        self,
        message: str = "",
        *,
        alias: Optional[str] = None,
        owner: Optional[str] = None,
        path: Optional[str] = None,
        category: ErrorCategory = ErrorCategory.PERMANENT,
        module: Optional[str] = None,
        **context: Any,
    ) -> None:
        self.alias = alias
        self.owner = owner
        super().__init__(
            message,
            path=path,
            category=category,
            module=module or "registry",
            **context,
        )


# ---------------------------------------------------------------------------
# Invocation exceptions
# ---------------------------------------------------------------------------

class HandlerFailure(SwitchboardError):
    """A command handler raised during invocation.

    Attributes:
        command: Name of the command whose handler failed.
        original: The exception raised by the handler.
    """

    def __init__(
        self,
        message: str = "",
        *,
        command: Optional[str] = None,
        original: Optional[BaseException] = None,
        category: ErrorCategory = ErrorCategory.PERMANENT,
        module: Optional[str] = None,
        **context: Any,
    ) -> None:
        self.command = command
        self.original = original
        super().__init__(
            message, category=category, module=module or "invoker", **context
        )


# ---------------------------------------------------------------------------
# Infrastructure exceptions
# ---------------------------------------------------------------------------

class ConfigurationError(SwitchboardError):
    """Invalid or missing configuration.

    Defaults to INFRASTRUCTURE because config issues are environmental
    and won't resolve by retrying.
    """

    def __init__(
        self,
        message: str = "",
        *,
        setting_name: Optional[str] = None,
        category: ErrorCategory = ErrorCategory.INFRASTRUCTURE,
        module: Optional[str] = None,
        **context: Any,
    ) -> None:
        self.setting_name = setting_name
        super().__init__(
            message, category=category, module=module or "config", **context
        )


class WatcherError(SwitchboardError):
    """The commands directory cannot be created, read or watched."""

    def __init__(
        self,
        message: str = "",
        *,
        directory: Optional[str] = None,
        category: ErrorCategory = ErrorCategory.INFRASTRUCTURE,
        module: Optional[str] = None,
        **context: Any,
    ) -> None:
        self.directory = directory
        super().__init__(
            message, category=category, module=module or "watcher", **context
        )


class StoreError(SwitchboardError):
    """Error during configuration store operations.

    Attributes:
        operation: The store operation that failed (e.g. "get_prefix").
    """

    def __init__(
        self,
        message: str = "",
        *,
        operation: Optional[str] = None,
        category: ErrorCategory = ErrorCategory.TRANSIENT,
        module: Optional[str] = None,
        **context: Any,
    ) -> None:
        self.operation = operation
        super().__init__(
            message, category=category, module=module or "store", **context
        )


class GatewayError(SwitchboardError):
    """Error talking to the messaging platform bridge."""

    def __init__(
        self,
        message: str = "",
        *,
        status: Optional[int] = None,
        category: ErrorCategory = ErrorCategory.TRANSIENT,
        module: Optional[str] = None,
        **context: Any,
    ) -> None:
        self.status = status
        super().__init__(
            message, category=category, module=module or "gateway", **context
        )
