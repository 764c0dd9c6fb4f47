"""
Exception classes for the HL7 Viewer query engine.

Every query failure is one of four kinds. The engine raises these internally
and converts them to a tagged ``QueryError`` at its public boundary, so they
never escape to callers of ``run_query``.
"""

from typing import Optional, Dict, Any, Iterable, Tuple

from hl7_viewer.core.logging import get_logger, log_security_event

logger = get_logger(__name__)


class HL7ViewerError(Exception):
    """
    Base exception class for all HL7 Viewer errors.

    Carries a human-readable message, a context dictionary for logging and a
    stable ``error_code`` used as the tag of the boundary error value.
    """

    error_code = 'HL7ViewerError'

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        log_security: bool = False
    ):
        """
        Initialize base exception.

        Args:
            message: Human-readable error message
            context: Additional context information for logging
            log_security: Whether to log this as a security event
        """
        super().__init__(message)
        self.message = message
        self.context = context or {}

        if log_security:
            log_security_event(
                'application_error',
                {
                    'error_type': self.__class__.__name__,
                    'error_message': message,
                    'context': self.context
                },
                level='ERROR'
            )

    @property
    def labels(self) -> Tuple[str, ...]:
        """Filter labels implicated in the error, if any."""
        return tuple(self.context.get('labels', ()))

    def __str__(self) -> str:
        return self.message


class InvalidAddressError(HL7ViewerError):
    """The address string does not match SEGMENT.FIELD[.COMPONENT[.SUBCOMPONENT]]."""

    error_code = 'InvalidAddress'

    def __init__(self, address: str, **kwargs):
        super().__init__(
            f"Invalid address '{address}': expected SEGMENT.FIELD[.COMPONENT[.SUBCOMPONENT]] "
            "with positive numeric positions",
            **kwargs
        )
        self.context['address'] = address


class InvalidFilterExpressionError(HL7ViewerError):
    """
    One or more filter entries could not be parsed.

    The message names every offending label.
    """

    error_code = 'InvalidFilterExpression'

    def __init__(self, message: str, labels: Iterable[str] = (), **kwargs):
        super().__init__(message, **kwargs)
        self.context['labels'] = list(labels)

    @classmethod
    def for_labels(cls, labels: Iterable[str]) -> 'InvalidFilterExpressionError':
        labels = list(labels)
        return cls(f"Invalid filter expression(s): {', '.join(labels)}", labels=labels)


class InvalidCustomLogicError(HL7ViewerError):
    """Custom combinator expression failed validation."""

    error_code = 'InvalidCustomLogic'

    def __init__(self, message: str, unknown_labels: Iterable[str] = (), **kwargs):
        super().__init__(message, **kwargs)
        self.context['labels'] = list(unknown_labels)


class NoMatchingDataError(HL7ViewerError):
    """The addressed segment never occurs in any message."""

    error_code = 'NoMatchingData'

    def __init__(self, segment: str, **kwargs):
        super().__init__(f"No {segment} segments found in the loaded messages", **kwargs)
        self.context['segment'] = segment
