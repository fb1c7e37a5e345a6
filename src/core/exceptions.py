"""
Core Exceptions
================

Custom exceptions for the application following clean architecture principles.

These exceptions define domain-specific errors that can be caught and handled
appropriately at the application boundaries.
"""

from typing import Optional


class ApplicationException(Exception):
    """Base exception for all application errors."""

    def __init__(self, message: str, details: Optional[dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class DomainException(ApplicationException):
    """Base exception for domain logic violations."""


class RepositoryException(ApplicationException):
    """Base exception for repository/data access errors."""


class ValidationException(ApplicationException):
    """Exception for malformed input, e.g. an unsupported action name."""


class ResourceNotFoundException(ApplicationException):
    """Exception when a requested resource is not found."""

    def __init__(
        self,
        resource_type: str,
        resource_id: Optional[str] = None,
        details: Optional[dict] = None
    ):
        self.resource_type = resource_type
        self.resource_id = resource_id
        message = f"{resource_type}"
        if resource_id:
            message += f" with id '{resource_id}'"
        message += " not found"
        super().__init__(message, details)


class ConfigurationException(ApplicationException):
    """
    Exception for configuration errors.

    Raised for malformed calendars and for missing SLA or escalation
    configuration. Never silently defaulted.
    """


class InvalidStateException(DomainException):
    """Exception when an action is not allowed from the current clock state."""

    def __init__(
        self,
        current_state: str,
        action: str,
        details: Optional[dict] = None
    ):
        self.current_state = current_state
        self.action = action
        super().__init__(
            f"Cannot {action} a ticket whose SLA clock is {current_state}",
            details or {"current_state": current_state, "action": action}
        )


class ConcurrencyConflictException(ApplicationException):
    """
    Exception when a conditional write keeps losing to concurrent writers.

    Details carry the ticket_id and the number of attempts made.
    """
