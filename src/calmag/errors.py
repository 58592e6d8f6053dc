from __future__ import annotations


class CalMagError(Exception):
    """Base class for everything raised by calmag."""


class InvalidArgument(CalMagError, ValueError):
    pass


class NotFound(InvalidArgument):
    pass


class InvalidInput(CalMagError, ValueError):
    """A recipe/request payload failed shape or range checks."""
