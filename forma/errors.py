"""Exception types raised by the form runtime."""

from __future__ import annotations


class FormaError(Exception):
    """Base class for every error raised by :mod:`forma`."""


class SchemaParseError(FormaError):
    """The schema document is missing its required top-level shape."""


class StructuralViolation(FormaError):
    """A mutation was rejected; the schema tree has not been modified."""


class DuplicateNameError(StructuralViolation):
    """Two siblings would share the same field name."""


class DuplicateIdError(StructuralViolation):
    """A field or page id is already in use."""


class CyclicContainmentError(StructuralViolation):
    """A container would end up inside itself."""


class NotAContainerError(StructuralViolation):
    """The target field does not accept child fields."""


class UnknownFieldError(StructuralViolation):
    """No field exists with the requested id."""


class UnknownPageError(StructuralViolation):
    """No page exists with the requested id."""


class LastPageError(StructuralViolation):
    """A schema must keep at least one page."""


class GroupLimitError(FormaError):
    """A dynamic group operation would break its item bounds."""


class InvalidSelection(FormaError):
    """A cascading selection is not among the options of its level."""


class ReadOnlyFieldError(FormaError):
    """The field cannot be written by the person filling the form."""


__all__ = [
    "CyclicContainmentError",
    "DuplicateIdError",
    "DuplicateNameError",
    "FormaError",
    "GroupLimitError",
    "InvalidSelection",
    "LastPageError",
    "NotAContainerError",
    "ReadOnlyFieldError",
    "SchemaParseError",
    "StructuralViolation",
    "UnknownFieldError",
    "UnknownPageError",
]
