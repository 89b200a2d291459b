# titanic_workbench/errors.py
"""
Error kinds raised by the workbench pipeline.

Every user-facing failure derives from WorkbenchError so the CLI and the
HTTP API can report it with a description and keep the previously computed
session untouched.
"""


class WorkbenchError(Exception):
    """Base class for all handled workbench failures."""


class InputMissingError(WorkbenchError):
    """No training file was supplied, or the path does not exist."""


class ParseFailure(WorkbenchError):
    """Input could not be parsed into rows (or is malformed beyond repair)."""


class EmptyInputError(WorkbenchError):
    """No rows survived feature-validity filtering."""


class PreconditionError(WorkbenchError):
    """A stage was invoked before the stage it depends on completed."""


class RepairFailure(WorkbenchError):
    """A single shifted row could not be repaired."""
