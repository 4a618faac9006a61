# errors.py
# Failure taxonomy shared by the dispatcher, synthesizer and loop.
#
# Component boundaries return typed values tagged with an ErrorKind.
# The exceptions below only cross internal seams and are absorbed before
# they reach a caller of CognitiveOrchestrator.execute().

from enum import Enum


class ErrorKind(str, Enum):
    PROTOCOL_ERROR = "ProtocolError"
    UNKNOWN_TOOL = "UnknownTool"
    INVALID_ARGUMENTS = "InvalidArguments"
    TOOL_EXECUTION_FAILURE = "ToolExecutionFailure"
    ORACLE_UNAVAILABLE = "OracleUnavailable"
    PLAN_VALIDATION_FAILURE = "PlanValidationFailure"
    OUTCOME_VALIDATION_FAILURE = "OutcomeValidationFailure"
    CANCELLED = "Cancelled"


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class PmcroError(Exception):
    """Base class. Every subclass carries the ErrorKind it maps to."""

    kind: ErrorKind = ErrorKind.PROTOCOL_ERROR


class DuplicateToolError(PmcroError):
    """Raised at startup when two handlers claim the same tool name."""

    kind = ErrorKind.PROTOCOL_ERROR


class OracleUnavailable(PmcroError):
    """Raised when the oracle times out, is unreachable, or returns nothing."""

    kind = ErrorKind.ORACLE_UNAVAILABLE


class PlanValidationFailure(PmcroError):
    """Raised when oracle output cannot be parsed into a usable plan."""

    kind = ErrorKind.PLAN_VALIDATION_FAILURE


class OperationCancelled(PmcroError):
    """Raised at a suspension point once the run's cancel event is set."""

    kind = ErrorKind.CANCELLED
