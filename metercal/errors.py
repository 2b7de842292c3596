"""
Errors raised by the calibration pipeline.

Everything fatal derives from :class:`CalibrationError` so the CLI can report
it with a single handler. ``InputFormatError`` is the one kind that never
leaves its operation: a malformed operator answer is met with a new prompt.
"""


class CalibrationError(Exception):
    """Base class for every calibration run failure."""


class LinkFailure(CalibrationError):
    """The meter did not answer validly within the retry budget."""


class ProtocolFailure(CalibrationError):
    """The meter answered a command with an explicit failure marker."""


class ServiceUnavailable(CalibrationError):
    """The reference service replied with an error status or not at all."""


class InputFormatError(CalibrationError, ValueError):
    """Operator input could not be parsed."""


class ConfigurationError(CalibrationError, ValueError):
    """Invalid run configuration, detected before any transport is opened."""


class StabilizationError(CalibrationError):
    """Reference samples did not settle within the sample budget."""


class InvalidTransitionError(CalibrationError):
    """
    Raised when the router receives an outcome it has no transition for.

    Args:
        outcome: Name of the outcome that was received.
        stage: Pipeline stage at the time it was received.
    """

    def __init__(self, outcome, stage):
        self.outcome = outcome
        self.stage = stage
        super().__init__(f"no transition for outcome '{outcome}' at stage '{stage}'")
