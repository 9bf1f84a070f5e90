"""Exception hierarchy shared by the lens catalog and the scoring engine."""

from typing import Optional


class LensEngineError(Exception):
    """Base class for every error raised by the lens packages."""


class InvalidInputError(LensEngineError):
    """A questionnaire response is malformed, out of range, or unknown to the lens."""

    def __init__(self, message: str, question_id: Optional[str] = None, value: object = None):
        super().__init__(message)
        self.question_id = question_id
        self.value = value


class DegenerateFactorError(LensEngineError):
    """A factor has a zero theoretical range.

    This is a data-authoring bug in the static lens definition, not a
    runtime condition.
    """

    def __init__(self, message: str, factor: Optional[str] = None):
        super().__init__(message)
        self.factor = factor


class LensMismatchError(LensEngineError):
    """Values drawn from incompatible lens versions or factor sets were combined."""

    def __init__(
        self,
        message: str,
        expected: Optional[str] = None,
        actual: Optional[str] = None,
    ):
        super().__init__(message)
        self.expected = expected
        self.actual = actual


class LensNotFoundError(LensEngineError):
    """A lens, policy, or archetype id is not present in the registry."""

    def __init__(self, message: str, key: Optional[str] = None):
        super().__init__(message)
        self.key = key


class LensDataError(LensEngineError):
    """A lens or policy data file could not be read or failed validation."""

    def __init__(self, message: str, path: Optional[str] = None):
        super().__init__(message)
        self.path = path
