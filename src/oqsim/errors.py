from __future__ import annotations


class OQSimError(Exception):
    """Base class for every error raised by oqsim."""


class InvalidDimension(OQSimError, ValueError):
    """A subsystem was requested with fewer than two levels."""


class ForeignOperator(OQSimError, ValueError):
    """An operator was used with a model that does not own it."""


class InvalidGate(OQSimError, ValueError):
    """A gate is malformed or does not fit the model it is applied to."""


class InvalidRate(OQSimError, ValueError):
    """A dissipation rate is negative."""


class UnsupportedFormat(OQSimError, ValueError):
    """No circuit importer is registered for the requested format tag."""


class AlreadyInitialized(OQSimError, RuntimeError):
    """A one-shot lifecycle step was requested a second time."""


class NotReady(OQSimError, RuntimeError):
    """A lifecycle prerequisite has not been met yet."""


class UseAfterFree(OQSimError, RuntimeError):
    """A released object was used, or an object still in use was released."""


class InvalidState(OQSimError, RuntimeError):
    """The evolution driver is in a state that does not allow the request."""


class SolverFailed(OQSimError, RuntimeError):
    """The solver engine failed during assembly, stepping or steady-state solve."""


class ObserverFailed(OQSimError, RuntimeError):
    """The registered observer raised while handling a step event."""

    def __init__(self, message: str, *, step: int, time: float) -> None:
        super().__init__(message)
        self.step = step
        self.time = time
