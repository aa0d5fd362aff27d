"""Exceptions for the probes package."""

from typing import Any, Optional


class ProbeError(Exception):
    """Base class for all errors raised by the probes package."""

    pass


class ConfigurationError(ProbeError):
    """Raised when a policy or config entry cannot be defined.

    Covers unknown stage names, stage arguments that do not match the
    stage factory, and malformed chain or config input. Always raised
    synchronously to the caller of the administrative operation.
    """

    pass


class InstrumentationTargetMissing(ProbeError):
    """Raised when a function instrumentation target cannot be resolved.

    Attributes:
        target: The identifier or object that failed to resolve.
    """

    def __init__(self, target: Any, reason: str = "") -> None:
        self.target = target
        message = f"Cannot instrument '{target}'"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class StageExecutionFailure(ProbeError):
    """A stage raised while a probe firing was running through its chain.

    Never raised to the code that fired the probe. The executor hands it to
    the engine's fallback channel instead.

    Attributes:
        policy: Name of the chain being executed.
        stage: Name of the stage that failed.
        state: The ProbeState the stage was applied to.
        error: The original exception.
    """

    def __init__(
        self,
        policy: str,
        stage: str,
        state: Optional[Any],
        error: BaseException,
    ) -> None:
        self.policy = policy
        self.stage = stage
        self.state = state
        self.error = error
        self.__cause__ = error
        super().__init__(
            f"Stage '{stage}' of policy '{policy}' failed: "
            f"{type(error).__name__}: {error}"
        )
