"""
Errors
======
Exception hierarchy for the pipeline runner.

Only definition-time and environment problems are exceptions. A tool that
exits non-zero is NOT an exception: it becomes a failed StepResult and the
runner turns it into the Run's Outcome.
"""


class PipelineError(Exception):
    """Base class for every error raised by the runner."""


class PipelineDefinitionError(PipelineError):
    """The workflow document is structurally invalid."""

    def __init__(self, message: str, source: str = "") -> None:
        self.source = source
        prefix = f"{source}: " if source else ""
        super().__init__(f"{prefix}{message}")


class EnvironmentFailure(PipelineError):
    """The environment cannot provide what a step needs."""


class SecretResolutionError(EnvironmentFailure):
    """A step references a secret that has no value."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Secret '{name}' is not available")


class UnknownTaskError(EnvironmentFailure):
    """A `uses:` reference has no registered adapter."""

    def __init__(self, reference: str) -> None:
        self.reference = reference
        super().__init__(f"No adapter registered for packaged task '{reference}'")


class InvalidRunTransition(PipelineError):
    """A run was moved between states the state machine does not allow."""

    def __init__(self, current: str, target: str) -> None:
        self.current = current
        self.target = target
        super().__init__(f"Illegal run transition {current} -> {target}")
