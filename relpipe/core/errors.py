"""Error codes for CLI exit status.

The pipeline reports every failure as a value; the CLI maps those values to
one of these codes when it exits.
"""

from enum import IntEnum

__all__ = ["ErrorCode"]


class ErrorCode(IntEnum):
    """Exit codes for relpipe commands.

    These values are used as process exit codes and should remain stable:
    - 0: Success (including a run parked at the approval gate)
    - 1: User error (bad input, no run to approve, invalid arguments)
    - 2: Environment error (missing config, credentials, authentication)
    - 3: Pipeline error (a stage failed, tests failed, run cancelled)
    - 4: Platform error (external CLI/API call failed or timed out)
    - 5: I/O error (artifact or run state could not be read or written)
    """

    OK = 0
    USER_ERROR = 1
    ENV_ERROR = 2
    PIPELINE_ERROR = 3
    PLATFORM_ERROR = 4
    IO_ERROR = 5

    def __str__(self) -> str:
        """Return human-readable name."""
        return self.name.lower().replace("_", " ")

    @property
    def is_success(self) -> bool:
        """Check if this code indicates success."""
        return self == ErrorCode.OK

    @property
    def is_error(self) -> bool:
        """Check if this code indicates an error."""
        return self != ErrorCode.OK
