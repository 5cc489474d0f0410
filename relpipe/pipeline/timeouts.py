from __future__ import annotations

# Platform CLI calls that return quickly (auth, status, listing)
PLATFORM_TIMEOUT_SECONDS = 2 * 60.0

# Slow platform operations, passed as --wait minutes to the CLI
ENVIRONMENT_WAIT_MINUTES = 10
PACKAGE_VERSION_WAIT_MINUTES = 10
INSTALL_WAIT_MINUTES = 10
TEST_RUN_WAIT_MINUTES = 10

# Readiness polling after an environment was requested
ENVIRONMENT_POLL_SECONDS = 15.0

# Idempotent platform read retry policy
PLATFORM_READ_RETRY_ATTEMPTS = 3
PLATFORM_READ_RETRY_DELAY_SECONDS = 2.0

# Margin given to the subprocess beyond the CLI's own --wait
WAIT_GRACE_SECONDS = 60.0


def wait_timeout_seconds(wait_minutes: int) -> float:
    """Subprocess timeout for a CLI call that itself waits ``wait_minutes``."""
    return wait_minutes * 60.0 + WAIT_GRACE_SECONDS
