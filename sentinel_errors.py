"""
Sentinel-Vision — Error Taxonomy
=================================
Exceptions raised inside the analysis core.

None of these are fatal to the process:
  - BackendTimeoutError: a runtime/model load step exceeded its timeout.
    Retried with back-off by ModelLifecycleManager.
  - BackendUnavailableError: initialization failed on every retry.
    Surfaced once; the system then stays in fallback mode.
  - DetectionCallError: a single detection call failed or returned
    malformed output. Recovered by the adapter / frame loop.
  - SamplingError: a degenerate or out-of-frame region was requested.
    Recovered by the region sampler (empty result).
"""


class SentinelError(Exception):
    """Base class for all Sentinel-Vision errors."""


class BackendTimeoutError(SentinelError, TimeoutError):
    """A backend readiness or model-load step did not finish in time."""

    def __init__(self, step: str, timeout_s: float):
        self.step = step
        self.timeout_s = timeout_s
        super().__init__(f"{step} timed out after {timeout_s:.1f}s")


class BackendUnavailableError(SentinelError):
    """Backend initialization failed after exhausting all retries."""

    def __init__(self, attempts: int, cause: Exception = None):
        self.attempts = attempts
        self.cause = cause
        super().__init__(
            f"Failed to load AI models after {attempts} attempts "
            f"({cause}). Running in fallback mode."
        )


class DetectionCallError(SentinelError):
    """A per-tick detection call failed."""


class SamplingError(SentinelError):
    """A pixel region could not be sampled from the frame."""
