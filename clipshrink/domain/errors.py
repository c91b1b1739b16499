from typing import Optional


class ClipShrinkError(Exception):
    """Base exception for clipshrink."""
    pass


class ProvisioningError(ClipShrinkError):
    """The encoder tool could not be obtained."""
    pass


class UnsupportedPlatform(ProvisioningError):
    """No archive URL exists for the running platform."""
    pass


class NetworkError(ProvisioningError):
    """Downloading the archive failed, timeouts included."""
    pass


class ExtractionError(ProvisioningError):
    """Unpacking the archive failed or it did not contain the binary."""
    pass


class ProvisioningIncomplete(ProvisioningError):
    """Extraction finished but the binary is still missing."""
    pass


class ToolUnavailable(ProvisioningError):
    """An operation needed the binary before it was provisioned."""
    pass


class JobError(ClipShrinkError):
    """The tool is available but this file could not be processed."""
    pass


class MissingInput(JobError):
    pass


class NoVideoStream(JobError):
    pass


class EncodeProcessError(JobError):
    """ffmpeg reported a failure; keeps what it printed."""

    def __init__(self, message: str, returncode: Optional[int] = None, diagnostics: str = ""):
        super().__init__(message)
        self.returncode = returncode
        self.diagnostics = diagnostics
