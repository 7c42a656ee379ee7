"""
Fatal error types for the bootstrap pipeline.

Anything raised from here aborts the run with exit status 1. Steps that
can fail without stopping the pipeline return False and log a warning
instead of raising.
"""


class BootstrapError(Exception):
    """A fatal step failure, optionally carrying operator instructions"""

    exit_code = 1

    def __init__(self, message, remediation=""):
        super().__init__(message)
        self.remediation = remediation


class ConfigError(BootstrapError):
    pass


class CommandFailedError(BootstrapError):
    """An external command the pipeline cannot continue without failed"""

    def __init__(self, message, result, remediation=""):
        super().__init__(f"{message}: {result.describe()}", remediation)
        self.result = result


class RepositoryError(BootstrapError):
    pass


class RemoteSyncError(BootstrapError):
    pass


class MissingArtifactError(BootstrapError):
    """A file an earlier step should have produced is not there"""


class LocalizationError(BootstrapError):
    pass


class ExtractionError(BootstrapError):
    pass


class UnsupportedPlatformError(BootstrapError):
    pass


class FilesystemError(BootstrapError):
    """A local file or directory a step must write could not be written"""
