class BuildCheckError(Exception):
    """
    Base class for every error the orchestrator raises on purpose.

    exit_code is what the pipeline reports when the error ends a stage or the run.
    """

    exit_code = 1

    def __init__(self, message="", exit_code=None):
        super().__init__(message)
        if exit_code is not None:
            self.exit_code = exit_code


class ConfigurationError(BuildCheckError):
    pass


class UnsupportedSuiteError(ConfigurationError):
    def __init__(self, suite_name, supported=()):
        self.suite_name = suite_name
        self.supported = list(supported)
        super().__init__(f"Unsupported test suite '{suite_name}'")


class DiscoveryError(BuildCheckError):
    pass


class CollectionError(BuildCheckError):
    pass


class MergeError(BuildCheckError):
    pass


class EmitError(BuildCheckError):
    pass


class PipelineCancelled(BuildCheckError):
    exit_code = 130
