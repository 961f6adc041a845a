class SensorError(Exception):
    """Failure reported by the depth middleware.

    ``status`` is the middleware status code; the node uses it as the process
    exit code when the failure happens during startup.
    """

    def __init__(self, message: str, status: int = 1):
        super().__init__(message)
        self.status = int(status) if status else 1


class ConfigLoadError(SensorError):
    pass


class NoDepthNodeError(SensorError):
    pass


class NoUserGeneratorError(SensorError):
    pass


class NoSkeletonCapError(SensorError):
    def __init__(self, message: str = "Supplied user generator doesn't support skeleton"):
        super().__init__(message, status=1)


class PoseNotSupportedError(SensorError):
    def __init__(self, message: str = "Pose required, but not supported"):
        super().__init__(message, status=1)


class WaitTimeoutError(SensorError):
    pass
