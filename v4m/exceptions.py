"""Custom exceptions for v4m."""


class ManagerError(RuntimeError):
    """Raised on unrecoverable configuration or runtime errors."""


class PrivilegeError(ManagerError):
    """The process lacks the elevation needed for bridged networking."""


class MissingDependency(ManagerError):
    """A required host binary is not on PATH."""


class ImageUnavailable(ManagerError):
    """The distro image could not be resolved to a local file."""


class UnknownDistro(ImageUnavailable):
    pass


class DownloadFailed(ImageUnavailable):
    pass


class NameCollision(ManagerError):
    """A VM directory with the requested name already exists."""


AlreadyExists = NameCollision


class DiskCopyFailed(ManagerError):
    pass


class ResizeFailed(ManagerError):
    pass


class HashFailed(ManagerError):
    pass


class PackagingFailed(ManagerError):
    pass


class LaunchFailed(ManagerError):
    pass


class StateWriteFailed(ManagerError):
    pass


class StateReadFailed(ManagerError):
    pass


class ExhaustedAttempts(ManagerError):
    """A generate-check-retry loop ran out of attempts."""
