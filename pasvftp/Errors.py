__all__ = ['FTPError', 'AuthenticationFailed', 'InvalidFilename', 'FileNotFound',
           'Conflict', 'NoAvailablePort', 'ProtocolEnd', 'FilesystemError']


class FTPError(Exception):
    """Base class for every command-local failure."""


class AuthenticationFailed(FTPError):
    """Exception raised when USER or PASS does not match."""


class InvalidFilename(FTPError):
    """Exception raised when a filename argument is empty or points outside the root."""


class FileNotFound(FTPError):
    """Exception raised when the file a command operates on does not exist."""


class Conflict(FTPError):
    """
    Exception raised when the target of STOR or RNTO already exists, or
    when the data channel is missing or busy.
    """


class NoAvailablePort(FTPError):
    """Exception raised when every passive port is already allocated."""


class ProtocolEnd(FTPError):
    """Raised by QUIT to end the session."""


class FilesystemError(FTPError):
    """
    Custom class for filesystem-related exceptions.
    Raised by the filesystem wrapper when the underlying OS call fails.
    """
