"""Custom exceptions for sshcluster."""


class SSHClusterError(Exception):
    """Base exception for all sshcluster errors."""

    def __init__(self, message: str, details: str = None):
        """Initialize the exception.

        Args:
            message: Main error message
            details: Additional details or suggestions
        """
        self.message = message
        self.details = details
        super().__init__(self.format_message())

    def format_message(self) -> str:
        """Format the complete error message.

        Returns:
            Formatted error message with details
        """
        if self.details:
            return f"{self.message}\n\nDetails: {self.details}"
        return self.message


class NotFoundError(SSHClusterError):
    """Raised when a referenced store object does not exist."""

    def __init__(self, kind: str, name: str, details: str = None):
        self.kind = kind
        self.name = name
        super().__init__(f"{kind} {name!r} not found", details)


class StoreError(SSHClusterError):
    """Raised when the object store rejects a request."""

    pass


class InvalidRoleError(SSHClusterError):
    """Raised for a machine role other than master or node."""

    pass


class EncodingError(SSHClusterError):
    """Raised when a provider config cannot be encoded or decoded."""

    pass


class SchemaMismatchError(EncodingError):
    """Raised when a payload's apiVersion/kind does not match the target shape."""

    pass


class DanglingReferenceError(SSHClusterError):
    """Raised when a machine and its provisioned machine do not reference each other."""

    pass


class UnparseableOutputError(SSHClusterError):
    """Raised when a remote tool's output does not have the expected shape."""

    pass


class WouldOrphanNodesError(SSHClusterError):
    """Raised when deleting the last master while nodes remain."""

    pass


class RemoteExecutionError(SSHClusterError):
    """Raised when a remote command or file transfer fails."""

    def __init__(
        self,
        command: str,
        stdout: bytes = b"",
        stderr: bytes = b"",
        exit_status: int | None = None,
        reason: str | None = None,
    ):
        self.command = command
        self.stdout = stdout
        self.stderr = stderr
        self.exit_status = exit_status
        message = f"error running {command!r}"
        if reason:
            message = f"{message}: {reason}"
        elif exit_status is not None:
            message = f"{message}: exit status {exit_status}"
        super().__init__(
            message,
            f"stdout: {_printable(stdout)!r}, stderr: {_printable(stderr)!r}",
        )


class CredentialError(SSHClusterError):
    """Raised when a credential secret cannot be turned into a remote credential."""

    pass


class ConfigurationError(SSHClusterError):
    """Raised for configuration errors."""

    pass


def _printable(data: bytes | str) -> str:
    if isinstance(data, bytes):
        return data.decode(errors="replace")
    return data
