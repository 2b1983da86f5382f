class DriverError(Exception):
    """Raised when a platform call fails."""

    def __init__(self, operation, target, message=""):
        self.operation = operation
        self.target = target
        self.message = message
        super().__init__(f"{operation} {target} failed: {message}" if message else f"{operation} {target} failed")


class ProvisioningError(Exception):
    """Raised when the new generation's template or unit could not be created."""
    pass
