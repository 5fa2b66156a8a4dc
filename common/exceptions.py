class CommonError(Exception):
    """Base exception for common app errors"""

    pass


class OwnerRequiredError(CommonError):
    def __init__(self, message="`user` is required to create an instance."):
        super().__init__(message)
