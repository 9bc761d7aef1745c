class SchoolError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(SchoolError):
    status_code = 400


class NotFound(SchoolError):
    status_code = 404


class PermissionDenied(SchoolError):
    status_code = 403
