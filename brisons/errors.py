"""Error taxonomy shared by every service and route."""


class BrisonsError(Exception):
    """Base exception for all brisons errors."""

    code = "error"
    status = 500

    def __init__(self, message=None):
        self.message = message or self.__class__.__doc__ or self.code
        super().__init__(self.message)

    def to_dict(self):
        return {"ok": False, "code": self.code, "msg": self.message}


class NotFound(BrisonsError):
    """Resource not found."""

    code = "not_found"
    status = 404

    def __init__(self, what, ident=None):
        self.what = what
        self.ident = ident
        msg = f"{what} not found"
        if ident is not None:
            msg = f"{what} not found: {ident}"
        super().__init__(msg)


class ValidationError(BrisonsError):
    """Request data is missing or invalid."""

    code = "validation_error"
    status = 400


class Unauthorized(BrisonsError):
    """Please log in first."""

    code = "unauthorized"
    status = 401


class Forbidden(BrisonsError):
    """Not allowed."""

    code = "forbidden"
    status = 403


class Conflict(BrisonsError):
    """Resource is in a conflicting state."""

    code = "conflict"
    status = 409


class NoAgentsAvailable(Conflict):
    """No delivery agents available."""

    code = "no_agents_available"

    def __init__(self, order_id=None):
        msg = "No delivery agents available"
        if order_id is not None:
            msg = f"No delivery agents available for order {order_id}"
        super().__init__(msg)


class PreconditionFailed(BrisonsError):
    """Operation is not allowed in the current state."""

    code = "precondition_failed"
    status = 412


class InvalidTransition(PreconditionFailed):
    """Raised when a workflow document cannot move to the requested status."""

    def __init__(self, current, target):
        self.current = current
        self.target = target
        super().__init__(f"Cannot move from '{current}' to '{target}'")


class StorageError(BrisonsError):
    """Image storage failed."""

    code = "storage_error"
    status = 502
