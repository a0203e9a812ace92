"""
Errors raised by the fleet workflows and the store.

Every error carries a plain-language ``message`` that is shown to the
operator as is, and a stable ``error_code`` for logs and the HTTP surface.
"""


class FleetError(Exception):
    """Base fleet exception."""

    error_code = "ERR_FLEET"

    def __init__(self, message: str, error_code: str | None = None):
        self.message = message
        if error_code:
            self.error_code = error_code
        super().__init__(message)


class NotAuthenticated(FleetError):
    error_code = "ERR_AUTH"

    def __init__(self, message: str = "You are not authenticated to use this bot."):
        super().__init__(message)


class NoVehiclesAvailable(FleetError):
    error_code = "ERR_NO_VEHICLES"

    def __init__(self, message: str = "No vehicles available."):
        super().__init__(message)


class NoVehiclesInUse(FleetError):
    error_code = "ERR_NO_VEHICLES_IN_USE"

    def __init__(self, message: str = "No vehicles are currently in use."):
        super().__init__(message)


class NoAssigneesAvailable(FleetError):
    error_code = "ERR_NO_ASSIGNEES"

    def __init__(self, message: str = "All employees already have a vehicle assigned."):
        super().__init__(message)


class NoDestinationsAvailable(FleetError):
    error_code = "ERR_NO_DESTINATIONS"

    def __init__(self, message: str = "No destinations available."):
        super().__init__(message)


class VehicleAlreadyHeld(FleetError):
    """The caller already has a vehicle out and must return it first."""

    error_code = "ERR_ALREADY_HELD"

    def __init__(self, vehicle_name: str):
        self.vehicle_name = vehicle_name
        super().__init__(
            f'You already have the vehicle "{vehicle_name}" assigned. '
            "Please return it before assigning a new one."
        )


class ConflictingAssignment(FleetError):
    """Vehicle or assignee was claimed by someone else between listing and commit."""

    error_code = "ERR_CONFLICT"


class RecordNotFound(FleetError):
    error_code = "ERR_NOT_FOUND"


class StoreUnavailable(FleetError):
    error_code = "ERR_STORE"

    def __init__(self, message: str = "A database error occurred. Please try again later."):
        super().__init__(message)


class NotificationFailed(FleetError):
    """Non-fatal: only ever reported as a warning next to a successful result."""

    error_code = "ERR_NOTIFY"


class InvalidName(FleetError):
    """Vehicle or destination name that cannot ride in a button payload."""

    error_code = "ERR_INVALID_NAME"
