from enum import Enum


class ErrorKind(str, Enum):
    DUPLICATE = "Duplicate"
    NOT_FOUND = "NotFound"
    INVALID_TRANSITION = "InvalidTransition"
    RELAYER_UNDERFUNDED = "RelayerUnderfunded"
    RELAYER_NOT_CONFIGURED = "RelayerNotConfigured"
    TIMEOUT = "Timeout"
    RELAY_NETWORK_ERROR = "RelayNetworkError"
    PARTIAL_FAILURE = "PartialFailure"
    MALFORMED = "Malformed"
    INVALID_LENGTH = "InvalidLength"
    INTERRUPTED = "Interrupted"


class RelayError(Exception):
    """Base class for every error raised by the relayer core."""

    kind = None

    def __init__(self, message=None):
        super().__init__(message or self.kind.value)


class DuplicateError(RelayError):
    kind = ErrorKind.DUPLICATE

    def __init__(self, existing_id: str):
        # the caller gets the id of the entry that already holds this commitment
        self.existing_id = existing_id
        super().__init__(f"Donation already queued: {existing_id}")


class NotFoundError(RelayError):
    kind = ErrorKind.NOT_FOUND


class InvalidTransitionError(RelayError):
    kind = ErrorKind.INVALID_TRANSITION


class RelayerUnderfundedError(RelayError):
    kind = ErrorKind.RELAYER_UNDERFUNDED

    def __init__(self, balance: int, required: int):
        self.balance = balance
        self.required = required
        super().__init__(f"Relayer balance {balance} is below the required floor {required}")


class RelayerNotConfiguredError(RelayError):
    kind = ErrorKind.RELAYER_NOT_CONFIGURED


class RelayTimeoutError(RelayError):
    kind = ErrorKind.TIMEOUT


class RelayNetworkError(RelayError):
    kind = ErrorKind.RELAY_NETWORK_ERROR


class PartialFailureError(RelayError):
    """The fee leg posted but the recipient leg did not."""

    kind = ErrorKind.PARTIAL_FAILURE

    def __init__(self, fee_signature: str, cause: RelayError):
        self.fee_signature = fee_signature
        self.cause = cause
        self.failed_step = 2
        super().__init__(f"Fee transaction {fee_signature} posted but transfer failed: {cause}")


class MalformedError(RelayError, ValueError):
    kind = ErrorKind.MALFORMED


class InvalidLengthError(RelayError, ValueError):
    kind = ErrorKind.INVALID_LENGTH
