"""Domain-specific errors for mttr."""


class MttrError(Exception):
    """Base error for mttr."""


class ModelValidationError(MttrError):
    """Raised when a device model file does not conform to schema or semantics."""


class ModelLoadError(MttrError):
    """Raised when reading device model sources fails."""


class ScanRequestError(MttrError):
    """Raised when scan parameters are rejected before reaching the backend."""


class NoActiveDeviceError(MttrError):
    """Raised when an operation needs a connected, selected device."""


class FieldNotEditableError(MttrError):
    """Raised when a field fails the editability precondition."""


class FieldValidationError(MttrError):
    """Raised when user input for a field is rejected locally."""

    def __init__(self, address: int, message: str) -> None:
        super().__init__(message)
        self.address = address


class NotANumberError(FieldValidationError):
    """Input did not parse as a number."""


class NotAnIntegerError(FieldValidationError):
    """Input parsed as a number but has a fractional part."""


class OutOfRangeError(FieldValidationError):
    """Value lies outside the field's declared range."""


class NotInEnumerationError(FieldValidationError):
    """Value is not one of the field's enumerated keys."""


class TransportError(MttrError):
    """Base transport error raised by device backends."""


class ScanFailedError(TransportError):
    """Raised when a scan stream fails instead of finishing."""


class ReadFailedError(TransportError):
    """Raised when a field batch read could not be carried out."""


class WriteFailedError(TransportError):
    """Raised when the backend rejects a field write."""

    def __init__(self, address: int, message: str) -> None:
        super().__init__(message)
        self.address = address
