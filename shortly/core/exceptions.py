class IdGeneratorError(Exception):
    """Base class for short code generation errors."""

    pass


class ConfigurationError(IdGeneratorError, ValueError):
    """Raised when a generator is built with an invalid machine ID."""

    pass


class ClockRegressionError(IdGeneratorError):
    """Raised when the wall clock is observed to have moved backwards.

    Attributes:
        last_timestamp (int): Second of the last successful mint, from the epoch.
        current_timestamp (int): Second observed by the failing mint, from the epoch.
        regression (int): How many seconds the clock went back.
    """

    def __init__(self, last_timestamp: int, current_timestamp: int):
        self.last_timestamp = last_timestamp
        self.current_timestamp = current_timestamp
        self.regression = last_timestamp - current_timestamp
        super().__init__(
            f"Clock moved backwards by {self.regression} second(s)."
            " Refusing to generate ID."
        )


class ClockBeforeEpochError(IdGeneratorError):
    """Raised when the wall clock reads earlier than the 2024 epoch.

    Attributes:
        offset (int): Observed seconds relative to the epoch (negative).
    """

    def __init__(self, offset: int):
        self.offset = offset
        super().__init__(
            f"Clock reads {-offset} second(s) before the epoch."
            " Refusing to generate ID."
        )


class MintInterruptedError(IdGeneratorError):
    """Raised when the wait for the next second did not complete."""

    pass


class EncodingRangeError(IdGeneratorError, ValueError):
    """Raised when a value cannot be written as a fixed-width short code."""

    pass


class InvalidShortCodeError(IdGeneratorError, ValueError):
    """Raised when a string is not a well-formed short code."""

    pass


class UrlNotFoundError(Exception):
    """Raised when a short code has no stored URL."""

    pass


class UrlExpiredError(Exception):
    """Raised when an URL is expired."""

    pass


class AliasAlreadyInUseError(Exception):
    """Raised when a custom alias already exists."""

    pass


class ShortCodeCollisionError(Exception):
    """Raised when every minted short code was already taken in storage."""

    pass


class QrGenerationError(Exception):
    """Raised when a QR image cannot be rendered."""

    pass
