"""
Compact ID Generator Module

A Snowflake-style generator for 42-bit, time-ordered identifiers that are
rendered as 7-character base62 short codes. Every deployed instance is given
its own machine ID, so instances can mint concurrently without talking to each
other or to storage.

Algorithm Overview:
    |       28 bits        |  8 bits    |  6 bits   |
    |      timestamp       | machine_id | sequence  |
    | seconds since epoch  |   0-255    |   0-63    |

    - Timestamp: seconds since 2024-01-01T00:00:00 UTC (~8.5 years of range)
    - Machine ID: 256 independently configured instances
    - Sequence: 64 IDs per second per instance

Capacity:
    64 IDs/second x 256 machines = 16,384 IDs/second system-wide.

Thread Safety:
    - Uses threading.Lock() for atomic ID generation
    - State is committed only after a mint fully succeeds

Clock Considerations:
    - A backwards clock raises ClockRegressionError and never reuses a value
    - A clock earlier than the epoch raises ClockBeforeEpochError, so IDs are
      never negative
    - When the 64 sequence values of a second are used up, the generator polls
      the clock every 10 ms until the next second starts
    - The poll is bounded by max_wait; a clock that does not advance, or an
      interrupted sleep, raises MintInterruptedError

Deployment:
    Uniqueness across processes depends on every instance running with a
    distinct MACHINE_ID. Nothing here can detect two instances sharing one;
    callers re-check minted codes against their own storage.

Encodable range:
    Short codes stay 7 characters only while the timestamp offset is at most
    MAX_ENCODABLE_OFFSET (late 2030); see shortly.utils.base62.
"""

import math
import threading
import time
from typing import Callable

from shortly.core.exceptions import (
    ClockBeforeEpochError,
    ClockRegressionError,
    ConfigurationError,
    MintInterruptedError,
)
from shortly.services.logger import setup_logger
from shortly.utils.base62 import (
    MAX_MACHINE_ID,
    MAX_SEQUENCE,
    compose_id,
    encode_base62,
)

logger = setup_logger()

# 2024-01-01 00:00:00 UTC in seconds
EPOCH = 1704067200

POLL_INTERVAL = 0.01
DEFAULT_MAX_WAIT = 2.0


class CompactIdGenerator:
    """A thread-safe generator of 42-bit compact IDs and their short codes.

    Attributes:
        machine_id: The ID of this generator instance (0-255).
        last_timestamp: Second of the last successful mint, counted from EPOCH
            (the timestamp offset packed into IDs), -1 before any.
        sequence: Sequence number used by the last mint.
        total_generated: Number of IDs minted by this instance.
    """

    def __init__(
        self,
        machine_id: int,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], None] = time.sleep,
        max_wait: float = DEFAULT_MAX_WAIT,
    ):
        """Initializes a new compact ID generator instance.

        Args:
            machine_id: A unique identifier for this instance (0-255).
            clock: Returns the current time in seconds since the Unix epoch.
            sleep: Suspends the caller for the given number of seconds.
            max_wait: Upper bound in seconds on the wait for the next second.

        Raises:
            ConfigurationError: If machine_id is not an integer in 0-255.
        """
        if (
            isinstance(machine_id, bool)
            or not isinstance(machine_id, int)
            or not 0 <= machine_id <= MAX_MACHINE_ID
        ):
            logger.error(
                "Invalid machine ID: %r (must be 0-%d)", machine_id, MAX_MACHINE_ID
            )
            raise ConfigurationError(
                f"Machine ID must be between 0 and {MAX_MACHINE_ID}, got {machine_id!r}"
            )

        self.machine_id = machine_id
        self.sequence = 0
        self.last_timestamp = -1
        self.total_generated = 0
        self.lock = threading.Lock()

        self._clock = clock
        self._sleep = sleep
        self._max_polls = max(1, math.ceil(max_wait / POLL_INTERVAL))

        logger.info(
            "CompactIdGenerator initialized - machine ID: %d, max sequence: %d/second",
            machine_id,
            MAX_SEQUENCE + 1,
        )

    def _current_timestamp(self) -> int:
        """Returns whole seconds elapsed since EPOCH."""
        return int(self._clock()) - EPOCH

    def _wait_for_next_second(self, last_timestamp: int) -> int:
        """Polls the clock until it moves past last_timestamp.

        Args:
            last_timestamp: The second whose sequence space is exhausted.

        Returns:
            The first observed second after last_timestamp.

        Raises:
            MintInterruptedError: If the sleep is interrupted or the clock does
                not advance within the configured wait.
        """
        timestamp = self._current_timestamp()
        polls = 0
        while timestamp <= last_timestamp:
            if polls >= self._max_polls:
                logger.error(
                    "Clock did not advance past %d after %d polls", last_timestamp, polls
                )
                raise MintInterruptedError(
                    f"Clock did not advance past {last_timestamp} within the wait limit"
                )
            try:
                self._sleep(POLL_INTERVAL)
            except InterruptedError as e:
                logger.error(
                    "Interrupted while waiting for next second after %d polls", polls
                )
                raise MintInterruptedError(
                    "Interrupted while waiting for next second"
                ) from e
            polls += 1
            timestamp = self._current_timestamp()

        logger.debug("Waited %d ms for next second", polls * int(POLL_INTERVAL * 1000))
        return timestamp

    def next_id(self) -> int:
        """Generates the next unique 42-bit ID.

        Returns:
            A 42-bit compact ID, strictly greater than any earlier one from this
            instance.

        Raises:
            ClockRegressionError: If the system clock moved backwards.
            ClockBeforeEpochError: If the system clock reads earlier than EPOCH.
            MintInterruptedError: If the wait for the next second failed.
        """
        with self.lock:
            timestamp = self._current_timestamp()

            if timestamp < 0:
                logger.error(
                    "CRITICAL: Clock reads %d seconds before the 2024 epoch", -timestamp
                )
                raise ClockBeforeEpochError(timestamp)

            if timestamp < self.last_timestamp:
                logger.error(
                    "CRITICAL: Clock moved backwards by %d seconds! Last: %d, current: %d",
                    self.last_timestamp - timestamp,
                    self.last_timestamp,
                    timestamp,
                )
                raise ClockRegressionError(self.last_timestamp, timestamp)

            if timestamp == self.last_timestamp:
                sequence = (self.sequence + 1) & MAX_SEQUENCE
                if sequence == 0:
                    logger.warning(
                        "Sequence exhausted (%d IDs in this second), waiting for next second...",
                        MAX_SEQUENCE + 1,
                    )
                    timestamp = self._wait_for_next_second(self.last_timestamp)
            else:
                sequence = 0

            self.sequence = sequence
            self.last_timestamp = timestamp
            self.total_generated += 1

            return compose_id(timestamp, self.machine_id, sequence)

    def generate_short_code(self) -> str:
        """Generates a unique 7-character base62 short code.

        Raises:
            ClockRegressionError: If the system clock moved backwards.
            MintInterruptedError: If the wait for the next second failed.
            EncodingRangeError: If the minted ID no longer fits in 7 characters.
        """
        new_id = self.next_id()
        short_code = encode_base62(new_id)
        logger.debug(
            "Generated ID - numeric: %d, base62: %s, total generated: %d",
            new_id,
            short_code,
            self.total_generated,
        )
        return short_code
