"""Quiescence reader — turn an irregular byte stream into settled responses."""

from __future__ import annotations

import codecs
import logging
import re
import time
from typing import Callable, Protocol

from termharness.ansi import clean
from termharness.config import SettlePolicy
from termharness.errors import HarnessTimeoutError, ProcessExitedError

logger = logging.getLogger(__name__)


class ByteSource(Protocol):
    """What the reader needs from a pty: bounded polling and an EOF flag."""

    def read_available(self, timeout: float) -> bytes: ...

    @property
    def at_eof(self) -> bool: ...


class OutputQuiescenceReader:
    """Reads from a byte source until output settles.

    A response is complete when any of these happens first:

    * no new bytes arrived for ``policy.quiet_period`` seconds,
    * the caller's terminator pattern matches the sanitized text
      (see ``ansi.clean``: no control sequences, ``\\n`` line endings),
    * ``policy.hard_timeout`` elapsed with at least some bytes collected,
    * the source reached end of file.

    If the hard timeout elapses with nothing at all, that is a hang and
    raises HarnessTimeoutError unless the caller explicitly allows empty.

    The UTF-8 decoder lives as long as the reader, so a character split
    across two reads (or two responses) is reassembled, never mangled.
    """

    def __init__(
        self,
        source: ByteSource,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._source = source
        self._clock = clock
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")

    def read_until_quiet(
        self,
        policy: SettlePolicy,
        terminator: str | re.Pattern[str] | None = None,
        allow_empty: bool = False,
    ) -> str:
        """Collect one settled response and return it as text."""
        pattern = re.compile(terminator) if isinstance(terminator, str) else terminator
        chunks: list[str] = []
        received = 0
        started = self._clock()
        last_arrival: float | None = None

        while True:
            now = self._clock()
            remaining = policy.hard_timeout - (now - started)
            if remaining <= 0:
                break
            if last_arrival is not None:
                idle = now - last_arrival
                if idle >= policy.quiet_period:
                    logger.debug("Output settled after %.2fs idle (%d bytes)", idle, received)
                    return "".join(chunks)
                wait = min(policy.poll_interval, policy.quiet_period - idle, remaining)
            else:
                wait = min(policy.poll_interval, remaining)

            data = self._source.read_available(wait)
            if data:
                received += len(data)
                last_arrival = self._clock()
                chunks.append(self._decoder.decode(data))
                if pattern is not None and pattern.search(clean("".join(chunks))):
                    logger.debug("Terminator matched after %d bytes", received)
                    return "".join(chunks)
                continue

            if self._source.at_eof:
                # Flush any dangling partial character; nothing more is coming.
                chunks.append(self._decoder.decode(b"", final=True))
                text = "".join(chunks)
                if received == 0:
                    raise ProcessExitedError("Output ended before any response arrived")
                logger.debug("Output ended at EOF after %d bytes", received)
                return text

        if received:
            logger.warning(
                "Output still arriving after hard timeout of %.1fs; returning %d bytes",
                policy.hard_timeout,
                received,
            )
            return "".join(chunks)
        if allow_empty:
            logger.debug("No output within %.1fs; empty response allowed", policy.hard_timeout)
            return ""
        raise HarnessTimeoutError(f"No output within {policy.hard_timeout:.1f}s")

    def discard_pending(self) -> int:
        """Drop bytes that arrived after the last response settled.

        Returns the number of bytes dropped. Never blocks.
        """
        dropped = 0
        while not self._source.at_eof:
            data = self._source.read_available(0)
            if not data:
                break
            dropped += len(data)
        if dropped:
            # Late bytes may end mid-character; don't let them prefix the next response.
            self._decoder.reset()
            logger.warning("Discarded %d late bytes from the previous response", dropped)
        return dropped
