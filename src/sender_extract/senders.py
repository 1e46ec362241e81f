"""Concurrent extraction of distinct sender addresses from a Gmail label.

Every message under the label is fetched as an independent task on a
caller-supplied thread pool. Each task reads only the ``From`` header and
adds the bare address to a shared, lock-guarded set.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Iterator
from concurrent.futures import Executor, wait
from dataclasses import dataclass

from sender_extract.gmail import GmailClient, GmailLabel, MessageMetadata

logger = logging.getLogger(__name__)

FROM_HEADER = "From"


def parse_address(value: str) -> str:
    """Strip the display name from a header address.

    ``"Jane Doe <jane@example.com>"`` becomes ``"jane@example.com"``. Values
    without ``<`` are returned unchanged; nothing is validated.
    """
    if "<" not in value:
        return value
    return value.partition("<")[2].partition(">")[0]


class SenderSet:
    """Thread-safe set of normalized sender addresses."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._addresses: set[str] = set()

    def add(self, address: str) -> None:
        with self._lock:
            self._addresses.add(address)

    def __contains__(self, address: object) -> bool:
        with self._lock:
            return address in self._addresses

    def __len__(self) -> int:
        with self._lock:
            return len(self._addresses)

    def __iter__(self) -> Iterator[str]:
        # Iterate over a snapshot so writers never invalidate the iterator
        with self._lock:
            snapshot = list(self._addresses)
        return iter(snapshot)


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded exponential backoff for timed-out metadata fetches.

    Attributes:
        max_attempts: Total attempts per message, the first one included.
        base_delay: Seconds to wait after the first timeout.
        max_delay: Upper bound for any single wait.
    """

    max_attempts: int = 5
    base_delay: float = 1.0
    max_delay: float = 30.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

    def delay(self, attempt: int) -> float:
        """Seconds to wait after the given (1-based) failed attempt."""
        return min(self.base_delay * 2 ** (attempt - 1), self.max_delay)


class SenderExtractor:
    """Collects distinct ``From`` addresses for every message under a label.

    Usage:
        with ThreadPoolExecutor(max_workers=get_max_workers()) as pool:
            extractor = SenderExtractor(client, pool)
            senders = extractor.collect(client.find_label("Receipts"))

    A timed-out fetch is retried per ``retry_policy``. Any other failure,
    or running out of attempts, is logged and the message is skipped.
    """

    def __init__(
        self,
        client: GmailClient,
        executor: Executor,
        retry_policy: RetryPolicy | None = None,
        sleep_fn: Callable[[float], None] = time.sleep,
    ) -> None:
        self._client = client
        self._executor = executor
        self._retry = retry_policy or RetryPolicy()
        self._sleep = sleep_fn

    def collect(self, label: GmailLabel) -> SenderSet:
        """Fetch every message under ``label`` and gather its sender.

        Blocks until all submitted fetches have finished.
        """
        senders = SenderSet()
        futures = [
            self._executor.submit(self._process, message_id, senders)
            for message_id in self._client.iter_message_ids(label)
        ]
        wait(futures)

        dropped = sum(1 for future in futures if not future.result())
        logger.info(
            "Processed %d message(s) under %s: %d sender(s), %d skipped",
            len(futures),
            label.name,
            len(senders),
            dropped,
        )
        return senders

    def _process(self, message_id: str, senders: SenderSet) -> bool:
        """Fetch one message and record its sender. Returns False if skipped."""
        try:
            metadata = self._fetch(message_id)
        except TimeoutError:
            logger.error(
                "Skipping message %s: timed out %d time(s)",
                message_id,
                self._retry.max_attempts,
            )
            return False
        except Exception:
            logger.exception("Skipping message %s: fetch failed", message_id)
            return False

        sender = metadata.header(FROM_HEADER)
        if sender is not None:
            senders.add(parse_address(sender))
        else:
            logger.debug("Message %s has no %s header", message_id, FROM_HEADER)
        return True

    def _fetch(self, message_id: str) -> MessageMetadata:
        attempt = 1
        while True:
            try:
                return self._client.get_metadata(message_id, headers=[FROM_HEADER])
            except TimeoutError:
                if attempt >= self._retry.max_attempts:
                    raise
                delay = self._retry.delay(attempt)
                logger.warning(
                    "Timed out fetching message %s (attempt %d/%d), retrying in %.1fs",
                    message_id,
                    attempt,
                    self._retry.max_attempts,
                    delay,
                )
                self._sleep(delay)
                attempt += 1
