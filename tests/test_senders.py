"""Tests for sender extraction."""

import threading
from concurrent.futures import ThreadPoolExecutor
from unittest.mock import MagicMock

import pytest

from sender_extract.gmail import GmailLabel, MessageMetadata
from sender_extract.senders import (
    RetryPolicy,
    SenderExtractor,
    SenderSet,
    parse_address,
)

LABEL = GmailLabel(id="Label_1", name="Newsletters")


class FakeGmailClient:
    """In-memory stand-in for GmailClient."""

    def __init__(self, messages: dict[str, list[tuple[str, str]]], failures=None):
        self.messages = messages
        # message id -> list of exceptions raised before succeeding
        self.failures = {k: list(v) for k, v in (failures or {}).items()}
        self.calls: list[str] = []
        self._lock = threading.Lock()

    def iter_message_ids(self, label):
        yield from self.messages

    def get_metadata(self, message_id, headers=None):
        with self._lock:
            self.calls.append(message_id)
            pending = self.failures.get(message_id)
            error = pending.pop(0) if pending else None
        if error is not None:
            raise error
        return MessageMetadata(id=message_id, headers=self.messages[message_id])


@pytest.fixture
def pool():
    with ThreadPoolExecutor(max_workers=4) as executor:
        yield executor


def from_header(value):
    return [("Subject", "hi"), ("From", value)]


class TestParseAddress:
    """Display-name stripping."""

    def test_angle_bracket_address(self):
        assert parse_address("Jane Doe <jane@example.com>") == "jane@example.com"

    def test_bare_address_unchanged(self):
        assert parse_address("jane@example.com") == "jane@example.com"

    def test_quoted_display_name(self):
        assert parse_address('"Doe, Jane" <jane@example.com>') == "jane@example.com"

    def test_brackets_only(self):
        assert parse_address("<jane@example.com>") == "jane@example.com"

    def test_unterminated_bracket(self):
        assert parse_address("Jane <jane@example.com") == "jane@example.com"

    def test_malformed_passes_through(self):
        assert parse_address("not an address") == "not an address"

    def test_empty(self):
        assert parse_address("") == ""


class TestSenderSet:
    """Thread-safe deduplication."""

    def test_deduplicates(self):
        senders = SenderSet()
        senders.add("a@example.com")
        senders.add("a@example.com")
        senders.add("b@example.com")
        assert len(senders) == 2
        assert sorted(senders) == ["a@example.com", "b@example.com"]
        assert "a@example.com" in senders

    def test_concurrent_inserts_are_not_lost(self):
        senders = SenderSet()
        count = 2000
        with ThreadPoolExecutor(max_workers=16) as executor:
            list(executor.map(senders.add, (f"user{i}@example.com" for i in range(count))))
        assert len(senders) == count

    def test_iteration_is_a_snapshot(self):
        senders = SenderSet()
        senders.add("a@example.com")
        it = iter(senders)
        senders.add("b@example.com")
        assert list(it) == ["a@example.com"]


class TestRetryPolicy:
    """Backoff schedule."""

    def test_exponential_delays(self):
        policy = RetryPolicy(max_attempts=5, base_delay=1.0, max_delay=30.0)
        assert [policy.delay(n) for n in range(1, 5)] == [1.0, 2.0, 4.0, 8.0]

    def test_delay_is_capped(self):
        policy = RetryPolicy(base_delay=1.0, max_delay=5.0)
        assert policy.delay(10) == 5.0

    def test_rejects_zero_attempts(self):
        with pytest.raises(ValueError):
            RetryPolicy(max_attempts=0)


class TestSenderExtractor:
    """Concurrent fetch-and-dedup."""

    def test_collects_distinct_senders(self, pool):
        client = FakeGmailClient(
            {
                "m1": from_header("Jane Doe <jane@example.com>"),
                "m2": from_header("jane@example.com"),
                "m3": from_header("Bob <bob@example.com>"),
            }
        )

        senders = SenderExtractor(client, pool).collect(LABEL)

        assert sorted(senders) == ["bob@example.com", "jane@example.com"]

    def test_empty_label(self, pool):
        client = FakeGmailClient({})
        senders = SenderExtractor(client, pool).collect(LABEL)
        assert len(senders) == 0
        assert client.calls == []

    def test_message_without_from_header(self, pool):
        client = FakeGmailClient({"m1": [("Subject", "no sender")]})
        assert len(SenderExtractor(client, pool).collect(LABEL)) == 0

    def test_many_messages_in_parallel(self, pool):
        messages = {f"m{i}": from_header(f"User {i} <user{i}@example.com>") for i in range(500)}
        client = FakeGmailClient(messages)

        senders = SenderExtractor(client, pool).collect(LABEL)

        assert len(senders) == 500
        assert len(client.calls) == 500

    def test_retries_timeouts_with_backoff(self, pool):
        client = FakeGmailClient(
            {"m1": from_header("<jane@example.com>")},
            failures={"m1": [TimeoutError(), TimeoutError()]},
        )
        sleeps = []
        extractor = SenderExtractor(
            client,
            pool,
            RetryPolicy(max_attempts=5, base_delay=0.5, max_delay=30.0),
            sleep_fn=sleeps.append,
        )

        senders = extractor.collect(LABEL)

        assert list(senders) == ["jane@example.com"]
        assert client.calls == ["m1", "m1", "m1"]
        assert sleeps == [0.5, 1.0]

    def test_gives_up_after_max_attempts(self, pool, caplog):
        client = FakeGmailClient(
            {
                "m1": from_header("<stuck@example.com>"),
                "m2": from_header("<ok@example.com>"),
            },
            failures={"m1": [TimeoutError()] * 10},
        )
        sleeps = []
        extractor = SenderExtractor(
            client, pool, RetryPolicy(max_attempts=3), sleep_fn=sleeps.append
        )

        senders = extractor.collect(LABEL)

        assert list(senders) == ["ok@example.com"]
        assert client.calls.count("m1") == 3
        assert len(sleeps) == 2
        assert "Skipping message m1" in caplog.text

    def test_other_errors_skip_message(self, pool, caplog):
        client = FakeGmailClient(
            {
                "m1": from_header("<broken@example.com>"),
                "m2": from_header("<ok@example.com>"),
            },
            failures={"m1": [RuntimeError("HTTP 500")]},
        )
        sleep = MagicMock()

        senders = SenderExtractor(client, pool, sleep_fn=sleep).collect(LABEL)

        assert list(senders) == ["ok@example.com"]
        assert client.calls.count("m1") == 1
        sleep.assert_not_called()
        assert "fetch failed" in caplog.text

    def test_blocks_until_pool_drains(self):
        release = threading.Event()
        finished = []

        class SlowClient(FakeGmailClient):
            def get_metadata(self, message_id, headers=None):
                release.wait(5)
                finished.append(message_id)
                return super().get_metadata(message_id, headers)

        client = SlowClient({f"m{i}": from_header(f"<u{i}@example.com>") for i in range(8)})
        with ThreadPoolExecutor(max_workers=2) as executor:
            timer = threading.Timer(0.1, release.set)
            timer.start()
            senders = SenderExtractor(client, executor).collect(LABEL)

        assert len(finished) == 8
        assert len(senders) == 8
