"""Sliding-window rate limiting over the request logs."""

from datetime import datetime, timedelta

import pytest

from asktrevor.config import Settings
from asktrevor.service.assistants import build_policies
from asktrevor.service.errors import RateLimitExceeded, ServerError
from asktrevor.service.rate_limit import RateLimiter, RateLimitPolicy
from asktrevor.storage.memory import MemoryStore

NOW = datetime(2024, 6, 14, 12, 0, 0)


@pytest.fixture
def limiter():
    return RateLimiter(clock=lambda: NOW)


@pytest.fixture
def store():
    return MemoryStore()


def _record_at(store, user_id, when):
    row = store.record_transcription_request(user_id, 1024)
    row.created_at = when
    return row


class TestRateLimitPolicy:
    def test_message_names_limit_noun_and_window(self):
        policy = RateLimitPolicy(
            scope="transcription", max_requests=10, window_seconds=3600, noun="transcriptions"
        )
        assert policy.exceeded_message() == "Rate limit exceeded. Maximum 10 transcriptions per hour."

    def test_custom_window_label(self):
        policy = RateLimitPolicy(scope="x", max_requests=3, window_seconds=90)
        assert policy.window_label() == "90 seconds"

    def test_zero_max_disables(self):
        assert not RateLimitPolicy(scope="x", max_requests=0, window_seconds=3600).enabled

    def test_demo_policy_message_invites_signup(self):
        policies = build_policies(Settings())
        message = policies["demo"].exceeded_message()
        assert message.startswith("Rate limit exceeded. You've reached the maximum of 5 messages per hour.")
        assert message.endswith("Sign up for unlimited access!")

    def test_default_policies(self):
        policies = build_policies(Settings())
        assert policies["transcription"].max_requests == 10
        assert policies["transcription"].fail_open is True
        assert policies["demo"].fail_open is False


class TestRateLimiter:
    def test_under_quota_returns_count(self, limiter, store):
        policy = RateLimitPolicy(scope="transcription", max_requests=3, window_seconds=3600)
        _record_at(store, "u1", NOW - timedelta(minutes=5))
        assert limiter.check(policy, "u1", store.count_transcription_requests) == 1

    def test_at_quota_raises(self, limiter, store):
        policy = RateLimitPolicy(scope="transcription", max_requests=2, window_seconds=3600)
        _record_at(store, "u1", NOW - timedelta(minutes=5))
        _record_at(store, "u1", NOW - timedelta(minutes=1))
        with pytest.raises(RateLimitExceeded) as exc_info:
            limiter.check(policy, "u1", store.count_transcription_requests)
        assert exc_info.value.status_code == 429
        assert exc_info.value.detail == {"limit": 2, "window_seconds": 3600}

    def test_rows_outside_window_are_ignored(self, limiter, store):
        policy = RateLimitPolicy(scope="transcription", max_requests=1, window_seconds=3600)
        _record_at(store, "u1", NOW - timedelta(hours=1, seconds=1))
        assert limiter.check(policy, "u1", store.count_transcription_requests) == 0

    def test_row_on_window_boundary_counts(self, limiter, store):
        policy = RateLimitPolicy(scope="transcription", max_requests=1, window_seconds=3600)
        _record_at(store, "u1", NOW - timedelta(hours=1))
        with pytest.raises(RateLimitExceeded):
            limiter.check(policy, "u1", store.count_transcription_requests)

    def test_subjects_are_independent(self, limiter, store):
        policy = RateLimitPolicy(scope="transcription", max_requests=1, window_seconds=3600)
        _record_at(store, "u1", NOW)
        assert limiter.check(policy, "u2", store.count_transcription_requests) == 0

    def test_disabled_policy_skips_counter(self, limiter):
        def counter(subject, since):
            raise AssertionError("counter should not be called")

        policy = RateLimitPolicy(scope="x", max_requests=0, window_seconds=3600)
        assert limiter.check(policy, "u1", counter) == 0

    def test_fail_open_on_count_error(self, limiter):
        def counter(subject, since):
            raise RuntimeError("database down")

        policy = RateLimitPolicy(scope="transcription", max_requests=1, window_seconds=3600, fail_open=True)
        assert limiter.check(policy, "u1", counter) == 0

    def test_fail_closed_on_count_error(self, limiter):
        def counter(subject, since):
            raise RuntimeError("database down")

        policy = RateLimitPolicy(scope="public_demo", max_requests=1, window_seconds=3600)
        with pytest.raises(ServerError) as exc_info:
            limiter.check(policy, "1.2.3.4", counter)
        assert exc_info.value.message == "Rate limit check failed"

    def test_window_start_passed_to_counter(self, limiter):
        seen = {}

        def counter(subject, since):
            seen["since"] = since
            return 0

        policy = RateLimitPolicy(scope="x", max_requests=5, window_seconds=600)
        limiter.check(policy, "u1", counter)
        assert seen["since"] == NOW - timedelta(seconds=600)
