"""Tests for the webhooks module.

Covers models, signature verification, event matching and the
subscription registry.
"""

import pytest
import json
import threading

from hookrelay.webhooks.exceptions import (
    InvalidEventPatternError,
    InvalidUrlError,
    NotFoundOrForbiddenError,
)
from hookrelay.webhooks.matcher import EventPattern, compile_patterns, matches
from hookrelay.webhooks.models import (
    DeliveryJob,
    Subscription,
    WebhookEvent,
    WebhookEventType,
    WebhookView,
    WebhookCreatedResponse,
)
from hookrelay.webhooks.registry import WebhookRegistry, validate_target_url
from hookrelay.webhooks.security import (
    generate_webhook_headers,
    serialize_envelope,
    sign_payload,
    verify_signature,
)

URL = "https://example.test/hook"


def make_subscription(events):
    return Subscription(owner_id="owner-1", url=URL, events=events)


# ============================================================================
# Model Tests
# ============================================================================

class TestWebhookModels:
    """Tests for webhook Pydantic models."""

    def test_subscription_defaults(self):
        """Test subscription default policy and counters."""
        sub = Subscription(owner_id="owner-1", url=URL)

        assert sub.events == ["*"]
        assert sub.active is True
        assert sub.max_attempts == 3
        assert sub.attempt_timeout == 30.0
        assert sub.success_count == 0
        assert sub.failure_count == 0
        assert sub.last_triggered_at is None
        assert sub.id

    def test_delivery_job_starts_at_attempt_zero(self):
        """Test a new job has made no attempts and is due immediately."""
        job = DeliveryJob(
            subscription_id="sub-1",
            event=WebhookEvent(event_type="project.created", payload={"name": "demo"}),
        )

        assert job.attempt == 0
        assert job.next_attempt_at >= job.enqueued_at
        assert job.job_id

    def test_event_type_catalog(self):
        """Test the supported event catalog."""
        values = [e.value for e in WebhookEventType]

        assert len(values) == 18
        assert "webhook.test" in values
        assert "subscription.canceled" in values
        assert "system.error" in values

    def test_view_redacts_secret(self):
        """Test that the owner view never carries the secret."""
        sub = Subscription(owner_id="owner-1", url=URL, secret="s3cret")

        data = json.loads(WebhookView.from_subscription(sub).model_dump_json())

        assert "secret" not in data
        assert "owner_id" not in data
        assert data["has_secret"] is True

    def test_created_response_includes_secret(self):
        """Test the creation response returns the secret once."""
        sub = Subscription(owner_id="owner-1", url=URL, secret="s3cret")

        created = WebhookCreatedResponse.from_subscription(sub)

        assert created.secret == "s3cret"


# ============================================================================
# Security Tests
# ============================================================================

class TestWebhookSecurity:
    """Tests for HMAC signature generation and verification."""

    def test_sign_is_deterministic_hex(self):
        """Test that signature generation is deterministic."""
        sig1 = sign_payload(b'{"test":true}', "my-secret-key")
        sig2 = sign_payload(b'{"test":true}', "my-secret-key")

        assert sig1 == sig2
        assert len(sig1) == 64
        int(sig1, 16)

    @pytest.mark.parametrize(
        "body,secret",
        [
            (b"{}", "k"),
            (b'{"event":"project.created","data":{"name":"demo"}}', "secret123"),
            ('{"unicode":"café"}'.encode("utf-8"), "another-secret"),
            (b"", "empty-body"),
        ],
    )
    def test_verify_roundtrip(self, body, secret):
        """Test a signature verifies against the exact bytes it was made from."""
        assert verify_signature(body, sign_payload(body, secret), secret) is True

    def test_single_byte_mutation_fails(self):
        """Test that flipping any byte of the body breaks verification."""
        body = b'{"id":"1","event":"user.created"}'
        secret = "my-secret-key"
        signature = sign_payload(body, secret)

        for i in range(len(body)):
            mutated = body[:i] + bytes([body[i] ^ 0x01]) + body[i + 1:]
            assert verify_signature(mutated, signature, secret) is False

    def test_verify_accepts_header_prefix(self):
        """Test the sha256= header prefix is accepted."""
        body = b'{"a":1}'
        signature = sign_payload(body, "k")

        assert verify_signature(body, f"sha256={signature}", "k") is True

    def test_verify_wrong_secret_or_missing(self):
        """Test verification with wrong secret or no signature."""
        body = b'{"a":1}'
        signature = sign_payload(body, "correct-secret")

        assert verify_signature(body, signature, "wrong-secret") is False
        assert verify_signature(body, None, "correct-secret") is False
        assert verify_signature(body, "not-hex-é", "correct-secret") is False

    def test_generate_webhook_headers(self):
        """Test header generation for outbound webhooks."""
        envelope = {
            "id": "env-1",
            "event": "project.created",
            "data": {},
            "timestamp": "2024-01-01T00:00:00.000Z",
            "webhook": {"id": "sub-1", "url": URL},
        }
        body = serialize_envelope(envelope)

        headers = generate_webhook_headers(envelope, body, "secret123", "HookRelay-Webhook/1.0")

        assert headers["Content-Type"] == "application/json"
        assert headers["X-Webhook-ID"] == "env-1"
        assert headers["X-Event-Type"] == "project.created"
        assert headers["X-Timestamp"] == "2024-01-01T00:00:00.000Z"
        assert headers["X-Signature"] == f"sha256={sign_payload(body, 'secret123')}"

    def test_no_signature_without_secret(self):
        """Test unsigned deliveries carry no signature header."""
        envelope = {"id": "e", "event": "x", "timestamp": "t"}

        headers = generate_webhook_headers(envelope, b"{}", None, "ua")

        assert "X-Signature" not in headers


# ============================================================================
# Matcher Tests
# ============================================================================

class TestEventMatcher:
    """Tests for event pattern matching."""

    def test_exact_match(self):
        """Test exact event types match and unrelated ones don't."""
        sub = make_subscription(["project.created"])

        assert matches(sub, "project.created") is True
        assert matches(sub, "project.updated") is False
        assert matches(sub, "user.created") is False

    def test_catch_all(self):
        """Test '*' matches every event type."""
        sub = make_subscription(["*"])

        for event_type in ("project.created", "user.updated", "anything"):
            assert matches(sub, event_type) is True

    def test_prefix_glob(self):
        """Test 'project.*' selects project events only."""
        sub = make_subscription(["project.*"])

        assert matches(sub, "project.created") is True
        assert matches(sub, "project.deployed") is True
        assert matches(sub, "user.created") is False

    def test_glob_is_anchored_and_literal(self):
        """Test globs are anchored and '.' is not a regex wildcard."""
        sub = make_subscription(["project.*"])

        assert matches(sub, "myproject.created") is False
        assert matches(sub, "projectXcreated") is False
        assert matches(sub, "project") is False

    def test_suffix_and_infix_glob(self):
        """Test '*' anywhere in a pattern."""
        assert matches(make_subscription(["*.created"]), "user.created") is True
        assert matches(make_subscription(["*.created"]), "user.updated") is False
        assert matches(make_subscription(["payment.*ed"]), "payment.failed") is True

    def test_any_pattern_in_set(self):
        """Test a set matches when any of its patterns does."""
        sub = make_subscription(["user.created", "file.*"])

        assert matches(sub, "file.uploaded") is True
        assert matches(sub, "user.created") is True
        assert matches(sub, "user.updated") is False

    @pytest.mark.parametrize("pattern", ["", "project created", "project.[a-z]", "user.(x)"])
    def test_malformed_patterns_rejected(self, pattern):
        """Test malformed patterns fail when compiled."""
        with pytest.raises(InvalidEventPatternError):
            EventPattern(pattern)

    def test_empty_pattern_set_rejected(self):
        """Test at least one pattern is required."""
        with pytest.raises(InvalidEventPatternError):
            compile_patterns(())

    def test_pattern_set_deduplicates_in_order(self):
        """Test duplicates are dropped while order is kept."""
        patterns = compile_patterns(("b.*", "a.x", "b.*"))

        assert patterns.raw == ["b.*", "a.x"]


# ============================================================================
# Registry Tests
# ============================================================================

class TestWebhookRegistry:
    """Tests for webhook registry operations."""

    def test_create_and_get(self):
        """Test registering and retrieving a webhook."""
        registry = WebhookRegistry()

        sub = registry.create("owner-1", URL, ["project.created"])
        retrieved = registry.get_owned(sub.id, "owner-1")

        assert retrieved.url == URL
        assert retrieved.events == ["project.created"]
        assert retrieved.owner_id == "owner-1"
        assert len(retrieved.secret) == 64

    def test_create_keeps_given_secret_and_defaults(self):
        """Test explicit secret and registry defaults."""
        registry = WebhookRegistry(default_max_attempts=5, default_attempt_timeout=2.5)

        sub = registry.create("owner-1", URL, secret="given")

        assert sub.secret == "given"
        assert sub.events == ["*"]
        assert sub.max_attempts == 5
        assert sub.attempt_timeout == 2.5

    @pytest.mark.parametrize(
        "url", ["not-a-url", "/relative/path", "ftp://example.test/hook", "https://", ""]
    )
    def test_invalid_url_rejected(self, url):
        """Test only absolute http(s) URLs are accepted."""
        registry = WebhookRegistry()

        with pytest.raises(InvalidUrlError):
            registry.create("owner-1", url)
        assert len(registry) == 0

    def test_url_stored_as_given(self):
        """Test URL is not normalized."""
        assert validate_target_url("http://example.test") == "http://example.test"

    def test_malformed_pattern_rejected_at_registration(self):
        """Test patterns are compiled when registering."""
        registry = WebhookRegistry()

        with pytest.raises(InvalidEventPatternError):
            registry.create("owner-1", URL, ["bad pattern"])

    def test_list_by_owner_in_creation_order(self):
        """Test listing is owner-scoped and ordered."""
        registry = WebhookRegistry()
        first = registry.create("owner-1", "https://example.test/1")
        registry.create("owner-2", "https://example.test/other")
        second = registry.create("owner-1", "https://example.test/2")

        listed = registry.list_by_owner("owner-1")

        assert [s.id for s in listed] == [first.id, second.id]

    def test_update(self):
        """Test updating fields bumps updated_at and recompiles patterns."""
        registry = WebhookRegistry()
        sub = registry.create("owner-1", URL, ["user.created"])

        updated = registry.update(sub.id, "owner-1", events=["project.*"], active=False)

        assert updated.events == ["project.*"]
        assert updated.active is False
        assert updated.updated_at >= sub.updated_at
        assert updated.owner_id == "owner-1"

        registry.update(sub.id, "owner-1", active=True)
        assert [s.id for s in registry.select_subscriptions("project.created")] == [sub.id]
        assert registry.select_subscriptions("user.created") == []

    def test_update_revalidates_url(self):
        """Test a changed URL is validated again."""
        registry = WebhookRegistry()
        sub = registry.create("owner-1", URL)

        with pytest.raises(InvalidUrlError):
            registry.update(sub.id, "owner-1", url="nope")
        assert registry.get(sub.id).url == URL

    def test_update_rejects_counters(self):
        """Test counters cannot be written through update."""
        registry = WebhookRegistry()
        sub = registry.create("owner-1", URL)

        with pytest.raises(ValueError):
            registry.update(sub.id, "owner-1", success_count=100)

    @pytest.mark.parametrize("secret", [None, ""])
    def test_update_cannot_clear_secret(self, secret):
        """Test the signing secret can be replaced but never removed."""
        registry = WebhookRegistry()
        sub = registry.create("owner-1", URL)

        with pytest.raises(ValueError):
            registry.update(sub.id, "owner-1", secret=secret)
        assert registry.get(sub.id).secret == sub.secret

        rotated = registry.update(sub.id, "owner-1", secret="rotated")
        assert rotated.secret == "rotated"

    @pytest.mark.parametrize(
        "limits", [{"max_attempts": 0}, {"attempt_timeout": 0}, {"max_attempts": -1}]
    )
    def test_create_rejects_zero_limits(self, limits):
        """Test explicit zero limits are rejected, not replaced by defaults."""
        registry = WebhookRegistry()

        with pytest.raises(ValueError):
            registry.create("owner-1", URL, **limits)
        assert len(registry) == 0

    def test_non_owner_is_rejected(self):
        """Test non-owners get NotFoundOrForbidden for every scoped call."""
        registry = WebhookRegistry()
        sub = registry.create("owner-1", URL)

        with pytest.raises(NotFoundOrForbiddenError):
            registry.update(sub.id, "intruder", active=False)
        with pytest.raises(NotFoundOrForbiddenError):
            registry.update(sub.id, "intruder", url="nope")
        with pytest.raises(NotFoundOrForbiddenError):
            registry.delete(sub.id, "intruder")
        with pytest.raises(NotFoundOrForbiddenError):
            registry.get_owned(sub.id, "intruder")

        assert registry.get(sub.id).active is True

    def test_delete(self):
        """Test removing a webhook."""
        registry = WebhookRegistry()
        sub = registry.create("owner-1", URL)

        assert registry.delete(sub.id, "owner-1") is True
        assert registry.get(sub.id) is None
        with pytest.raises(NotFoundOrForbiddenError):
            registry.delete(sub.id, "owner-1")

    def test_inactive_subscriptions_never_selected(self):
        """Test that inactive webhooks are not returned."""
        registry = WebhookRegistry()
        registry.create("owner-1", "https://example.test/on", ["*"])
        registry.create("owner-2", "https://example.test/off", ["*"], active=False)

        selected = registry.select_subscriptions("project.created")

        assert [s.url for s in selected] == ["https://example.test/on"]

    def test_snapshots_are_detached(self):
        """Test mutating a returned record does not touch the registry."""
        registry = WebhookRegistry()
        sub = registry.create("owner-1", URL, ["user.created"])

        sub.events.append("*")
        sub.success_count = 99

        stored = registry.get(sub.id)
        assert stored.events == ["user.created"]
        assert stored.success_count == 0

    def test_record_outcome(self):
        """Test counter updates and last_triggered_at."""
        registry = WebhookRegistry()
        sub = registry.create("owner-1", URL)

        registry.record_outcome(sub.id, success=False)
        after = registry.record_outcome(sub.id, success=True)

        assert after.success_count == 1
        assert after.failure_count == 1
        assert after.last_triggered_at is not None
        assert registry.record_outcome("missing", success=True) is None

    def test_concurrent_counter_updates(self):
        """Test counter updates from many threads are not lost."""
        registry = WebhookRegistry()
        sub = registry.create("owner-1", URL)

        def bump():
            for _ in range(200):
                registry.record_outcome(sub.id, success=True)

        threads = [threading.Thread(target=bump) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert registry.get(sub.id).success_count == 1600
