"""Tests for contact/feedback intake and newsletter subscriptions."""

import pytest

from reflecto.domain import ValidationError


class TestContact:
    def test_missing_name_is_reported_first(self, reflecto):
        with pytest.raises(ValidationError) as exc:
            reflecto.submissions.submit("contact", {"email": "a@b.com", "message": "hi"})
        assert exc.value.field == "name"
        assert exc.value.message == "Name is required"

    def test_fields_checked_in_order(self, reflecto):
        with pytest.raises(ValidationError) as exc:
            reflecto.submissions.submit("contact", {"name": "Ada"})
        assert exc.value.field == "email"
        with pytest.raises(ValidationError) as exc:
            reflecto.submissions.submit("contact", {"name": "Ada", "email": "a@b.com", "message": "   "})
        assert exc.value.field == "message"

    def test_success_stores_new_status_and_null_optionals(self, reflecto):
        result = reflecto.submissions.submit(
            "contact", {"name": "Ada", "email": "a@b.com", "message": "hi"}
        )
        assert result["success"] is True
        row = reflecto.submissions.store.get("contact_messages", result["id"])
        assert row["status"] == "new"
        assert row["subject"] is None
        assert row["user_id"] is None

    def test_authenticated_submission_records_owner(self, reflecto, make_user):
        identity, _ = make_user()
        result = reflecto.submissions.submit(
            "contact", {"name": "Ada", "email": "a@b.com", "message": "hi", "subject": "Hello"}, identity
        )
        row = reflecto.submissions.store.get("contact_messages", result["id"])
        assert row["user_id"] == identity.user_id
        assert row["subject"] == "Hello"

    def test_email_stored_lowercase(self, reflecto):
        result = reflecto.submissions.submit("contact", {"name": "Ada", "email": "Ada@B.com", "message": "hi"})
        assert reflecto.submissions.store.get("contact_messages", result["id"])["email"] == "ada@b.com"

    def test_malformed_email(self, reflecto):
        with pytest.raises(ValidationError) as exc:
            reflecto.submissions.submit("contact", {"name": "Ada", "email": "not-an-email", "message": "hi"})
        assert exc.value.field == "email"


class TestFeedback:
    def test_name_is_optional(self, reflecto):
        result = reflecto.submissions.submit("feedback", {"email": "a@b.com", "message": "Love it"})
        row = reflecto.submissions.store.get("feedback", result["id"])
        assert row["name"] is None
        assert row["rating"] is None
        assert row["status"] == "new"
        assert result["message"] == "Thank you for your feedback!"

    def test_missing_email_reported_before_message(self, reflecto):
        with pytest.raises(ValidationError) as exc:
            reflecto.submissions.submit("feedback", {})
        assert exc.value.field == "email"

    @pytest.mark.parametrize("rating", [0, 6, True])
    def test_rating_out_of_range(self, reflecto, rating):
        with pytest.raises(ValidationError) as exc:
            reflecto.submissions.submit("feedback", {"email": "a@b.com", "message": "ok", "rating": rating})
        assert exc.value.field == "rating"

    def test_rating_kept(self, reflecto):
        result = reflecto.submissions.submit("feedback", {"email": "a@b.com", "message": "ok", "rating": 4})
        assert reflecto.submissions.store.get("feedback", result["id"])["rating"] == 4


class TestNewsletter:
    def test_subscription_lifecycle(self, reflecto):
        subs = reflecto.submissions
        assert subs.subscribe("reader@example.com") == "subscribed"
        assert subs.subscribe("reader@example.com") == "already_subscribed"
        assert subs.unsubscribe("reader@example.com") == "unsubscribed"
        assert subs.subscribe("reader@example.com", "Reader") == "reactivated"

    def test_addresses_differing_only_in_case_are_one_subscription(self, reflecto):
        subs = reflecto.submissions
        assert subs.subscribe("Alice@Example.com") == "subscribed"
        assert subs.subscribe("alice@example.com") == "already_subscribed"
        assert subs.unsubscribe("ALICE@example.COM") == "unsubscribed"

    def test_unsubscribe_unknown(self, reflecto):
        assert reflecto.submissions.unsubscribe("nobody@example.com") == "not_subscribed"

    def test_email_required(self, reflecto):
        with pytest.raises(ValidationError) as exc:
            reflecto.submissions.subscribe("")
        assert exc.value.field == "email"
