"""Tests for digest email rendering."""

from datetime import timedelta

from alert_relay.models.subscription import AlertSubscription, Cadence
from alert_relay.schemas.content import ContentCandidate
from alert_relay.services.email_templates import render_digest
from conftest import MONDAY_9AM


def _subscription(**overrides) -> AlertSubscription:
    values = {"name": "Energy Watch", "user_name": "Dana", "timezone": "UTC"}
    values.update(overrides)
    return AlertSubscription(cadence=Cadence.DAILY_DIGEST, email="dana@example.com", **values)


def _candidate(title: str, content_type: str = "article", **overrides) -> ContentCandidate:
    values = {
        "domain": "esg",
        "content_type": content_type,
        "content_id": title.lower().replace(" ", "-"),
        "published_at": MONDAY_9AM - timedelta(days=1),
        "title": title,
        "link": "https://example.com/item",
        "source": "Reuters",
    }
    values.update(overrides)
    return ContentCandidate(**values)


class TestRenderDigest:
    def test_subject_uses_alert_name_and_cadence(self):
        email = render_digest(_subscription(), [_candidate("A")], Cadence.WEEKLY_DIGEST, now=MONDAY_9AM)

        assert email.subject == "Energy Watch - Weekly Digest"

    def test_groups_items_by_content_type(self):
        email = render_digest(
            _subscription(),
            [_candidate("Summit on carbon", content_type="event"), _candidate("Bond report")],
            Cadence.DAILY_DIGEST,
            now=MONDAY_9AM,
        )

        assert "2 new items matched your alert." in email.text
        assert email.text.index("ARTICLES") < email.text.index("EVENTS")
        assert email.text.index("Bond report") < email.text.index("Summit on carbon")
        assert "Reuters | Jan 04, 2026" in email.text

    def test_single_item_wording(self):
        email = render_digest(_subscription(), [_candidate("A")], Cadence.DAILY_DIGEST, now=MONDAY_9AM)

        assert "1 new item matched your alert." in email.text

    def test_html_escapes_titles(self):
        email = render_digest(
            _subscription(),
            [_candidate("<script>alert(1)</script>")],
            Cadence.IMMEDIATE,
            now=MONDAY_9AM,
        )

        assert "<script>" not in email.html
        assert "&lt;script&gt;" in email.html

    def test_greeting_falls_back_without_user_name(self):
        email = render_digest(
            _subscription(user_name=None), [_candidate("A")], Cadence.DAILY_DIGEST, now=MONDAY_9AM
        )

        assert "Hi there," in email.text

    def test_date_label_in_subscription_timezone(self):
        late = MONDAY_9AM.replace(hour=22)
        email = render_digest(
            _subscription(timezone="Asia/Dubai"), [_candidate("A")], Cadence.DAILY_DIGEST, now=late
        )

        assert "Tuesday, January 06, 2026" in email.text
