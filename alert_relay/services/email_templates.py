"""Rendering of digest and alert emails with Jinja2."""

from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from jinja2 import Environment, FileSystemLoader, select_autoescape

from alert_relay.config import get_config, get_settings
from alert_relay.core.datetime_utils import to_local, utc_now
from alert_relay.models.subscription import AlertSubscription, Cadence
from alert_relay.schemas.content import ContentCandidate

template_dir = Path(__file__).parent.parent / "emails" / "templates"
jinja_env = Environment(
    loader=FileSystemLoader(template_dir),
    autoescape=select_autoescape(["html"]),
    trim_blocks=True,
    lstrip_blocks=True,
)

CADENCE_TITLES = {
    Cadence.IMMEDIATE: "New Content Alert",
    Cadence.HOURLY_DIGEST: "Hourly Digest",
    Cadence.DAILY_DIGEST: "Daily Digest",
    Cadence.WEEKLY_DIGEST: "Weekly Digest",
}

# Section order and headings in the email body
SECTIONS = [
    ("article", "Articles"),
    ("event", "Events"),
    ("publication", "Publications"),
]


@dataclass
class RenderedEmail:
    subject: str
    text: str
    html: str


def build_subject(subscription: AlertSubscription, cadence: Cadence) -> str:
    return f"{subscription.name} - {CADENCE_TITLES[cadence]}"


def _group_sections(candidates: list[ContentCandidate]) -> list[dict]:
    sections = []
    for content_type, label in SECTIONS:
        items = [c for c in candidates if c.content_type == content_type]
        if items:
            sections.append({"label": label, "items": items})
    return sections


def render_digest(
    subscription: AlertSubscription,
    candidates: list[ContentCandidate],
    cadence: Cadence,
    *,
    now: datetime | None = None,
) -> RenderedEmail:
    """Render the subject, text and HTML body of a digest or immediate alert.

    Args:
        subscription: Recipient subscription (name, timezone, user name)
        candidates: Items to include, newest first
        cadence: Cadence of the run, which selects the heading
        now: Send time, shown in the subscription's timezone

    Returns:
        RenderedEmail with subject, text and html
    """
    settings = get_settings()
    config = get_config()
    local_now = to_local(now or utc_now(), subscription.timezone)

    context = {
        "title": CADENCE_TITLES[cadence],
        "alert_name": subscription.name,
        "user_name": subscription.user_name or "there",
        "portal_name": config.digest.portal_name,
        "date_label": local_now.strftime("%A, %B %d, %Y"),
        "total": len(candidates),
        "sections": _group_sections(candidates),
        "preferences_url": f"{settings.base_url}/profile/alerts",
    }

    return RenderedEmail(
        subject=build_subject(subscription, cadence),
        text=jinja_env.get_template("digest.txt").render(**context),
        html=jinja_env.get_template("digest.html").render(**context),
    )
