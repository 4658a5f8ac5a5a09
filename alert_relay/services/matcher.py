"""Content matcher: finds new content matching a subscription's filters.

Read-only. Each content domain is queried on its own savepoint so that a
failing domain (missing table, bad data, timeout) yields a warning and
partial results instead of aborting the digest run.
"""

from datetime import datetime

from sqlalchemy import String, and_, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from alert_relay.config import get_config
from alert_relay.core.datetime_utils import start_of_local_day, utc_now
from alert_relay.core.logging import get_logger
from alert_relay.models.content import ContentItem, ContentLike
from alert_relay.models.subscription import AlertSubscription
from alert_relay.schemas.content import ContentCandidate

logger = get_logger(__name__)

DEFAULT_LIMIT = 20


def _keyword_clause(keywords: list[str]):
    """Case-insensitive substring match of any keyword over title or summary."""
    clauses = []
    for keyword in keywords:
        kw = keyword.strip().lower()
        if not kw:
            continue
        clauses.append(
            or_(
                func.lower(ContentItem.title, type_=String).contains(kw, autoescape=True),
                func.lower(func.coalesce(ContentItem.summary, ""), type_=String).contains(
                    kw, autoescape=True
                ),
            )
        )
    return or_(*clauses) if clauses else None


def _team_activity_clause(team: str, since: datetime):
    """Items liked by members of a team since the window start."""
    return (
        select(ContentLike.id)
        .where(
            ContentLike.content_id == ContentItem.id,
            ContentLike.domain == ContentItem.domain,
            ContentLike.content_type == ContentItem.content_type,
            ContentLike.team == team,
            ContentLike.created_at >= since,
        )
        .exists()
    )


def build_domain_query(
    subscription: AlertSubscription,
    domain: str,
    since: datetime,
    content_types: list[str],
    published_after: datetime | None,
    limit: int,
):
    """Build the parameterized query for one content domain."""
    conditions = [
        ContentItem.domain == domain,
        ContentItem.content_type.in_(content_types),
    ]

    if subscription.team_only:
        # Team activity digests look at when items were liked, not ingested
        conditions.append(_team_activity_clause(subscription.team or "", since))
    else:
        conditions.append(ContentItem.saved_at >= since)

    if subscription.sources:
        conditions.append(ContentItem.source.in_(subscription.sources))

    keyword_clause = _keyword_clause(subscription.keywords or [])
    if keyword_clause is not None:
        conditions.append(keyword_clause)

    if published_after is not None:
        conditions.append(ContentItem.published_at >= published_after)

    return (
        select(ContentItem)
        .where(and_(*conditions))
        .order_by(ContentItem.published_at.desc(), ContentItem.id.desc())
        .limit(limit)
    )


def _to_candidate(item: ContentItem) -> ContentCandidate:
    return ContentCandidate(
        domain=item.domain,
        content_type=item.content_type,
        content_id=str(item.id),
        published_at=item.published_at,
        title=item.title,
        link=item.link,
        source=item.source,
        summary=item.summary,
    )


async def find_candidates(
    db: AsyncSession,
    subscription: AlertSubscription,
    since: datetime,
    *,
    now: datetime | None = None,
    published_today_only: bool = False,
    limit: int = DEFAULT_LIMIT,
) -> list[ContentCandidate]:
    """Find content items matching a subscription since a point in time.

    Args:
        db: Database session
        subscription: The subscription whose filters apply
        since: Window start (naive UTC)
        now: Reference time for the "published today" cutoff
        published_today_only: Only keep items published since local midnight
        limit: Maximum number of candidates returned

    Returns:
        Candidates ordered newest-first, at most `limit` of them
    """
    now = now or utc_now()
    content_types = subscription.content_types()
    if not content_types:
        return []

    if subscription.team_only and not subscription.team:
        logger.bind(subscription_id=str(subscription.id)).warning("team_only_without_team")
        return []

    domains = subscription.domains or get_config().digest.default_domains
    published_after = (
        start_of_local_day(now, subscription.timezone) if published_today_only else None
    )

    candidates: list[ContentCandidate] = []
    for domain in domains:
        try:
            query = build_domain_query(
                subscription, domain, since, content_types, published_after, limit
            )
            async with db.begin_nested():
                result = await db.execute(query)
                items = result.scalars().all()
        except Exception as e:
            logger.bind(
                subscription_id=str(subscription.id),
                domain=domain,
                error=str(e),
            ).warning("content_domain_query_failed")
            continue

        candidates.extend(_to_candidate(item) for item in items)

    candidates.sort(key=lambda c: c.published_at, reverse=True)
    return candidates[:limit]
