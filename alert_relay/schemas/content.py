from datetime import datetime

from pydantic import BaseModel, ConfigDict

ContentKey = tuple[str, str, str]


class ContentCandidate(BaseModel):
    """A content item matched for a subscription.

    The identifying part is (domain, content_type, content_id). Title, link,
    source and summary are display fields for the email body only.
    """

    model_config = ConfigDict(frozen=True)

    domain: str
    content_type: str
    content_id: str
    published_at: datetime
    title: str
    link: str | None = None
    source: str | None = None
    summary: str | None = None

    @property
    def key(self) -> ContentKey:
        return (self.domain, self.content_type, self.content_id)

    @property
    def key_str(self) -> str:
        """Key as "domain:type:id", the form stored on queue items."""
        return ":".join(self.key)
