from __future__ import annotations

from services.feed_content import slugify
from services.feed_platforms import EntryFields, rule_for_link


def assign_item_id(entry: EntryFields) -> str:
    """
    Stable identifier for one feed entry.

    Precedence, first hit wins:
      1-3. a platform rule for the entry link (post id from the URL, then the
           guid, then a hash of the link)
      4.   the guid, verbatim
      5.   the link, verbatim
      6.   a slug of title and publish time

    Only entry fields are read, so the same entry always gets the same id.
    """
    link = (entry.link or "").strip()
    guid = (entry.guid or "").strip()
    normalized = EntryFields(link=link, guid=guid, title=entry.title, published_at=entry.published_at)

    if link:
        platform_id = rule_for_link(link).extract_id(normalized)
        if platform_id:
            return platform_id

    if guid:
        return guid
    if link:
        return link

    title = (entry.title or "").strip() or "untitled"
    published = entry.published_at.isoformat() if entry.published_at else ""
    return slugify(f"{title}-{published}") or "untitled"
