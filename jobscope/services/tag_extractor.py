"""User-declared job tags."""

from jobscope.core.logging import get_logger
from jobscope.schemas.descriptor import JobDescriptor

logger = get_logger(__name__)


class TagExtractor:
    """Normalizes tags declared on a job into an ordered, lowercase set."""

    def extract(self, descriptor: JobDescriptor) -> list[str] | None:
        """Return lowercase unique tags in declaration order, or None if there are none."""
        try:
            return normalize_tags(descriptor.declared_tags)
        except Exception as e:
            logger.bind(job_class=descriptor.job_class, error=str(e)).error(
                "tag_extraction_failed"
            )
            return None


def normalize_tags(raw_tags: object) -> list[str] | None:
    if raw_tags is None:
        return None
    if isinstance(raw_tags, str):
        raw_tags = [raw_tags]

    tags: list[str] = []
    seen: set[str] = set()
    for raw in raw_tags:  # type: ignore[union-attr]
        if raw is None:
            continue
        tag = str(raw).strip().lower()
        if tag and tag not in seen:
            seen.add(tag)
            tags.append(tag)
    return tags or None
