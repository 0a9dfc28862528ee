"""Semantic tag deduplication."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Dict, List, Optional, Set

from ..backends.errors import BackendError
from ..backends.orchestrator import BackendOrchestrator
from ..models import Issue, Tag
from ..repository import DuplicateTagError, MonitorRepository

logger = logging.getLogger(__name__)


class TagCache:
    """Tag vocabulary for one analysis run.

    Created by the run, passed to the deduplicator explicitly and dropped
    with the run, so concurrent runs never share it.
    """

    def __init__(self, tags: Iterable[Tag] = ()) -> None:
        self._by_name: Dict[str, Tag] = {tag.name: tag for tag in tags}
        self.created = 0

    @classmethod
    def load(cls, repository: MonitorRepository) -> "TagCache":
        return cls(repository.list_tags())

    @property
    def names(self) -> List[str]:
        return list(self._by_name)

    def get(self, name: str) -> Optional[Tag]:
        return self._by_name.get(name)

    def add(self, tag: Tag) -> None:
        self._by_name[tag.name] = tag

    def __len__(self) -> int:
        return len(self._by_name)

    def __contains__(self, name: object) -> bool:
        return name in self._by_name


class TagDeduplicator:
    def __init__(
        self,
        orchestrator: BackendOrchestrator,
        repository: MonitorRepository,
        *,
        fallback: bool = False,
    ) -> None:
        self._orchestrator = orchestrator
        self._repository = repository
        self.fallback = fallback

    def resolve(self, suggested: str, cache: TagCache) -> Optional[Tag]:
        """Return the tag to use for ``suggested``, creating it if it is new.

        The full vocabulary goes to the backend. A merge target that is not
        in the vocabulary counts as no merge.
        """

        name = suggested.strip()
        if not name:
            return None

        if len(cache):
            similarity = self._orchestrator.deduplicate_tag(name, cache.names, fallback=self.fallback)
            target = (similarity.similar_tag or "").strip()
            if similarity.should_merge and target in cache:
                logger.debug("Merging tag %r into existing %r", name, target)
                return cache.get(target)
            if similarity.should_merge:
                logger.info("Ignoring merge of %r into unknown tag %r", name, target)

        existing = cache.get(name)
        if existing is not None:
            return existing
        try:
            tag = self._repository.create_tag(name)
            cache.created += 1
        except DuplicateTagError:
            # Another run created it first.
            tag = self._repository.get_tag_by_name(name)
            if tag is None:
                raise
        cache.add(tag)
        return tag

    def attach_suggested(
        self, issue: Issue, suggested_tags: Iterable[str], cache: TagCache
    ) -> List[Tag]:
        """Attach each distinct resolved tag to ``issue`` at most once."""

        attached: List[Tag] = []
        seen: Set[int] = set()
        for suggested in suggested_tags:
            try:
                tag = self.resolve(suggested, cache)
            except BackendError as exc:
                logger.warning("Tag deduplication for %r failed, skipping: %s", suggested, exc)
                continue
            if tag is None or tag.id in seen:
                continue
            seen.add(tag.id)
            if self._repository.attach_tag(issue.id, tag.id):
                attached.append(tag)
        return attached
