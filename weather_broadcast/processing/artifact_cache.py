"""Content-addressable cache for expensive generated artifacts"""

import hashlib
from pathlib import Path
from typing import Awaitable, Callable, Optional, Tuple, Union

from ..config import STYLE_EPOCH
from ..database import BroadcastDatabase
from ..models import CacheEntry, ImageCategory
from ..utils.helpers import file_exists, generate_id, to_iso, utc_now
from ..utils.logging import get_logger

logger = get_logger(__name__)

Generator = Callable[[], Awaitable[Union[str, Path]]]


def compute_fingerprint(descriptor: str, category: ImageCategory, generator: str, epoch: int) -> str:
    """Deterministic key over the request, its category, the generator and the style epoch"""
    content = f"{descriptor}|{category.value}|{generator}|{epoch}"
    return hashlib.sha256(content.encode('utf-8')).hexdigest()[:16]


class ArtifactCache:
    """Reuse generated artifacts for semantically identical requests.

    Entries are looked up by (fingerprint, category, epoch). A hit whose file
    has disappeared is treated as a miss and superseded by a new entry; old
    rows are never rewritten. Raising the epoch orphans every existing entry.
    """

    def __init__(self, db: BroadcastDatabase, epoch: int = STYLE_EPOCH,
                 generator_name: str = "unknown"):
        if isinstance(epoch, bool) or not isinstance(epoch, int) or epoch < 1:
            raise ValueError(f"epoch must be a positive integer, got {epoch!r}")
        self.db = db
        self.epoch = epoch
        self.generator_name = generator_name

    def lookup(self, descriptor: str, category: ImageCategory) -> Optional[CacheEntry]:
        """Cached entry whose artifact still exists, recording the hit"""
        category = ImageCategory(category)
        fingerprint = compute_fingerprint(descriptor, category, self.generator_name, self.epoch)
        entry = self.db.find_cache_entry(fingerprint, category, self.epoch)
        if entry is None:
            return None
        if not file_exists(entry.artifact_path):
            logger.info(f"🩹 Cached artifact missing on disk, regenerating: {entry.artifact_path}")
            return None

        self.db.touch_cache_entry(entry.id)
        return entry

    async def resolve(self, descriptor: str, category: ImageCategory,
                      generate: Generator) -> Tuple[str, bool]:
        """
        Return (artifact_path, cached) for a request, generating only on a miss.

        Args:
            descriptor: Semantic request, e.g. an image prompt
            category: Cache namespace
            generate: Coroutine factory producing the artifact file path

        Returns:
            Tuple of (artifact path, whether it came from the cache)
        """
        category = ImageCategory(category)
        entry = self.lookup(descriptor, category)
        if entry is not None:
            logger.debug(f"Cache hit [{category.value}] {descriptor[:60]}")
            return entry.artifact_path, True

        artifact_path = str(await generate())
        now = to_iso(utc_now())
        new_entry = CacheEntry(
            id=generate_id(),
            fingerprint=compute_fingerprint(descriptor, category, self.generator_name, self.epoch),
            category=category,
            epoch=self.epoch,
            artifact_path=artifact_path,
            descriptor=descriptor,
            generator=self.generator_name,
            created_at=now,
            last_used_at=now,
            use_count=1,
        )
        self.db.insert_cache_entry(new_entry)
        logger.info(f"🖼️  Cached new {category.value} artifact: {artifact_path}")
        return artifact_path, False

    def stats(self):
        """Entry and use counts per (category, epoch)"""
        return self.db.get_cache_stats()
