"""
Typed in-memory indexes for one pairing run.

InsightIndex holds every image and its classifier insight under the canonical
image key; GroupRegistry holds product groups under their stable group id.
"""
import logging
from typing import Dict, Iterator, List, Optional

from .models import Image, ImageInsight, ProductGroup
from .storage import normalize_folder, url_key

logger = logging.getLogger(__name__)


class InsightIndex:
    """Images and insights addressed by canonical key, in scan order."""

    def __init__(self):
        self._images: Dict[str, Image] = {}
        self._insights: Dict[str, ImageInsight] = {}
        self._aliases: Dict[str, str] = {}

    def __len__(self) -> int:
        return len(self._images)

    def __contains__(self, key: str) -> bool:
        return key in self._images

    def add_image(self, image: Image) -> Image:
        """Register an image; a repeated key keeps the first registration."""
        if image.key in self._images:
            return self._images[image.key]
        image.order = len(self._images)
        image.folder = normalize_folder(image.folder)
        self._images[image.key] = image
        for alias in (image.url, url_key(image.url), url_key(image.name), image.path):
            if alias and alias not in self._aliases:
                self._aliases[alias] = image.key
        return image

    def resolve(self, ref: Optional[str]) -> Optional[str]:
        """Map a key, URL, path or file name onto a registered image key."""
        if not ref:
            return None
        if ref in self._images:
            return ref
        if ref in self._aliases:
            return self._aliases[ref]
        return self._aliases.get(url_key(ref))

    def add_insight(self, insight: ImageInsight) -> Optional[ImageInsight]:
        """
        Attach a classifier insight, merging with anything already known.

        Existing values win over blanks, and the longer OCR text is kept.
        """
        key = self.resolve(insight.image_key)
        if key is None:
            logger.debug(f"Insight for unknown image ignored: {insight.image_key}")
            return None
        insight.image_key = key
        existing = self._insights.get(key)
        if existing is None:
            self._insights[key] = insight
            return insight

        if existing.role == 'unknown' and insight.role != 'unknown':
            existing.role = insight.role
            existing.role_confidence = insight.role_confidence
        if existing.has_visible_text is None:
            existing.has_visible_text = insight.has_visible_text
        if len(insight.ocr_text or '') > len(existing.ocr_text or ''):
            existing.ocr_text = insight.ocr_text
        for attr in ('dominant_color', 'embedding', 'brand', 'product', 'category', 'description'):
            if not getattr(existing, attr) and getattr(insight, attr):
                setattr(existing, attr, getattr(insight, attr))
        return existing

    def image(self, key: str) -> Image:
        return self._images[key]

    def insight(self, key: str) -> ImageInsight:
        """Insight for a key; images the classifier never saw get a blank one."""
        if key not in self._insights:
            self._insights[key] = ImageInsight(image_key=key)
        return self._insights[key]

    def has_insight(self, key: str) -> bool:
        return key in self._insights

    def keys(self) -> List[str]:
        return list(self._images.keys())

    def images(self) -> List[Image]:
        return list(self._images.values())

    def order_of(self, key: str) -> int:
        image = self._images.get(key)
        return image.order if image else len(self._images)

    def folder_of(self, key: str) -> str:
        image = self._images.get(key)
        return image.folder if image else ''

    def keys_in_folder(self, folder: str) -> List[str]:
        folder = normalize_folder(folder)
        return [key for key, image in self._images.items() if image.folder == folder]

    def vector(self, key: str) -> Optional[List[float]]:
        insight = self._insights.get(key)
        return insight.embedding if insight else None

    def set_vector(self, key: str, vector: Optional[List[float]]) -> None:
        self.insight(key).embedding = vector

    def valid_vector_count(self) -> int:
        return sum(1 for key in self._images if self.vector(key))

    def enforce_vector_length(self) -> List[str]:
        """
        Drop vectors whose length differs from the first valid one.

        Returns:
            Warning messages for every discarded vector
        """
        warnings = []
        expected = None
        for key in self._images:
            vector = self.vector(key)
            if not vector:
                continue
            if expected is None:
                expected = len(vector)
                continue
            if len(vector) != expected:
                warnings.append(
                    f"Embedding length mismatch for {key} (got {len(vector)}, expected {expected}); ignoring vector."
                )
                self.set_vector(key, None)
        return warnings

    def enriched(self) -> Dict[str, dict]:
        return {key: self.insight(key).to_dict() for key in self._images}


class GroupRegistry:
    """Product groups addressed by stable id, in registration order."""

    def __init__(self, groups: Optional[List[ProductGroup]] = None):
        self._groups: Dict[str, ProductGroup] = {}
        for group in groups or []:
            self.add(group)

    def __len__(self) -> int:
        return len(self._groups)

    def __iter__(self) -> Iterator[ProductGroup]:
        return iter(list(self._groups.values()))

    def add(self, group: ProductGroup) -> ProductGroup:
        base_id = group.group_id or f"group_{len(self._groups) + 1}"
        group_id = base_id
        suffix = 2
        while group_id in self._groups:
            group_id = f"{base_id}_{suffix}"
            suffix += 1
        group.group_id = group_id
        self._groups[group_id] = group
        return group

    def get(self, group_id: str) -> ProductGroup:
        return self._groups[group_id]

    def ids(self) -> List[str]:
        return list(self._groups.keys())

    def position(self, group_id: str) -> int:
        return self.ids().index(group_id)

    def check_invariants(self, max_images: int, duplicate_budget: int = 0) -> List[str]:
        """
        Describe every violated group invariant (empty list when all hold).
        """
        problems = []
        holders: Dict[str, List[str]] = {}
        for group in self._groups.values():
            members = group.member_image_keys
            if group.hero_image_key and group.hero_image_key == group.back_image_key:
                problems.append(f"{group.group_id}: hero and back are the same image")
            if len(members) != len(set(members)):
                problems.append(f"{group.group_id}: duplicate member images")
            if len(members) > max_images:
                problems.append(f"{group.group_id}: {len(members)} images exceeds cap {max_images}")
            for key in members:
                holders.setdefault(key, []).append(group.group_id)
        for key, owners in holders.items():
            if len(owners) > 1 + duplicate_budget:
                problems.append(f"{key}: claimed by {len(owners)} groups")
        return problems
