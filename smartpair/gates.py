"""
Candidate gating.

Each group's pool is narrowed by folder, category, brand and dummy checks.
When every candidate is rejected the gates relax: folder only, then the full
pool, so a group never ends up with nothing while it has images.
"""
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from . import img_utils
from .config import GateSettings
from .fallback import FallbackChain
from .index import InsightIndex
from .models import ProductGroup
from .storage import normalize_folder

logger = logging.getLogger(__name__)


def resolve_group_folder(group: ProductGroup, index: InsightIndex, candidates: List[str],
                         scan_folder: str = '') -> str:
    """
    Folder a group's images are expected to live in.

    Priority: explicit group folder, folder of the seed image, folder of the
    first candidate, then the folder the scan was started on.
    """
    if group.folder_hint:
        return normalize_folder(group.folder_hint)
    if group.seed_image_key and group.seed_image_key in index:
        return index.folder_of(group.seed_image_key)
    if candidates:
        return index.folder_of(candidates[0])
    return normalize_folder(scan_folder)


def brand_tokens(group: ProductGroup) -> List[str]:
    """Lowercased brand and product phrases of a group (blanks dropped)."""
    # cluster names are file stems, not product identities
    product = group.product_name if group.source != 'clustering' else ''
    return [t for t in (group.brand.strip().lower(), product.strip().lower()) if t]


def category_matches(candidate_category: str, group_category: str) -> bool:
    """Top-level category overlap; missing categories never reject."""
    if not candidate_category or not group_category:
        return True
    c_lower = candidate_category.lower()
    g_lower = group_category.lower()
    c_parent = c_lower.split('>')[0].strip()
    g_parent = g_lower.split('>')[0].strip()
    return g_parent in c_lower or c_parent in g_lower or c_parent == g_parent


@dataclass
class GateOutcome:
    candidates: List[str]
    stage: str
    folder: str = ''
    rejected: Dict[str, List[str]] = field(default_factory=dict)


class GateFilter:
    """Applies the configured gates to a group's candidate pool."""

    def __init__(self, index: InsightIndex, settings: Optional[GateSettings] = None, scan_folder: str = ''):
        self.index = index
        self.settings = settings or GateSettings()
        self.scan_folder = scan_folder

    def is_dummy(self, key: str) -> bool:
        image = self.index.image(key)
        name = (image.name or '').lower()
        if any(word in name for word in self.settings.noise_words):
            return True
        return img_utils.looks_dummy_by_meta(
            image.size_bytes, image.width, image.height,
            min_bytes=self.settings.min_bytes, min_dimension=self.settings.min_dimension,
        )

    def brand_hits(self, key: str, tokens: List[str]) -> int:
        text = (self.index.insight(key).ocr_text or '').lower()
        return sum(1 for token in tokens if token in text)

    def reasons(self, key: str, group: ProductGroup, folder: str) -> List[str]:
        """Names of every enabled gate that rejects this candidate."""
        settings = self.settings
        failed = []
        if settings.folder and folder and self.index.folder_of(key) != folder:
            failed.append('folder')
        if settings.category and not category_matches(self.index.insight(key).category, group.category):
            failed.append('category')
        tokens = brand_tokens(group)
        if settings.brand and tokens and self.brand_hits(key, tokens) < settings.ocr_brand_min:
            failed.append('brand')
        if settings.dummy and self.is_dummy(key):
            failed.append('dummy')
        return failed

    def apply(self, group: ProductGroup, pool: Optional[List[str]] = None) -> GateOutcome:
        """
        Narrow a group's candidate pool.

        Args:
            group: Group being gated
            pool: Candidate keys (defaults to the group's members)

        Returns:
            GateOutcome with the surviving candidates in pool order and the
            relaxation stage that produced them
        """
        pool = list(pool if pool is not None else group.member_image_keys)
        folder = resolve_group_folder(group, self.index, pool, self.scan_folder)
        rejected = {}
        for key in pool:
            failed = self.reasons(key, group, folder)
            if failed:
                rejected[key] = failed

        chain = (
            FallbackChain(f"gates:{group.group_id}")
            .add('all-gates', lambda: [k for k in pool if k not in rejected])
            .add('folder-only', lambda: [k for k in pool if not folder or self.index.folder_of(k) == folder])
            .add('full-pool', lambda: list(pool))
        )
        stage, candidates = chain.run(default=[])
        if stage != 'all-gates' and pool:
            logger.info(
                f"Group {group.group_id}: gates rejected all {len(pool)} candidates; "
                f"relaxed to {stage} ({len(candidates)} left)"
            )
        elif rejected:
            logger.debug(f"Group {group.group_id}: gated {len(pool)} -> {len(candidates)}")

        if stage != 'all-gates':
            rejected = {k: v for k, v in rejected.items() if k not in candidates}
        return GateOutcome(candidates=candidates, stage=stage or 'empty', folder=folder, rejected=rejected)
