"""
Per-group hero (front) and back image selection
"""
import logging
from typing import List, Optional, Tuple

from .config import HeroBackSettings
from .fallback import FallbackChain
from .gates import brand_tokens
from .index import InsightIndex
from .models import ProductGroup
from .similarity import cosine

logger = logging.getLogger(__name__)


def brand_score(text: str, tokens: List[str]) -> int:
    """Number of identity phrases that appear in the text."""
    lowered = (text or '').lower()
    return sum(1 for token in tokens if token and token in lowered)


def looks_like_back(ocr_text: str, file_name: str, settings: Optional[HeroBackSettings] = None) -> bool:
    """
    Check whether an image reads like a back panel.

    Args:
        ocr_text: Text found on the image
        file_name: Image file name
        settings: Keyword vocabulary (defaults when None)

    Returns:
        True if the OCR mentions a back-panel keyword or the file name carries a back hint
    """
    settings = settings or HeroBackSettings()
    text = (ocr_text or '').lower()
    name = (file_name or '').lower()
    if any(keyword and keyword in text for keyword in settings.back_keywords):
        return True
    return any(hint and hint in name for hint in settings.filename_back_hints)


class HeroBackSelector:
    """Picks canonical front and back images from a group's gated candidates."""

    def __init__(self, index: InsightIndex, settings: Optional[HeroBackSettings] = None):
        self.index = index
        self.settings = settings or HeroBackSettings()

    def _brand(self, key: str, tokens: List[str]) -> int:
        return brand_score(self.index.insight(key).ocr_text, tokens)

    def pick_hero(self, group: ProductGroup, candidates: List[str]) -> Tuple[Optional[str], Optional[str]]:
        """
        Choose the hero image.

        Returns:
            Tuple of (rule that decided, image key), both None without candidates
        """
        tokens = brand_tokens(group)

        def front_role():
            fronts = [k for k in candidates if self.index.insight(k).role == 'front']
            if not fronts:
                return None
            # max() keeps the first of equal scores, so scan order breaks ties
            return max(fronts, key=lambda k: self._brand(k, tokens))

        def brand_ocr():
            ranked = [
                (self._brand(k, tokens), len(self.index.insight(k).ocr_text or ''), k)
                for k in candidates
            ]
            ranked = [r for r in ranked if r[0] or r[1]]
            if not ranked:
                return None
            return max(ranked, key=lambda r: (r[0], r[1]))[2]

        chain = (
            FallbackChain(f"hero:{group.group_id}")
            .add('front-role', front_role)
            .add('brand-ocr', brand_ocr)
            .add('first', lambda: candidates[0] if candidates else None)
        )
        return chain.run()

    def pick_back(self, group: ProductGroup, candidates: List[str],
                  hero: Optional[str]) -> Tuple[Optional[str], Optional[str]]:
        """
        Choose the back image (never the hero).

        Returns:
            Tuple of (rule that decided, image key) or (None, None)
        """
        tokens = brand_tokens(group)
        others = [k for k in candidates if k != hero]

        def back_role():
            backs = [k for k in others if self.index.insight(k).role == 'back']
            return max(backs, key=lambda k: self._brand(k, tokens)) if backs else None

        def keyword():
            hinted = [
                k for k in others
                if looks_like_back(self.index.insight(k).ocr_text, self.index.image(k).name, self.settings)
            ]
            return max(hinted, key=lambda k: self._brand(k, tokens)) if hinted else None

        def visual():
            hero_vec = self.index.vector(hero) if hero else None
            if not hero_vec:
                return None
            best_key, best_sim = None, None
            for key in others:
                vec = self.index.vector(key)
                if not vec:
                    continue
                sim = cosine(vec, hero_vec)
                if best_sim is None or sim > best_sim:
                    best_key, best_sim = key, sim
            if best_sim is not None and best_sim >= self.settings.back_min_similarity:
                return best_key
            return None

        chain = (
            FallbackChain(f"back:{group.group_id}")
            .add('back-role', back_role)
            .add('keyword', keyword)
            .add('visual', visual)
        )
        return chain.run()

    def select(self, group: ProductGroup, candidates: List[str]) -> Tuple[Optional[str], Optional[str]]:
        """
        Set the group's hero and back from its gated candidates.

        Args:
            group: Group to update in place
            candidates: Gated candidate keys in stable order

        Returns:
            Tuple of (hero key, back key)
        """
        hero_rule, hero = self.pick_hero(group, candidates)
        back_rule, back = self.pick_back(group, candidates, hero)
        group.hero_image_key = hero
        group.back_image_key = back if back != hero else None
        logger.debug(
            f"Group {group.group_id}: hero={hero} ({hero_rule}), back={group.back_image_key} ({back_rule})"
        )
        return group.hero_image_key, group.back_image_key
