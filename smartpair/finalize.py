"""
Final image ordering, caps and orphan extraction.
"""
import logging
from typing import Dict, List, Optional, Tuple

from .config import OutputSettings, ResolverSettings
from .index import InsightIndex
from .models import AssignmentCandidate, Orphan, ProductGroup
from .resolver import Assignment
from .scoring import ScoringEngine

logger = logging.getLogger(__name__)

Scores = Dict[str, Dict[str, AssignmentCandidate]]


def empty_group_warning(group: ProductGroup) -> str:
    return f"No text-bearing hero found for {group.label}; leaving group images empty."


class OrderingFinalizer:
    """Freezes group membership into ordered, capped image lists."""

    def __init__(self, index: InsightIndex, scoring: ScoringEngine,
                 output: Optional[OutputSettings] = None, resolver: Optional[ResolverSettings] = None):
        self.index = index
        self.scoring = scoring
        self.output = output or OutputSettings()
        self.resolver = resolver or ResolverSettings()

    def sort_key(self, key: str, hero: Optional[str], group_scores: Dict[str, AssignmentCandidate]):
        candidate = group_scores.get(key)
        sim = candidate.similarity if candidate else float('-inf')
        return (0 if key == hero else 1, -sim, self.scoring.name_bias(key), self.index.order_of(key))

    def order_members(self, group: ProductGroup, members: List[str],
                      group_scores: Dict[str, AssignmentCandidate]) -> List[str]:
        """[hero, back, rest by similarity, name bias and scan order], deduplicated and capped."""
        cap = self.output.max_images
        ranked = sorted(dict.fromkeys(members), key=lambda k: self.sort_key(k, group.hero_image_key, group_scores))
        ranked = ranked[:cap]
        ordered = []
        for key in [group.hero_image_key, group.back_image_key] + ranked:
            if key and key not in ordered:
                ordered.append(key)
        return ordered[:cap]

    def apply_small_pool(self, group: ProductGroup, images: List[str], eligible: List[str],
                         claimed: Dict[str, str], duplicates: Dict[str, int]) -> List[str]:
        """
        Cap a group whose eligible pool is small.

        The list is trimmed to the small-pool cap and topped up from the pool
        until it holds min(cap, eligible) images; an image claimed by another
        group is only taken within the duplicate budget.
        """
        limit = self.output.small_pool
        if len(eligible) > limit:
            return images
        images = images[:limit]
        target = min(limit, len(eligible))
        for key in eligible:
            if len(images) >= target:
                break
            if key in images:
                continue
            owner = claimed.get(key)
            if owner and owner != group.group_id:
                if duplicates.get(group.group_id, 0) >= self.resolver.duplicate_budget:
                    continue
                duplicates[group.group_id] = duplicates.get(group.group_id, 0) + 1
            images.append(key)
            claimed.setdefault(key, group.group_id)
        return images

    def _promote_hero(self, group: ProductGroup, members: List[str],
                      group_scores: Dict[str, AssignmentCandidate]) -> None:
        """Give a group that lost (or never had) its hero the best remaining member."""
        if group.hero_image_key in members:
            return
        group.hero_image_key = None
        if not members:
            return
        best = sorted(members, key=lambda k: self.sort_key(k, None, group_scores))[0]
        group.hero_image_key = best
        logger.info(f"Group {group.group_id}: promoted {best} to hero")

    def _settle(self, group: ProductGroup, images: List[str], warnings: List[str]) -> None:
        group.member_image_keys = images
        if not images:
            group.hero_image_key = None
            group.back_image_key = None
            message = empty_group_warning(group)
            logger.warning(message)
            warnings.append(message)
            return
        if group.hero_image_key not in images:
            group.hero_image_key = images[0]
        if group.back_image_key not in images or group.back_image_key == group.hero_image_key:
            group.back_image_key = None
        self._enrich(group)

    def _enrich(self, group: ProductGroup) -> None:
        if group.hero_image_key:
            hero = self.index.insight(group.hero_image_key)
            if hero.role == 'unknown':
                hero.role = 'front'
        if group.back_image_key:
            back = self.index.insight(group.back_image_key)
            if back.role == 'unknown':
                back.role = 'back'

    def finalize(self, groups: List[ProductGroup], assignment: Assignment, pools: Dict[str, List[str]],
                 scores: Scores) -> Tuple[List[ProductGroup], List[str]]:
        """
        Turn resolved membership into final ordered image lists.

        Args:
            groups: Groups in registration order
            assignment: Resolver output
            pools: Gated (eligible) candidates per group id
            scores: Candidate scores per group id

        Returns:
            Tuple of (groups, warnings)
        """
        warnings: List[str] = []
        claimed = dict(assignment.owner)
        duplicates = dict(assignment.duplicates_used)
        for group in groups:
            gid = group.group_id
            members = list(assignment.members.get(gid, []))
            group_scores = scores.get(gid, {})
            self._promote_hero(group, members, group_scores)

            back = group.back_image_key
            if back and back not in members:
                if claimed.get(back, gid) == gid:
                    members.append(back)
                    claimed[back] = gid
                else:
                    logger.debug(f"Group {gid}: back {back} belongs to {claimed[back]}; dropping it")
                    group.back_image_key = None

            images = self.order_members(group, members, group_scores)
            images = self.apply_small_pool(group, images, pools.get(gid, []), claimed, duplicates)
            self._settle(group, images, warnings)
        return groups, warnings

    def finalize_degraded(self, groups: List[ProductGroup], pools: Dict[str, List[str]],
                          scores: Scores) -> Tuple[List[ProductGroup], List[str]]:
        """
        Finalize without embeddings.

        Each group takes [hero, back, rest of its gated pool]. Claims are
        exclusive: heroes lock first, then earlier groups win.
        """
        warnings: List[str] = []
        claimed: Dict[str, str] = {}
        for group in groups:
            hero = group.hero_image_key
            if not hero:
                continue
            if hero in claimed:
                message = (
                    f"Hero {hero} of {group.group_id} is already the hero of {claimed[hero]}; "
                    f"{group.group_id} will use another image."
                )
                logger.warning(message)
                warnings.append(message)
                group.hero_image_key = None
                continue
            claimed[hero] = group.group_id

        duplicates: Dict[str, int] = {}
        for group in groups:
            gid = group.group_id
            pool = pools.get(gid, [])
            available = [k for k in pool if claimed.get(k, gid) == gid]
            if group.back_image_key and claimed.get(group.back_image_key, gid) != gid:
                group.back_image_key = None
            if not group.hero_image_key and available:
                group.hero_image_key = sorted(
                    available, key=lambda k: (self.scoring.name_bias(k), self.index.order_of(k))
                )[0]
            ordered = []
            for key in [group.hero_image_key, group.back_image_key] + available:
                if key and key not in ordered:
                    ordered.append(key)
            images = ordered[:self.output.max_images]
            for key in images:
                claimed[key] = gid
            images = self.apply_small_pool(group, images, pool, claimed, duplicates)
            self._settle(group, images, warnings)
        return groups, warnings

    def orphans(self, groups: List[ProductGroup], raw_pools: Dict[str, List[str]],
                pools: Dict[str, List[str]], assignment: Optional[Assignment] = None) -> List[Orphan]:
        """
        Images that no finalized group holds, with the reason they were left out.

        Reasons: 'capped' (assigned but cut by a cap), 'lost-conflict' (eligible
        but taken by another group), 'gated-out' (rejected by every group's
        gates) and 'unassigned' (never decisively placed).
        """
        final = {k for g in groups for k in g.member_image_keys}
        pooled = {k for keys in pools.values() for k in keys}
        offered = {k for keys in raw_pools.values() for k in keys}
        resolved = set()
        if assignment is not None:
            resolved = {k for keys in assignment.members.values() for k in keys}

        orphans = []
        for image in self.index.images():
            key = image.key
            if key in final:
                continue
            if key in resolved:
                reason = 'capped'
            elif assignment is None and key in pooled:
                reason = 'lost-conflict'
            elif key in offered and key not in pooled:
                reason = 'gated-out'
            else:
                reason = 'unassigned'
            orphans.append(Orphan(image_key=key, folder=image.folder, name=image.name, reason=reason))
        if orphans:
            logger.info(f"{len(orphans)} images left unassigned")
        return orphans
