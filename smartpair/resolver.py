"""
Global assignment of images to product groups.

Resolution runs in four deterministic steps:

1. Hero lock: each group's hero is assigned to it unconditionally (the first
   registered group wins when two groups picked the same hero).
2. Decisive assignment: an image goes to its best group when it beats the
   runner-up by the configured margin or there is no runner-up.
3. Backfill: groups below the minimum member count pull their best remaining
   candidates, taking at most `duplicate_budget` images already held elsewhere.
4. Conflict resolution: an image held by several groups stays with its hero
   owner, else the better scoring group, else the smaller group.
"""
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from .config import ResolverSettings, ScoringPolicy
from .index import InsightIndex, GroupRegistry
from .models import AssignmentCandidate

logger = logging.getLogger(__name__)

Scores = Dict[str, Dict[str, AssignmentCandidate]]


@dataclass
class Assignment:
    members: Dict[str, List[str]] = field(default_factory=dict)
    owner: Dict[str, str] = field(default_factory=dict)
    hero_owner: Dict[str, str] = field(default_factory=dict)
    margins: Dict[str, Dict[str, float]] = field(default_factory=dict)
    duplicates_used: Dict[str, int] = field(default_factory=dict)
    warnings: List[str] = field(default_factory=list)

    def holders(self, key: str) -> List[str]:
        return [gid for gid, keys in self.members.items() if key in keys]


class AssignmentResolver:
    """Resolves competing group claims on images."""

    def __init__(self, index: InsightIndex, settings: Optional[ResolverSettings] = None,
                 policy: Optional[ScoringPolicy] = None):
        self.index = index
        self.settings = settings or ResolverSettings()
        self.policy = policy or ScoringPolicy()

    def value(self, candidate: AssignmentCandidate) -> float:
        if self.settings.rank_by == 'total':
            return candidate.total_score
        return candidate.similarity

    def rank(self, registry: GroupRegistry, scores: Scores) -> Dict[str, List[Tuple[str, float]]]:
        """
        Qualifying (group, value) pairs per image, best first.

        Only candidates at or above the similarity floor qualify; equal values
        keep group registration order.
        """
        keys = sorted({k for per_group in scores.values() for k in per_group}, key=self.index.order_of)
        ranks = {}
        for key in keys:
            entries = []
            for gid in registry.ids():
                candidate = scores.get(gid, {}).get(key)
                if candidate is None or candidate.similarity < self.policy.min_similarity:
                    continue
                entries.append((gid, self.value(candidate)))
            entries.sort(key=lambda entry: -entry[1])
            ranks[key] = entries
        return ranks

    @staticmethod
    def margins_from(ranks: Dict[str, List[Tuple[str, float]]]) -> Dict[str, Dict[str, float]]:
        """Each group's lead over the best other group, per image."""
        margins: Dict[str, Dict[str, float]] = {}
        for key, entries in ranks.items():
            for gid, value in entries:
                others = [v for g, v in entries if g != gid]
                best_other = max(others) if others else 0.0
                margins.setdefault(gid, {})[key] = value - best_other
        return margins

    def resolve(self, registry: GroupRegistry, scores: Scores) -> Assignment:
        """
        Run all four resolution steps.

        Args:
            registry: Groups with hero/back already selected (heroes may be
                cleared here when another group locked the same image)
            scores: Candidate scores per group id and image key

        Returns:
            Assignment with final members per group
        """
        settings = self.settings
        result = Assignment(members={gid: [] for gid in registry.ids()})
        ranks = self.rank(registry, scores)
        result.margins = self.margins_from(ranks)

        def add(gid: str, key: str) -> bool:
            if key in result.members[gid]:
                return False
            result.members[gid].append(key)
            result.owner.setdefault(key, gid)
            return True

        for group in registry:
            hero = group.hero_image_key
            if not hero:
                continue
            locked_by = result.hero_owner.get(hero)
            if locked_by and locked_by != group.group_id:
                message = (
                    f"Hero {hero} of {group.group_id} is already the hero of {locked_by}; "
                    f"{group.group_id} will use another image."
                )
                logger.warning(message)
                result.warnings.append(message)
                group.hero_image_key = None
                continue
            result.hero_owner[hero] = group.group_id
            add(group.group_id, hero)

        for key, entries in ranks.items():
            if not entries or key in result.owner:
                continue
            best = entries[0]
            runner_up = entries[1] if len(entries) > 1 else None
            if runner_up is None or best[1] - runner_up[1] >= settings.margin:
                add(best[0], key)

        for gid in registry.ids():
            remaining = settings.min_members - len(result.members[gid])
            if remaining <= 0:
                continue
            pool = [
                (self.value(c), self.index.order_of(key), key)
                for key, c in scores.get(gid, {}).items()
                if c.similarity >= self.policy.min_similarity
            ]
            pool.sort(key=lambda item: (-item[0], item[1]))
            for _, _, key in pool:
                if remaining <= 0:
                    break
                if key in result.members[gid]:
                    continue
                existing = result.owner.get(key)
                if existing is None:
                    add(gid, key)
                    remaining -= 1
                    continue
                if result.duplicates_used.get(gid, 0) >= settings.duplicate_budget:
                    continue
                result.members[gid].append(key)
                result.duplicates_used[gid] = result.duplicates_used.get(gid, 0) + 1
                remaining -= 1

        for key in sorted(result.owner, key=self.index.order_of):
            holders = result.holders(key)
            if len(holders) <= 1:
                if holders:
                    result.owner[key] = holders[0]
                continue
            keeper = result.hero_owner.get(key)
            if keeper not in holders:
                holders.sort(key=lambda gid: (
                    -self._value_for(scores, gid, key),
                    len(result.members[gid]),
                    registry.position(gid),
                ))
                keeper = holders[0]
            for gid in holders:
                if gid != keeper:
                    result.members[gid].remove(key)
            result.owner[key] = keeper
            logger.debug(f"Conflict on {key}: kept by {keeper}, removed from {len(holders) - 1} groups")

        assigned = sum(len(keys) for keys in result.members.values())
        logger.info(f"Resolved {assigned} assignments across {len(registry)} groups")
        return result

    def _value_for(self, scores: Scores, gid: str, key: str) -> float:
        candidate = scores.get(gid, {}).get(key)
        return self.value(candidate) if candidate else 0.0
