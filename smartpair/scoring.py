"""
Affinity scoring of an image for a product group.

The base score is a sum of independently labelled terms (identity tokens,
file name vocabulary, classifier signals, image quality). The embedding score
rewards visual similarity to the group's current hero and back images. Every
term is kept as a ScoreComponent so a decision can be traced afterwards.
"""
import logging
from typing import Dict, Iterable, List, Optional

from . import img_utils
from .config import ScoringPolicy, GateSettings
from .index import InsightIndex
from .models import AssignmentCandidate, ProductGroup, ScoreComponent
from .similarity import cosine
from .tokens import tokenize

logger = logging.getLogger(__name__)


def _unique(tokens: Iterable[str]) -> List[str]:
    seen = []
    for token in tokens:
        if token and token not in seen:
            seen.append(token)
    return seen


class ScoringEngine:
    """Scores (image, group) pairs under an injectable ScoringPolicy."""

    def __init__(self, index: InsightIndex, policy: Optional[ScoringPolicy] = None,
                 gate_settings: Optional[GateSettings] = None):
        self.index = index
        self.policy = policy or ScoringPolicy()
        self.gate_settings = gate_settings or GateSettings()

    def group_tokens(self, group: ProductGroup) -> List[str]:
        """Identity tokens of a group: brand, product, variant and leading claims."""
        claims = ' '.join(group.claims[:self.policy.max_claim_tokens])
        return _unique(tokenize(f"{group.brand} {group.product_name} {group.variant} {claims}"))

    def name_bias(self, key: str) -> int:
        """
        Ordering bias from file name vocabulary and classified role.

        Lower sorts earlier: front-ish names and front roles pull forward,
        back/noise names and back roles push back.
        """
        policy = self.policy
        tokens = set(tokenize(self.index.image(key).name))
        bias = 0
        if tokens & set(policy.positive_name_tokens):
            bias -= 1
        if tokens & set(policy.negative_name_tokens):
            bias += 1
        role = self.index.insight(key).role
        if role == 'front':
            bias -= 2
        elif role == 'back':
            bias += 2
        return bias

    def base_components(self, key: str, group: ProductGroup) -> List[ScoreComponent]:
        policy = self.policy
        image = self.index.image(key)
        insight = self.index.insight(key)
        components: List[ScoreComponent] = []

        def add(label: str, value: float, detail: str = ''):
            if value:
                components.append(ScoreComponent(label, float(value), detail))

        name_tokens = _unique(tokenize(image.name))
        all_tokens = set(tokenize(image.path)) | set(name_tokens)
        for token in self.group_tokens(group):
            if token in all_tokens:
                add('token-match', policy.token_match, token)

        positive = set(policy.positive_name_tokens)
        negative = set(policy.negative_name_tokens)
        for token in name_tokens:
            if token in positive:
                add('name-positive', policy.name_positive, token)
            if token in negative:
                add('name-negative', policy.name_negative, token)

        if insight.has_visible_text is True:
            add('visible-text', policy.visible_text)
        elif insight.has_visible_text is False:
            add('no-visible-text', policy.no_visible_text)

        role = (insight.role or '').lower()
        if role in policy.role_weights:
            add('role', policy.role_weights[role], role)

        color = (insight.dominant_color or '').lower()
        if color in policy.color_weights:
            add('color', policy.color_weights[color], color)

        confidence = float(group.confidence or 0.0)
        boost = min(policy.confidence_max, max(0, round(confidence * policy.confidence_max)))
        add('group-confidence', boost, f"{confidence:.2f}")

        if img_utils.looks_dummy_by_meta(image.size_bytes, image.width, image.height,
                                         min_bytes=self.gate_settings.min_bytes,
                                         min_dimension=self.gate_settings.min_dimension):
            add('metadata-dummy', policy.dummy_penalty)

        mp = img_utils.megapixels(image.width, image.height)
        if mp is not None:
            points = policy.low_resolution
            for minimum, tier_points in policy.resolution_tiers:
                if mp >= minimum:
                    points = tier_points
                    break
            add('resolution', points, f"mp:{mp:.2f}")

            ratio = img_utils.aspect_ratio(image.width, image.height)
            if policy.square_aspect[0] <= ratio <= policy.square_aspect[1]:
                add('aspect', policy.square_points, f"ratio:{ratio:.2f}")
            elif policy.moderate_aspect[0] <= ratio <= policy.moderate_aspect[1]:
                add('aspect', policy.moderate_points, f"ratio:{ratio:.2f}")
            elif ratio <= policy.extreme_aspect[0] or ratio >= policy.extreme_aspect[1]:
                add('aspect', policy.extreme_points, f"ratio:{ratio:.2f}")

        return components

    def score(self, key: str, group: ProductGroup) -> AssignmentCandidate:
        """
        Full score breakdown of one image for one group.

        Args:
            key: Canonical image key
            group: Group with its current hero/back selection

        Returns:
            AssignmentCandidate carrying base, embedding and labelled components
        """
        policy = self.policy
        components = self.base_components(key, group)
        base = sum(c.value for c in components)

        vector = self.index.vector(key)
        hero_vec = self.index.vector(group.hero_image_key) if group.hero_image_key else None
        back_vec = self.index.vector(group.back_image_key) if group.back_image_key else None
        sim_hero = cosine(vector, hero_vec) if vector and hero_vec else 0.0
        sim_back = cosine(vector, back_vec) if vector and back_vec else 0.0
        if back_vec:
            similarity = policy.hero_weight * sim_hero + policy.back_weight * sim_back
        else:
            similarity = sim_hero

        embedding = 0.0
        if policy.embedding_weight > 0 and similarity >= policy.min_similarity:
            embedding = round(similarity * policy.embedding_weight, 2)

        components.append(ScoreComponent('clip-hero', round(sim_hero * 100, 1), f"{sim_hero:.3f}"))
        if back_vec:
            components.append(ScoreComponent('clip-back', round(sim_back * 100, 1), f"{sim_back:.3f}"))
        components.append(
            ScoreComponent('clip', embedding, f"{similarity:.3f} x {policy.embedding_weight:g}")
        )

        return AssignmentCandidate(
            image_key=key,
            group_id=group.group_id,
            base_score=base,
            embedding_score=embedding,
            similarity=similarity,
            hero_similarity=sim_hero,
            back_similarity=sim_back,
            components=components,
        )

    def score_pool(self, group: ProductGroup, keys: List[str]) -> Dict[str, AssignmentCandidate]:
        scores = {key: self.score(key, group) for key in keys}
        logger.debug(f"Scored {len(scores)} candidates for {group.group_id}")
        return scores
