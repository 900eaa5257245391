"""
Candidate product groups.

Groups come from the classifier's per-image identities when it produced any,
otherwise from its bundled group proposals, otherwise from visual clustering
of the image embeddings, and as a last resort from the folder layout.
"""
import re
import hashlib
import logging
from typing import Dict, List, Optional, Tuple

import numpy as np

from .config import PairingConfig
from .fallback import FallbackChain
from .index import InsightIndex
from .models import ProductGroup
from .similarity import similarity_matrix, is_degenerate
from .tokens import keywords, jaccard, normalize_identity, is_unknown_identity

logger = logging.getLogger(__name__)

FOLDER_FALLBACK_WARNING = "Vision grouping returned no results; falling back to folder grouping."


def _digest(algorithm: str, text: str) -> str:
    return hashlib.new(algorithm, text.encode('utf-8')).hexdigest()[:10]


def cluster_name(file_name: str) -> str:
    """Group name from a file name: extension and trailing `_<digits>` removed."""
    stem = re.sub(r'\.[^.]+$', '', file_name or '')
    return re.sub(r'_\d+$', '', stem)


def _match_pattern(patterns: List[str], text: str) -> str:
    """First capture (or whole match) of the first pattern found in text."""
    for pattern in patterns:
        try:
            match = re.search(pattern, text, re.IGNORECASE)
        except re.error as e:
            logger.warning(f"Invalid classification pattern {pattern!r}: {str(e)}")
            continue
        if match:
            value = match.group(1) if match.groups() else match.group(0)
            if value and value.strip():
                return value.strip()
    return ''


class CandidateGroupBuilder:
    """Builds the initial product groups for a scan."""

    def __init__(self, index: InsightIndex, config: Optional[PairingConfig] = None):
        self.index = index
        self.config = config or PairingConfig()
        self.warnings: List[str] = []

    def identity_of(self, key: str) -> Tuple[str, str]:
        """
        Brand and product for one image.

        Classifier values are used when known; otherwise the caller's OCR
        patterns are tried, with the product falling back to the brand.

        Returns:
            (brand, product), both empty when the image cannot be identified
        """
        insight = self.index.insight(key)
        brand = (insight.brand or '').strip()
        product = (insight.product or '').strip()
        if not is_unknown_identity(brand, product):
            return brand, product

        patterns = self.config.classification
        text = insight.ocr_text or ''
        if not text or not patterns.brand_patterns:
            return '', ''
        brand = _match_pattern(patterns.brand_patterns, text)
        if not brand:
            return '', ''
        product = _match_pattern(patterns.product_patterns, text) or brand
        return brand, product

    def from_identities(self) -> List[ProductGroup]:
        """One group per normalized (brand, product) pair, in first-seen order."""
        buckets: Dict[Tuple[str, str], List[str]] = {}
        display: Dict[Tuple[str, str], Tuple[str, str]] = {}
        for key in self.index.keys():
            if not self.index.has_insight(key):
                continue
            brand, product = self.identity_of(key)
            if not brand:
                continue
            norm = (normalize_identity(brand), normalize_identity(product))
            buckets.setdefault(norm, []).append(key)
            display.setdefault(norm, (brand, product))

        groups = []
        for norm, keys in buckets.items():
            brand, product = display[norm]
            insights = [self.index.insight(k) for k in keys]
            category = next((i.category for i in insights if i.category), '')
            confidence = sum(i.role_confidence for i in insights) / len(insights)
            groups.append(ProductGroup(
                group_id=f"vision_{_digest('sha1', '|'.join(norm))}",
                brand=brand,
                product_name=product,
                category=category,
                seed_image_key=keys[0],
                member_image_keys=list(keys),
                confidence=round(confidence, 3),
                source='classification',
            ))
        logger.info(f"Identity grouping produced {len(groups)} groups")
        return groups

    def from_proposals(self, proposals: Optional[List[ProductGroup]]) -> List[ProductGroup]:
        """
        Use classifier-bundled groups as they are.

        Member references are resolved onto canonical keys; unknown references
        are dropped and groups left without members are skipped.
        """
        groups = []
        for proposal in proposals or []:
            members = []
            for ref in proposal.member_image_keys:
                key = self.index.resolve(ref)
                if key is None:
                    logger.debug(f"Proposal {proposal.group_id}: unknown image {ref}")
                    continue
                if key not in members:
                    members.append(key)
            if not members:
                continue
            seed = self.index.resolve(proposal.seed_image_key) if proposal.seed_image_key else None
            groups.append(ProductGroup(
                group_id=proposal.group_id,
                brand=proposal.brand,
                product_name=proposal.product_name,
                variant=proposal.variant,
                folder_hint=proposal.folder_hint,
                category=proposal.category,
                claims=list(proposal.claims),
                seed_image_key=seed,
                member_image_keys=members,
                confidence=proposal.confidence,
                source='proposal',
            ))
        return groups

    def pair_similarity(self, keys: List[str]) -> np.ndarray:
        """
        Visual similarity matrix adjusted by OCR keyword overlap and colour.

        When both OCR texts are long enough and their keyword Jaccard is above
        the blend threshold, the score becomes a visual/text blend; differing
        dominant colours (neither 'multi') apply a multiplicative penalty.
        """
        settings = self.config.clustering
        vectors = [self.index.vector(k) for k in keys]
        matrix = similarity_matrix(vectors)
        n = len(keys)
        texts = [self.index.insight(k).ocr_text or '' for k in keys]
        words = [keywords(t) for t in texts]
        colors = [(self.index.insight(k).dominant_color or '').lower() for k in keys]

        for i in range(n):
            if not vectors[i]:
                continue
            for j in range(i + 1, n):
                if not vectors[j]:
                    continue
                sim = matrix[i, j]
                if len(texts[i]) > settings.min_text_length and len(texts[j]) > settings.min_text_length:
                    text_sim = jaccard(words[i], words[j])
                    if text_sim > settings.text_jaccard_min:
                        sim = sim * settings.visual_weight + text_sim * (1 - settings.visual_weight)
                if colors[i] and colors[j] and 'multi' not in (colors[i], colors[j]) and colors[i] != colors[j]:
                    sim *= settings.color_penalty
                matrix[i, j] = matrix[j, i] = sim
        return matrix

    def cluster_by_embeddings(self, keys: Optional[List[str]] = None) -> List[ProductGroup]:
        """
        Complete-linkage clustering over image embeddings.

        Images are visited in scan order; each unassigned image opens a
        cluster and a later image joins only if its similarity to every
        current member meets the threshold.

        Returns:
            Cluster groups, or an empty list when no image has an embedding or
            the similarity matrix is degenerate
        """
        settings = self.config.clustering
        keys = list(keys if keys is not None else self.index.keys())
        valid = sum(1 for k in keys if self.index.vector(k))
        if valid == 0:
            logger.warning(f"No embeddings available for {len(keys)} images; skipping clustering")
            return []

        matrix = self.pair_similarity(keys)
        if is_degenerate(matrix, settings.degenerate_cutoff):
            message = (
                f"Embedding similarity is degenerate (max off-diagonal > {settings.degenerate_cutoff}); "
                "skipping visual clustering."
            )
            logger.warning(message)
            self.warnings.append(message)
            return []

        assigned = set()
        clusters: List[List[int]] = []
        for i in range(len(keys)):
            if i in assigned:
                continue
            cluster = [i]
            assigned.add(i)
            for j in range(i + 1, len(keys)):
                if j in assigned:
                    continue
                if min(matrix[c, j] for c in cluster) >= settings.threshold:
                    cluster.append(j)
                    assigned.add(j)
            clusters.append(cluster)

        groups = []
        for cluster in clusters:
            members = [keys[i] for i in cluster]
            first = self.index.image(members[0])
            if len(cluster) > 1:
                confidence = min(matrix[a, b] for a in cluster for b in cluster if a != b)
            else:
                confidence = 0.0
            groups.append(ProductGroup(
                group_id=f"clip_{_digest('sha256', '|'.join(members))}",
                product_name=cluster_name(first.name),
                folder_hint=first.folder,
                seed_image_key=members[0],
                member_image_keys=members,
                confidence=round(float(confidence), 3),
                source='clustering',
            ))
        logger.info(f"Clustered {len(keys)} images into {len(groups)} groups ({valid} with embeddings)")
        return groups

    def folder_groups(self, keys: Optional[List[str]] = None) -> List[ProductGroup]:
        """One low-confidence group per folder, images sorted by file name."""
        max_images = self.config.output.max_images
        keys = list(keys if keys is not None else self.index.keys())
        by_folder: Dict[str, List[str]] = {}
        for key in keys:
            by_folder.setdefault(self.index.folder_of(key), []).append(key)

        groups = []
        for folder, bucket in by_folder.items():
            bucket = sorted(bucket, key=lambda k: (self.index.image(k).name.lower(), self.index.order_of(k)))
            members = bucket[:max_images]
            label = folder or '(root)'
            name = [part for part in label.split('/') if part][-1]
            groups.append(ProductGroup(
                group_id=f"fallback_{_digest('sha1', f'{label}|{members[0]}')}",
                product_name=name,
                folder_hint=folder,
                seed_image_key=members[0],
                member_image_keys=members,
                confidence=0.1,
                source='folder',
            ))
        return groups

    def build(self, proposals: Optional[List[ProductGroup]] = None) -> Tuple[List[ProductGroup], List[str]]:
        """
        Run the grouping fallback chain.

        Args:
            proposals: Classifier-bundled group proposals, if any

        Returns:
            Tuple of (groups, warnings)
        """
        chain = (
            FallbackChain('group-builder')
            .add('identity', self.from_identities)
            .add('proposals', lambda: self.from_proposals(proposals))
            .add('clustering', self.cluster_by_embeddings)
            .add('folder', self.folder_groups)
        )
        label, groups = chain.run(default=[])
        if label == 'folder':
            logger.warning(FOLDER_FALLBACK_WARNING)
            self.warnings.append(FOLDER_FALLBACK_WARNING)
        logger.info(f"Built {len(groups)} candidate groups via {label or 'nothing'}")
        return groups, list(self.warnings)
