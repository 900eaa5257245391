"""
Data model for product photo pairing
"""
from __future__ import annotations

from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Optional

ROLES = ('front', 'back', 'side', 'other', 'unknown')


@dataclass
class Image:
    key: str
    url: str
    folder: str = ''
    name: str = ''
    width: Optional[int] = None
    height: Optional[int] = None
    size_bytes: Optional[int] = None
    order: int = 0

    @property
    def path(self) -> str:
        return f"{self.folder}/{self.name}" if self.folder else self.name


@dataclass
class ImageInsight:
    image_key: str
    role: str = 'unknown'
    role_confidence: float = 0.0
    has_visible_text: Optional[bool] = None
    dominant_color: Optional[str] = None
    ocr_text: str = ''
    embedding: Optional[List[float]] = None
    brand: str = ''
    product: str = ''
    category: str = ''
    description: str = ''

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        # Vectors are large and only meaningful inside a run
        data.pop('embedding', None)
        return data


@dataclass
class ProductGroup:
    group_id: str
    brand: str = ''
    product_name: str = ''
    variant: str = ''
    folder_hint: str = ''
    category: str = ''
    claims: List[str] = field(default_factory=list)
    seed_image_key: Optional[str] = None
    hero_image_key: Optional[str] = None
    back_image_key: Optional[str] = None
    member_image_keys: List[str] = field(default_factory=list)
    confidence: float = 0.0
    source: str = 'classification'

    @property
    def label(self) -> str:
        name = ' '.join(part for part in (self.brand, self.product_name) if part)
        return name or self.group_id

    def to_dict(self) -> Dict[str, Any]:
        return {
            'groupId': self.group_id,
            'brand': self.brand,
            'product': self.product_name,
            'variant': self.variant,
            'folder': self.folder_hint,
            'category': self.category,
            'heroImageKey': self.hero_image_key,
            'backImageKey': self.back_image_key,
            'images': list(self.member_image_keys),
            'confidence': self.confidence,
            'source': self.source,
        }


@dataclass
class ScoreComponent:
    label: str
    value: float
    detail: str = ''


@dataclass
class AssignmentCandidate:
    image_key: str
    group_id: str
    base_score: float = 0.0
    embedding_score: float = 0.0
    similarity: float = 0.0
    hero_similarity: float = 0.0
    back_similarity: float = 0.0
    components: List[ScoreComponent] = field(default_factory=list)

    @property
    def total_score(self) -> float:
        return self.base_score + self.embedding_score

    def to_dict(self) -> Dict[str, Any]:
        return {
            'imageKey': self.image_key,
            'groupId': self.group_id,
            'base': self.base_score,
            'embedding': self.embedding_score,
            'total': self.total_score,
            'similarity': self.similarity,
            'heroSimilarity': self.hero_similarity,
            'backSimilarity': self.back_similarity,
            'components': [asdict(c) for c in self.components],
        }


@dataclass
class Orphan:
    image_key: str
    folder: str
    name: str
    reason: str = 'unassigned'

    def to_dict(self) -> Dict[str, Any]:
        return {'imageKey': self.image_key, 'folder': self.folder, 'name': self.name, 'reason': self.reason}


@dataclass
class PairingResult:
    groups: List[ProductGroup] = field(default_factory=list)
    orphans: List[Orphan] = field(default_factory=list)
    insights: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    warnings: List[str] = field(default_factory=list)
    debug: Optional[Dict[str, List[Dict[str, Any]]]] = None
    signature: Optional[str] = None
    cached: bool = False

    def to_dict(self) -> Dict[str, Any]:
        data = {
            'groups': [g.to_dict() for g in self.groups],
            'orphans': [o.to_dict() for o in self.orphans],
            'imageInsights': self.insights,
            'warnings': list(self.warnings),
            'signature': self.signature,
            'cached': self.cached,
        }
        if self.debug is not None:
            data['debug'] = self.debug
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PairingResult":
        groups = [
            ProductGroup(
                group_id=g['groupId'],
                brand=g.get('brand') or '',
                product_name=g.get('product') or '',
                variant=g.get('variant') or '',
                folder_hint=g.get('folder') or '',
                category=g.get('category') or '',
                hero_image_key=g.get('heroImageKey'),
                back_image_key=g.get('backImageKey'),
                member_image_keys=list(g.get('images') or []),
                confidence=float(g.get('confidence') or 0.0),
                source=g.get('source') or 'classification',
            )
            for g in data.get('groups', [])
        ]
        orphans = [
            Orphan(o['imageKey'], o.get('folder', ''), o.get('name', ''), o.get('reason', 'unassigned'))
            for o in data.get('orphans', [])
        ]
        return cls(
            groups=groups,
            orphans=orphans,
            insights=dict(data.get('imageInsights') or {}),
            warnings=list(data.get('warnings') or []),
            debug=data.get('debug'),
            signature=data.get('signature'),
            cached=bool(data.get('cached', False)),
        )
