"""
Configuration loading and typed pairing settings.

The YAML file is read with environment variable substitution and then turned
into small settings objects so the weight tables and thresholds can be swapped
without touching any control flow.
"""
from __future__ import annotations

import os
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

import yaml

logger = logging.getLogger(__name__)


def load_config(config_path: str) -> dict:
    """
    Load configuration from YAML file with environment variable substitution.

    Args:
        config_path: Path to configuration file

    Returns:
        Configuration dictionary
    """
    try:
        with open(config_path, 'r') as f:
            config_content = f.read()

        # Replace environment variables
        config_content = os.path.expandvars(config_content)

        config = yaml.safe_load(config_content) or {}
        return config

    except Exception as e:
        logger.error(f"Error loading config from {config_path}: {str(e)}")
        raise


DEFAULT_ROLE_WEIGHTS = {
    'front': 12,
    'packaging': 8,
    'side': 4,
    'detail': -1,
    'accessory': -4,
    'back': -8,
    'other': 0,
}

DEFAULT_COLOR_WEIGHTS = {
    'black': -8,
    'white': -6,
    'gray': -5,
    'brown': -1,
    'red': 3,
    'orange': 3,
    'yellow': 3,
    'green': 3,
    'blue': 3,
    'purple': 2,
    'multi': 2,
}

DEFAULT_POSITIVE_NAME_TOKENS = [
    'front', 'hero', 'main', 'primary', '01', '1', 'cover', 'label', 'face', 'pack', 'box', 'bag',
]

DEFAULT_NEGATIVE_NAME_TOKENS = [
    'back', 'side', 'barcode', 'qrcode', 'qr', 'ingredients', 'ingredient', 'nutrition', 'facts',
    'supplement', 'panel', 'blur', 'blurry', 'low', 'res', 'lowres', 'placeholder', 'dummy', 'bw',
    'black', 'white', 'mono', 'background', 'bg',
]

DEFAULT_BACK_KEYWORDS = [
    'supplement facts', 'nutrition facts', 'ingredients', 'active ingredients', 'directions', 'drug facts',
]

DEFAULT_FILENAME_BACK_HINTS = ['back', 'facts', 'ingredients', 'supplement', 'nutrition', 'drug']

DEFAULT_NOISE_WORDS = ['dummy', 'placeholder', 'barcode', 'qrcode']


@dataclass
class ClusteringSettings:
    threshold: float = 0.87
    degenerate_cutoff: float = 0.98
    text_jaccard_min: float = 0.3
    visual_weight: float = 0.7
    min_text_length: int = 10
    color_penalty: float = 0.90


@dataclass
class GateSettings:
    folder: bool = True
    category: bool = True
    brand: bool = True
    dummy: bool = True
    ocr_brand_min: int = 1
    noise_words: List[str] = field(default_factory=lambda: list(DEFAULT_NOISE_WORDS))
    min_bytes: int = 10 * 1024
    min_dimension: int = 200


@dataclass
class ScoringPolicy:
    """
    Weight tables and tiers behind every base-score term.

    Group confidence is read on a 0..1 scale; `confidence_max` both caps the
    group-confidence boost and scales it, so the boost is
    `round(confidence * confidence_max)`.
    """
    role_weights: Dict[str, float] = field(default_factory=lambda: dict(DEFAULT_ROLE_WEIGHTS))
    color_weights: Dict[str, float] = field(default_factory=lambda: dict(DEFAULT_COLOR_WEIGHTS))
    positive_name_tokens: List[str] = field(default_factory=lambda: list(DEFAULT_POSITIVE_NAME_TOKENS))
    negative_name_tokens: List[str] = field(default_factory=lambda: list(DEFAULT_NEGATIVE_NAME_TOKENS))
    token_match: float = 3.0
    name_positive: float = 12.0
    name_negative: float = -10.0
    visible_text: float = 6.0
    no_visible_text: float = -5.0
    confidence_max: int = 5
    dummy_penalty: float = -8.0
    # (minimum megapixels, points), checked top-down
    resolution_tiers: List[Tuple[float, float]] = field(
        default_factory=lambda: [(3.5, 8), (2.0, 6), (1.0, 4), (0.6, 1)]
    )
    low_resolution: float = -6.0
    square_aspect: Tuple[float, float] = (0.8, 1.25)
    square_points: float = 3.0
    moderate_aspect: Tuple[float, float] = (0.6, 1.45)
    moderate_points: float = 1.0
    extreme_aspect: Tuple[float, float] = (0.45, 1.8)
    extreme_points: float = -4.0
    embedding_weight: float = 20.0
    min_similarity: float = 0.12
    hero_weight: float = 0.7
    back_weight: float = 0.3
    max_claim_tokens: int = 8


@dataclass
class HeroBackSettings:
    back_min_similarity: float = 0.35
    back_keywords: List[str] = field(default_factory=lambda: list(DEFAULT_BACK_KEYWORDS))
    filename_back_hints: List[str] = field(default_factory=lambda: list(DEFAULT_FILENAME_BACK_HINTS))


@dataclass
class ResolverSettings:
    margin: float = 0.06
    min_members: int = 3
    duplicate_budget: int = 1
    rank_by: str = 'similarity'


@dataclass
class OutputSettings:
    max_images: int = 12
    small_pool: int = 2


@dataclass
class NetworkSettings:
    concurrency: int = 5
    timeout: float = 6.0
    verify_urls: bool = True


@dataclass
class EmbeddingSettings:
    provider: str = 'none'
    endpoint: str = ''
    token: str = ''
    model: str = 'ViT-B/32'
    device_preference: List[str] = field(default_factory=lambda: ['cuda', 'mps'])


@dataclass
class ClassificationSettings:
    brand_patterns: List[str] = field(default_factory=list)
    product_patterns: List[str] = field(default_factory=list)


@dataclass
class PairingConfig:
    clustering: ClusteringSettings = field(default_factory=ClusteringSettings)
    gates: GateSettings = field(default_factory=GateSettings)
    scoring: ScoringPolicy = field(default_factory=ScoringPolicy)
    hero_back: HeroBackSettings = field(default_factory=HeroBackSettings)
    resolver: ResolverSettings = field(default_factory=ResolverSettings)
    output: OutputSettings = field(default_factory=OutputSettings)
    network: NetworkSettings = field(default_factory=NetworkSettings)
    embeddings: EmbeddingSettings = field(default_factory=EmbeddingSettings)
    classification: ClassificationSettings = field(default_factory=ClassificationSettings)

    @classmethod
    def from_dict(cls, config: Optional[dict] = None) -> "PairingConfig":
        """
        Build typed settings from a raw configuration dictionary.

        Args:
            config: Dictionary as returned by load_config (may be None)

        Returns:
            PairingConfig with defaults for every missing key
        """
        config = config or {}
        return cls(
            clustering=_section(ClusteringSettings, config.get('clustering')),
            gates=_section(GateSettings, config.get('gates')),
            scoring=_scoring_policy(config.get('scoring')),
            hero_back=_section(HeroBackSettings, config.get('hero_back')),
            resolver=_section(ResolverSettings, config.get('resolver')),
            output=_section(OutputSettings, config.get('output')),
            network=_section(NetworkSettings, config.get('network')),
            embeddings=_section(EmbeddingSettings, config.get('embeddings')),
            classification=_section(ClassificationSettings, config.get('classification')),
        )


def _section(settings_cls, values: Optional[dict]):
    defaults = settings_cls()
    if not values:
        return defaults
    for key, value in values.items():
        if not hasattr(defaults, key):
            logger.debug(f"Ignoring unknown {settings_cls.__name__} key: {key}")
            continue
        if value is None:
            continue
        current = getattr(defaults, key)
        if isinstance(current, bool):
            value = _as_bool(value)
        elif isinstance(current, int) and not isinstance(value, bool):
            value = int(value)
        elif isinstance(current, float):
            value = float(value)
        elif isinstance(current, tuple):
            value = tuple(float(v) for v in value)
        setattr(defaults, key, value)
    return defaults


def _scoring_policy(values: Optional[dict]) -> ScoringPolicy:
    values = dict(values or {})
    tiers = values.pop('resolution_tiers', None)
    role_weights = values.pop('role_weights', None)
    color_weights = values.pop('color_weights', None)
    policy = _section(ScoringPolicy, values)
    if tiers:
        policy.resolution_tiers = sorted(
            ((float(mp), float(points)) for mp, points in tiers),
            key=lambda tier: tier[0],
            reverse=True,
        )
    # Partial tables extend the defaults rather than replacing them
    if role_weights:
        policy.role_weights.update({str(k).lower(): float(v) for k, v in role_weights.items()})
    if color_weights:
        policy.color_weights.update({str(k).lower(): float(v) for k, v in color_weights.items()})
    return policy


def _as_bool(value) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ('1', 'true', 'yes', 'on')
    return bool(value)
