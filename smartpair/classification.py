"""
Vision classifier output parsing.

The classifier runs outside this package; its JSON output carries per-image
insights and, optionally, bundled group proposals. Keys are accepted in the
classifier's camelCase form as well as snake_case.
"""
import json
import logging
from typing import Any, Dict, List, Optional, Tuple

from .models import ImageInsight, ProductGroup, ROLES

logger = logging.getLogger(__name__)


def _first(entry: Dict[str, Any], *names: str, default: Any = None) -> Any:
    for name in names:
        value = entry.get(name)
        if value is not None and value != '':
            return value
    return default


def _as_float(value: Any, default: float = 0.0) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _as_optional_bool(value: Any) -> Optional[bool]:
    if value is None:
        return None
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in ('true', 'yes', '1'):
            return True
        if lowered in ('false', 'no', '0'):
            return False
        return None
    return bool(value)


def _as_vector(value: Any) -> Optional[List[float]]:
    if not isinstance(value, (list, tuple)) or not value:
        return None
    try:
        return [float(v) for v in value]
    except (TypeError, ValueError):
        return None


def _text_of(entry: Dict[str, Any]) -> str:
    text = _first(entry, 'ocrText', 'ocr_text', 'textExtracted', 'text', default='')
    if isinstance(text, dict):
        text = text.get('text', '')
    blocks = entry.get('textBlocks') or []
    parts = [str(text)] + [str(b) for b in blocks if b]
    return ' '.join(p for p in parts if p).strip()


def parse_insight(entry: Dict[str, Any], ref: Optional[str] = None) -> Optional[ImageInsight]:
    """
    Build an ImageInsight from one classifier record.

    Args:
        entry: Classifier record
        ref: Image reference when the record itself has none (keyed maps)

    Returns:
        ImageInsight, or None when the record names no image
    """
    image_ref = _first(entry, 'key', 'imageKey', 'url', default=ref)
    if not image_ref:
        logger.debug(f"Classifier record without image reference skipped: {entry}")
        return None

    role = str(_first(entry, 'role', default='unknown')).strip().lower()
    if role not in ROLES:
        role = 'other' if role else 'unknown'
    confidence = min(1.0, max(0.0, _as_float(_first(entry, 'roleConfidence', 'role_confidence'))))
    color = _first(entry, 'dominantColor', 'dominant_color')

    return ImageInsight(
        image_key=str(image_ref),
        role=role,
        role_confidence=confidence,
        has_visible_text=_as_optional_bool(_first(entry, 'hasVisibleText', 'has_visible_text')),
        dominant_color=str(color).strip().lower() if color else None,
        ocr_text=_text_of(entry),
        embedding=_as_vector(_first(entry, 'embedding', 'embeddingVector')),
        brand=str(_first(entry, 'brand', default='')).strip(),
        product=str(_first(entry, 'product', 'productName', default='')).strip(),
        category=str(_first(entry, 'categoryPath', 'category', default='')).strip(),
        description=str(_first(entry, 'visualDescription', 'description', default='')).strip(),
    )


def parse_group(entry: Dict[str, Any], position: int) -> ProductGroup:
    images = [str(i) for i in (entry.get('images') or []) if i]
    seed = _first(entry, 'scanSourceImageUrl', 'primaryImageUrl', 'heroUrl')
    claims = entry.get('claims') or []
    return ProductGroup(
        group_id=str(_first(entry, 'groupId', 'group_id', default=f"group_{position + 1}")),
        brand=str(_first(entry, 'brand', default='')).strip(),
        product_name=str(_first(entry, 'product', 'name', default='')).strip(),
        variant=str(_first(entry, 'variant', default='')).strip(),
        folder_hint=str(_first(entry, 'folder', default='')).strip(),
        category=str(_first(entry, 'categoryPath', 'category', default='')).strip(),
        claims=[str(c) for c in claims if c],
        seed_image_key=str(seed) if seed else None,
        member_image_keys=images,
        confidence=_as_float(entry.get('confidence')),
        source='proposal',
    )


def parse_classification(data: Any) -> Tuple[List[ImageInsight], List[ProductGroup]]:
    """
    Parse classifier output.

    Accepts a list of insight records, or an object with `imageInsights`
    (list, or map of image reference to record) and optional `groups`.

    Returns:
        Tuple of (insights, group proposals)
    """
    if not data:
        return [], []
    if isinstance(data, list):
        raw_insights, raw_groups = data, []
    else:
        raw_insights = _first(data, 'imageInsights', 'insights', default=[])
        raw_groups = data.get('groups') or []

    insights = []
    if isinstance(raw_insights, dict):
        records = list(raw_insights.items())
    else:
        records = [(None, record) for record in raw_insights]
    for ref, record in records:
        if not isinstance(record, dict):
            continue
        insight = parse_insight(record, ref)
        if insight is not None:
            insights.append(insight)

    proposals = [parse_group(g, i) for i, g in enumerate(raw_groups) if isinstance(g, dict)]
    logger.info(f"Parsed {len(insights)} insights and {len(proposals)} group proposals")
    return insights, proposals


def load_classification(path: str) -> Tuple[List[ImageInsight], List[ProductGroup]]:
    with open(path, 'r') as f:
        return parse_classification(json.load(f))
