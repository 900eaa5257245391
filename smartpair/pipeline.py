"""
Main pipeline orchestration for product photo pairing
"""
import asyncio
import argparse
import logging
import sys
from dataclasses import asdict, replace
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from dotenv import load_dotenv

from . import storage
from .cache import ResultCache
from .classification import load_classification
from .config import PairingConfig, load_config
from .finalize import OrderingFinalizer
from .gates import GateFilter
from .grouping import CandidateGroupBuilder
from .hero_back import HeroBackSelector
from .index import GroupRegistry, InsightIndex
from .models import AssignmentCandidate, Image, ImageInsight, PairingResult, ProductGroup
from .network import EmbeddingProvider, EmbeddingStore, make_provider, verify_batch
from .resolver import Assignment, AssignmentResolver
from .scoring import ScoringEngine

logger = logging.getLogger(__name__)

NO_IMAGES_WARNING = "No images found in scan."
NO_URLS_WARNING = "No usable image URLs; generated fallback groups."
NO_EMBEDDINGS_WARNING = "No image embeddings available; skipping global assignment."

Scores = Dict[str, Dict[str, AssignmentCandidate]]


def build_index(images: List[Image], insights: Optional[List[ImageInsight]] = None) -> InsightIndex:
    """
    Register images and attach classifier insights.

    Args:
        images: Scan images in scan order
        insights: Classifier insights (matched by key, URL or file name; copied,
            so the caller's records stay untouched)

    Returns:
        Populated InsightIndex
    """
    index = InsightIndex()
    for image in images:
        index.add_image(image)
    unmatched = 0
    for insight in insights or []:
        if index.add_insight(replace(insight)) is None:
            unmatched += 1
    if unmatched:
        logger.warning(f"{unmatched} classifier insights did not match any scanned image")
    return index


def score_candidates(registry: GroupRegistry, pools: Dict[str, List[str]], index: InsightIndex,
                     scoring: ScoringEngine) -> Scores:
    """
    Score every image against every group.

    Gated pools only decide hero/back and the small-pool cap; the resolver
    needs each image's score for all groups to compare competing claims.
    Pooled images are listed first, then the rest in scan order.
    """
    keys = index.keys()
    scores: Scores = {}
    for group in registry:
        pool = pools.get(group.group_id, [])
        pooled = set(pool)
        scores[group.group_id] = scoring.score_pool(group, pool + [k for k in keys if k not in pooled])
    logger.info(f"Scored {len(keys)} images against {len(registry)} groups")
    return scores


def debug_table(groups: List[ProductGroup], scores: Scores, pools: Dict[str, List[str]],
                stages: Dict[str, str], index: InsightIndex,
                assignment: Optional[Assignment]) -> Dict[str, List[dict]]:
    """Per-group candidate rows with full breakdown, margin and final status."""
    table = {}
    for group in groups:
        gid = group.group_id
        final = set(group.member_image_keys)
        margins = assignment.margins.get(gid, {}) if assignment else {}
        rows = []
        for key, candidate in scores.get(gid, {}).items():
            row = candidate.to_dict()
            row.update({
                'name': index.image(key).name,
                'folder': index.folder_of(key),
                'order': index.order_of(key),
                'pooled': key in pools.get(gid, []),
                'gateStage': stages.get(gid, ''),
                'margin': margins.get(key),
                'assigned': key in final,
                'status': 'assigned' if key in final else 'rejected',
            })
            rows.append(row)
        rows.sort(key=lambda r: (-r['total'], r['order']))
        table[gid] = rows
    return table


def run_pairing(index: InsightIndex, config: Optional[PairingConfig] = None,
                proposals: Optional[List[ProductGroup]] = None, scan_folder: str = '',
                debug: bool = False) -> PairingResult:
    """
    Pair images into product groups from already-collected signals.

    Builds groups, gates each pool, picks hero/back, scores and resolves
    claims globally (or finalizes per group when no embeddings exist), and
    extracts orphans. Deterministic for identical inputs.

    Args:
        index: Images with insights and embeddings
        config: Pairing settings
        proposals: Classifier-bundled group proposals
        scan_folder: Folder the scan started on (last folder fallback for gating)
        debug: Attach per-group candidate tables

    Returns:
        PairingResult
    """
    config = config or PairingConfig()
    warnings = index.enforce_vector_length()
    for message in warnings:
        logger.warning(message)

    if len(index) == 0:
        logger.warning(NO_IMAGES_WARNING)
        return PairingResult(warnings=warnings + [NO_IMAGES_WARNING])

    builder = CandidateGroupBuilder(index, config)
    groups, build_warnings = builder.build(proposals)
    warnings.extend(build_warnings)
    registry = GroupRegistry(groups)

    gate = GateFilter(index, config.gates, scan_folder)
    selector = HeroBackSelector(index, config.hero_back)
    raw_pools: Dict[str, List[str]] = {}
    pools: Dict[str, List[str]] = {}
    stages: Dict[str, str] = {}
    for group in registry:
        raw_pools[group.group_id] = list(group.member_image_keys)
        outcome = gate.apply(group)
        pools[group.group_id] = outcome.candidates
        stages[group.group_id] = outcome.stage
        selector.select(group, outcome.candidates)

    scoring = ScoringEngine(index, config.scoring, config.gates)
    finalizer = OrderingFinalizer(index, scoring, config.output, config.resolver)
    scores = score_candidates(registry, pools, index, scoring)

    assignment = None
    if index.valid_vector_count() == 0:
        logger.warning(NO_EMBEDDINGS_WARNING)
        warnings.append(NO_EMBEDDINGS_WARNING)
        final_groups, final_warnings = finalizer.finalize_degraded(list(registry), pools, scores)
    else:
        resolver = AssignmentResolver(index, config.resolver, config.scoring)
        assignment = resolver.resolve(registry, scores)
        warnings.extend(assignment.warnings)
        final_groups, final_warnings = finalizer.finalize(list(registry), assignment, pools, scores)
    warnings.extend(final_warnings)

    for problem in registry.check_invariants(config.output.max_images, config.resolver.duplicate_budget):
        logger.error(f"Group invariant violated: {problem}")

    orphans = finalizer.orphans(final_groups, raw_pools, pools, assignment)
    table = debug_table(final_groups, scores, pools, stages, index, assignment) if debug else None
    logger.info(f"Pairing complete: {len(final_groups)} groups, {len(orphans)} orphans")
    return PairingResult(
        groups=final_groups,
        orphans=orphans,
        insights=index.enriched(),
        warnings=warnings,
        debug=table,
    )


def fallback_result(images: List[Image], config: PairingConfig, warning: str) -> PairingResult:
    """Folder grouping with the first image of each folder as hero."""
    index = build_index(images)
    finalizer = OrderingFinalizer(index, ScoringEngine(index, config.scoring, config.gates), config.output)
    groups = CandidateGroupBuilder(index, config).folder_groups()
    for group in groups:
        group.hero_image_key = group.member_image_keys[0]
    pools = {g.group_id: list(g.member_image_keys) for g in groups}
    return PairingResult(
        groups=groups,
        orphans=finalizer.orphans(groups, pools, pools),
        insights=index.enriched(),
        warnings=[warning],
    )


async def collect_signals(index: InsightIndex, config: PairingConfig,
                          provider: Optional[EmbeddingProvider] = None) -> int:
    """
    Fetch embeddings for every image that has none yet.

    Args:
        index: Index to fill in place
        config: Network and embedding settings
        provider: Embedding source (built from settings when None)

    Returns:
        Number of images that received a vector
    """
    provider = provider or make_provider(config.embeddings)
    if provider is None:
        logger.info("No embedding provider configured")
        return 0
    missing = [image for image in index.images() if not index.vector(image.key)]
    if not missing:
        return 0
    store = EmbeddingStore(provider, config.network)
    vectors = await store.fetch_all(missing)
    filled = 0
    for key, vector in vectors.items():
        if vector:
            index.set_vector(key, vector)
            filled += 1
    return filled


def scan_signature(images: List[Image], insights: List[ImageInsight], proposals: List[ProductGroup],
                   config: PairingConfig) -> str:
    return storage.make_signature(images, extra={
        'insights': [asdict(i) for i in insights],
        'proposals': [asdict(p) for p in proposals],
        'config': asdict(config),
    })


async def run_scan(images: List[Image], config: Optional[PairingConfig] = None,
                   classification: Optional[Tuple[List[ImageInsight], List[ProductGroup]]] = None,
                   scan_key: str = '', scan_folder: str = '', debug: bool = False, force: bool = False,
                   cache: Optional[ResultCache] = None,
                   provider: Optional[EmbeddingProvider] = None) -> PairingResult:
    """
    Full scan: verify URLs, collect embeddings, pair, cache.

    Never raises; any unexpected failure returns a folder grouping with a
    warning naming the error.

    Args:
        images: Scan images
        config: Pairing settings
        classification: (insights, proposals) from the vision classifier
        scan_key: Cache key of the scan (folder or manifest path)
        scan_folder: Folder the scan started on
        debug: Attach candidate tables (bypasses the cache)
        force: Ignore any cached result
        cache: Result cache
        provider: Embedding source override

    Returns:
        PairingResult
    """
    config = config or PairingConfig()
    insights, proposals = classification or ([], [])
    try:
        if not images:
            logger.warning(NO_IMAGES_WARNING)
            return PairingResult(warnings=[NO_IMAGES_WARNING])

        signature = scan_signature(images, insights, proposals, config)
        if cache is not None and not force and not debug:
            hit = cache.get(scan_key, signature)
            if hit is not None:
                logger.info(f"Using cached result for {scan_key}")
                result = PairingResult.from_dict(hit)
                result.cached = True
                return result

        warnings: List[str] = []
        usable = list(images)
        if config.network.verify_urls:
            reachable = await verify_batch([image.url for image in images], config.network)
            usable = [image for image in images if reachable.get(image.url)]
            dropped = len(images) - len(usable)
            if dropped and usable:
                message = f"Dropped {dropped} unreachable images."
                logger.warning(message)
                warnings.append(message)
            if not usable:
                logger.warning(NO_URLS_WARNING)
                result = fallback_result(images, config, NO_URLS_WARNING)
                result.signature = signature
                return result

        index = build_index(usable, insights)
        await collect_signals(index, config, provider)
        result = run_pairing(index, config, proposals, scan_folder, debug)
        result.warnings = warnings + result.warnings
        result.signature = signature

        if cache is not None:
            cache.put(scan_key, signature, result.to_dict())
        return result

    except Exception as e:
        logger.exception(f"Pairing failed: {str(e)}")
        return fallback_result(images, config, f"Pairing failed ({e}); returned folder grouping.")


def run(folder: Optional[str], manifest: Optional[str], cfg_path: str, classification_path: Optional[str] = None,
        out_path: str = 'result.json', debug: bool = False, force: bool = False,
        verify: bool = True) -> PairingResult:
    """
    Main entrypoint: scan, pair and save the result.

    Args:
        folder: Local folder of product photos
        manifest: JSON manifest of remote images (used when folder is None)
        cfg_path: Path to configuration file
        classification_path: Vision classifier output
        out_path: Where to write the result JSON
        debug: Include per-group candidate tables
        force: Ignore cached results
        verify: Check image URLs before pairing

    Returns:
        PairingResult
    """
    # Load environment variables
    load_dotenv()

    # Load configuration
    config = load_config(cfg_path) if Path(cfg_path).exists() else {}

    # Set up logging
    log_level = getattr(logging, config.get('logging', {}).get('level', 'INFO'))
    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    settings = PairingConfig.from_dict(config)
    if not verify:
        settings.network.verify_urls = False

    if folder:
        images = storage.scan_folder(folder)
        scan_key = str(Path(folder).resolve())
    else:
        images = storage.load_manifest(manifest)
        scan_key = str(Path(manifest).resolve())

    classification = load_classification(classification_path) if classification_path else None

    cache_path = config.get('cache', {}).get('path')
    cache = ResultCache(cache_path) if cache_path else None
    try:
        result = asyncio.run(run_scan(
            images, settings, classification,
            scan_key=scan_key, debug=debug, force=force, cache=cache,
        ))
    finally:
        if cache is not None:
            cache.close()

    storage.save_result(result.to_dict(), Path(out_path))
    for message in result.warnings:
        logger.warning(message)
    logger.info(f"Wrote {len(result.groups)} groups and {len(result.orphans)} orphans to {out_path}")
    return result


def main():
    """CLI entry point"""
    parser = argparse.ArgumentParser(description='Product photo pairing')
    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument('--folder', help='Folder of product photos')
    source.add_argument('--manifest', help='JSON manifest of remote image URLs')
    parser.add_argument('--classification',
                        help='Vision classifier output (JSON)')
    parser.add_argument('--config', default='config.yaml',
                        help='Configuration file path')
    parser.add_argument('--out', default='result.json',
                        help='Result file path')
    parser.add_argument('--debug', action='store_true',
                        help='Include per-group candidate score tables')
    parser.add_argument('--force', action='store_true',
                        help='Ignore cached results')
    parser.add_argument('--no-verify', action='store_true',
                        help='Skip URL reachability checks')

    args = parser.parse_args()

    try:
        run(args.folder, args.manifest, args.config, args.classification, args.out,
            debug=args.debug, force=args.force, verify=not args.no_verify)
    except Exception as e:
        print(f"Error: {str(e)}", file=sys.stderr)
        sys.exit(1)


if __name__ == '__main__':
    main()
