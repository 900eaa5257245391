"""
Pairing result reports and debug exports
"""
import json
import logging
from collections import defaultdict
from pathlib import Path
from typing import Dict, List, Optional

import pandas as pd

from .models import PairingResult

logger = logging.getLogger(__name__)

DEBUG_COLUMNS = [
    'groupId', 'imageKey', 'name', 'folder', 'status', 'pooled', 'gateStage',
    'base', 'embedding', 'total', 'similarity', 'heroSimilarity', 'backSimilarity', 'margin',
]


class PairingReport:
    """Summary view over a pairing result"""

    def __init__(self, result: PairingResult):
        self.result = result
        self.orphans_by_reason: Dict[str, List[str]] = defaultdict(list)
        for orphan in result.orphans:
            self.orphans_by_reason[orphan.reason].append(orphan.image_key)

    @property
    def total_images(self) -> int:
        return sum(len(g.member_image_keys) for g in self.result.groups) + len(self.result.orphans)

    def empty_groups(self) -> List[str]:
        return [g.group_id for g in self.result.groups if not g.member_image_keys]

    def has_issues(self) -> bool:
        """Check if any group is empty or any image was left unassigned"""
        return bool(self.empty_groups() or self.result.orphans)

    def print_summary(self):
        """Print pairing report summary"""
        result = self.result
        print(f"\n{'='*60}")
        print(f"PAIRING REPORT SUMMARY")
        print(f"{'='*60}")
        print(f"Images: {self.total_images}")
        print(f"Groups: {len(result.groups)}")
        print(f"Orphans: {len(result.orphans)}")
        if result.cached:
            print(f"(cached result, signature {result.signature})")

        for group in result.groups:
            print(f"\n{group.label} [{group.group_id}] ({len(group.member_image_keys)} images)")
            print(f"  hero: {group.hero_image_key or '-'}")
            print(f"  back: {group.back_image_key or '-'}")
            for key in group.member_image_keys[:12]:
                print(f"    - {key}")

        if self.orphans_by_reason:
            print(f"\nORPHANS:")
            for reason, keys in self.orphans_by_reason.items():
                print(f"\n{reason.upper()} ({len(keys)} images):")
                for key in keys[:10]:  # Show first 10
                    print(f"  - {key}")
                if len(keys) > 10:
                    print(f"  ... and {len(keys) - 10} more")

        if result.warnings:
            print(f"\nWARNINGS:")
            for message in result.warnings:
                print(f"  - {message}")

        if not self.has_issues():
            print(f"\nAll images paired.")


def debug_frame(result: PairingResult) -> pd.DataFrame:
    """
    Flatten the per-group candidate tables into one DataFrame.

    Each score component becomes its own column (prefixed `c:`), summed when
    a label occurs more than once for the same candidate.
    """
    rows = []
    for group_id, candidates in (result.debug or {}).items():
        for candidate in candidates:
            row = {column: candidate.get(column) for column in DEBUG_COLUMNS}
            row['groupId'] = group_id
            for component in candidate.get('components', []):
                column = f"c:{component['label']}"
                row[column] = row.get(column, 0) + component['value']
            rows.append(row)

    if not rows:
        return pd.DataFrame(columns=DEBUG_COLUMNS)

    df = pd.DataFrame(rows)
    component_columns = sorted(c for c in df.columns if c.startswith('c:'))
    if component_columns:
        df[component_columns] = df[component_columns].fillna(0)
    return df[DEBUG_COLUMNS + component_columns]


def export_debug_csv(result: PairingResult, output_path: str) -> bool:
    """
    Write the debug table as CSV.

    Returns:
        True if written
    """
    try:
        df = debug_frame(result)
        df.to_csv(output_path, index=False)
        logger.info(f"Exported {len(df)} candidate rows to {output_path}")
        return True
    except Exception as e:
        logger.error(f"Error exporting debug table: {str(e)}")
        return False


def load_result(path: str) -> PairingResult:
    with open(path, 'r') as f:
        return PairingResult.from_dict(json.load(f))


def main(argv: Optional[List[str]] = None):
    """Report script entry point"""
    import argparse
    from dotenv import load_dotenv

    # Load environment variables
    load_dotenv()

    parser = argparse.ArgumentParser(description='Summarize a pairing result')
    parser.add_argument('--result', required=True, help='Result JSON written by the pipeline')
    parser.add_argument('--debug-csv', help='Write candidate score table to this CSV')
    parser.add_argument('--verbose', '-v', action='store_true', help='Verbose output')

    args = parser.parse_args(argv)

    # Set up logging
    log_level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    if not Path(args.result).exists():
        logger.error(f"Result file not found: {args.result}")
        return 1

    result = load_result(args.result)
    report = PairingReport(result)
    report.print_summary()

    if args.debug_csv:
        if not result.debug:
            logger.warning("Result has no debug tables; rerun the pipeline with --debug")
        elif not export_debug_csv(result, args.debug_csv):
            return 1

    # Return exit code
    return 0 if not report.has_issues() else 1


if __name__ == '__main__':
    exit(main())
