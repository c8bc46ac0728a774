"""
Compare investor and affiliate counters with the ownership and commission
rows they summarize.

Usage:
    python scripts/reconcile_totals.py            # report only
    python scripts/reconcile_totals.py --repair   # rewrite drifted counters
"""
import sys
import os

# Add parent directory to path to import backend modules
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from core.database import SessionLocal
from utils.reconciliation import find_total_drift, repair_total_drift


def main(repair: bool = False) -> int:
    db = SessionLocal()
    try:
        drift = repair_total_drift(db) if repair else find_total_drift(db)
    finally:
        db.close()

    if not drift:
        print("✓ All counters match their source rows")
        return 0

    for item in drift:
        print(f"  {item['kind']:<28} {str(item['key']):<40} stored={item['stored']} expected={item['expected']}")
    if repair:
        print(f"✓ Repaired {len(drift)} counters")
        return 0
    print(f"✗ {len(drift)} counters drifted (re-run with --repair to fix)")
    return 1


if __name__ == "__main__":
    sys.exit(main(repair="--repair" in sys.argv[1:]))
