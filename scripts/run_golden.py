"""
Run the golden cases in sample_data/golden.csv through the pipeline and
write a report to data/reports/.
Usage: from project root, run: python -m scripts.run_golden [path/to/cases.csv]
"""

from __future__ import annotations

import sys
from datetime import datetime, timezone
from pathlib import Path

_root = Path(__file__).resolve().parent.parent
if str(_root) not in sys.path:
    sys.path.insert(0, str(_root))

import pandas as pd

from tosguardian.batch import run_golden
from tosguardian.config import get_settings
from tosguardian.logging_config import configure_from_settings

DEFAULT_CASES = _root / "sample_data" / "golden.csv"
REPORT_DIR = _root / "data" / "reports"


def main() -> int:
    configure_from_settings(get_settings())
    cases_path = Path(sys.argv[1]) if len(sys.argv) > 1 else DEFAULT_CASES
    if not cases_path.exists():
        print("Golden cases not found:", cases_path)
        return 1

    report = run_golden(pd.read_csv(cases_path))
    for row in report.itertuples(index=False):
        status = "PASS" if row.passed else "FAIL"
        print(f"{status}  [{row.platform}]  expect={row.expect} got={row.got}  :: {row.text}")

    REPORT_DIR.mkdir(parents=True, exist_ok=True)
    stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
    out = REPORT_DIR / f"golden-{stamp}.csv"
    report.to_csv(out, index=False)

    passed = int(report["passed"].sum())
    print(f"\nSummary: {passed} passed / {len(report)} total")
    print("Report:", out)
    return 0 if passed == len(report) else 1


if __name__ == "__main__":
    sys.exit(main())
