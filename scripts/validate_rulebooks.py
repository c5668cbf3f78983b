"""
Validate every platform rulebook in rules/ and check that each patterns_ref
points at an existing shared fragment.
Usage: from project root, run: python -m scripts.validate_rulebooks
"""

from __future__ import annotations

import json
import sys
from pathlib import Path

_root = Path(__file__).resolve().parent.parent
if str(_root) not in sys.path:
    sys.path.insert(0, str(_root))

from tosguardian.config import get_settings
from tosguardian.rules.store import RulebookError, check_rulebook, rules_dir, validate_rulebook


def _ref_problems(rb: dict, folder: Path) -> list[str]:
    problems = []
    for cat in rb.get("categories") or []:
        ref = cat.get("patterns_ref") if isinstance(cat, dict) else None
        if ref and not (folder / ref.split("#", 1)[0]).exists():
            problems.append(f"{cat.get('id')}: patterns_ref {ref} not found")
    return problems


def main() -> int:
    folder = rules_dir(get_settings())
    failed = 0
    for path in sorted(folder.glob("*.json")):
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            print(f"FAIL  {path.name}: invalid JSON ({e})")
            failed += 1
            continue

        if path.name.endswith(".v1.json"):
            try:
                check_rulebook(data, path.name)
                errors = _ref_problems(data, folder)
            except RulebookError as e:
                errors = [str(e)]
        elif path.name == get_settings().get("global_fragment"):
            errors = validate_rulebook({"platform": "global", **data}) + _ref_problems(data, folder)
        else:
            print(f"OK    {path.name} (fragment)")
            continue

        if errors:
            failed += 1
            print(f"FAIL  {path.name}")
            for err in errors:
                print("      -", err)
        else:
            print(f"OK    {path.name}")

    print(f"\n{failed} file(s) with problems" if failed else "\nAll rulebooks valid")
    return 1 if failed else 0


if __name__ == "__main__":
    sys.exit(main())
