from __future__ import annotations

import argparse
import json
from collections import Counter
from pathlib import Path
from typing import Optional

from .question_bank import ItemBank, load_bank, load_constraints
from .types import ConstraintGraph


def _blank_domain() -> dict[str, object]:
    return {
        "items": 0,
        "categories": {},
        "mean_discrimination": 0.0,
        "reversed": 0,
        "min_required": 0,
    }


def audit_bank(bank: ItemBank, constraints: Optional[ConstraintGraph] = None) -> dict[str, object]:
    cfg = bank.config
    coverage: dict[str, dict[str, object]] = {d: _blank_domain() for d in bank.domains}
    a_sums: Counter = Counter()
    cat_hist: dict[str, Counter] = {d: Counter() for d in bank.domains}

    for item in bank.items.values():
        data = coverage[item.domain]
        data["items"] += 1  # type: ignore[operator]
        if item.reversed:
            data["reversed"] += 1  # type: ignore[operator]
        a_sums[item.domain] += item.discrimination
        cat_hist[item.domain][item.n_categories] += 1

    warnings: list[str] = []
    for domain, data in coverage.items():
        n_items = int(data["items"])  # type: ignore[arg-type]
        data["categories"] = {str(k): v for k, v in sorted(cat_hist[domain].items())}
        data["mean_discrimination"] = round(a_sums[domain] / n_items, 4) if n_items else 0.0
        need = cfg.min_for(domain)
        data["min_required"] = need
        if n_items < need:
            warnings.append(f"{domain} has {n_items} items (<{need} required exposures)")

    needed_total = sum(cfg.min_for(d) for d in bank.domains)
    if needed_total > cfg.max_items:
        warnings.append(
            f"max_items={cfg.max_items} cannot cover per-domain minima totalling {needed_total}"
        )
    if cfg.domains_min is not None and cfg.domains_min > len(bank.domains):
        warnings.append(f"domains_min={cfg.domains_min} exceeds the {len(bank.domains)} bank domains")

    unknown_pairs: list[list[str]] = []
    n_pairs = 0
    if constraints is not None:
        for pair in sorted(sorted(p) for p in constraints.pairs()):
            n_pairs += 1
            if any(iid not in bank.items for iid in pair):
                unknown_pairs.append(pair)
        for pair in unknown_pairs:
            warnings.append(f"constraint {pair[0]} / {pair[1]} names an item outside the bank")

    totals = {
        "items": len(bank.items),
        "domains": len(bank.domains),
        "constraint_pairs": n_pairs,
        "max_items": cfg.max_items,
        "min_items": cfg.min_items,
    }
    return {"coverage": coverage, "warnings": warnings, "totals": totals}


def print_report(summary: dict[str, object]) -> None:
    coverage: dict[str, dict[str, object]] = summary["coverage"]  # type: ignore[assignment]
    print("=== Bank Coverage ===")
    for domain in coverage:
        data = coverage[domain]
        print(
            f"  {domain:<20} items={data['items']:3d}  need={data['min_required']}  "
            f"a̅={data['mean_discrimination']:.2f}  K={data['categories']}  reversed={data['reversed']}"
        )

    warnings: list[str] = summary["warnings"]  # type: ignore[assignment]
    if warnings:
        print("\nWarnings:")
        for msg in warnings:
            print(f" - {msg}")
    else:
        print("\nNo warnings.")

    print("\nTotals:", summary["totals"])


def write_summary(summary: dict[str, object], path: Path) -> str:
    text = json.dumps(summary, indent=2, sort_keys=True)
    path.write_text(text + "\n", encoding="utf-8")
    return text


def main(argv: list[str] | None = None) -> int:
    ap = argparse.ArgumentParser(description="Audit an item bank and its pair constraints.")
    ap.add_argument("--bank", default=None, help="bank JSON (default: packaged sample)")
    ap.add_argument("--constraints", default=None, help="constraints JSON (default: packaged sample)")
    ap.add_argument("--out", default=None, help="write the JSON summary here")
    args = ap.parse_args(argv)

    bank = load_bank(args.bank)
    constraints = load_constraints(args.constraints, bank=bank)
    summary = audit_bank(bank, constraints)
    print_report(summary)
    if args.out:
        write_summary(summary, Path(args.out))
    return 2 if summary["warnings"] else 0


if __name__ == "__main__":
    raise SystemExit(main())
