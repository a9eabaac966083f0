# autoplay.py
from __future__ import annotations
import argparse, os, json, random, datetime, logging
from typing import Dict, List, Optional

from cat_core.config import load_config
from cat_core.engine import AdaptiveSession
from cat_core.grm import category_probs, usable_thresholds
from cat_core.norms import Norms, load_norms
from cat_core.question_bank import ItemBank, load_bank, load_constraints
from cat_core.types import ConstraintGraph, Item, Results


def _new_run_id() -> str:
    return datetime.datetime.now().strftime("run_%Y%m%d_%H%M%S")


def draw_response(item: Item, theta: float, rng: random.Random) -> int:
    """Sample a display-order response for ``item`` from the GRM at ``theta``."""

    probs = category_probs(theta, item.discrimination, usable_thresholds(item))
    u = rng.random()
    acc = 0.0
    cat = len(probs) - 1
    for k, p in enumerate(probs):
        acc += p
        if u < acc:
            cat = k
            break
    if item.reversed:
        cat = (len(probs) - 1) - cat
    return cat


def simulate_respondent(
    bank: ItemBank,
    true_theta: Dict[str, float],
    *,
    constraints: Optional[ConstraintGraph] = None,
    norms: Optional[Norms] = None,
    seed: Optional[int] = None,
) -> tuple[AdaptiveSession, Results]:
    """Run one session to completion with simulated GRM answers."""

    rng = random.Random(seed)
    session = AdaptiveSession(bank, norms=norms, constraints=constraints, seed=seed)
    while True:
        item = session.next_item()
        if item is None:
            break
        resp = draw_response(item, float(true_theta.get(item.domain, 0.0)), rng)
        session.answer(item.id, resp)
    results = session.results
    if results is None:
        raise RuntimeError("session ended without results")
    return session, results


def main(argv: Optional[List[str]] = None) -> int:
    ap = argparse.ArgumentParser(description="Simulate respondents through the adaptive engine.")
    ap.add_argument("--bank", default=None)
    ap.add_argument("--constraints", default=None)
    ap.add_argument("--config", default="config.json", help="deployment config; its cat_config overlays the bank")
    ap.add_argument("--norms", default=None)
    ap.add_argument("--theta", default=None, help='JSON map of domain -> true theta, e.g. {"Anxiety": 1.0}')
    ap.add_argument("--runs", type=int, default=1)
    ap.add_argument("--seed", type=int, default=None)
    ap.add_argument("--out", default="reports")
    ap.add_argument("-v", "--verbose", action="store_true")
    args = ap.parse_args(argv)

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO,
                        format="[%(levelname)s] %(name)s: %(message)s")

    policy = load_config(args.config).get("cat_config")
    bank = load_bank(args.bank, policy=policy)
    constraints = load_constraints(args.constraints, bank=bank)
    norms = load_norms(args.norms) if args.norms else Norms()
    true_theta = json.loads(args.theta) if args.theta else {}

    run_id = _new_run_id()
    os.makedirs(args.out, exist_ok=True)
    payload = []
    for i in range(args.runs):
        seed = None if args.seed is None else args.seed + i
        session, res = simulate_respondent(bank, true_theta, constraints=constraints, norms=norms, seed=seed)
        payload.append({"seed": session.seed, "results": res.to_dict()})
        print(f"[{i + 1}/{args.runs}] {res.stop_reason} after {res.total_items} items, global SE={res.global_SE:.3f}")

    path = os.path.join(args.out, f"{run_id}.json")
    with open(path, "w", encoding="utf-8") as f:
        json.dump({"true_theta": true_theta, "runs": payload}, f, ensure_ascii=False, indent=2)
    print(f"Done. Results saved to: {path}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
