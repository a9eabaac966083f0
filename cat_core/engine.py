# cat_core/engine.py
from __future__ import annotations
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Union
from datetime import datetime, timezone
import logging, random, warnings

import numpy as np

from .types import AdministeredItem, ConstraintGraph, DomainResult, Item, ResponseRecord, Results
from .question_bank import ItemBank, build_bank, build_constraints
from .norms import NormLookup, Norms
from .errors import OutOfRangeResponse, SessionStateError
from .config import DEBUG_SEED, DEBUG_TRACE, TRACE_FIELDS
from .policy import BANK_EXHAUSTED, PolicyState, QuestionPolicy
from . import estimator, posterior


log = logging.getLogger(__name__)

AWAITING = "awaiting_response"
FINISHED = "finished"


def _emit_trace(**values: object) -> None:
    if not DEBUG_TRACE:
        return
    ordered = []
    for key in TRACE_FIELDS:
        if key in values:
            ordered.append(f"{key}={values[key]}")
    if ordered:
        log.info("trace %s", " ".join(str(val) for val in ordered))


def _utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _new_seed() -> int:
    if DEBUG_SEED is not None:
        return int(DEBUG_SEED)
    return random.SystemRandom().randint(0, 2**31 - 1)


def _response_label(item: Optional[Item], response: object) -> Union[str, int]:
    if not isinstance(response, (int, np.integer)):
        return response  # type: ignore[return-value]
    idx = int(response)
    if item is not None and item.response_options and 0 <= idx < len(item.response_options):
        return item.response_options[idx]
    return idx


class AdaptiveSession:
    """One respondent's adaptive administration over a shared, read-only bank.

    Lifecycle: created -> awaiting a response -> finished.  State only changes
    through :meth:`answer` (and :meth:`finish`); :meth:`rollback_last` builds a
    new session rather than editing this one.
    """

    def __init__(
        self,
        bank: Union[ItemBank, Mapping[str, Any], None],
        norms: Optional[NormLookup] = None,
        constraints: Union[ConstraintGraph, Iterable[Sequence[str]], None] = None,
        seed: Optional[int] = None,
    ):
        self.bank: ItemBank = bank if isinstance(bank, ItemBank) else build_bank(bank)
        self.norms: NormLookup = norms if norms is not None else Norms()
        if isinstance(constraints, ConstraintGraph):
            self.constraints = constraints
        else:
            self.constraints = build_constraints(constraints, bank=self.bank)
        self.seed: int = int(seed) if seed is not None else _new_seed()
        self.rng = random.Random(self.seed)

        D = self.bank.n_domains
        self.theta: np.ndarray = np.zeros(D)
        self.sigma: np.ndarray = np.array(self.bank.prior_covariance, dtype=float)
        self.se: Dict[str, float] = {}
        self.administered: List[ResponseRecord] = []
        self.remaining: List[str] = list(self.bank.items)
        self.domain_counts: Dict[str, int] = {d: 0 for d in self.bank.domains}
        self.current_item_id: Optional[str] = None
        self.stop_reason: Optional[str] = None
        self.audit_events: List[Dict[str, object]] = []
        self._results: Optional[Results] = None

        self.policy = QuestionPolicy(self.bank, self.constraints, self.rng)
        self.current_item_id = self.policy.next_item(self._policy_state())
        self._refresh_se()

    # ---- state ---------------------------------------------------------------
    @property
    def status(self) -> str:
        return FINISHED if self._results is not None else AWAITING

    @property
    def is_finished(self) -> bool:
        return self._results is not None

    @property
    def results(self) -> Optional[Results]:
        return self._results

    def _policy_state(self) -> PolicyState:
        return PolicyState(
            theta=self.theta,
            sigma=self.sigma,
            se=self.se,
            administered=self.administered,
            remaining=self.remaining,
            domain_counts=self.domain_counts,
        )

    def _refresh_se(self) -> None:
        self.se = posterior.standard_errors(self.sigma, self.bank.domains)

    def global_se(self) -> Optional[float]:
        return posterior.global_se(self.se.values())

    def theta_by_domain(self) -> Dict[str, float]:
        return {d: float(self.theta[i]) for i, d in enumerate(self.bank.domains)}

    # ---- operations ----------------------------------------------------------
    def current_item(self) -> Optional[Item]:
        """Pending item, selecting one if none is pending."""

        if self.is_finished:
            return None
        if self.current_item_id is None:
            self.current_item_id = self.policy.next_item(self._policy_state())
        if self.current_item_id is None:
            return None
        return self.bank.items[self.current_item_id]

    def next_item(self) -> Optional[Item]:
        """Like :meth:`current_item`, but finishes the session when nothing is left."""

        it = self.current_item()
        if it is None and not self.is_finished:
            log.warning("no selectable item left; finishing with %s", BANK_EXHAUSTED)
            self.finish(BANK_EXHAUSTED)
        return it

    def answer(self, item_id: str, response: int, ts: Optional[str] = None) -> None:
        if self.is_finished:
            raise SessionStateError(f"session already finished ({self.stop_reason})")
        item = self.bank.items.get(item_id)
        if item is None:
            raise SessionStateError(f"unknown item id {item_id!r}")
        if item_id not in self.remaining:
            raise SessionStateError(f"item {item_id!r} was already administered")
        if item_id != self.current_item_id:
            log.debug("answer for %s while %s was pending", item_id, self.current_item_id)

        k = item.n_categories
        if not isinstance(response, (int, np.integer)) or not 0 <= int(response) < k:
            msg = f"response {response!r} for {item_id} outside [0, {k - 1}]; clamped"
            log.warning(msg)
            warnings.warn(msg, OutOfRangeResponse, stacklevel=2)

        self.administered.append(
            ResponseRecord(item_id=item_id, response=response, domain=item.domain, ts=ts or _utcnow_iso())
        )
        self.domain_counts[item.domain] = self.domain_counts.get(item.domain, 0) + 1
        self.remaining = [iid for iid in self.remaining if iid != item_id]
        self.current_item_id = None

        d = self.bank.domain_index[item.domain]
        theta_before = float(self.theta[d])
        info = posterior.absorb(self.sigma, self.theta, item, d)
        self._refresh_se()

        self.theta = estimator.map_update(
            self.theta, self.administered, self.bank.items, self.bank.domain_index,
            self.bank.prior_covariance,
        )

        event = {
            "t": len(self.administered),
            "item_id": item_id,
            "domain": item.domain,
            "response": response,
            "category": estimator.observed_category(item, response),
            "theta_before": theta_before,
            "theta_after": float(self.theta[d]),
            "se_after": self.se[item.domain],
            "info": info,
            "n": len(self.administered),
        }
        self.audit_events.append(event)
        _emit_trace(**event)

        decision = self.policy.should_stop(self._policy_state())
        if decision.stop:
            self.finish(decision.reason)
            return

        self.current_item_id = self.policy.next_item(self._policy_state())
        if self.current_item_id is None:
            log.warning("bank exhausted after %d items", len(self.administered))
            self.finish(BANK_EXHAUSTED)

    def finish(self, reason: Optional[str] = None) -> Results:
        """Freeze the session and build its Results; repeated calls return the same value."""

        if self._results is not None:
            return self._results
        self.stop_reason = reason or self.stop_reason or "finished"
        self.current_item_id = None
        self._refresh_se()

        domain_results = []
        for i, d in enumerate(self.bank.domains):
            theta = float(self.theta[i])
            domain_results.append(
                DomainResult(
                    domain=d,
                    theta=theta,
                    se=self.se[d],
                    t_score=50.0 + 10.0 * theta,
                    percentile=self.norms.percentile(d, theta),
                    severity=self.norms.severity(d, theta),
                    n_items=self.domain_counts.get(d, 0),
                )
            )
        items_admin = []
        for rec in self.administered:
            it = self.bank.items.get(rec.item_id)
            items_admin.append(
                AdministeredItem(
                    item_id=rec.item_id,
                    domain=it.domain if it else rec.domain,
                    stem=it.stem if it else "",
                    response=_response_label(it, rec.response),
                )
            )
        self._results = Results(
            total_items=len(self.administered),
            stop_reason=self.stop_reason,
            global_SE=self.global_se(),
            domain_results=tuple(domain_results),
            items_administered=tuple(items_admin),
        )
        log.info("session finished: %s after %d items", self.stop_reason, len(self.administered))
        return self._results

    def rollback_last(self) -> "AdaptiveSession":
        """Undo the last response by replaying all earlier ones into a fresh session.

        The covariance downdate has no cheap exact inverse in floating point,
        so the replay is the undo.  The seed is reused so selections repeat.
        """

        if not self.administered:
            return self
        fresh = AdaptiveSession(self.bank, norms=self.norms, constraints=self.constraints, seed=self.seed)
        for rec in self.administered[:-1]:
            with warnings.catch_warnings():
                warnings.simplefilter("ignore", OutOfRangeResponse)
                fresh.answer(rec.item_id, rec.response, ts=rec.ts)
            if fresh.is_finished:
                break
        return fresh

    def to_dict(self) -> Dict[str, object]:
        """JSON-friendly snapshot used for persistence/debugging."""

        return {
            "seed": self.seed,
            "status": self.status,
            "stop_reason": self.stop_reason,
            "theta": self.theta_by_domain(),
            "se": dict(self.se),
            "global_SE": self.global_se(),
            "sigma": self.sigma.tolist(),
            "administered": [
                {"item_id": r.item_id, "response": r.response, "domain": r.domain, "ts": r.ts}
                for r in self.administered
            ],
            "remaining": list(self.remaining),
            "domain_counts": dict(self.domain_counts),
            "current_item_id": self.current_item_id,
        }


def create_session(
    bank: Union[ItemBank, Mapping[str, Any], None],
    norms: Optional[NormLookup] = None,
    constraints: Union[ConstraintGraph, Iterable[Sequence[str]], None] = None,
    seed: Optional[int] = None,
) -> AdaptiveSession:
    return AdaptiveSession(bank, norms=norms, constraints=constraints, seed=seed)
