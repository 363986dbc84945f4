import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Iterable, List, Optional

from api.metrics import STAGE_DURATION_SECONDS, STAGE_ITEMS_TOTAL
from renovation_advisor.errors import is_transient

logger = logging.getLogger(__name__)

PROCESSED = "processed"
SKIPPED = "skipped"
FAILED = "failed"


@dataclass
class ItemOutcome:
    item_id: str
    outcome: str
    error: Optional[str] = None
    detail: Optional[dict] = None
    retryable: bool = False

    def to_dict(self) -> dict:
        out = {"item_id": self.item_id, "outcome": self.outcome}
        if self.error:
            out["error"] = self.error
        if self.retryable:
            out["retryable"] = True
        if self.detail:
            out["detail"] = self.detail
        return out


@dataclass
class StageResult:
    stage: str
    outcomes: List[ItemOutcome] = field(default_factory=list)
    duration_ms: int = 0
    error: Optional[str] = None

    @property
    def processed(self) -> int:
        return sum(1 for o in self.outcomes if o.outcome == PROCESSED)

    @property
    def skipped(self) -> int:
        return sum(1 for o in self.outcomes if o.outcome == SKIPPED)

    @property
    def errors(self) -> int:
        # A stage-level failure counts once on top of the per-item failures
        return sum(1 for o in self.outcomes if o.outcome == FAILED) + (1 if self.error else 0)

    def retry_reason(self) -> Optional[str]:
        """Error text of the first failure worth another attempt; a stage-level failure always is."""
        if self.error:
            return self.error
        for o in self.outcomes:
            if o.outcome == FAILED and o.retryable:
                return o.error or "retryable failure"
        return None

    def to_dict(self) -> dict:
        out = {
            "stage": self.stage,
            "processed": self.processed,
            "skipped": self.skipped,
            "errors": self.errors,
            "duration_ms": self.duration_ms,
            "items": [o.to_dict() for o in self.outcomes],
        }
        if self.error:
            out["error"] = self.error
        return out


# A handler returns an outcome string, (outcome, detail) or a full ItemOutcome
Handler = Callable[[Any], Awaitable[Any]]


async def run_items(
    stage: str,
    items: Iterable[Any],
    handler: Handler,
    item_id: Callable[[Any], str] = lambda item: str(getattr(item, "id", item)),
) -> StageResult:
    """
    Run ``handler`` over ``items`` sequentially, isolating each item.

    An exception raised for one item is logged and recorded as a ``failed``
    outcome; iteration continues with the next item.
    """
    result = StageResult(stage=stage)
    start = time.time()

    for item in items:
        key = item_id(item)
        try:
            returned = await handler(item)
            if isinstance(returned, ItemOutcome):
                result.outcomes.append(returned)
                continue
            if isinstance(returned, tuple):
                outcome, detail = returned
            else:
                outcome, detail = returned, None
            result.outcomes.append(ItemOutcome(item_id=key, outcome=outcome or PROCESSED, detail=detail))
        except Exception as e:
            logger.exception(f"[{stage}] item {key} failed: {e}")
            result.outcomes.append(ItemOutcome(item_id=key, outcome=FAILED, error=str(e), retryable=is_transient(e)))

    elapsed = time.time() - start
    result.duration_ms = int(elapsed * 1000)

    try:
        for outcome in result.outcomes:
            STAGE_ITEMS_TOTAL.labels(stage=stage, outcome=outcome.outcome).inc()
        STAGE_DURATION_SECONDS.labels(stage=stage).observe(elapsed)
    except Exception:
        pass

    if result.outcomes:
        logger.info(
            f"[{stage}] processed={result.processed} skipped={result.skipped} "
            f"errors={result.errors} ({result.duration_ms}ms)"
        )
    return result
