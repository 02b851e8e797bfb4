from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from datetime import datetime

from pydantic import ValidationError

from contentflow.models import utcnow
from contentflow.repositories import KeyValueStore
from contentflow.schemas import (
    ApplyOutcome,
    Flow,
    GenerationResult,
    Product,
    RunFlowSnapshot,
    RunRecord,
)
from contentflow.services.generation import DEFAULT_PROMPT

logger = logging.getLogger(__name__)

RUN_KEY_PREFIX = "run-"


class RunNotFoundError(LookupError):
    pass


def run_key(run_id: str) -> str:
    return f"{RUN_KEY_PREFIX}{run_id}"


def snapshot_flow(flow: Flow) -> RunFlowSnapshot:
    return RunFlowSnapshot(
        id=flow.id,
        title=flow.title,
        description=flow.description,
        prompt=flow.prompt or DEFAULT_PROMPT,
        sourceFields=list(flow.sourceFields),
        destinations=list(flow.destinations),
    )


class RunStore:
    """Ephemeral run sessions stored under ``run-<runId>`` until they expire."""

    def __init__(
        self,
        store: KeyValueStore,
        *,
        ttl_seconds: int,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._ttl_seconds = ttl_seconds
        self._clock = clock

    def _new_run_id(self) -> str:
        run_id = int(self._clock().timestamp() * 1000)
        while self._store.get(run_key(str(run_id))) is not None:
            run_id += 1
        return str(run_id)

    def _save(self, run: RunRecord) -> RunRecord:
        self._store.set(run_key(run.runId), run.model_dump(mode="json"), ttl_seconds=self._ttl_seconds)
        return run

    def create_run(self, *, flow: Flow, products: Sequence[Product]) -> RunRecord:
        run = RunRecord(
            runId=self._new_run_id(),
            createdAt=self._clock(),
            flow=snapshot_flow(flow),
            products=[GenerationResult.model_validate(product.model_dump()) for product in products],
        )
        logger.info(
            "Run created",
            extra={"run_id": run.runId, "flow_id": flow.id, "product_count": len(run.products)},
        )
        return self._save(run)

    def get_run(self, run_id: str) -> RunRecord:
        raw = self._store.get(run_key(run_id))
        if raw is None:
            raise RunNotFoundError(f"Run not found: {run_id}")
        try:
            return RunRecord.model_validate(raw)
        except ValidationError as exc:
            logger.warning("Discarding unreadable run", extra={"run_id": run_id})
            self._store.delete(run_key(run_id))
            raise RunNotFoundError(f"Run not found: {run_id}") from exc

    def record_generation(self, run_id: str, results: Sequence[GenerationResult]) -> RunRecord:
        run = self.get_run(run_id)
        run.products = [
            result
            if result.status == "applied"
            else result.model_copy(update={"status": "failed" if result.error else "not-applied"})
            for result in results
        ]
        run.generated = True
        return self._save(run)

    def record_apply_outcomes(self, run_id: str, outcomes: Sequence[ApplyOutcome]) -> RunRecord:
        """Mark successfully applied products; failed applies stay retryable."""
        run = self.get_run(run_id)
        applied_ids = {outcome.productId for outcome in outcomes if outcome.success}
        run.products = [
            product.model_copy(update={"status": "applied"}) if product.id in applied_ids else product
            for product in run.products
        ]
        return self._save(run)

    def delete_run(self, run_id: str) -> None:
        if not self._store.delete(run_key(run_id)):
            raise RunNotFoundError(f"Run not found: {run_id}")
