"""Budgeted phrase writer with batch-size fallback."""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence

from src.ingestion.budget import TimeBudget
from src.ingestion.models import Phrase, WriteResult

logger = logging.getLogger(__name__)

InsertFn = Callable[[Sequence[Phrase]], int]


class ResumableWriter:
    """Persist phrases in batches, degrading to per-row inserts on failure.

    *insert* must be idempotent (ignore-on-conflict) and return the number of
    rows it actually inserted; retrying a batch row by row is then always safe.
    """

    def __init__(
        self,
        insert: InsertFn,
        batch_size: int = 25,
        max_consecutive_failures: int = 2,
    ) -> None:
        if batch_size < 1:
            msg = f"batch_size must be at least 1, got {batch_size}"
            raise ValueError(msg)
        self._insert = insert
        self.batch_size = batch_size
        self.max_consecutive_failures = max_consecutive_failures

    def write(self, phrases: Sequence[Phrase], budget: TimeBudget) -> WriteResult:
        """Write *phrases* until done or until *budget* runs out.

        Row failures are logged and counted, never raised. When the budget is
        spent the writer stops between units of work and reports
        ``budget_exhausted``; ``phrases[result.processed:]`` is what is left.
        """
        result = WriteResult()
        consecutive_failures = 0
        batching = True

        while result.processed < len(phrases):
            if budget.exceeded():
                result.budget_exhausted = True
                logger.warning(
                    "Write budget exhausted after %.2fs: %d/%d phrases processed",
                    budget.elapsed(),
                    result.processed,
                    len(phrases),
                )
                break

            if not batching:
                self._write_row(phrases[result.processed], result)
                continue

            batch = phrases[result.processed : result.processed + self.batch_size]
            try:
                result.inserted += self._insert(batch)
                result.processed += len(batch)
                consecutive_failures = 0
                continue
            except Exception as exc:
                consecutive_failures += 1
                logger.warning(
                    "Batch insert of %d phrases failed (%d consecutive): %s",
                    len(batch),
                    consecutive_failures,
                    exc,
                )

            if consecutive_failures >= self.max_consecutive_failures:
                # Rows of this batch go through the per-row path below.
                logger.warning("Abandoning batch inserts after %d consecutive failures", consecutive_failures)
                batching = False
                continue

            for phrase in batch:
                if budget.exceeded():
                    break
                self._write_row(phrase, result)

        return result

    def _write_row(self, phrase: Phrase, result: WriteResult) -> None:
        try:
            result.inserted += self._insert([phrase])
        except Exception as exc:
            result.failed += 1
            result.failed_phrases.append(phrase)
            result.errors.append(f"{phrase.start:.2f}s {phrase.text!r}: {exc}")
            logger.error("Failed to insert phrase %r at %.2fs: %s", phrase.text, phrase.start, exc)
        result.processed += 1
