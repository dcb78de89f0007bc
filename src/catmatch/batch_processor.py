"""Resumable, cancellable chunked sweep over uncategorized catalog items.

Each chunk is one blocking round-trip: the caller (CLI loop or web UI)
requests the next chunk after a short delay, and cancellation is only
observed at chunk boundaries.

Usage
-----
    # Categorize every uncategorized product, 5 per chunk
    python -m catmatch.batch_processor

    # Bigger chunks, slower pacing, stop after 3 chunks
    python -m catmatch.batch_processor --chunk-size 10 --delay 2 --max-chunks 3
"""
from __future__ import annotations

import argparse
import logging
import math
import time
from threading import Lock
from typing import Callable, Sequence

from .catalog import CategoryStore, ProductStore, normalize_name
from .completion_client import CLASSIFICATION_PARAMS, CLASSIFICATION_TIMEOUT, CompletionClient
from .config import (
    CHUNK_SIZE_MAX,
    CHUNK_SIZE_MIN,
    DEFAULT_CHUNK_SIZE,
    REPO_ROOT,
    CategorizerSettings,
    load_env_file,
)
from .errors import FATAL_ERRORS, JobStateError, PersistenceError, TransportError
from .models import (
    BatchState,
    Category,
    ChunkResult,
    CompletionParams,
    Item,
    ItemOutcome,
    JobStatus,
    OutcomeStatus,
)
from .prompts import build_classification_prompt, select_prompt_categories
from .resolver import CategoryResolver, build_matchers

logger = logging.getLogger(__name__)

LEFT_IN_POOL = frozenset({OutcomeStatus.UNTOUCHED, OutcomeStatus.ERROR})


def clamp_chunk_size(value: int) -> int:
    return min(max(int(value), CHUNK_SIZE_MIN), CHUNK_SIZE_MAX)


class CategorizationJob:
    """One categorization sweep, driven externally through start/request_chunk/cancel."""

    def __init__(
        self,
        products: ProductStore,
        categories: CategoryStore,
        client: CompletionClient,
        *,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        resolver: CategoryResolver | None = None,
        unmatched_name: str = "Unmatched",
        excluded_slugs: Sequence[str] = ("uncategorized",),
        max_prompt_categories: int = 200,
        params: CompletionParams = CLASSIFICATION_PARAMS,
        timeout: float = CLASSIFICATION_TIMEOUT,
    ) -> None:
        self.products = products
        self.categories = categories
        self.client = client
        self.resolver = resolver or CategoryResolver()
        self.unmatched_name = unmatched_name
        self.excluded_slugs = {slug.strip().lower() for slug in excluded_slugs if slug.strip()}
        self.max_prompt_categories = max_prompt_categories
        self.params = params
        self.timeout = timeout
        self.state = BatchState(chunk_size=clamp_chunk_size(chunk_size))
        self._lock = Lock()
        self._chunk_in_flight = False
        self._unmatched_sink: Category | None = None

    @classmethod
    def from_settings(
        cls,
        products: ProductStore,
        categories: CategoryStore,
        client: CompletionClient,
        settings: CategorizerSettings,
        *,
        chunk_size: int | None = None,
    ) -> "CategorizationJob":
        return cls(
            products,
            categories,
            client,
            chunk_size=chunk_size if chunk_size is not None else settings.chunk_size,
            resolver=CategoryResolver(build_matchers(settings.match_tiers, settings.fuzzy_threshold)),
            unmatched_name=settings.unmatched_category,
            excluded_slugs=(settings.uncategorized_slug,),
            max_prompt_categories=settings.max_prompt_categories,
            timeout=settings.completion_timeout,
        )

    # ------------------------------------------------------------------
    # Control surface
    # ------------------------------------------------------------------

    def start(self) -> ChunkResult:
        with self._lock:
            if self.state.status == JobStatus.RUNNING:
                raise JobStateError("Job is already running.")
            chunk_size = self.state.chunk_size
            self.state = BatchState(chunk_size=chunk_size)
            self._unmatched_sink = None

        try:
            total = self.products.count_uncategorized_items()
        except FATAL_ERRORS as exc:
            self._fail(exc)
            raise

        with self._lock:
            self.state.total_items = total
            self.state.total_chunks = math.ceil(total / self.state.chunk_size) if total else 0
            if total == 0:
                self.state.status = JobStatus.COMPLETED
                logger.info("no uncategorized items; job completed immediately")
                return self._empty_result(remaining=0)
            self.state.status = JobStatus.RUNNING
            self.state.next_chunk = 0
        logger.info("job started: total=%s chunk_size=%s chunks=%s", total, self.state.chunk_size, self.state.total_chunks)
        return self.request_chunk(0)

    def request_chunk(self, chunk_index: int | None = None) -> ChunkResult:
        with self._lock:
            if self.state.status != JobStatus.RUNNING:
                raise JobStateError(f"Job is {self.state.status.value}; no further chunks can be requested.")
            if self._chunk_in_flight:
                raise JobStateError("A chunk is already being processed for this job.")
            index = self.state.next_chunk if chunk_index is None else int(chunk_index)
            if index is None or index < 0:
                raise JobStateError(f"Invalid chunk index: {chunk_index!r}")
            self._chunk_in_flight = True

        try:
            return self._process_chunk(index)
        except FATAL_ERRORS as exc:
            self._fail(exc)
            raise
        finally:
            with self._lock:
                self._chunk_in_flight = False

    def cancel(self) -> bool:
        with self._lock:
            if self.state.status != JobStatus.RUNNING:
                return False
            self.state.cancel_requested = True
            self.state.status = JobStatus.CANCELLED
            self.state.next_chunk = None
        logger.info("job cancelled at chunk %s", self.state.current_chunk_index)
        return True

    def snapshot(self) -> BatchState:
        with self._lock:
            return self.state.copy()

    # ------------------------------------------------------------------
    # Chunk processing
    # ------------------------------------------------------------------

    def _fail(self, exc: Exception) -> None:
        with self._lock:
            self.state.status = JobStatus.FAILED
            self.state.next_chunk = None
            self.state.last_error = f"{type(exc).__name__}: {exc}"
        logger.error("job failed: %s", exc)

    def _empty_result(self, *, remaining: int) -> ChunkResult:
        return ChunkResult(
            results=(),
            processed=0,
            remaining=remaining,
            total_chunks=self.state.total_chunks,
            current_chunk=self.state.current_chunk_index,
            next_chunk=self.state.next_chunk,
            status=self.state.status,
        )

    def vocabulary(self) -> list[Category]:
        unmatched = normalize_name(self.unmatched_name)
        rows = [
            category
            for category in self.categories.list_categories(include_empty=True)
            if category.slug.strip().lower() not in self.excluded_slugs
            and normalize_name(category.name) != unmatched
            and normalize_name(category.name)
        ]
        return sorted(rows, key=lambda category: category.id)

    def _chunk_offset(self, chunk_index: int) -> int:
        # Assigned items leave the uncategorized pool; items left untouched or
        # whose write failed in earlier chunks still sit ahead of the next page.
        return sum(count for index, count in self.state.left_in_pool_by_chunk.items() if index < chunk_index)

    def unmatched_sink(self) -> Category:
        if self._unmatched_sink is None:
            self._unmatched_sink = self.categories.ensure_category(self.unmatched_name)
        return self._unmatched_sink

    def _process_chunk(self, chunk_index: int) -> ChunkResult:
        vocabulary = self.vocabulary()
        offset = self._chunk_offset(chunk_index)
        pool = self.products.count_uncategorized_items()
        with self._lock:
            self.state.current_chunk_index = chunk_index
            self.state.total_chunks = chunk_index + math.ceil(max(pool - offset, 0) / self.state.chunk_size)
            total_chunks = self.state.total_chunks

        items = self.products.list_uncategorized_items(self.state.chunk_size, offset, order_by="id")
        logger.info("chunk %s: %s item(s) at offset %s, %s categories", chunk_index, len(items), offset, len(vocabulary))

        outcomes = [self.process_item(item, vocabulary) for item in items]
        remaining = self.products.count_uncategorized_items()

        untouched = sum(1 for outcome in outcomes if outcome.status == OutcomeStatus.UNTOUCHED)
        left_in_pool = sum(1 for outcome in outcomes if outcome.status in LEFT_IN_POOL)
        with self._lock:
            self.state.left_in_pool_by_chunk[chunk_index] = left_in_pool
            self.state.processed_count += len(outcomes)
            for outcome in outcomes:
                self._count_outcome(outcome)
            if self.state.status == JobStatus.RUNNING:
                if chunk_index + 1 < total_chunks and remaining > 0:
                    self.state.next_chunk = chunk_index + 1
                else:
                    self.state.status = JobStatus.COMPLETED
                    self.state.next_chunk = None
            status = self.state.status
            next_chunk = self.state.next_chunk

        if untouched and untouched == len(outcomes):
            logger.warning("chunk %s: completion service failed for every item; items left untouched", chunk_index)
        return ChunkResult(
            results=tuple(outcomes),
            processed=len(outcomes),
            remaining=remaining,
            total_chunks=total_chunks,
            current_chunk=chunk_index,
            next_chunk=next_chunk,
            status=status,
        )

    def _count_outcome(self, outcome: ItemOutcome) -> None:
        if outcome.status == OutcomeStatus.MATCHED:
            self.state.matched_count += 1
        elif outcome.status == OutcomeStatus.UNMATCHED:
            self.state.unmatched_count += 1
        elif outcome.status == OutcomeStatus.UNTOUCHED:
            self.state.untouched_count += 1
        else:
            self.state.error_count += 1

    def process_item(self, item: Item, vocabulary: Sequence[Category]) -> ItemOutcome:
        if not vocabulary:
            return ItemOutcome(item.id, item.title, OutcomeStatus.UNTOUCHED, message="No categories found.")

        prompt_categories = select_prompt_categories(item, vocabulary, self.max_prompt_categories)
        prompt = build_classification_prompt(item, prompt_categories)
        result = self.client.complete(prompt, self.params, timeout=self.timeout)
        if not result.ok:
            logger.warning("item %s left untouched: %s", item.id, result.message)
            return ItemOutcome(
                item.id,
                item.title,
                OutcomeStatus.UNTOUCHED,
                error_kind=result.kind,
                message=result.message,
            )

        match = self.resolver.resolve(result.text, vocabulary)
        try:
            if match.matched:
                self.products.assign_category(item.id, match.category.id)
                return ItemOutcome(
                    item.id,
                    item.title,
                    OutcomeStatus.MATCHED,
                    category_name=match.category.name,
                    method=match.method,
                    score=match.score,
                    message=f"Assigned to category: {match.category.name}",
                )
            sink = self.unmatched_sink()
            self.products.assign_category(item.id, sink.id)
        except (PersistenceError, TransportError) as exc:
            logger.warning("item %s: assignment failed: %s", item.id, exc)
            return ItemOutcome(item.id, item.title, OutcomeStatus.ERROR, error_kind=exc.kind, message=str(exc))

        snippet = result.text[:80].replace("\n", " ")
        return ItemOutcome(
            item.id,
            item.title,
            OutcomeStatus.UNMATCHED,
            category_name=sink.name,
            message=f"Could not determine the best category (model said: {snippet!r}).",
        )


def run_job(
    job: CategorizationJob,
    *,
    delay_seconds: float = 0.5,
    max_chunks: int | None = None,
    sleep: Callable[[float], None] = time.sleep,
    on_chunk: Callable[[ChunkResult], None] | None = None,
) -> BatchState:
    """Drive a job to a terminal state, pausing between chunks."""
    result = job.start()
    chunks = 1
    if on_chunk:
        on_chunk(result)
    while job.state.status == JobStatus.RUNNING:
        if max_chunks is not None and chunks >= max_chunks:
            job.cancel()
            break
        sleep(delay_seconds)
        if job.state.status != JobStatus.RUNNING:
            break
        result = job.request_chunk()
        chunks += 1
        if on_chunk:
            on_chunk(result)
    return job.snapshot()


def _print_chunk(result: ChunkResult) -> None:
    if not result.total_chunks:
        print("[info] No uncategorized products found.", flush=True)
        return
    for outcome in result.results:
        tag = "item" if outcome.status in {OutcomeStatus.MATCHED, OutcomeStatus.UNMATCHED} else "warn"
        print(f"[{tag}] {outcome.item_title} -> {outcome.display}", flush=True)
    print(
        f"[progress] chunk {result.current_chunk + 1}/{result.total_chunks} "
        f"processed={result.processed} remaining={result.remaining}",
        flush=True,
    )


def print_summary(state: BatchState, started: float) -> None:
    elapsed = max(time.time() - started, 1e-9)
    print("[summary] Run Metrics", flush=True)
    print(
        "[summary] "
        f"status={state.status.value} processed={state.processed_count}/{state.total_items} "
        f"matched={state.matched_count} unmatched={state.unmatched_count} "
        f"untouched={state.untouched_count} errors={state.error_count}",
        flush=True,
    )
    if state.last_error:
        print(f"[summary] last_error={state.last_error}", flush=True)
    print(f"[summary] duration={(elapsed / 60):.1f} min", flush=True)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Categorize uncategorized products with an LLM.")
    parser.add_argument("--chunk-size", type=int, default=None, help="Items per chunk (1-20).")
    parser.add_argument("--delay", type=float, default=None, help="Seconds to wait between chunks.")
    parser.add_argument("--max-chunks", type=int, default=None, help="Stop (cancel) after this many chunks.")
    return parser


def main() -> int:
    from .catalog import WooCommerceCatalog
    from .config import load_categorizer_settings

    load_env_file(REPO_ROOT / ".env")
    args = build_parser().parse_args()
    settings = load_categorizer_settings()

    client = CompletionClient.from_config()
    catalog = WooCommerceCatalog.from_config()
    job = CategorizationJob.from_settings(catalog, catalog, client, settings, chunk_size=args.chunk_size)

    started = time.time()
    print(f"[start] Model: {client.model}", flush=True)
    print(f"[start] Chunk size: {job.state.chunk_size}", flush=True)
    try:
        state = run_job(
            job,
            delay_seconds=args.delay if args.delay is not None else settings.chunk_delay_seconds,
            max_chunks=args.max_chunks,
            on_chunk=_print_chunk,
        )
    except KeyboardInterrupt:
        job.cancel()
        state = job.snapshot()
        print("[warn] Interrupted; job cancelled.", flush=True)
    except FATAL_ERRORS as exc:
        state = job.snapshot()
        print(f"[error] {exc}", flush=True)
    print_summary(state, started)
    print("[done] Categorization complete.", flush=True)
    return 1 if state.status == JobStatus.FAILED else 0


if __name__ == "__main__":
    raise SystemExit(main())
