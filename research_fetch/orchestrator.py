"""Iteration state machine driving resolve, fetch and refine rounds."""

import asyncio
from collections.abc import Iterable, Sequence
from time import perf_counter
from typing import Protocol

from research_fetch.classifier import classify_target, target_to_url
from research_fetch.clients import ContentCollaborator, SearchCollaborator
from research_fetch.config import EngineConfig, ResearchParams
from research_fetch.events import (
    BatchCompletedEvent,
    EventCallback,
    RoundFinishedEvent,
    RoundStartedEvent,
    SessionFinishedEvent,
    SessionStartedEvent,
    SSEEvent,
    TargetFailedEvent,
    TargetResolvedEvent,
)
from research_fetch.exceptions import (
    FetchError,
    FetchErrorKind,
    OperationCanceledError,
    RefinementError,
    ResolutionError,
    SessionBusyError,
)
from research_fetch.fetcher import ContentFetcher
from research_fetch.logging import get_logger, new_correlation_id, session_log_context
from research_fetch.models import (
    RefinementRequest,
    RefinementResult,
    ResearchIteration,
    ResearchOutcome,
    ResolvedURL,
    ScrapingResult,
    SearchTarget,
    SessionState,
)
from research_fetch.rate_limiter import RateLimiter
from research_fetch.resolver import SearchResolver
from research_fetch.retry import RetryPolicy, cancellable_sleep, with_timeout
from research_fetch.scheduler import BatchReport, run_batches
from research_fetch.urls import is_disallowed_url, is_valid_url

log = get_logger("research_fetch.orchestrator")

RATE_WINDOW_MARGIN_S = 0.01


class Refiner(Protocol):
    """Reasoning collaborator that reviews a round and proposes the next targets."""

    async def refine(self, request: RefinementRequest) -> RefinementResult: ...


class ResearchOrchestrator:
    """Runs research rounds until done, exhausted, canceled or failed.

    One instance is one research session owner: its fetch cache, rate
    limiter and cancellation flag are never shared with other instances.
    """

    def __init__(
        self,
        search_client: SearchCollaborator,
        content_client: ContentCollaborator,
        refiner: Refiner,
        config: EngineConfig | None = None,
    ) -> None:
        self.config = config or EngineConfig()
        self._refiner = refiner
        self._retry = RetryPolicy(max_retries=self.config.max_retries, base_delay_ms=self.config.retry_base_delay_ms)
        self.rate_limiter = RateLimiter(self.config.max_calls_per_window, self.config.rate_limiter_window_ms)
        self.resolver = SearchResolver(
            search_client,
            self._retry,
            excluded_domains=self.config.excluded_domains,
            disallowed_prefixes=self.config.disallowed_url_prefixes,
            fallback_sources=self.config.fallback_sources,
            timeout_ms=self.config.search_timeout_ms,
            num_results=self.config.search_results_per_query,
        )
        self.fetcher = ContentFetcher(
            content_client,
            self.rate_limiter,
            self._retry,
            timeout_ms=self.config.per_fetch_timeout_ms,
            formats=self.config.formats,
            disallowed_prefixes=self.config.disallowed_url_prefixes,
        )

        self._cancel_event = asyncio.Event()
        self._cancel_reason: str | None = None
        self._state = SessionState.IDLE
        self._running = False
        self._results: list[ScrapingResult] = []
        self._accumulated_urls: set[str] = set()
        self._history: list[ResearchIteration] = []
        self._subscribers: list[EventCallback] = []
        self.session_id: str | None = None

    # --- Public state ---

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def results(self) -> list[ScrapingResult]:
        return list(self._results)

    @property
    def history(self) -> list[ResearchIteration]:
        return list(self._history)

    @property
    def is_canceled(self) -> bool:
        return self._cancel_event.is_set()

    @property
    def is_running(self) -> bool:
        return self._running

    def subscribe(self, callback: EventCallback) -> None:
        """Register an async callback for progress events."""
        self._subscribers.append(callback)

    def unsubscribe(self, callback: EventCallback) -> None:
        if callback in self._subscribers:
            self._subscribers.remove(callback)

    def cancel(self, reason: str = "user") -> None:
        """Stop the session at the next unit-of-work boundary.

        In-flight fetches finish or time out on their own; no new network
        calls start after this.
        """
        if self._cancel_event.is_set():
            return
        self._cancel_reason = reason
        self._cancel_event.set()
        log.info("orchestrator.cancel.requested", reason=reason, state=self._state.value)

    def reset(self) -> None:
        """Drop all session state, including the fetch cache and rate window."""
        if self._running:
            raise SessionBusyError("reset")
        self.fetcher.clear_cache()
        self.rate_limiter.reset()
        self._clear_session()
        self.session_id = None
        log.info("orchestrator.reset")

    # --- Session ---

    def _clear_session(self) -> None:
        self._results.clear()
        self._accumulated_urls.clear()
        self._history.clear()
        self._cancel_event.clear()
        self._cancel_reason = None
        self._state = SessionState.IDLE

    def _outcome(self, started: float) -> ResearchOutcome:
        return ResearchOutcome(
            state=self._state,
            results=list(self._results),
            iterations=[iteration.model_copy(deep=True) for iteration in self._history],
            cancel_reason=self._cancel_reason if self._state == SessionState.CANCELED else None,
            duration_ms=int((perf_counter() - started) * 1000),
        )

    async def run(self, targets: Sequence[str], params: ResearchParams | None = None) -> ResearchOutcome:
        """Research ``targets`` in rounds until a terminal state is reached.

        Accumulated results and history from a previous run are discarded; the
        fetch cache and rate window are kept until ``reset()``.

        Raises:
            RefinementError: When the refinement collaborator fails. The error
                carries the partial outcome; ``results`` and ``history`` stay
                readable on the orchestrator as well.
            SessionBusyError: When a session is already running.
        """
        if self._running:
            raise SessionBusyError("start a new session")
        params = params or ResearchParams()

        self._clear_session()
        self._running = True
        self.session_id = new_correlation_id()
        with session_log_context(self.session_id):
            return await self._run_session(targets, params)

    async def _run_session(self, targets: Sequence[str], params: ResearchParams) -> ResearchOutcome:
        started = perf_counter()

        timer: asyncio.TimerHandle | None = None
        if params.session_timeout_ms is not None:
            timer = asyncio.get_running_loop().call_later(params.session_timeout_ms / 1000, self.cancel, "timeout")

        log.info("orchestrator.session.started", targets=len(targets), max_iterations=params.max_iterations)
        try:
            await self._emit(SessionStartedEvent(data={"session_id": self.session_id, "targets": list(targets)}))
            self._state = await self._run_rounds(targets, params)
        except RefinementError as e:
            self._state = SessionState.FAILED
            e.outcome = self._outcome(started)
            log.error("orchestrator.session.failed", iteration=e.iteration, error=e.reason)
            await self._emit_finished()
            raise
        finally:
            if timer is not None:
                timer.cancel()
            self._running = False

        outcome = self._outcome(started)
        log.info(
            "orchestrator.session.finished",
            state=outcome.state.value,
            rounds=len(outcome.iterations),
            total_results=len(outcome.results),
            duration_ms=outcome.duration_ms,
        )
        await self._emit_finished()
        return outcome

    async def _run_rounds(self, targets: Sequence[str], params: ResearchParams) -> SessionState:
        current = self._prepare_targets(targets)
        iteration = 0
        while True:
            if self.is_canceled:
                return SessionState.CANCELED
            if not current:
                return SessionState.DONE
            if len(self._results) >= params.max_results_total:
                log.info("orchestrator.result_cap.reached", total_results=len(self._results))
                return SessionState.EXHAUSTED

            iteration += 1
            record = ResearchIteration(iteration=iteration, targets=current)
            self._history.append(record)
            log.info("orchestrator.round.started", iteration=iteration, targets=len(current))
            await self._emit(RoundStartedEvent(data={"iteration": iteration, "targets": [t.text for t in current]}))

            self._state = SessionState.RESOLVING
            resolved = await self._resolve_round(record, params)
            if self.is_canceled:
                return SessionState.CANCELED

            self._state = SessionState.FETCHING
            await self._fetch_round(record, resolved, params)
            if self.is_canceled:
                return SessionState.CANCELED
            if not record.results:
                log.info("orchestrator.round.no_results", iteration=iteration, resolved_urls=len(resolved))

            self._state = SessionState.REVIEWING
            refinement = await self._refine(record, params)
            if refinement is None:
                return SessionState.CANCELED
            record.analysis = refinement.analysis
            record.extraction_focus = refinement.extraction_focus
            record.improved_targets = list(refinement.improved_targets)
            log.info(
                "orchestrator.round.finished",
                iteration=iteration,
                round_results=len(record.results),
                total_results=len(self._results),
                improved_targets=len(record.improved_targets),
            )
            await self._emit(
                RoundFinishedEvent(
                    data={
                        "iteration": iteration,
                        "round_results": len(record.results),
                        "total_results": len(self._results),
                        "improved_targets": record.improved_targets,
                    }
                )
            )

            if self.is_canceled:
                return SessionState.CANCELED
            if not record.improved_targets:
                return SessionState.DONE
            if iteration >= params.max_iterations:
                return SessionState.EXHAUSTED
            current = self._prepare_targets(record.improved_targets)

    def _prepare_targets(self, texts: Iterable[str]) -> list[SearchTarget]:
        targets: list[SearchTarget] = []
        seen: set[str] = set()
        for text in texts:
            value = text.strip()
            if not value or value in seen:
                continue
            seen.add(value)
            targets.append(classify_target(value, self.config.country_codes))
        return targets

    # --- Resolving ---

    def _direct_urls(self, target: SearchTarget) -> list[ResolvedURL]:
        url = target_to_url(target)
        if url is None or not is_valid_url(url) or is_disallowed_url(url, self.config.disallowed_url_prefixes):
            log.warning("orchestrator.target.invalid_url", target=target.text)
            return []
        return [ResolvedURL(url=url, source_target=target.text)]

    async def _resolve_round(self, record: ResearchIteration, params: ResearchParams) -> list[ResolvedURL]:
        resolved: list[ResolvedURL] = []
        seen = set(self._accumulated_urls)
        searched = False

        for target in record.targets:
            if self.is_canceled:
                break

            if target_to_url(target) is not None:
                urls = self._direct_urls(target)
            else:
                if searched and self.config.inter_target_delay_ms > 0:
                    if await cancellable_sleep(self.config.inter_target_delay_ms / 1000, self._cancel_event):
                        break
                searched = True
                try:
                    urls = await self.resolver.resolve_with_fallback(
                        target,
                        limit=self.config.max_urls_per_target,
                        date_window=params.date_window,
                        context=params.research_context,
                        cancel_event=self._cancel_event,
                    )
                except OperationCanceledError:
                    break
                except ResolutionError as e:
                    log.warning("orchestrator.target.failed", target=target.text, error=e.reason)
                    await self._emit(
                        TargetFailedEvent(data={"iteration": record.iteration, "target": target.text, "error": e.reason})
                    )
                    continue

            kept: list[ResolvedURL] = []
            for resolved_url in urls:
                if resolved_url.url in seen:
                    continue
                seen.add(resolved_url.url)
                kept.append(resolved_url)
                if len(kept) >= self.config.max_urls_per_target:
                    break
            resolved.extend(kept)
            await self._emit(
                TargetResolvedEvent(
                    data={
                        "iteration": record.iteration,
                        "target": target.text,
                        "kind": target.kind.value,
                        "url_count": len(kept),
                    }
                )
            )

        log.info("orchestrator.round.resolved", iteration=record.iteration, urls=len(resolved))
        return resolved

    # --- Fetching ---

    async def _fetch_round(self, record: ResearchIteration, resolved: list[ResolvedURL], params: ResearchParams) -> None:
        cap = params.max_results_total

        async def _fetch(item: ResolvedURL) -> ScrapingResult:
            waits = 0
            while True:
                try:
                    result = await self.fetcher.fetch(
                        item.url, source_target=item.source_target, cancel_event=self._cancel_event
                    )
                    break
                except FetchError as e:
                    # Only a full local window is worth waiting for; upstream 429s were already retried
                    local_denial = e.kind == FetchErrorKind.RATE_LIMITED and self.rate_limiter.available() == 0
                    if not local_denial or waits >= self.config.rate_limit_max_waits:
                        raise
                    waits += 1
                    delay_s = self.rate_limiter.retry_after() + RATE_WINDOW_MARGIN_S
                    log.info(
                        "orchestrator.fetch.rate_window_wait",
                        url=item.url,
                        wait=waits,
                        delay_ms=int(delay_s * 1000),
                    )
                    if await cancellable_sleep(delay_s, self._cancel_event):
                        raise OperationCanceledError("fetch") from e
            # Cache hits carry the provenance of the request that first fetched them
            if result.source_target != item.source_target:
                result = result.model_copy(update={"source_target": item.source_target})
            return result

        async def _on_batch(report: BatchReport, batch_results: list[ScrapingResult]) -> None:
            for result in batch_results:
                if len(self._results) >= cap:
                    break
                if result.url in self._accumulated_urls:
                    continue
                self._accumulated_urls.add(result.url)
                self._results.append(result)
                record.results.append(result)
            await self._emit(
                BatchCompletedEvent(
                    data={
                        "iteration": record.iteration,
                        "batch": report.index + 1,
                        "total_batches": report.total_batches,
                        "succeeded": report.succeeded,
                        "failed": report.failed,
                        "accumulated": len(self._results),
                    }
                )
            )

        def _should_continue() -> bool:
            return not self.is_canceled and len(self._results) < cap

        await run_batches(
            resolved,
            self.config.batch_size,
            self.config.inter_batch_delay_ms,
            _fetch,
            should_continue=_should_continue,
            on_batch=_on_batch,
            cancel_event=self._cancel_event,
        )

    # --- Reviewing ---

    async def _refine(self, record: ResearchIteration, params: ResearchParams) -> RefinementResult | None:
        """Ask the refinement collaborator for the next targets; None when canceled."""
        request = RefinementRequest(
            search_targets=[target.text for target in record.targets],
            current_results=list(self._results),
            research_goals=list(params.research_goals),
            iteration=record.iteration,
            context=params.research_context,
        )
        try:
            return await self._retry.execute(
                lambda: with_timeout(
                    self._refiner.refine(request),
                    self.config.refinement_timeout_ms,
                    operation="refinement",
                ),
                operation="refinement",
                cancel_event=self._cancel_event,
            )
        except OperationCanceledError:
            return None
        except Exception as e:
            raise RefinementError(iteration=record.iteration, reason=str(e)) from e

    # --- Events ---

    async def _emit(self, event: SSEEvent) -> None:
        for callback in list(self._subscribers):
            try:
                await callback(event)
            except Exception as e:
                log.warning("orchestrator.subscriber.failed", event_type=event.event.value, error=str(e))

    async def _emit_finished(self) -> None:
        await self._emit(
            SessionFinishedEvent(
                data={
                    "state": self._state.value,
                    "rounds": len(self._history),
                    "total_results": len(self._results),
                    "cancel_reason": self._cancel_reason,
                }
            )
        )
