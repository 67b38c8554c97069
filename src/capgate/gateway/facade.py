"""Gateway façade: Resolve -> Decrypt -> Build -> Call upstream -> Normalize -> relay.

Resolution and decryption failures are raised before any upstream call. Anything that
goes wrong once the upstream call starts ends the event stream with an ErrorEvent.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import aclosing
from dataclasses import dataclass

from capgate.core.errors import ErrorKind, GatewayError
from capgate.core.logging import LogContext, with_context
from capgate.core.metrics import (
    capgate_errors_total,
    capgate_invocation_duration_seconds,
    capgate_invocations_total,
)
from capgate.domain.chat import CanonicalRequest, InvokeResult
from capgate.domain.events import CanonicalEvent, Done, ErrorEvent, is_terminal
from capgate.domain.models import ResolvedContext
from capgate.providers.base import ProviderAdapter, UpstreamRequest
from capgate.providers.registry import ProviderRegistry
from capgate.routing.resolver import ConfigResolver
from capgate.security.vault import CredentialVault
from capgate.streaming.source import RawSource

log = logging.getLogger(__name__)


class _CallerCancelled(Exception):
    pass


@dataclass
class _Prepared:
    ctx: ResolvedContext
    adapter: ProviderAdapter
    upstream: UpstreamRequest
    deadline: float
    started: float
    logger: logging.LoggerAdapter


class Gateway:
    def __init__(
        self,
        *,
        resolver: ConfigResolver,
        vault: CredentialVault,
        registry: ProviderRegistry,
        default_timeout: float = 120.0,
        max_timeout: float = 300.0,
        close_timeout: float = 5.0,
    ):
        self._resolver = resolver
        self._vault = vault
        self._registry = registry
        self._default_timeout = default_timeout
        self._max_timeout = max_timeout
        self._close_timeout = close_timeout

    def _timeout(self, timeout_seconds: float | None) -> float:
        if timeout_seconds is None or timeout_seconds <= 0:
            return self._default_timeout
        return min(timeout_seconds, self._max_timeout)

    async def invoke(
        self,
        req: CanonicalRequest,
        *,
        timeout_seconds: float | None = None,
        request_id: str | None = None,
    ) -> InvokeResult | AsyncIterator[CanonicalEvent]:
        if req.stream:
            return await self.stream(req, timeout_seconds=timeout_seconds, request_id=request_id)
        return await self.complete(req, timeout_seconds=timeout_seconds, request_id=request_id)

    async def complete(
        self,
        req: CanonicalRequest,
        *,
        timeout_seconds: float | None = None,
        request_id: str | None = None,
    ) -> InvokeResult:
        """One-shot call: drains the event stream and returns the final text, or raises GatewayError."""
        prepared = await self._prepare(req, self._timeout(timeout_seconds), request_id)
        used_config_id = prepared.ctx.config.id
        async with aclosing(self._run(prepared, req, None)) as events:
            async for event in events:
                if isinstance(event, Done):
                    return InvokeResult(text=event.final_text, used_config_id=used_config_id, reasoning=event.reasoning)
                if isinstance(event, ErrorEvent):
                    raise event.to_exception()
        raise GatewayError("Event stream ended without a terminal event", kind=ErrorKind.EMPTY_STREAM)

    async def stream(
        self,
        req: CanonicalRequest,
        *,
        timeout_seconds: float | None = None,
        request_id: str | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> AsyncIterator[CanonicalEvent]:
        """Streaming call.

        Awaiting this resolves the config and decrypts its key (raising GatewayError on failure);
        the returned iterator then yields TextDelta events and exactly one Done or ErrorEvent.
        Setting `cancel_event` ends the stream with a Cancelled error and closes the upstream.
        """
        prepared = await self._prepare(req, self._timeout(timeout_seconds), request_id)
        return self._run(prepared, req, cancel_event)

    async def _prepare(self, req: CanonicalRequest, timeout: float, request_id: str | None) -> _Prepared:
        loop = asyncio.get_running_loop()
        started = time.perf_counter()
        deadline = loop.time() + timeout
        try:
            async with asyncio.timeout_at(deadline):
                config = await self._resolver.resolve(req.capability, req.explicit_config_id)
        except TimeoutError as e:
            capgate_errors_total.labels(kind=ErrorKind.TIMEOUT.value).inc()
            raise GatewayError("Timed out resolving model config", kind=ErrorKind.TIMEOUT) from e
        except GatewayError as e:
            capgate_errors_total.labels(kind=e.kind.value).inc()
            log.warning(
                "gateway.resolve_failed",
                extra={"request_id": request_id, "capability": req.capability.value, "kind": e.kind.value},
            )
            raise

        logger = with_context(
            log,
            LogContext(
                request_id=request_id,
                config_id=config.id,
                protocol=config.protocol_family.value,
                model=config.model,
            ),
        )
        try:
            api_key = self._vault.decrypt(config.encrypted_api_key)
        except GatewayError as e:
            capgate_errors_total.labels(kind=e.kind.value).inc()
            logger.error("gateway.decrypt_failed", extra={"kind": e.kind.value})
            raise

        ctx = ResolvedContext(config=config, plaintext_api_key=api_key)
        adapter = self._registry.for_config(config)
        upstream = adapter.build_request(req, ctx)
        return _Prepared(ctx=ctx, adapter=adapter, upstream=upstream, deadline=deadline, started=started, logger=logger)

    async def _run(
        self,
        p: _Prepared,
        req: CanonicalRequest,
        cancel_event: asyncio.Event | None,
    ) -> AsyncIterator[CanonicalEvent]:
        source: RawSource | None = None
        terminal: ErrorEvent | Done | None = None
        deltas = 0
        p.logger.info("gateway.invoke.start", extra={"capability": req.capability.value, "stream": req.stream})
        try:
            try:
                async with asyncio.timeout_at(p.deadline):
                    source = await p.adapter.open(p.upstream, p.ctx)
            except GatewayError as e:
                terminal = ErrorEvent.from_error(e)
            except TimeoutError:
                terminal = self._timed_out()
            except Exception as e:
                p.logger.exception("gateway.open_failed", extra={"error": type(e).__name__})
                terminal = ErrorEvent(
                    kind=ErrorKind.UPSTREAM_UNREACHABLE, message=f"Upstream call failed ({type(e).__name__})"
                )

            if source is not None:
                async with aclosing(p.adapter.parse_response(source)) as events:
                    while terminal is None:
                        try:
                            async with asyncio.timeout_at(p.deadline):
                                event = await self._pull(events, cancel_event)
                        except TimeoutError:
                            terminal = self._timed_out()
                            break
                        except _CallerCancelled:
                            terminal = ErrorEvent(kind=ErrorKind.CANCELLED, message="Invocation cancelled by caller")
                            break
                        except Exception as e:
                            p.logger.exception("gateway.stream_failed", extra={"error": type(e).__name__})
                            terminal = ErrorEvent(
                                kind=ErrorKind.MALFORMED_UPSTREAM_RESPONSE,
                                message=f"Upstream response could not be processed ({type(e).__name__})",
                            )
                            break
                        if event is None:
                            terminal = ErrorEvent(kind=ErrorKind.EMPTY_STREAM, message="Upstream closed without any content")
                        elif is_terminal(event):
                            terminal = event
                        else:
                            deltas += 1
                            yield event

            yield terminal
        finally:
            if source is not None:
                await self._close(source, p.logger)
            p.ctx.discard()
            self._record(p, req, terminal, deltas)

    async def _pull(
        self, events: AsyncIterator[CanonicalEvent], cancel_event: asyncio.Event | None
    ) -> CanonicalEvent | None:
        if cancel_event is None:
            return await anext(events, None)
        if cancel_event.is_set():
            raise _CallerCancelled
        pull = asyncio.ensure_future(anext(events, None))
        cancelled = asyncio.ensure_future(cancel_event.wait())
        try:
            await asyncio.wait({pull, cancelled}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (pull, cancelled):
                if not task.done():
                    task.cancel()
            # The pending read must settle before the upstream can be closed.
            await asyncio.wait({pull, cancelled})
        if not pull.cancelled():
            return pull.result()
        raise _CallerCancelled

    def _timed_out(self) -> ErrorEvent:
        return ErrorEvent(kind=ErrorKind.TIMEOUT, message="Invocation exceeded its deadline")

    async def _close(self, source: RawSource, logger: logging.LoggerAdapter) -> None:
        try:
            async with asyncio.timeout(self._close_timeout):
                await source.aclose()
        except TimeoutError:
            logger.warning("gateway.close_timeout", extra={"timeout_seconds": self._close_timeout})
        except Exception as e:
            logger.warning("gateway.close_failed", extra={"error": type(e).__name__})

    def _record(self, p: _Prepared, req: CanonicalRequest, terminal: ErrorEvent | Done | None, deltas: int) -> None:
        protocol = p.ctx.config.protocol_family.value
        stream = "true" if req.stream else "false"
        if terminal is None:
            outcome = "aborted"
        elif isinstance(terminal, ErrorEvent):
            outcome = "error"
            capgate_errors_total.labels(kind=terminal.kind.value).inc()
        else:
            outcome = "ok"
        elapsed = time.perf_counter() - p.started
        capgate_invocations_total.labels(
            protocol=protocol, capability=req.capability.value, stream=stream, outcome=outcome
        ).inc()
        capgate_invocation_duration_seconds.labels(protocol=protocol, stream=stream).observe(elapsed)

        extra = {"outcome": outcome, "deltas": deltas, "latency_ms": int(elapsed * 1000)}
        if isinstance(terminal, ErrorEvent):
            extra["kind"] = terminal.kind.value
            p.logger.warning("gateway.invoke.done", extra=extra)
        else:
            p.logger.info("gateway.invoke.done", extra=extra)
