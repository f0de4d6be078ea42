"""CLI agent runner.

Runs one conversational turn through an external agent CLI described by a
BackendDescriptor and returns a RunResult, whatever the backend's protocol.

Lifecycle of a run: build args -> spawn -> stream -> close. Only resolution
failures (UnknownBackendError) and classified non-zero exits (FailoverError)
are raised; everything else comes back as a result, with error text as a
payload when there is something to say.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from dataclasses import dataclass, field
from typing import Mapping, Sequence

from cliagent.runners.args import (
    ImageFiles,
    SessionChoice,
    append_image_paths_to_prompt,
    build_cli_args,
    build_env,
    choose_session,
    resolve_prompt_input,
    system_prompt_for,
)
from cliagent.runners.backends import BackendDescriptor, normalize_model, resolve_backend
from cliagent.runners.cleanup import reap_session_processes, reap_suspended_processes
from cliagent.runners.config import RunnerConfig
from cliagent.runners.events import StreamNormalizer
from cliagent.runners.failover import FailoverError, is_failover_error_message
from cliagent.runners.models import (
    BLOCK_COMPLETE,
    ERROR,
    TOOL_START,
    Payload,
    RunRequest,
    RunResult,
    StreamEvent,
    Usage,
)
from cliagent.runners.output import parse_output
from cliagent.runners.pipeline import EventChannel, LineCollector
from cliagent.runners.ports import ProcessExit, ProcessTransport, SessionBridge, TranscriptSink
from cliagent.runners.runs import ACTIVE_RUNS, DEFAULT_WAIT_TIMEOUT_S, RunHandle, RunRegistry
from cliagent.runners.tool_logging import format_tool_input_preview, redact_argv, should_log_output
from cliagent.runners.transport import PipeTransport, PtyTransport, SpawnError

log = logging.getLogger("cli.runner")

ERROR_TEXT_LIMIT = 500


@dataclass
class RunState:
    """Accumulates what a run produced while its output streams in."""

    payloads: list[Payload] = field(default_factory=list)
    tool_count: int = 0

    def has_text(self) -> bool:
        return any(not p.is_error for p in self.payloads)


@dataclass
class _Outcome:
    payloads: list[Payload]
    aborted: bool
    exit: ProcessExit | None
    session_id: str | None = None
    usage: Usage | None = None
    error_text: str | None = None


class CliRunner:
    """Runs CLI backends and tracks their active runs."""

    def __init__(
        self,
        config: RunnerConfig | None = None,
        *,
        registry: RunRegistry | None = None,
        transport: ProcessTransport | None = None,
        session_bridge: SessionBridge | None = None,
        transcript: TranscriptSink | None = None,
        reap_stale: bool = True,
    ):
        self.config = config or RunnerConfig()
        self.registry = registry or ACTIVE_RUNS
        self.session_bridge = session_bridge
        self.transcript = transcript
        self.reap_stale = reap_stale
        self._transport = transport
        self._pipe = PipeTransport(kill_grace_s=self.config.kill_grace_s)
        self._pty = PtyTransport(kill_grace_s=self.config.kill_grace_s)

    # Registry passthroughs

    def is_active(self, session_key: str) -> bool:
        return self.registry.is_active(session_key)

    def is_streaming(self, session_key: str) -> bool:
        return self.registry.is_streaming(session_key)

    def abort(self, session_key: str) -> bool:
        return self.registry.abort(session_key)

    def queue_message(self, session_key: str, text: str) -> bool:
        return self.registry.queue_message(session_key, text)

    async def wait_for_end(self, session_key: str, timeout_s: float = DEFAULT_WAIT_TIMEOUT_S) -> bool:
        return await self.registry.wait_for_end(session_key, timeout_s)

    # Running

    async def run(self, request: RunRequest) -> RunResult:
        started = time.monotonic()
        provider = request.provider or self.config.default_provider
        descriptor = resolve_backend(provider, self.config.backend_overrides())
        model_id = (request.model or "").strip() or "default"
        cli_model = normalize_model(model_id, descriptor)

        native_id = request.native_session_id or self._lookup_native_id(request.session_key)
        session = choose_session(descriptor, native_id)
        system_prompt = system_prompt_for(descriptor, request.extra_system_prompt, is_new=session.is_new)
        timeout_s = request.timeout_s if request.timeout_s is not None else self.config.default_timeout_s
        label = request.run_id or request.session_key

        log.info(
            f"[{label}] cli exec: provider={descriptor.id} model={cli_model} "
            f"resume={session.resume} promptChars={len(request.prompt)}"
        )

        try:
            with ImageFiles(request.images) as images:
                prompt = request.prompt
                if images.paths and not descriptor.image_arg:
                    prompt = append_image_paths_to_prompt(prompt, images.paths)
                prompt_input = resolve_prompt_input(descriptor, prompt)
                args = build_cli_args(
                    descriptor,
                    model=cli_model,
                    session=session,
                    system_prompt=system_prompt,
                    image_paths=images.paths if descriptor.image_arg else (),
                    prompt_arg=prompt_input.arg,
                )
                if self.config.log_output or should_log_output():
                    log.info(f"[{label}] cli argv: {redact_argv(descriptor, args, prompt_arg=prompt_input.arg)}")

                env = build_env(descriptor)
                if descriptor.serialize:
                    async with self.registry.slot(descriptor.id):
                        outcome = await self._execute(
                            request, descriptor, args, env, prompt_input.stdin, session, timeout_s, label
                        )
                else:
                    outcome = await self._execute(
                        request, descriptor, args, env, prompt_input.stdin, session, timeout_s, label
                    )
        except FailoverError:
            raise
        except Exception as e:
            if is_failover_error_message(str(e)):
                raise FailoverError.from_message(str(e), provider=provider, model=model_id) from e
            raise

        if outcome.error_text is not None:
            log.warning(f"[{label}] cli failed: {outcome.error_text[:200]}")
            raise FailoverError.from_message(outcome.error_text, provider=provider, model=model_id)

        result = RunResult(
            payloads=outcome.payloads,
            aborted=outcome.aborted,
            duration_s=time.monotonic() - started,
            session_id=outcome.session_id or session.session_id,
            provider=provider,
            model=model_id,
            usage=outcome.usage,
            exit_code=outcome.exit.code if outcome.exit else None,
        )
        log.info(
            f"[{label}] cli done: payloads={len(result.payloads)} aborted={result.aborted} "
            f"session={result.session_id} {result.duration_s:.1f}s"
        )
        await self._persist(request, result)
        return result

    async def _execute(
        self,
        request: RunRequest,
        descriptor: BackendDescriptor,
        args: Sequence[str],
        env: Mapping[str, str],
        stdin: str | None,
        session: SessionChoice,
        timeout_s: float | None,
        label: str,
    ) -> _Outcome:
        if self.reap_stale:
            await asyncio.to_thread(reap_suspended_processes, descriptor.command)
            if session.resume and session.session_id:
                await asyncio.to_thread(reap_session_processes, descriptor.command, session.session_id)

        # A resume may print a different format than a fresh run (codex resume is plain text).
        streams = descriptor.streaming and descriptor.output_mode(session.resume) == "jsonl"
        normalizer = StreamNormalizer(descriptor) if streams else None
        collector = LineCollector()
        channel = EventChannel(request.callbacks, label=label)
        state = RunState()

        def publish(events: list[StreamEvent]) -> None:
            for event in events:
                self._observe(event, state, label)
                channel.emit(event)

        async def on_line(line: str) -> None:
            if normalizer is None:
                await collector(line)
            else:
                publish(normalizer.feed(line))

        transport = self._transport_for(descriptor)
        try:
            process = await transport.spawn(
                [descriptor.command, *args],
                cwd=request.workspace_dir,
                env=env,
                on_line=on_line,
            )
        except SpawnError as e:
            log.error(f"[{label}] cli spawn error: {e}")
            await channel.close()
            return _Outcome(
                payloads=[Payload(f"Failed to spawn CLI: {e}", is_error=True)],
                aborted=False,
                exit=None,
            )
        except BaseException:
            await channel.close()
            raise

        handle = RunHandle(request.session_key, process, backend_id=descriptor.id)
        self.registry.register(request.session_key, handle)
        timer: asyncio.TimerHandle | None = None
        if timeout_s is not None and timeout_s > 0:
            timer = asyncio.get_running_loop().call_later(timeout_s, self._on_timeout, handle, label, timeout_s)

        try:
            if stdin is not None:
                process.write(stdin)
            process.close_stdin()
            exit_status = await process.wait()
            if normalizer is not None:
                publish(normalizer.finish())
        except asyncio.CancelledError:
            handle.abort()
            raise
        finally:
            if timer is not None:
                timer.cancel()
            handle.mark_finished()
            self.registry.clear(request.session_key, handle)
            await channel.close()

        log.debug(f"[{label}] cli closed: code={exit_status.code} aborted={handle.aborted}")
        if normalizer is not None:
            return self._close_streaming(state, normalizer, exit_status, handle.aborted)
        return self._close_buffered(descriptor, session, collector, exit_status, handle.aborted)

    def _close_streaming(
        self,
        state: RunState,
        normalizer: StreamNormalizer,
        exit_status: ProcessExit,
        aborted: bool,
    ) -> _Outcome:
        payloads = list(state.payloads)
        if not state.has_text() and normalizer.result_text:
            payloads.append(Payload(normalizer.result_text.strip()))

        outcome = _Outcome(
            payloads=payloads,
            aborted=aborted,
            exit=exit_status,
            session_id=normalizer.session_id,
            usage=normalizer.usage,
        )
        if exit_status.code != 0 and not aborted:
            error_text = exit_status.stderr or f"CLI exited with code {exit_status.code}"
            if not payloads:
                outcome.error_text = error_text
            else:
                payloads.append(
                    Payload(f"CLI error (exit {exit_status.code}): {error_text[:ERROR_TEXT_LIMIT]}", is_error=True)
                )
        return outcome

    def _close_buffered(
        self,
        descriptor: BackendDescriptor,
        session: SessionChoice,
        collector: LineCollector,
        exit_status: ProcessExit,
        aborted: bool,
    ) -> _Outcome:
        output = collector.text
        if exit_status.code != 0 and not aborted:
            return _Outcome(
                payloads=[],
                aborted=aborted,
                exit=exit_status,
                error_text=exit_status.stderr or output or f"CLI exited with code {exit_status.code}",
            )
        parsed = parse_output(output, descriptor, descriptor.output_mode(session.resume))
        return _Outcome(
            payloads=[Payload(parsed.text)] if parsed.text else [],
            aborted=aborted,
            exit=exit_status,
            session_id=parsed.session_id,
            usage=parsed.usage,
        )

    def _observe(self, event: StreamEvent, state: RunState, label: str) -> None:
        if event.kind == BLOCK_COMPLETE:
            state.payloads.append(Payload(event.text))
        elif event.kind == ERROR:
            log.error(f"[{label}] cli error event: {event.text[:200]}")
            state.payloads.append(Payload(f"Error: {event.text}", is_error=True))
        elif event.kind == TOOL_START:
            state.tool_count += 1
            preview = format_tool_input_preview(event.tool_name, event.tool_input)
            log.debug(f"[{label}] [tool:{event.tool_name} {preview or ''}]")

    def _on_timeout(self, handle: RunHandle, label: str, timeout_s: float) -> None:
        if handle.is_streaming():
            log.warning(f"[{label}] cli timeout after {timeout_s}s, aborting")
            handle.abort()

    def _transport_for(self, descriptor: BackendDescriptor) -> ProcessTransport:
        if self._transport is not None:
            return self._transport
        return self._pty if descriptor.pty else self._pipe

    def _lookup_native_id(self, session_key: str) -> str | None:
        if self.session_bridge is None:
            return None
        try:
            return self.session_bridge.get(session_key)
        except Exception:
            log.exception(f"Session bridge lookup failed for {session_key}")
            return None

    async def _persist(self, request: RunRequest, result: RunResult) -> None:
        """Hand the finished turn to collaborators; their failures never unwind the run."""
        if self.session_bridge is not None and result.session_id:
            try:
                self.session_bridge.set(request.session_key, result.session_id)
            except Exception:
                log.exception(f"Failed to store native session id for {request.session_key}")

        if self.transcript is None:
            return
        try:
            written = self.transcript.append(
                request.session_key,
                role="assistant",
                text=result.text,
                provider=result.provider,
                model=result.model,
                usage=result.usage,
            )
            if inspect.isawaitable(written):
                await written
        except Exception:
            log.exception(f"Transcript append failed for {request.session_key}")


async def run_cli_agent(request: RunRequest, config: RunnerConfig | None = None) -> RunResult:
    """One-shot helper using the process-wide run registry."""
    return await CliRunner(config).run(request)
