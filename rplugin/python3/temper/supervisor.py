import asyncio
import logging
import os
from collections import deque
from datetime import datetime
from enum import Enum
from typing import Deque, Dict, Optional

from .errors import (
    CrossDocumentExecutionError,
    KernelError,
    KernelRestartedError,
    ProcessClosedError,
    ReadinessTimeoutError,
    SpawnError,
)
from .execution_queue import ExecutionQueue, ExecutionRequest
from .languages import LanguageSpec
from .protocol import EXIT_FRAME, DecodedEvent, ExecutionResult, ResponseDecoder, encode_request

READ_CHUNK_SIZE = 64 * 1024
EXIT_GRACE_PERIOD = 0.5
KILL_TIMEOUT = 2.0
TASK_CLEANUP_TIMEOUT = 1.0


class KernelState(Enum):
    NOT_STARTED = "not_started"
    STARTING = "starting"
    READY = "ready"
    DEAD = "dead"


class ProcessSupervisor:
    """
    Owns the interpreter process of one language.

    The supervisor spawns the interpreter loop on demand, waits for its
    readiness marker, feeds its stdout to the response decoder, settles the
    language's execution queue and notices when the process goes away.
    """

    def __init__(self, spec: LanguageSpec, executable: str, ready_timeout: Optional[float] = None):
        """
        Initialize a supervisor in the NOT_STARTED state.

        Args:
            spec: The language to supervise
            executable: Interpreter executable used for the next spawn
            ready_timeout: Seconds to wait for the readiness marker
                (defaults to the language's own timeout)
        """
        self.spec = spec
        self.language = spec.name
        self.executable = executable
        self.ready_timeout = ready_timeout if ready_timeout is not None else spec.ready_timeout

        self.state = KernelState.NOT_STARTED
        self.process: Optional[asyncio.subprocess.Process] = None
        self.cwd: Optional[str] = None
        self.document_path: Optional[str] = None
        self.started_at: Optional[datetime] = None
        self.queue = ExecutionQueue(spec.name)
        self.decoder = ResponseDecoder(spec.ready_marker, spec.name)

        self._reader_task: Optional[asyncio.Task] = None
        self._stderr_task: Optional[asyncio.Task] = None
        self._ready_future: Optional[asyncio.Future] = None
        self._start_lock = asyncio.Lock()
        self._expected_exit = False
        self._stop_reason: Optional[KernelError] = None
        self._stderr_tail: Deque[str] = deque(maxlen=20)
        self._logger = logging.getLogger(f"temper.kernel.{spec.name}")

    @property
    def is_alive(self) -> bool:
        return self.process is not None and self.process.returncode is None

    def configure(self, executable: str, ready_timeout: Optional[float] = None):
        """
        Update launch settings. They only take effect on the next spawn.
        """
        self.executable = executable
        if ready_timeout is not None:
            self.ready_timeout = ready_timeout

    async def ensure_running(self, document_path: Optional[str] = None):
        """
        Make sure a ready interpreter is available for the given document.

        Args:
            document_path: The document whose code will be executed. Its
                directory becomes the working directory of a new process.

        Raises:
            CrossDocumentExecutionError: The running process belongs to another document
            SpawnError: The interpreter could not be launched or died while booting
            ReadinessTimeoutError: The readiness marker did not arrive in time
        """
        if self.state == KernelState.READY and self.is_alive:
            self._bind_document(document_path)
            return

        async with self._start_lock:
            # Another caller may have finished the start while we waited
            if self.state == KernelState.READY and self.is_alive:
                self._bind_document(document_path)
                return
            await self._start(document_path)

    def _bind_document(self, document_path: Optional[str]):
        if not document_path:
            return
        requested = os.path.abspath(document_path)
        if self.document_path is None:
            self.document_path = requested
            return
        if requested != self.document_path:
            raise CrossDocumentExecutionError(
                f"The {self.spec.display_name} kernel is running code for "
                f"{os.path.basename(self.document_path)}. Restart the kernel before "
                f"executing code in {os.path.basename(requested)}.",
                self.language,
                bound_document=self.document_path,
                requested_document=requested,
            )

    async def _start(self, document_path: Optional[str]):
        self.state = KernelState.STARTING
        self.document_path = os.path.abspath(document_path) if document_path else None
        self.cwd = os.path.dirname(self.document_path) if self.document_path else os.getcwd()
        self.decoder.reset()
        self.queue.reset_sequence()
        self._expected_exit = False
        self._stop_reason = None
        self._stderr_tail.clear()
        self._ready_future = asyncio.get_running_loop().create_future()

        command = self.spec.build_command(self.executable)
        env = dict(os.environ)
        env.update(self.spec.env)

        self._logger.info(f"Starting {self.spec.display_name} kernel: {command} (cwd: {self.cwd})")
        try:
            self.process = await asyncio.create_subprocess_exec(
                *command,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=self.cwd,
                env=env,
            )
        except OSError as e:
            self.state = KernelState.DEAD
            self.process = None
            self.document_path = None
            self._logger.error(f"Failed to launch {self.executable}: {e}")
            raise SpawnError(
                f"Could not launch the {self.spec.display_name} interpreter '{self.executable}': {e}",
                self.language,
            ) from e

        self.started_at = datetime.now()
        self._reader_task = asyncio.create_task(self._read_stdout(self.process))
        self._stderr_task = asyncio.create_task(self._read_stderr(self.process))

        try:
            await asyncio.wait_for(self._ready_future, timeout=self.ready_timeout)
        except asyncio.TimeoutError:
            self._logger.error(f"{self.spec.display_name} kernel not ready after {self.ready_timeout}s, killing it")
            await self._stop()
            self.state = KernelState.DEAD
            self.document_path = None
            raise ReadinessTimeoutError(
                f"The {self.spec.display_name} kernel did not become ready within {self.ready_timeout:g} seconds",
                self.language,
            )
        except SpawnError:
            self.state = KernelState.DEAD
            self.document_path = None
            raise
        except KernelError:
            # Stopped by restart() or terminate() while booting
            self.document_path = None
            raise

        self.state = KernelState.READY
        self._logger.info(f"{self.spec.display_name} kernel ready (pid {self.process.pid})")

    async def execute(self, code: str) -> ExecutionResult:
        """
        Send code to the running interpreter and wait for its result.

        ensure_running() must have succeeded first. The request stays pending
        until the interpreter answers, the process dies or the kernel is
        restarted; there is no timeout.
        """
        req = self.submit(code)
        try:
            await self.process.stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as e:
            # The stdout reader notices the exit and fails the request
            self._logger.warning(f"Could not write request #{req.seq}: {e}")
        return await req.future

    def submit(self, code: str) -> ExecutionRequest:
        """
        Enqueue a request and write its frame without yielding in between.
        """
        if self.state != KernelState.READY or not self.is_alive or self.process.stdin is None:
            raise ProcessClosedError(f"The {self.spec.display_name} kernel is not running", self.language)

        req = self.queue.enqueue(code)
        frame = encode_request(code)
        try:
            self.process.stdin.write(frame.encode("utf-8"))
        except (BrokenPipeError, ConnectionResetError) as e:
            self._logger.warning(f"Could not write request #{req.seq}: {e}")
        self._logger.debug(f"Sent request #{req.seq} ({len(code)} chars)")
        return req

    async def _read_stdout(self, process: asyncio.subprocess.Process):
        try:
            while True:
                chunk = await process.stdout.read(READ_CHUNK_SIZE)
                if not chunk:
                    break
                for event in self.decoder.feed(chunk):
                    self._dispatch(event)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._logger.error(f"stdout reader failed: {e}")

        returncode = await process.wait()
        self._on_exit(process, returncode)

    def _dispatch(self, event: DecodedEvent):
        if event.kind == "ready":
            if self._ready_future is not None and not self._ready_future.done():
                self._ready_future.set_result(True)
        elif event.kind == "result":
            self.queue.resolve(event.result)
        elif event.kind == "error":
            self._logger.error(f"Undecodable response: {event.error} (payload: {event.text[:200]!r})")
            self.queue.reject_next(event.error)
        else:
            self._logger.warning(f"Stray output: {event.text[:500]}")

    async def _read_stderr(self, process: asyncio.subprocess.Process):
        try:
            while True:
                line = await process.stderr.readline()
                if not line:
                    break
                text = line.decode("utf-8", errors="replace").rstrip()
                if text:
                    self._stderr_tail.append(text)
                    self._logger.info(f"[stderr] {text}")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._logger.warning(f"stderr reader failed: {e}")

    def _on_exit(self, process: asyncio.subprocess.Process, returncode: int):
        if process is not self.process:
            return

        self.process = None
        booting = self._ready_future is not None and not self._ready_future.done()
        if booting and self._stop_reason is not None:
            self._ready_future.set_exception(self._stop_reason)
        elif booting:
            detail = f": {self._stderr_tail[-1]}" if self._stderr_tail else ""
            self._ready_future.set_exception(
                SpawnError(
                    f"The {self.spec.display_name} interpreter exited during startup "
                    f"(exit code {returncode}){detail}",
                    self.language,
                )
            )

        if self._expected_exit:
            self._logger.info(f"{self.spec.display_name} kernel exited (exit code {returncode})")
            return

        self._logger.warning(f"{self.spec.display_name} kernel died unexpectedly (exit code {returncode})")
        if self.state == KernelState.READY:
            self.state = KernelState.DEAD
            self.document_path = None
        self.queue.fail_all(
            ProcessClosedError(
                f"The {self.spec.display_name} process closed unexpectedly (exit code {returncode})",
                self.language,
            )
        )

    async def restart(self) -> int:
        """
        Stop the process and fail every pending request of this language.

        Returns:
            int: The number of pending requests that were failed
        """
        self._logger.info(f"Restarting {self.spec.display_name} kernel")
        reason = KernelRestartedError(f"{self.spec.display_name} kernel restarted", self.language)
        await self._stop(reason)
        self.state = KernelState.NOT_STARTED
        self.document_path = None
        return self.queue.fail_all(reason)

    async def terminate(self) -> int:
        """
        Stop the process for good, at shutdown.

        Pending requests are failed with ProcessClosedError so that no caller
        keeps waiting on a process that will not come back.
        """
        self._logger.info(f"Shutting down {self.spec.display_name} kernel")
        reason = ProcessClosedError(f"{self.spec.display_name} kernel shut down", self.language)
        await self._stop(reason)
        self.state = KernelState.NOT_STARTED
        return self.queue.fail_all(reason)

    async def _stop(self, reason: Optional[KernelError] = None):
        process = self.process
        if process is not None:
            self._expected_exit = True
            self._stop_reason = reason
            if process.returncode is None:
                try:
                    if process.stdin is not None and not process.stdin.is_closing():
                        process.stdin.write(EXIT_FRAME.encode("utf-8"))
                        process.stdin.close()
                except (BrokenPipeError, ConnectionResetError) as e:
                    self._logger.debug(f"Could not send exit frame: {e}")

                try:
                    await asyncio.wait_for(process.wait(), timeout=EXIT_GRACE_PERIOD)
                except asyncio.TimeoutError:
                    try:
                        process.kill()
                    except ProcessLookupError:
                        pass

            try:
                await asyncio.wait_for(process.wait(), timeout=KILL_TIMEOUT)
            except asyncio.TimeoutError:
                self._logger.warning(f"Timeout killing pid {process.pid}. It may be orphaned.")

        for task in (self._reader_task, self._stderr_task):
            if task is not None and not task.done():
                try:
                    await asyncio.wait_for(task, timeout=TASK_CLEANUP_TIMEOUT)
                except (asyncio.CancelledError, asyncio.TimeoutError):
                    pass

        self._reader_task = None
        self._stderr_task = None
        self.process = None

    def describe(self) -> Dict:
        """Status information for this kernel."""
        return {
            "language": self.language,
            "display_name": self.spec.display_name,
            "state": self.state.value,
            "pid": self.process.pid if self.process is not None else None,
            "executable": self.executable,
            "cwd": self.cwd,
            "document": self.document_path,
            "pending": len(self.queue),
            "started_at": self.started_at.isoformat() if self.started_at else None,
        }
