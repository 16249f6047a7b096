import asyncio
import logging
from typing import Callable, Dict, List, Optional

from .core.config import Settings
from .errors import (
    CrossDocumentExecutionError,
    KernelError,
    KernelRestartedError,
    ProtocolError,
    ReadinessTimeoutError,
    SpawnError,
)
from .languages import DEFAULT_LANGUAGES, LanguageSpec, normalize_language
from .protocol import ExecutionResult
from .supervisor import ProcessSupervisor


class KernelManager:
    """
    Façade over the per-language process supervisors.

    Owns exactly one ProcessSupervisor per supported language, created on
    first use. Callers only ever talk to the manager.
    """

    def __init__(
        self,
        settings_provider: Callable[[], Settings],
        notifier: Optional[Callable[[str, str], None]] = None,
        languages: Optional[Dict[str, LanguageSpec]] = None,
    ):
        """
        Initialize the kernel manager.

        Args:
            settings_provider: Returns the current settings; consulted each
                time a process is about to be spawned
            notifier: Fire-and-forget callable taking (message, level)
            languages: Supported languages, keyed by name
        """
        self.settings_provider = settings_provider
        self.notifier = notifier
        self.languages = languages or DEFAULT_LANGUAGES
        self.supervisors: Dict[str, ProcessSupervisor] = {}
        self._closed = False
        self._logger = logging.getLogger("temper.kernel_manager")

    def _notify(self, message: str, level: str = "info"):
        if self.notifier is None:
            return
        try:
            self.notifier(message, level)
        except Exception as e:
            self._logger.error(f"Failed to notify user: {e}")

    def _spec_for(self, language: str) -> LanguageSpec:
        name = normalize_language(language)
        if name not in self.languages:
            raise ValueError(f"Unsupported language: {language}")
        return self.languages[name]

    def _launch_settings(self, spec: LanguageSpec):
        settings = self.settings_provider()
        if spec.name == "julia":
            return settings.julia_executable, settings.julia_ready_timeout
        return settings.python_interpreter, settings.python_ready_timeout

    def get_supervisor(self, language: str) -> ProcessSupervisor:
        """Return the supervisor for a language, creating it on first use."""
        spec = self._spec_for(language)
        supervisor = self.supervisors.get(spec.name)
        if supervisor is None:
            executable, timeout = self._launch_settings(spec)
            supervisor = ProcessSupervisor(spec, executable, timeout)
            self.supervisors[spec.name] = supervisor
            self._logger.debug(f"Created supervisor for {spec.name}")
        return supervisor

    async def execute(self, code: str, language: str = "python", document_path: Optional[str] = None) -> ExecutionResult:
        """
        Execute code in the kernel of the given language.

        Args:
            code: Source code to run
            language: 'python' or 'julia'
            document_path: The document the code belongs to

        Returns:
            ExecutionResult: Captured stdout, stderr and image

        Raises:
            KernelError: Any supervisor or queue failure, after notifying the user
        """
        supervisor = self.get_supervisor(language)
        name = supervisor.spec.display_name

        if not supervisor.is_alive:
            # Settings only apply to a process that is about to be spawned
            supervisor.configure(*self._launch_settings(supervisor.spec))

        try:
            await supervisor.ensure_running(document_path)
            return await supervisor.execute(code)
        except CrossDocumentExecutionError as e:
            self._notify(f"{e}\nUse :TemperRestartKernel {supervisor.language}", level="error")
            raise
        except SpawnError as e:
            self._notify(f"{name} kernel failed to start: {e}", level="error")
            raise
        except ReadinessTimeoutError as e:
            self._notify(f"{e}. Check the {name} executable setting.", level="error")
            raise
        except ProtocolError as e:
            self._notify(f"{name} kernel sent an unreadable result: {e}", level="error")
            raise
        except KernelRestartedError:
            # restart_kernel() already told the user
            raise
        except KernelError as e:
            self._notify(f"{name} execution failed: {e}", level="error")
            raise

    async def restart_kernel(self, language: str) -> int:
        """
        Restart one language's kernel. Other languages are not touched.

        Returns:
            int: Number of pending executions that were cancelled
        """
        supervisor = self.get_supervisor(language)
        cancelled = await supervisor.restart()
        if cancelled:
            self._logger.info(f"Cancelled {cancelled} pending execution(s) on restart")
        self._notify(f"{supervisor.spec.display_name} kernel restarted")
        return cancelled

    async def cleanup(self):
        """
        Terminate every live process. Safe to call more than once; never raises.
        """
        if self._closed and not self.supervisors:
            self._logger.info("Cleanup not needed; kernels already stopped.")
            return
        self._closed = True

        supervisors = list(self.supervisors.values())
        self.supervisors.clear()
        if not supervisors:
            return

        self._logger.info(f"Shutting down {len(supervisors)} kernel(s)")
        try:
            results = await asyncio.gather(*(s.terminate() for s in supervisors), return_exceptions=True)
        except Exception as e:
            self._logger.error(f"Error during kernel shutdown: {e}")
            return
        for supervisor, outcome in zip(supervisors, results):
            if isinstance(outcome, BaseException):
                self._logger.error(f"Error shutting down {supervisor.language} kernel: {outcome}")
        self._logger.info("All kernels shut down")

    def list_kernels(self) -> List[Dict]:
        """Status of every kernel created so far."""
        return [supervisor.describe() for supervisor in self.supervisors.values()]
