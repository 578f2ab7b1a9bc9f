"""
Recon Phantom - Script Engine
=============================

Expands selected script IDs against a target's open ports and runs the
resulting work items in small concurrent batches.

Features:
- Host-level scripts produce one work item, port-level scripts one per
  matching open port, scripts without a rule run on every open port
- In-flight registry keyed on (script_id, host, port); duplicates are
  rejected with ScriptAlreadyRunning
- Per-script timeout and explicit stop of running actions
- Action failures become error results, never exceptions

Version: 1.0.0
"""

import asyncio
import functools
import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple, Union

from .exceptions import ScriptAlreadyRunning
from .models import (
    OpenPort,
    PortLike,
    ScriptCategory,
    ScriptResult,
    ScriptState,
    SecurityScript,
    Severity,
    coerce_open_port,
)
from .scan_engine import chunked
from .scripts import BUILTIN_SCRIPTS, ScriptContext

logger = logging.getLogger(__name__)

DEFAULT_SCRIPT_CONCURRENCY = 3
DEFAULT_SCRIPT_TIMEOUT_MS = 60000

ScriptKey = Tuple[str, str, Optional[int]]
ScriptProgressCallback = Callable[[int, int], None]
ScriptResultCallback = Callable[[ScriptResult], None]


@dataclass(frozen=True)
class WorkItem:
    """One (script, host, port) execution unit."""
    script: SecurityScript
    host: str
    port: Optional[int] = None
    service: Optional[str] = None

    @property
    def key(self) -> ScriptKey:
        return (self.script.id, self.host, self.port)


def error_result(script_id: str, host: str, port: Optional[int], output: str,
                 state: ScriptState = ScriptState.ERROR) -> ScriptResult:
    return ScriptResult(
        script_id=script_id,
        host=host,
        port=port,
        output=output,
        severity=Severity.INFO,
        state=state,
    )


class ScriptEngine:
    """
    Runs catalog scripts with bounded concurrency.

    Args:
        context: ScriptContext handed to every action
        catalog: Scripts available to this engine, in declaration order
        concurrency: Work items per batch
        script_timeout_ms: Budget per action (None disables it)
    """

    def __init__(self, context: ScriptContext,
                 catalog: Iterable[SecurityScript] = BUILTIN_SCRIPTS,
                 concurrency: int = DEFAULT_SCRIPT_CONCURRENCY,
                 script_timeout_ms: Optional[float] = DEFAULT_SCRIPT_TIMEOUT_MS) -> None:
        self.context = context
        self.concurrency = max(1, concurrency)
        self.script_timeout_ms = script_timeout_ms
        self._scripts: Dict[str, SecurityScript] = {}
        for script in catalog:
            if script.id in self._scripts:
                raise ValueError(f"Duplicate script id: {script.id}")
            self._scripts[script.id] = script
        self._running: Dict[ScriptKey, asyncio.Task] = {}

    # =========================================================================
    # CATALOG
    # =========================================================================

    def get_script(self, script_id: str) -> Optional[SecurityScript]:
        return self._scripts.get(script_id)

    def get_available_scripts(self) -> List[SecurityScript]:
        return list(self._scripts.values())

    def get_scripts_by_category(self, category: Union[str, ScriptCategory]) -> List[SecurityScript]:
        category = ScriptCategory(category)
        return [s for s in self._scripts.values() if s.category == category]

    def get_scripts_for_port(self, port: int, service: Optional[str] = None) -> List[SecurityScript]:
        return [s for s in self._scripts.values() if s.applies_to_port(port, service)]

    def is_running(self, script_id: str, host: str, port: Optional[int] = None) -> bool:
        return (script_id, host, port) in self._running

    # =========================================================================
    # EXPANSION
    # =========================================================================

    def expand(self, script_ids: Sequence[str], target: str,
               open_ports: Sequence[OpenPort]) -> Tuple[List[WorkItem], List[ScriptResult]]:
        """
        Turn script IDs into work items.

        Returns:
            (work items, error results for unknown script IDs)
        """
        items: List[WorkItem] = []
        rejected: List[ScriptResult] = []

        for script_id in script_ids:
            script = self._scripts.get(script_id)
            if script is None:
                logger.warning(f"Unknown script requested: {script_id}")
                rejected.append(error_result(script_id, target, None, f"Script {script_id} not found"))
                continue

            if script.host_rule is not None:
                if script.applies_to_host(target):
                    items.append(WorkItem(script, target))
                continue

            for port_info in open_ports:
                if script.applies_to_port(port_info.port, port_info.service):
                    items.append(WorkItem(script, target, port_info.port, port_info.service))

        return items, rejected

    # =========================================================================
    # EXECUTION
    # =========================================================================

    async def run_scripts(self, script_ids: Sequence[str], target: str,
                          open_ports: Iterable[PortLike],
                          on_progress: Optional[ScriptProgressCallback] = None,
                          on_result: Optional[ScriptResultCallback] = None) -> List[ScriptResult]:
        """
        Run the selected scripts against a target.

        Args:
            script_ids: Script identifiers, in the order to run them
            target: Host name or address
            open_ports: Open ports, optionally with service names
            on_progress: Called with (completed, total) after every work item
            on_result: Called with every ScriptResult

        Returns:
            One result per work item, plus one error result per unknown ID
        """
        ports = [coerce_open_port(p) for p in open_ports]
        items, results = self.expand(script_ids, target, ports)
        for result in results:
            if on_result:
                on_result(result)

        total = len(items)
        completed = 0
        logger.info(f"Running {total} script work items against {target}")

        for batch in chunked(items, self.concurrency):
            for result in await asyncio.gather(*(self._run_item(item) for item in batch)):
                results.append(result)
                completed += 1
                if on_result:
                    on_result(result)
                if on_progress:
                    on_progress(completed, total)

        return results

    async def _run_item(self, item: WorkItem) -> ScriptResult:
        try:
            return await self.run_script(item.script.id, item.host, item.port, item.service)
        except ScriptAlreadyRunning as e:
            logger.warning(str(e))
            result = error_result(item.script.id, item.host, item.port, str(e))
            self._label(result, item.script, 0.0)
            return result

    async def run_script(self, script_id: str, host: str, port: Optional[int] = None,
                         service: Optional[str] = None) -> ScriptResult:
        """
        Run one script action.

        Raises:
            KeyError: Unknown script
            ScriptAlreadyRunning: Same (script_id, host, port) is in flight
        """
        script = self._scripts.get(script_id)
        if script is None:
            raise KeyError(f"Script {script_id} not found")

        key = (script_id, host, port)
        if key in self._running:
            raise ScriptAlreadyRunning(script_id, host, port)
        # No await between the check above and the registration below
        task = asyncio.ensure_future(script.action(self.context, host, port, service))
        self._running[key] = task
        # The entry lives until the action settles, even after cancel()
        task.add_done_callback(functools.partial(self._release, key))

        start = time.monotonic()
        timeout = self.script_timeout_ms / 1000.0 if self.script_timeout_ms else None
        try:
            done, _ = await asyncio.wait({task}, timeout=timeout)
            if not done:
                task.cancel()
                result = error_result(script_id, host, port,
                                      f"Script timed out after {self.script_timeout_ms:.0f}ms",
                                      ScriptState.TIMEOUT)
            elif task.cancelled():
                result = error_result(script_id, host, port, "Script execution stopped")
            elif task.exception() is not None:
                exc = task.exception()
                logger.debug(f"Script {script_id} failed on {host}:{port}: {exc}")
                result = error_result(script_id, host, port, f"Script execution failed: {exc}")
            else:
                result = task.result()
        except asyncio.CancelledError:
            task.cancel()
            raise

        self._label(result, script, (time.monotonic() - start) * 1000)
        return result

    def _release(self, key: ScriptKey, task: "asyncio.Future") -> None:
        if self._running.get(key) is task:
            del self._running[key]

    @staticmethod
    def _label(result: ScriptResult, script: SecurityScript, duration_ms: float) -> None:
        result.name = script.name
        result.category = script.category.value
        result.duration_ms = duration_ms

    def stop_script(self, script_id: str, host: str, port: Optional[int] = None) -> bool:
        task = self._running.get((script_id, host, port))
        if task is None or task.done():
            return False
        task.cancel()
        return True

    def stop_all_scripts(self) -> int:
        stopped = 0
        for task in list(self._running.values()):
            if not task.done():
                task.cancel()
                stopped += 1
        return stopped
