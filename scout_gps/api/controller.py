"""
Engine facade - command/query surface for display and automation clients.

Every public coroutine returns a CommandResult. Engine errors are turned
into a short message naming the failed operation and never propagate to
the caller.
"""

from __future__ import annotations

import asyncio
from collections import deque
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Deque, Dict, List, Mapping, Optional, Union

from ..config import EngineConfig
from ..core.errors import (
    BusyError,
    GPSEngineError,
    InvalidTransitionError,
    NotConnectedError,
    PortIOError,
)
from ..core.logging_utils import get_module_logger
from ..devices.port_enumerator import PortDescriptor, list_ports
from ..devices.scanner import DeviceScanner, PortLister
from ..devices.ublox_setup import UbloxAutoConfigurator
from ..evaluation.criteria import CriteriaSet
from ..evaluation.evaluator import DeviceInfo, TestEvaluator, TestResult
from ..evaluation.report import JsonReportWriter, ReportWriter
from ..gps_core.connection_manager import ConnectionManager, TransportFactory
from ..gps_core.constants import RECENT_RESULTS_LIMIT
from ..optimization.controller import OptimizationController

logger = get_module_logger("GPSTestEngine")


@dataclass
class CommandResult:
    """Result of a command execution."""
    success: bool
    data: Any = None
    error: Optional[str] = None
    operation: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "data": self.data,
            "error": self.error,
            "operation": self.operation,
        }


def _task_exception_handler(task: asyncio.Task) -> None:
    """Handle exceptions from fire-and-forget tasks."""
    try:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Unhandled exception in engine background task: %s", exc)
    except asyncio.CancelledError:
        pass


class GPSTestEngine:
    """
    Programmatic access to discovery, monitoring, testing and optimization.

    Holds the single ConnectionManager and wires the scanner, evaluator and
    optimizer to it.
    """

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        *,
        transport_factory: Optional[TransportFactory] = None,
        port_lister: PortLister = list_ports,
        report_writer: Optional[ReportWriter] = None,
        evaluator: Optional[TestEvaluator] = None,
    ):
        self.config = config or EngineConfig()
        cfg = self.config

        self._port_lister = port_lister
        on_connect = None
        if cfg.ublox_auto_config and cfg.ubx_enabled:
            on_connect = UbloxAutoConfigurator(port_lister, ack_timeout=cfg.ack_timeout_s)
        self.connection = ConnectionManager(
            transport_factory=transport_factory,
            ubx_enabled=cfg.ubx_enabled,
            history=cfg.nmea_history,
            on_connect=on_connect,
        )
        self.scanner = DeviceScanner(
            self.connection,
            port_lister=port_lister,
            transport_factory=transport_factory,
            baud_rates=cfg.baud_rates,
            probe_timeout=cfg.probe_timeout_s,
        )
        self.evaluator = evaluator or TestEvaluator(stale_after=cfg.stale_after_s)
        self.optimizer = OptimizationController(
            self.connection,
            identify_timeout=cfg.identify_timeout_s,
            ack_timeout=cfg.ack_timeout_s,
            baseline_duration=cfg.baseline_duration_s,
            stabilization_duration=cfg.stabilization_duration_s,
            result_duration=cfg.result_duration_s,
            sample_interval=cfg.sample_interval_s,
        )
        self.report_writer: ReportWriter = report_writer or JsonReportWriter(cfg.results_dir)

        self._criteria = CriteriaSet()
        self._ports: Dict[str, PortDescriptor] = {}
        self._recent: Deque[TestResult] = deque(maxlen=RECENT_RESULTS_LIMIT)
        self._scan_task: Optional[asyncio.Task] = None
        self._test_task: Optional[asyncio.Task] = None

    async def _execute(
        self, operation: str, action: Callable[[], Awaitable[Any]]
    ) -> CommandResult:
        try:
            data = await action()
        except GPSEngineError as exc:
            if exc.operation is None:
                exc.operation = operation
            logger.warning("%s", exc.user_message())
            return CommandResult(False, error=exc.user_message(), operation=operation)
        except OSError as exc:
            message = f"{operation} failed: {exc}"
            logger.error("%s", message)
            return CommandResult(False, error=message, operation=operation)
        return CommandResult(True, data=data, operation=operation)

    # =========================================================================
    # Discovery
    # =========================================================================

    async def list_ports(self) -> CommandResult:
        async def action() -> List[Dict[str, Any]]:
            ports = await self._port_lister()
            self._ports = {port.name: port for port in ports}
            return [port.to_dict() for port in ports]

        return await self._execute("list_ports", action)

    async def test_port(self, port: str, baud_rate: int) -> CommandResult:
        async def action() -> Dict[str, Any]:
            if port == self.connection.owned_port:
                raise BusyError(f"{port} is in use by the active connection")
            detected = await self.scanner.probe(port, baud_rate)
            return {"port": port, "baud_rate": baud_rate, "nmea_detected": detected}

        return await self._execute("test_port", action)

    async def auto_detect(self, wait: bool = False) -> CommandResult:
        """Start a discovery pass. With ``wait`` the final status is returned."""
        async def action() -> Dict[str, Any]:
            if self.scanner.is_scanning:
                raise BusyError("a scan is already running")
            if wait:
                status = await self.scanner.scan()
                self._remember_found(status.found)
                return status.to_dict()
            self._scan_task = asyncio.create_task(self._scan_in_background())
            self._scan_task.add_done_callback(_task_exception_handler)
            await asyncio.sleep(0)
            return self.scanner.status().to_dict()

        return await self._execute("auto_detect", action)

    async def _scan_in_background(self) -> None:
        status = await self.scanner.scan()
        self._remember_found(status.found)

    def _remember_found(self, found) -> None:
        for result in found:
            self._ports[result.port.name] = result.port

    async def cancel_scan(self) -> CommandResult:
        async def action() -> Dict[str, Any]:
            return {"cancelled": self.scanner.cancel()}

        return await self._execute("cancel_scan", action)

    async def get_scan_status(self) -> CommandResult:
        async def action() -> Dict[str, Any]:
            return self.scanner.status().to_dict()

        return await self._execute("get_scan_status", action)

    # =========================================================================
    # Connection
    # =========================================================================

    async def connect(self, port: str, baud_rate: int) -> CommandResult:
        async def action() -> Dict[str, Any]:
            await self.connection.connect(port, baud_rate)
            return self.connection.status().to_dict()

        return await self._execute("connect", action)

    async def disconnect(self) -> CommandResult:
        async def action() -> Dict[str, Any]:
            await self.connection.disconnect()
            return self.connection.status().to_dict()

        return await self._execute("disconnect", action)

    async def reset_connection(self) -> CommandResult:
        async def action() -> Dict[str, Any]:
            await self.connection.reset()
            return self.connection.status().to_dict()

        return await self._execute("reset_connection", action)

    async def get_navigation_state(self) -> CommandResult:
        async def action() -> Dict[str, Any]:
            return self.connection.snapshot().to_dict()

        return await self._execute("get_navigation_state", action)

    async def get_connection_status(self) -> CommandResult:
        async def action() -> Dict[str, Any]:
            return self.connection.status().to_dict()

        return await self._execute("get_connection_status", action)

    async def get_sentence_buffer(self) -> CommandResult:
        async def action() -> List[str]:
            return self.connection.get_sentence_buffer()

        return await self._execute("get_sentence_buffer", action)

    async def clear_sentence_buffer(self) -> CommandResult:
        async def action() -> None:
            self.connection.clear_sentence_buffer()

        return await self._execute("clear_sentence_buffer", action)

    # =========================================================================
    # Criteria
    # =========================================================================

    async def get_criteria(self) -> CommandResult:
        async def action() -> Dict[str, Any]:
            return self._criteria.to_dict()

        return await self._execute("get_criteria", action)

    async def set_criteria(self, values: Union[CriteriaSet, Mapping[str, Any]]) -> CommandResult:
        """Replace the criteria. Rejected values leave the previous set in place.

        A mapping may be partial; missing keys keep their current values.
        """
        async def action() -> Dict[str, Any]:
            if isinstance(values, CriteriaSet):
                self._criteria = values.validate("set_criteria")
            else:
                merged = {**self._criteria.to_dict(), **dict(values)}
                self._criteria = CriteriaSet.from_dict(merged)
            logger.info("Criteria updated: %s", self._criteria.to_dict())
            return self._criteria.to_dict()

        return await self._execute("set_criteria", action)

    async def reset_criteria(self) -> CommandResult:
        async def action() -> Dict[str, Any]:
            self._criteria = CriteriaSet()
            return self._criteria.to_dict()

        return await self._execute("reset_criteria", action)

    # =========================================================================
    # Test runs
    # =========================================================================

    def _device_info(self) -> DeviceInfo:
        status = self.connection.status()
        port = self._ports.get(status.port_name or "")
        if port is None:
            return DeviceInfo(port_name=status.port_name, baud_rate=status.baud_rate)
        return DeviceInfo(
            port_name=port.name,
            port_type=port.port_type,
            manufacturer=port.manufacturer,
            product=port.product,
            serial_number=port.serial_number,
            baud_rate=status.baud_rate,
        )

    def _sample(self):
        return self.connection.snapshot(), self.connection.data_age()

    async def start_test(self) -> CommandResult:
        async def action() -> Dict[str, Any]:
            if not self.connection.is_link_up:
                raise NotConnectedError("connect a receiver before starting a test")
            if self.connection.status().port_name not in self._ports:
                try:
                    self._ports.update({port.name: port for port in await self._port_lister()})
                except PortIOError as exc:
                    logger.debug("Port metadata unavailable: %s", exc.message)
            self.evaluator.start(self._criteria, self._device_info())
            self._test_task = asyncio.create_task(self._run_test())
            self._test_task.add_done_callback(_task_exception_handler)
            return self.evaluator.status().to_dict()

        return await self._execute("start_test", action)

    async def _run_test(self) -> None:
        result = await self.evaluator.run(self._sample, self.config.sample_interval_s)
        if result is not None:
            self._recent.append(result)

    async def wait_for_test(self) -> Optional[TestResult]:
        """Block until the current run finishes (for CLI/automation use)."""
        task = self._test_task
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)
        return self.evaluator.result

    async def abort_test(self) -> CommandResult:
        async def action() -> Dict[str, Any]:
            aborted = self.evaluator.abort()
            task = self._test_task
            self._test_task = None
            if task is not None and not task.done():
                task.cancel()
                await asyncio.gather(task, return_exceptions=True)
            return {"aborted": aborted}

        return await self._execute("abort_test", action)

    async def get_test_status(self) -> CommandResult:
        async def action() -> Dict[str, Any]:
            return self.evaluator.status().to_dict()

        return await self._execute("get_test_status", action)

    async def reset_test(self) -> CommandResult:
        async def action() -> Dict[str, Any]:
            self.evaluator.reset()
            return self.evaluator.status().to_dict()

        return await self._execute("reset_test", action)

    async def get_recent_results(self) -> CommandResult:
        async def action() -> List[Dict[str, Any]]:
            return [result.to_dict() for result in self._recent]

        return await self._execute("get_recent_results", action)

    async def save_test_report(self) -> CommandResult:
        async def action() -> Dict[str, Any]:
            result = self.evaluator.result or (self._recent[-1] if self._recent else None)
            if result is None:
                raise InvalidTransitionError("no completed test to save")
            path = await asyncio.to_thread(self.report_writer.save, result)
            return {"path": str(path)}

        return await self._execute("save_test_report", action)

    # =========================================================================
    # Optimization
    # =========================================================================

    async def start_optimization(self) -> CommandResult:
        async def action() -> Dict[str, Any]:
            if not self.connection.is_link_up:
                raise NotConnectedError("connect a receiver before optimizing")
            self.optimizer.start()
            return self.optimizer.status().to_dict()

        return await self._execute("start_optimization", action)

    async def abort_optimization(self) -> CommandResult:
        async def action() -> Dict[str, Any]:
            return {"aborted": await self.optimizer.abort()}

        return await self._execute("abort_optimization", action)

    async def get_optimization_status(self) -> CommandResult:
        async def action() -> Dict[str, Any]:
            return self.optimizer.status().to_dict()

        return await self._execute("get_optimization_status", action)

    async def reset_optimization(self) -> CommandResult:
        async def action() -> Dict[str, Any]:
            self.optimizer.reset()
            return self.optimizer.status().to_dict()

        return await self._execute("reset_optimization", action)

    # =========================================================================
    # Shutdown
    # =========================================================================

    async def shutdown(self) -> None:
        """Stop background work and release the port."""
        self.scanner.cancel()
        if self._scan_task is not None:
            await asyncio.gather(self._scan_task, return_exceptions=True)
        await self.abort_test()
        await self.optimizer.abort()
        await self.connection.disconnect()


__all__ = ["CommandResult", "GPSTestEngine"]
