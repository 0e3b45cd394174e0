#!/usr/bin/env python3
"""
Runs a scan: probes every host of a ScanRequest with bounded parallelism
and publishes progress and results on an event queue.
"""

import logging
import queue
import threading
from concurrent.futures import ThreadPoolExecutor, wait
from enum import Enum, auto
from typing import Callable, List, Optional

import probes
from link_layer import LinkLayerResolver, select_link_layer_resolver
from scan_models import (
    HostEvent,
    HostResult,
    Outcome,
    ProgressEvent,
    ScanFinished,
    ScanRequest,
)

logger = logging.getLogger(__name__)


class ScanState(Enum):
    IDLE = auto()
    RUNNING = auto()
    FINISHED = auto()


class HostProber:
    """Runs every probe against one address and builds its HostResult."""

    def __init__(
        self,
        ports,
        ping: Callable[[str], bool] = probes.is_host_reachable,
        port_check: Callable[[str, int], bool] = probes.is_port_open,
        reverse: Callable[[str], Outcome] = probes.reverse_lookup,
        link_layer: Optional[LinkLayerResolver] = None,
        ssdp: Callable[[str], Outcome] = probes.query_ssdp,
    ):
        self.ports = tuple(ports)
        self.ping = ping
        self.port_check = port_check
        self.reverse = reverse
        self.link_layer = link_layer or select_link_layer_resolver()
        self.ssdp = ssdp

    def probe(self, ip: str) -> Optional[HostResult]:
        """Returns None for hosts that do not answer the ping."""
        if not self.ping(ip):
            return None

        fqdn = self.reverse(ip)
        mac = self.link_layer.resolve(ip)
        ssdp = self.ssdp(ip)
        open_ports = tuple(port for port in self.ports if self.port_check(ip, port))

        return HostResult(ip=ip, fqdn=fqdn, mac=mac, open_ports=open_ports, ssdp=ssdp)


class ScanSession:
    """
    Owns the state of one scan invocation.

    Each host is one unit of work on a thread pool. Units pass an admission
    gate that limits how many run at once, and always advance progress and
    release the gate in a finally block. Results, the completion counter and
    the event queue are guarded by a single lock, so progress events come out
    in non-decreasing order regardless of which host finishes first.

    Consumers either call run() and read the returned list, or start() the
    scan in the background and drain() events on their own schedule.
    """

    def __init__(
        self,
        request: ScanRequest,
        prober: Optional[HostProber] = None,
        gate=None,
        stop_event: Optional[threading.Event] = None,
    ):
        self.request = request
        self.prober = prober or HostProber(request.ports)
        self.gate = gate or threading.BoundedSemaphore(request.concurrency)
        self.stop_event = stop_event or threading.Event()
        self.events: "queue.Queue" = queue.Queue()
        self.state = ScanState.IDLE

        self._lock = threading.Lock()
        self._results: List[HostResult] = []
        self._completed = 0
        self._thread: Optional[threading.Thread] = None

    @property
    def total(self) -> int:
        return self.request.total

    @property
    def completed(self) -> int:
        with self._lock:
            return self._completed

    @property
    def progress(self) -> float:
        total = self.total
        if total == 0:
            return 1.0
        with self._lock:
            return self._completed / total

    @property
    def results(self) -> List[HostResult]:
        with self._lock:
            return list(self._results)

    @property
    def running(self) -> bool:
        return self.state is ScanState.RUNNING

    def run(self) -> List[HostResult]:
        """Scans the whole range and blocks until every host is done."""
        self.state = ScanState.RUNNING
        total = self.total
        logger.info(
            "Scanning %s.%d-%d (%d hosts, ports %s, %d workers)",
            self.request.subnet, self.request.start_host, self.request.end_host,
            total, ",".join(map(str, self.request.ports)), self.request.concurrency,
        )

        # ScanFinished is queued even when the pool itself fails
        try:
            if total:
                with ThreadPoolExecutor(max_workers=self.request.concurrency) as executor:
                    futures = [executor.submit(self._run_unit, ip) for ip in self.request.addresses()]
                    wait(futures)
        except Exception:
            logger.error("Scan of %s aborted", self.request.subnet, exc_info=True)
            raise
        finally:
            results = self.results
            self.state = ScanState.FINISHED
            self.events.put(ScanFinished(tuple(results)))

        logger.info("Scan complete: %d of %d hosts reachable", len(results), total)
        return results

    def start(self) -> threading.Thread:
        """Runs the scan on a daemon thread; progress arrives through drain()."""
        self.state = ScanState.RUNNING
        self._thread = threading.Thread(target=self.run, daemon=True)
        self._thread.start()
        return self._thread

    def join(self, timeout: Optional[float] = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout)

    def stop(self) -> None:
        """Hosts not yet probed are skipped; they still count toward progress."""
        self.stop_event.set()

    def drain(self) -> list:
        """Returns every event queued so far without blocking."""
        messages = []
        try:
            while True:
                messages.append(self.events.get_nowait())
        except queue.Empty:
            pass
        return messages

    def _run_unit(self, ip: str) -> None:
        self.gate.acquire()
        try:
            if self.stop_event.is_set():
                return
            result = self.prober.probe(ip)
            if result is not None:
                self._record(result)
        except Exception:
            logger.warning("Probing %s failed", ip, exc_info=True)
        finally:
            self._advance()
            self.gate.release()

    def _record(self, result: HostResult) -> None:
        display = result.has_open_ports or not self.request.hide_closed
        with self._lock:
            self._results.append(result)
            self.events.put(HostEvent(result, display))

    def _advance(self) -> None:
        with self._lock:
            self._completed += 1
            self.events.put(ProgressEvent(self._completed, self.total, self._completed / self.total))
