import json
import time
from datetime import datetime
from typing import Dict, Any
from dataclasses import dataclass, asdict, field
from contextlib import contextmanager
import threading


@dataclass
class CommandMetrics:
    """Timing for a single protocol command name."""
    name: str
    count: int = 0
    total_duration_ms: float = 0.0
    max_duration_ms: float = 0.0

    @property
    def average_duration_ms(self) -> float:
        """Calculate average duration per invocation."""
        if self.count == 0:
            return 0.0
        return self.total_duration_ms / self.count


@dataclass
class MetricsSnapshot:
    """Point-in-time copy of the daemon counters."""
    started_at: datetime
    commands_total: int = 0
    acks_total: int = 0
    acks_by_code: Dict[int, int] = field(default_factory=dict)
    memory_hits: int = 0
    store_hits: int = 0
    remote_calls: int = 0
    remote_failures: int = 0
    persist_failures: int = 0
    connections_open: int = 0
    connections_total: int = 0
    commands: Dict[str, CommandMetrics] = field(default_factory=dict)

    @property
    def cache_hit_rate(self) -> float:
        """Share of track lookups answered without the network."""
        lookups = self.memory_hits + self.store_hits + self.remote_calls
        if lookups == 0:
            return 0.0
        return (self.memory_hits + self.store_hits) / lookups

    @property
    def uptime_seconds(self) -> int:
        return int((datetime.now() - self.started_at).total_seconds())


class DaemonMetrics:
    """Collects daemon-wide counters shared by every connection."""

    def __init__(self):
        """Initialize metrics collector."""
        self._snapshot = MetricsSnapshot(started_at=datetime.now())
        self._lock = threading.Lock()

    def record_command(self) -> None:
        with self._lock:
            self._snapshot.commands_total += 1

    def record_ack(self, code: int) -> None:
        with self._lock:
            self._snapshot.acks_total += 1
            self._snapshot.acks_by_code[code] = self._snapshot.acks_by_code.get(code, 0) + 1

    def record_memory_hit(self) -> None:
        with self._lock:
            self._snapshot.memory_hits += 1

    def record_store_hit(self) -> None:
        with self._lock:
            self._snapshot.store_hits += 1

    def record_remote_call(self) -> None:
        with self._lock:
            self._snapshot.remote_calls += 1

    def record_remote_failure(self) -> None:
        with self._lock:
            self._snapshot.remote_failures += 1

    def record_persist_failure(self) -> None:
        with self._lock:
            self._snapshot.persist_failures += 1

    def connection_opened(self) -> None:
        with self._lock:
            self._snapshot.connections_open += 1
            self._snapshot.connections_total += 1

    def connection_closed(self) -> None:
        with self._lock:
            self._snapshot.connections_open = max(0, self._snapshot.connections_open - 1)

    def record_command_duration(self, name: str, duration_ms: float) -> None:
        with self._lock:
            metrics = self._snapshot.commands.get(name)
            if metrics is None:
                metrics = CommandMetrics(name=name)
                self._snapshot.commands[name] = metrics
            metrics.count += 1
            metrics.total_duration_ms += duration_ms
            metrics.max_duration_ms = max(metrics.max_duration_ms, duration_ms)

    @contextmanager
    def command_timer(self, name: str):
        """Context manager timing one command invocation."""
        start = time.perf_counter()
        try:
            yield self
        finally:
            self.record_command_duration(name, (time.perf_counter() - start) * 1000)

    def snapshot(self) -> MetricsSnapshot:
        """Get a copy of the current counters."""
        with self._lock:
            s = self._snapshot
            return MetricsSnapshot(
                started_at=s.started_at,
                commands_total=s.commands_total,
                acks_total=s.acks_total,
                acks_by_code=dict(s.acks_by_code),
                memory_hits=s.memory_hits,
                store_hits=s.store_hits,
                remote_calls=s.remote_calls,
                remote_failures=s.remote_failures,
                persist_failures=s.persist_failures,
                connections_open=s.connections_open,
                connections_total=s.connections_total,
                commands={k: CommandMetrics(**asdict(v)) for k, v in s.commands.items()},
            )

    def to_dict(self) -> Dict[str, Any]:
        """Convert metrics to dictionary for JSON serialization."""
        snapshot = self.snapshot()
        data = asdict(snapshot)
        data['started_at'] = snapshot.started_at.isoformat()
        data['uptime_seconds'] = snapshot.uptime_seconds
        data['cache_hit_rate'] = snapshot.cache_hit_rate
        data['acks_by_code'] = {str(k): v for k, v in snapshot.acks_by_code.items()}
        for name, command in snapshot.commands.items():
            data['commands'][name]['average_duration_ms'] = command.average_duration_ms
        return data

    def save_to_file(self, file_path: str) -> None:
        """Save metrics to JSON file."""
        with open(file_path, 'w') as f:
            json.dump(self.to_dict(), f, indent=2, ensure_ascii=False)
