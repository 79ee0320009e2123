"""Host CPU and memory snapshot for the ``/api/status`` endpoint."""

from __future__ import annotations

from typing import Any, Dict

import psutil


def collect_system_stats() -> Dict[str, Any]:
    # interval=None compares against the previous call and never blocks.
    cores = psutil.cpu_percent(interval=None, percpu=True)
    avg = sum(cores) / len(cores) if cores else psutil.cpu_percent(interval=None)
    memory = psutil.virtual_memory()
    used = memory.total - memory.available
    return {
        "cpu": {"cores": list(cores), "avg": avg},
        "memory": {
            "total": memory.total,
            "used": used,
            "percentage": (used / memory.total) * 100 if memory.total else 0.0,
        },
    }
