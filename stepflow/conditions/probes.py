"""
Stepflow Environment Probes

Boundary to the host environment for file_exists / app_running conditions.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Callable, Dict, Optional

import psutil
import structlog

logger = structlog.get_logger(__name__)

FILE_EXISTS = "file_exists"
APP_RUNNING = "app_running"


class EnvironmentProbes(ABC):
    """Synchronous, side-effect-free environment checks."""

    @abstractmethod
    def probe(self, kind: str, argument: str) -> bool:
        """Answer a probe of the given kind. Unknown kinds answer False."""


class CallableProbes(EnvironmentProbes):
    """Probes backed by plain functions, keyed by kind."""

    def __init__(self, probes: Optional[Dict[str, Callable[[str], bool]]] = None, **kwargs: Callable[[str], bool]):
        self._probes: Dict[str, Callable[[str], bool]] = dict(probes or {})
        self._probes.update(kwargs)

    def register(self, kind: str, func: Callable[[str], bool]) -> None:
        self._probes[kind] = func

    def probe(self, kind: str, argument: str) -> bool:
        func = self._probes.get(kind)
        if func is None:
            logger.debug("probe_not_registered", kind=kind)
            return False
        return bool(func(argument))


class LocalEnvironmentProbes(EnvironmentProbes):
    """Probes answered from the local machine."""

    def probe(self, kind: str, argument: str) -> bool:
        if kind == FILE_EXISTS:
            return self.file_exists(argument)
        if kind == APP_RUNNING:
            return self.app_running(argument)
        return False

    @staticmethod
    def file_exists(path: str) -> bool:
        return Path(path).expanduser().exists()

    @staticmethod
    def app_running(name: str) -> bool:
        target = name.lower()
        for proc in psutil.process_iter(["name"]):
            proc_name = proc.info.get("name") or ""
            if proc_name.lower() == target:
                return True
        return False
