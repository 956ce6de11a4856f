"""Centralized logging utilities for expert_panel with package filtering and run context."""

from __future__ import annotations

import logging
import sys
from typing import List, Optional

LOGGED_PACKAGES = ["expert_panel", "anthropic", "httpx"]


class PackageFilter(logging.Filter):
    """Filter to only allow logs from specified packages.

    This keeps the console to expert_panel and its reasoning transport.
    """

    def __init__(self, packages: List[str]) -> None:
        super().__init__()
        self.packages = packages

    def filter(self, record: logging.LogRecord) -> bool:
        """Filter log records to only allow specified packages.

        Args:
            record: LogRecord to filter

        Returns:
            True if record should be logged, False otherwise
        """
        return any(record.name.startswith(pkg) for pkg in self.packages)


class ReviewLogger:
    """Centralized logger with package filtering and run context.

    Provides a singleton instance for consistent logging configuration
    across the expert_panel package. Library code only ever calls
    ``logging.getLogger(__name__)``; applications call ``ReviewLogger.get()``
    once to get console output.
    """

    _instance: Optional["ReviewLogger"] = None

    def __init__(self, verbose: bool = False) -> None:
        self._verbose = verbose
        self._context: Optional[object] = None

        self.logger = logging.getLogger("expert_panel")
        self.logger.setLevel(logging.DEBUG if verbose else logging.INFO)
        self.logger.handlers.clear()

        handler = logging.StreamHandler(sys.stdout)
        handler.setLevel(logging.DEBUG if verbose else logging.INFO)
        handler.addFilter(PackageFilter(LOGGED_PACKAGES))

        formatter = logging.Formatter(
            "%(asctime)s [%(levelname)-8s] %(name)s: %(message)s", datefmt="%H:%M:%S"
        )
        handler.setFormatter(formatter)

        self.logger.addHandler(handler)
        self.logger.propagate = False

    @classmethod
    def get(cls, verbose: bool = False) -> "ReviewLogger":
        """Get or create the singleton ReviewLogger instance.

        Args:
            verbose: Whether to enable DEBUG level logging

        Returns:
            The singleton ReviewLogger instance
        """
        if cls._instance is None or cls._instance._verbose != verbose:
            cls._instance = ReviewLogger(verbose)
        return cls._instance

    @classmethod
    def current(cls) -> Optional["ReviewLogger"]:
        """The instance an application configured with ``get()``, if any."""
        return cls._instance

    def set_context(self, run: Optional[object]) -> None:
        """Set the review run whose metadata is attached to log messages.

        Args:
            run: ReviewRun or similar object with run_id / template_id
        """
        self._context = run
        if run is not None:
            self.logger.info(
                f"Review Context: run_id={getattr(run, 'run_id', 'unknown')}, "
                f"template={getattr(run, 'template_id', None)}, "
                f"state={getattr(getattr(run, 'state', None), 'value', 'unknown')}"
            )

    def log_with_context(self, level: int, msg: str) -> None:
        extra = {}
        if self._context is not None:
            extra["context"] = {
                "run_id": getattr(self._context, "run_id", "unknown"),
                "template_id": getattr(self._context, "template_id", None),
            }

        self.logger.log(level, msg, extra=extra)

    def verbose_logging_enabled(self) -> bool:
        """Check if verbose logging is enabled.

        Returns:
            True if DEBUG level logging is enabled
        """
        return self._verbose
