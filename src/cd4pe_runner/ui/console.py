"""Console output formatting utilities for the CD4PE job runner."""

from __future__ import annotations

import json
import sys
from typing import Iterable, Optional


class Console:
    """Centralized console output formatting.

    Human-oriented messages go to stderr so that stdout carries nothing but
    the JSON job report.
    """

    def __init__(self, debug: bool = False):
        """
        Initialize console formatter.

        Args:
            debug: If True, show detailed output including stack traces
        """
        self.debug = debug

    def print_job_started(
        self,
        job_instance_id: str,
        api: str,
        docker_image: Optional[str],
    ) -> None:
        """Print job start information."""
        print("\nJOB STARTED", file=sys.stderr)
        print(f"Job instance: {job_instance_id}", file=sys.stderr)
        print(f"API: {api}", file=sys.stderr)
        print(f"Runs on: {docker_image or 'this machine'}", file=sys.stderr)

    def print_stage_result(self, stage: str, exit_code: int) -> None:
        """Print a one-line stage summary."""
        status = "success" if exit_code == 0 else f"failed (exit={exit_code})"
        print(f"{stage}: {status}", file=sys.stderr)

    def print_report(self, report: dict) -> None:
        """Print the job report as JSON on stdout."""
        print(json.dumps(report, indent=2))

    def print_logs(self, lines: Iterable[str]) -> None:
        """Print the job's progress log."""
        print("\nLOGS", file=sys.stderr)
        print("-" * 4, file=sys.stderr)
        for line in lines:
            print(line, file=sys.stderr)

    def print_error(
        self,
        title: str,
        message: str,
        details: Optional[list[str]] = None,
        suggestion: Optional[str] = None,
    ) -> None:
        """
        Print structured error message.

        Args:
            title: Error title
            message: Main error message
            details: Optional list of detail lines
            suggestion: Optional suggestion for user
        """
        print(f"\nERROR: {title}", file=sys.stderr)
        print(f"{message}", file=sys.stderr)
        if details:
            for detail in details:
                print(f"  {detail}", file=sys.stderr)
        if suggestion:
            print(f"\n{suggestion}", file=sys.stderr)

    def print_exception(self, exc: Exception) -> None:
        """Print exception, with full traceback only in debug mode."""
        if self.debug:
            import traceback
            traceback.print_exception(type(exc), exc, exc.__traceback__)
        else:
            print(f"Error: {exc}", file=sys.stderr)

    def print_info(self, message: str) -> None:
        """Print informational message."""
        print(message, file=sys.stderr)

    def print_debug(self, message: str) -> None:
        """Print debug message (only if debug mode enabled)."""
        if self.debug:
            print(f"[DEBUG] {message}", file=sys.stderr)


# Global console instance (will be initialized by CLI)
_console: Optional[Console] = None


def get_console() -> Console:
    """Get the global console instance."""
    global _console
    if _console is None:
        _console = Console()
    return _console


def set_console(console: Console) -> None:
    """Set the global console instance."""
    global _console
    _console = console
