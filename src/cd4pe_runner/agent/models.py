# agent/models.py
from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Tuple

from cd4pe_runner.ui.console import get_console


class ResponseClass(str, Enum):
    SUCCESS = "success"
    REDIRECTION = "redirection"
    CLIENT_ERROR = "client_error"
    SERVER_ERROR = "server_error"
    TRANSPORT_ERROR = "transport_error"

    @classmethod
    def classify(cls, status_code: int) -> ResponseClass:
        if 200 <= status_code < 300:
            return cls.SUCCESS
        if 300 <= status_code < 400:
            return cls.REDIRECTION
        if 400 <= status_code < 500:
            return cls.CLIENT_ERROR
        if 500 <= status_code < 600:
            return cls.SERVER_ERROR
        # 1xx and anything a broken proxy may invent
        return cls.TRANSPORT_ERROR


@dataclass(frozen=True)
class ApiResponse:
    """A raw answer from the CD4PE API."""
    status_code: int
    body: bytes = b""

    @property
    def classification(self) -> ResponseClass:
        return ResponseClass.classify(self.status_code)

    @property
    def ok(self) -> bool:
        return self.classification is ResponseClass.SUCCESS

    @property
    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")

    def json(self) -> Any:
        return json.loads(self.text) if self.body else {}


class ManifestStage(str, Enum):
    """The three fixed phases of a job; the value is the script's file name."""
    JOB = "JOB"
    AFTER_JOB_SUCCESS = "AFTER_JOB_SUCCESS"
    AFTER_JOB_FAILURE = "AFTER_JOB_FAILURE"

    @property
    def report_key(self) -> str:
        return self.value.lower()


@dataclass(frozen=True)
class ExecutionResult:
    """Outcome of running one stage script."""
    exit_code: int
    message: str = ""

    @property
    def succeeded(self) -> bool:
        return self.exit_code == 0

    def to_dict(self) -> Dict[str, Any]:
        return {"exit_code": self.exit_code, "message": self.message}


@dataclass(frozen=True)
class JobReport:
    """
    Final result of a job run: the JOB stage plus, when a matching script
    existed, exactly one follow-up stage.
    """
    job: ExecutionResult
    followup: Optional[Tuple[ManifestStage, ExecutionResult]] = None

    def __post_init__(self) -> None:
        if self.followup is not None and self.followup[0] is ManifestStage.JOB:
            raise ValueError("JOB cannot be recorded as a follow-up stage")

    @property
    def followup_stage(self) -> Optional[ManifestStage]:
        return self.followup[0] if self.followup else None

    def to_dict(self) -> Dict[str, Dict[str, Any]]:
        output = {ManifestStage.JOB.report_key: self.job.to_dict()}
        if self.followup is not None:
            stage, result = self.followup
            output[stage.report_key] = result.to_dict()
        return output


@dataclass
class JobLog:
    """
    Append-only progress messages for one job run.

    Every entry is also echoed to the console in debug mode.
    """
    entries: List[str] = field(default_factory=list)

    def push(self, message: str) -> None:
        self.entries.append(message)
        get_console().print_debug(message)

    def __iter__(self) -> Iterator[str]:
        return iter(self.entries)

    def __len__(self) -> int:
        return len(self.entries)
