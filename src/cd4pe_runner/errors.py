# errors.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import List


class CD4PEError(Exception):
    """Base class for every fatal error raised by the runner."""


@dataclass
class ConfigurationError(CD4PEError):
    message: str

    def __str__(self) -> str:
        return self.message


@dataclass
class MissingConfigurationError(ConfigurationError):
    """One or more required configuration values were not supplied."""
    message: str = "Missing required configuration"
    names: List[str] = field(default_factory=list)

    def __str__(self) -> str:
        return f"{self.message}: {', '.join(self.names)}"


@dataclass
class InvalidVerbError(CD4PEError):
    verb: str

    def __str__(self) -> str:
        return f"APIClient.send called with invalid request type {self.verb!r}"


@dataclass
class APIConnectionError(CD4PEError):
    """The CD4PE host could not be reached. Never retried."""
    service_url: str
    reason: str

    def __str__(self) -> str:
        return f"Could not connect to the CD4PE service at {self.service_url}: {self.reason}"


@dataclass
class ServerExhaustedError(CD4PEError):
    """Every attempt ended in a 5xx response."""
    service_url: str
    attempts: int
    status_code: int
    body: str

    def __str__(self) -> str:
        return (
            f"Received {self.attempts} server error responses from the CD4PE service "
            f"at {self.service_url}: {self.status_code} {self.body}"
        )


@dataclass
class APISemanticError(CD4PEError):
    """A specific operation got a non-success answer it cannot work with."""
    operation: str
    status_code: int
    body: str

    def __str__(self) -> str:
        return f"{self.operation} failed.\nMessage: {self.body}\nCode: {self.status_code}"


@dataclass
class JobExecutionError(CD4PEError):
    """The orchestration around a stage script failed (not the script itself)."""
    stage: str
    message: str

    def __str__(self) -> str:
        return f"[{self.stage}] {self.message}"
