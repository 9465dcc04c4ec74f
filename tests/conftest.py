"""Shared test fixtures."""

from __future__ import annotations

import io
import tarfile
import urllib.error
from typing import Dict, List, Optional

import pytest

from cd4pe_runner.agent import api_client
from cd4pe_runner.config import DeploymentConfig


class FakeTransport:
    """Plays back scripted (status, body) answers and records every call.

    An item that is an exception instance is raised instead of returned.
    """

    def __init__(self, responses):
        self.responses = list(responses)
        self.calls: List[Dict] = []

    def send(self, method, url, body, headers):
        self.calls.append({"method": method, "url": url, "body": body, "headers": dict(headers)})
        if not self.responses:
            raise AssertionError(f"unexpected request: {method} {url}")
        item = self.responses.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item


def make_bundle(scripts: Dict[str, str], repo_files: Optional[Dict[str, str]] = None) -> bytes:
    """Build a cd4pe_job.tar.gz with executable stage scripts."""
    repo_files = repo_files if repo_files is not None else {"README.md": "control repo\n"}
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w:gz") as tar:
        for dirname in ("cd4pe_job", "cd4pe_job/jobs", "cd4pe_job/jobs/unix", "cd4pe_job/repo"):
            info = tarfile.TarInfo(dirname)
            info.type = tarfile.DIRTYPE
            info.mode = 0o755
            tar.addfile(info)
        for name, content in scripts.items():
            data = content.encode("utf-8")
            info = tarfile.TarInfo(f"cd4pe_job/jobs/unix/{name}")
            info.size = len(data)
            info.mode = 0o755
            tar.addfile(info, io.BytesIO(data))
        for name, content in repo_files.items():
            data = content.encode("utf-8")
            info = tarfile.TarInfo(f"cd4pe_job/repo/{name}")
            info.size = len(data)
            info.mode = 0o644
            tar.addfile(info, io.BytesIO(data))
    return buf.getvalue()


def unreachable() -> urllib.error.URLError:
    return urllib.error.URLError(ConnectionRefusedError(111, "Connection refused"))


@pytest.fixture()
def config() -> DeploymentConfig:
    return DeploymentConfig(
        server="cd4pe.example.com",
        port=8080,
        scheme="http",
        token="s3cret",
        deployment_id="dep-42",
        deployment_owner="acme",
    )


@pytest.fixture()
def sleeps(monkeypatch) -> List[float]:
    """Replace the retry delay with a recorder."""
    recorded: List[float] = []
    monkeypatch.setattr(api_client.time, "sleep", recorded.append)
    return recorded


@pytest.fixture()
def job_params(tmp_path) -> Dict[str, object]:
    return {
        "cd4pe_web_ui_endpoint": "http://cd4pe.example.com:8080",
        "cd4pe_token": "job-token",
        "cd4pe_job_owner": "acme",
        "job_instance_id": "1234",
        "working_dir": str(tmp_path / "work"),
    }
