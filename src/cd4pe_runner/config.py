"""Runtime configuration for talking to CD4PE and running a job.

Configuration is resolved once, up front, into explicit objects that are
handed to the API client and the job orchestrator. Nothing here writes to
``os.environ``.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Sequence, Tuple
from urllib.parse import urlparse

from .errors import ConfigurationError, MissingConfigurationError

DEFAULT_WORKING_DIR = ".cd4pe/job_work"

_DEFAULT_PORTS = {"http": 80, "https": 443}
_FALLBACK_PORT = 8080


def _require(source: Mapping[str, object], keys: Sequence[str]) -> Dict[str, str]:
    """Pull every key out of ``source``, failing once with all missing names."""
    missing = [k for k in keys if not source.get(k)]
    if missing:
        raise MissingConfigurationError(names=missing)
    return {k: str(source[k]) for k in keys}


def parse_endpoint(endpoint: str) -> Tuple[str, str, int]:
    """
    Split a web UI endpoint into (scheme, host, port).

    ``cd4pe.example.com:8080`` and ``https://cd4pe.example.com`` are both
    accepted; the scheme defaults to http and the port to the scheme's usual
    port.
    """
    if "://" not in endpoint:
        endpoint = f"http://{endpoint}"
    uri = urlparse(endpoint)
    if not uri.hostname:
        raise ConfigurationError(f"Could not parse CD4PE web UI endpoint: {endpoint!r}")
    scheme = uri.scheme or "http"
    try:
        port = uri.port or _DEFAULT_PORTS.get(scheme, _FALLBACK_PORT)
    except ValueError as e:
        raise ConfigurationError(f"Invalid port in CD4PE web UI endpoint {endpoint!r}: {e}") from e
    return scheme, uri.hostname, port


@dataclass(frozen=True)
class DeploymentConfig:
    """Everything the API client needs to address and authenticate with CD4PE."""
    server: str
    port: int
    scheme: str
    token: str
    deployment_id: str
    deployment_owner: str

    @classmethod
    def from_values(
        cls,
        *,
        endpoint: str,
        token: str,
        deployment_id: str,
        deployment_owner: str,
    ) -> DeploymentConfig:
        scheme, server, port = parse_endpoint(endpoint)
        return cls(
            server=server,
            port=port,
            scheme=scheme,
            token=token,
            deployment_id=deployment_id,
            deployment_owner=deployment_owner,
        )

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> DeploymentConfig:
        """Build from the deployment variables CD4PE exports to its tasks."""
        env = os.environ if environ is None else environ
        values = _require(
            env,
            ["WEB_UI_ENDPOINT", "DEPLOYMENT_TOKEN", "DEPLOYMENT_ID", "DEPLOYMENT_OWNER"],
        )
        return cls.from_values(
            endpoint=values["WEB_UI_ENDPOINT"],
            token=values["DEPLOYMENT_TOKEN"],
            deployment_id=values["DEPLOYMENT_ID"],
            deployment_owner=values["DEPLOYMENT_OWNER"],
        )

    @property
    def owner_ajax_path(self) -> str:
        return f"/{self.deployment_owner}/ajax"

    @property
    def service_url(self) -> str:
        return f"{self.scheme}://{self.server}:{self.port}"


def parse_env_vars(pairs: Optional[Sequence[str]]) -> Dict[str, str]:
    """
    Turn ``["KEY=VALUE", ...]`` into a dict.

    Everything after the first ``=`` is the value, so ``A=b=c`` gives
    ``{"A": "b=c"}``. Later entries override earlier ones.
    """
    result: Dict[str, str] = {}
    for pair in pairs or []:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise ConfigurationError(f"Environment override must look like KEY=VALUE, got: {pair!r}")
        result[key] = value
    return result


@dataclass(frozen=True)
class JobParams:
    """Inputs for one job run, as handed over by the task that launched us."""
    web_ui_endpoint: str
    token: str
    job_owner: str
    job_instance_id: str
    docker_image: Optional[str] = None
    docker_run_args: List[str] = field(default_factory=list)
    env_vars: Dict[str, str] = field(default_factory=dict)
    working_dir: Path = Path(DEFAULT_WORKING_DIR)

    @classmethod
    def from_mapping(cls, params: Mapping[str, object]) -> JobParams:
        """
        Build from task parameters.

        Required: cd4pe_web_ui_endpoint, cd4pe_token, cd4pe_job_owner,
        job_instance_id. Optional: docker_image, docker_run_args, env_vars,
        working_dir.
        """
        values = _require(
            params,
            ["cd4pe_web_ui_endpoint", "cd4pe_token", "cd4pe_job_owner", "job_instance_id"],
        )
        run_args = params.get("docker_run_args") or []
        return cls(
            web_ui_endpoint=values["cd4pe_web_ui_endpoint"],
            token=values["cd4pe_token"],
            job_owner=values["cd4pe_job_owner"],
            job_instance_id=values["job_instance_id"],
            docker_image=params.get("docker_image") or None,
            docker_run_args=[str(a) for a in run_args],
            env_vars=parse_env_vars(params.get("env_vars")),
            working_dir=Path(params.get("working_dir") or DEFAULT_WORKING_DIR),
        )

    def deployment_config(self) -> DeploymentConfig:
        return DeploymentConfig.from_values(
            endpoint=self.web_ui_endpoint,
            token=self.token,
            deployment_id=self.job_instance_id,
            deployment_owner=self.job_owner,
        )

    def job_environment(self, base: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
        """
        Environment for stage scripts: ``base`` (default: the current
        process environment), the job variables, then user overrides.
        """
        env = dict(os.environ if base is None else base)
        env.update({
            "WEB_UI_ENDPOINT": self.web_ui_endpoint,
            "JOB_TOKEN": self.token,
            "JOB_OWNER": self.job_owner,
            "JOB_INSTANCE_ID": self.job_instance_id,
        })
        env.update(self.env_vars)
        return env
