# agent/api_client.py
from __future__ import annotations

import http.client
import json
import time
import urllib.error
import urllib.request
from pathlib import Path
from typing import Any, Mapping, Optional, Protocol, Sequence, Tuple

from cd4pe_runner.config import DeploymentConfig
from cd4pe_runner.errors import APIConnectionError, InvalidVerbError, ServerExhaustedError
from cd4pe_runner.ui.console import get_console

from .models import ApiResponse, ResponseClass
from .operations import (
    CreateTempNodeGroup,
    DeleteGitBranch,
    DeleteNodeGroup,
    DeployCode,
    GetDeploymentApprovalState,
    GetJobScriptAndControlRepo,
    GetNodeGroupInfo,
    GetPuppetRunStatus,
    Operation,
    PinNodesToGroup,
    RunPuppet,
    UpdateGitRef,
)

VERBS = ("GET", "POST", "PUT", "DELETE")
MAX_ATTEMPTS = 3
RETRY_DELAY_SECONDS = 3
DEFAULT_TIMEOUT_SECONDS = 60.0


class Transport(Protocol):
    """Sends one HTTP request and returns (status_code, body).

    HTTP error statuses are returned, not raised. Failing to reach the host
    raises ``OSError`` (``urllib.error.URLError`` is one).
    """

    def send(
        self,
        method: str,
        url: str,
        body: Optional[bytes],
        headers: Mapping[str, str],
    ) -> Tuple[int, bytes]:
        ...


class _NoRedirect(urllib.request.HTTPRedirectHandler):
    # Surface 3xx to the caller instead of following it.
    def redirect_request(self, req, fp, code, msg, headers, newurl):
        return None


class UrllibTransport:
    """Transport backed by ``urllib.request``."""

    def __init__(self, timeout: float = DEFAULT_TIMEOUT_SECONDS):
        self.timeout = timeout
        self._opener = urllib.request.build_opener(_NoRedirect)

    def send(
        self,
        method: str,
        url: str,
        body: Optional[bytes],
        headers: Mapping[str, str],
    ) -> Tuple[int, bytes]:
        req = urllib.request.Request(url, data=body, headers=dict(headers), method=method)
        try:
            with self._opener.open(req, timeout=self.timeout) as response:
                return response.status, response.read()
        except urllib.error.HTTPError as e:
            error_body = e.read() if e.fp else b""
            return e.code, error_body
        except http.client.HTTPException as e:
            # truncated or garbled responses count as transport failures
            raise ConnectionError(f"{type(e).__name__}: {e}") from e


class APIClient:
    """HTTP client for the CD4PE owner-scoped AJAX API."""

    def __init__(self, config: DeploymentConfig, transport: Optional[Transport] = None):
        """
        Initialize API client.

        Args:
            config: Where CD4PE lives and how to authenticate with it
            transport: Optional transport; defaults to a urllib-backed one
        """
        self.config = config
        self.transport = transport or UrllibTransport()

    @property
    def owner_ajax_path(self) -> str:
        return self.config.owner_ajax_path

    @property
    def service_url(self) -> str:
        return self.config.service_url

    def send(
        self,
        verb: str,
        path: str,
        payload: Optional[Mapping[str, Any]] = None,
    ) -> ApiResponse:
        """
        Make an HTTP request to the API, retrying on server errors.

        Args:
            verb: GET, POST, PUT or DELETE
            path: Path under the service URL, with query string for GET
            payload: JSON body for POST/PUT

        Returns:
            The response. 2xx, 3xx and 4xx are returned as-is; deciding what
            a 4xx means is up to the caller.

        Raises:
            InvalidVerbError: If verb is not supported
            APIConnectionError: If the host cannot be reached (not retried)
            ServerExhaustedError: If every attempt got a 5xx response
        """
        method = verb.upper()
        if method not in VERBS:
            raise InvalidVerbError(verb)

        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer token {self.config.token}",
        }
        body = None
        if method in ("POST", "PUT"):
            body = json.dumps(payload if payload is not None else {}).encode("utf-8")

        url = self.service_url + path
        console = get_console()

        attempts = 0
        while True:
            attempts += 1
            console.print_debug(f"cd4pe_client: requesting {method} {path}")
            try:
                status, raw = self.transport.send(method, url, body, headers)
            except OSError as e:
                reason = getattr(e, "reason", None) or e
                raise APIConnectionError(self.service_url, str(reason)) from e

            response = ApiResponse(status_code=status, body=raw)
            if response.classification is not ResponseClass.SERVER_ERROR:
                return response

            if attempts >= MAX_ATTEMPTS:
                raise ServerExhaustedError(
                    service_url=self.service_url,
                    attempts=attempts,
                    status_code=status,
                    body=response.text,
                )
            console.print_debug(
                f"Received {status} error from {self.service_url}, attempting to retry. "
                f"(Attempt {attempts} of {MAX_ATTEMPTS})"
            )
            time.sleep(RETRY_DELAY_SECONDS)

    def dispatch(self, operation: Operation) -> ApiResponse:
        """Send a typed operation with the verb and encoding it declares."""
        if operation.method == "GET":
            return self.send("GET", self.owner_ajax_path + operation.to_query())
        return self.send(operation.method, self.owner_ajax_path, operation.to_payload())

    # -------------------- Node groups --------------------

    def pin_nodes_to_env(self, nodes: Sequence[str], node_group_id: str) -> ApiResponse:
        return self.dispatch(PinNodesToGroup(
            deployment_id=self.config.deployment_id,
            node_group_id=node_group_id,
            nodes=list(nodes),
        ))

    def get_node_group(self, node_group_id: str) -> ApiResponse:
        return self.dispatch(GetNodeGroupInfo(
            deployment_id=self.config.deployment_id,
            node_group_id=node_group_id,
        ))

    def delete_node_group(self, node_group_id: str) -> ApiResponse:
        return self.dispatch(DeleteNodeGroup(
            deployment_id=self.config.deployment_id,
            node_group_id=node_group_id,
        ))

    def create_temp_node_group(
        self,
        parent_node_group_id: str,
        environment_name: str,
        is_environment_node_group: bool,
    ) -> ApiResponse:
        return self.dispatch(CreateTempNodeGroup(
            deployment_id=self.config.deployment_id,
            parent_node_group_id=parent_node_group_id,
            environment_name=environment_name,
            is_environment_node_group=is_environment_node_group,
        ))

    # -------------------- Code deployment --------------------

    def deploy_code(
        self,
        environment_name: str,
        default_branch_override: Optional[str] = None,
    ) -> ApiResponse:
        return self.dispatch(DeployCode(
            deployment_id=self.config.deployment_id,
            environment_name=environment_name,
            default_branch_override=default_branch_override or None,
        ))

    def get_approval_state(self) -> ApiResponse:
        return self.dispatch(GetDeploymentApprovalState(deployment_id=self.config.deployment_id))

    # -------------------- Puppet runs --------------------

    def run_puppet(
        self,
        environment_name: str,
        nodes: Sequence[str],
        concurrency: Optional[int] = None,
        noop: bool = False,
    ) -> ApiResponse:
        return self.dispatch(RunPuppet(
            deployment_id=self.config.deployment_id,
            environment_name=environment_name,
            nodes=list(nodes),
            with_noop=noop,
            concurrency=concurrency,
        ))

    def get_puppet_run_status(self, job_id: str) -> ApiResponse:
        return self.dispatch(GetPuppetRunStatus(
            deployment_id=self.config.deployment_id,
            job_id=job_id,
        ))

    # -------------------- Git --------------------

    def delete_git_branch(self, branch_name: str) -> ApiResponse:
        return self.dispatch(DeleteGitBranch(
            deployment_id=self.config.deployment_id,
            branch_name=branch_name,
        ))

    def update_git_branch_ref(self, branch_name: str, commit_sha: str) -> ApiResponse:
        return self.dispatch(UpdateGitRef(
            deployment_id=self.config.deployment_id,
            branch_name=branch_name,
            commit_sha=commit_sha,
        ))

    # -------------------- Jobs --------------------

    def get_job_script_and_control_repo(self, target_file: str | Path) -> ApiResponse:
        """
        Download the job scripts + control repo archive into ``target_file``.

        The body is only written for a 2xx answer; the response is returned
        either way so the caller can decide what a failure means.
        """
        response = self.dispatch(GetJobScriptAndControlRepo(
            job_instance_id=self.config.deployment_id,
        ))
        if response.ok:
            Path(target_file).write_bytes(response.body)
        return response
