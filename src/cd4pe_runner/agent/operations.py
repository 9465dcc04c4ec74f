# agent/operations.py
"""
One model per CD4PE AJAX operation.

Each operation knows its wire name and HTTP verb. Mutating operations are
POSTed as ``{"op": <name>, "content": {...}}``; read operations are sent as
a GET query string ``?op=<name>&...``. Field names are snake_case in Python
and camelCase on the wire.
"""
from __future__ import annotations

from typing import Any, ClassVar, Dict, List, Optional
from urllib.parse import urlencode

from pydantic import BaseModel, ConfigDict, Field


class Operation(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="forbid")

    op: ClassVar[str]
    method: ClassVar[str] = "POST"

    def content(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)

    def to_payload(self) -> Dict[str, Any]:
        return {"op": self.op, "content": self.content()}

    def to_query(self) -> str:
        params = {"op": self.op}
        for key, value in self.content().items():
            params[key] = str(value).lower() if isinstance(value, bool) else value
        return "?" + urlencode(params, doseq=True)


class DeploymentOperation(Operation):
    deployment_id: str = Field(alias="deploymentId")


# -------------------- Node groups --------------------

class PinNodesToGroup(DeploymentOperation):
    op: ClassVar[str] = "PinNodesToGroup"

    node_group_id: str = Field(alias="nodeGroupId")
    nodes: List[str]


class GetNodeGroupInfo(DeploymentOperation):
    op: ClassVar[str] = "GetNodeGroupInfo"
    method: ClassVar[str] = "GET"

    node_group_id: str = Field(alias="nodeGroupId")


class DeleteNodeGroup(DeploymentOperation):
    op: ClassVar[str] = "DeleteNodeGroup"

    node_group_id: str = Field(alias="nodeGroupId")


class CreateTempNodeGroup(DeploymentOperation):
    op: ClassVar[str] = "CreateTempNodeGroup"

    parent_node_group_id: str = Field(alias="parentNodeGroupId")
    environment_name: str = Field(alias="environmentName")
    is_environment_node_group: bool = Field(alias="isEnvironmentNodeGroup")


# -------------------- Code deployment --------------------

class DeployCode(DeploymentOperation):
    op: ClassVar[str] = "DeployCode"

    environment_name: str = Field(alias="environmentName")
    default_branch_override: Optional[str] = Field(default=None, alias="defaultBranchOverride")


class GetDeploymentApprovalState(DeploymentOperation):
    op: ClassVar[str] = "GetDeploymentApprovalState"
    method: ClassVar[str] = "GET"


# -------------------- Puppet runs --------------------

class RunPuppet(DeploymentOperation):
    op: ClassVar[str] = "RunPuppet"

    environment_name: str = Field(alias="environmentName")
    nodes: List[str]
    with_noop: bool = Field(default=False, alias="withNoop")
    concurrency: Optional[int] = None


class GetPuppetRunStatus(DeploymentOperation):
    op: ClassVar[str] = "GetPuppetRunStatus"

    job_id: str = Field(alias="jobId")


# -------------------- Git --------------------

class DeleteGitBranch(DeploymentOperation):
    op: ClassVar[str] = "DeleteGitBranch"

    branch_name: str = Field(alias="branchName")


class UpdateGitRef(DeploymentOperation):
    op: ClassVar[str] = "UpdateGitRef"

    branch_name: str = Field(alias="branchName")
    commit_sha: str = Field(alias="commitSha")


# -------------------- Jobs --------------------

class GetJobScriptAndControlRepo(Operation):
    op: ClassVar[str] = "GetJobScriptAndControlRepo"
    method: ClassVar[str] = "GET"

    job_instance_id: str = Field(alias="jobInstanceId")
