
from .agent.api_client import APIClient
from .agent.executor import JobOrchestrator, run_job_from_params
from .agent.models import ExecutionResult, JobLog, JobReport, ManifestStage
from .config import DeploymentConfig, JobParams

__all__ = [
    "APIClient",
    "JobOrchestrator",
    "run_job_from_params",
    "ExecutionResult",
    "JobLog",
    "JobReport",
    "ManifestStage",
    "DeploymentConfig",
    "JobParams",
]
