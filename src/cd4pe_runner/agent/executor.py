# agent/executor.py
from __future__ import annotations

import shutil
import subprocess
import tarfile
from pathlib import Path
from typing import Any, List, Mapping, Optional, Sequence

from cd4pe_runner.config import JobParams
from cd4pe_runner.errors import APISemanticError, JobExecutionError

from .api_client import APIClient, Transport
from .models import ExecutionResult, JobLog, JobReport, ManifestStage

JOB_ARCHIVE_NAME = "cd4pe_job.tar.gz"
CONTAINER_REPO_DIR = "/repo"
CONTAINER_JOBS_DIR = "/cd4pe_job"
DEFAULT_CONTAINER_RUNTIME = "docker"

# shell conventions for "could not even start the script"
EXIT_NOT_EXECUTABLE = 126
EXIT_NOT_FOUND = 127


def run_system_cmd(
    cmd: Sequence[str],
    *,
    cwd: Optional[Path] = None,
    env: Optional[Mapping[str, str]] = None,
) -> ExecutionResult:
    """
    Run a command to completion and capture stdout+stderr as one stream.

    A non-zero exit is a normal result. A command that cannot be started
    is reported as exit 127 (not found) or 126 (not executable).
    """
    try:
        proc = subprocess.run(
            list(cmd),
            cwd=str(cwd) if cwd is not None else None,
            env=dict(env) if env is not None else None,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            errors="replace",
        )
    except FileNotFoundError as e:
        return ExecutionResult(exit_code=EXIT_NOT_FOUND, message=str(e))
    except PermissionError as e:
        return ExecutionResult(exit_code=EXIT_NOT_EXECUTABLE, message=str(e))

    return ExecutionResult(exit_code=proc.returncode, message=proc.stdout or "")


class JobOrchestrator:
    """
    Runs one CD4PE job: fetch the bundle, run JOB, then run the
    AFTER_JOB_SUCCESS or AFTER_JOB_FAILURE script if the bundle ships one.
    """

    def __init__(
        self,
        client: APIClient,
        working_dir: str | Path,
        *,
        docker_image: Optional[str] = None,
        docker_run_args: Optional[Sequence[str]] = None,
        env: Optional[Mapping[str, str]] = None,
        log: Optional[JobLog] = None,
        container_runtime: str = DEFAULT_CONTAINER_RUNTIME,
    ):
        """
        Args:
            client: API client configured for this job instance
            working_dir: Where the bundle is downloaded and unpacked
            docker_image: Run stages inside this image instead of on the host
            docker_run_args: Extra ``docker run`` arguments, kept in order
            env: Environment for stage scripts (None inherits ours)
            log: Progress log for this run
            container_runtime: Container CLI to invoke
        """
        self.client = client
        self.working_dir = Path(working_dir)
        self.docker_image = docker_image
        self.docker_run_args: List[str] = list(docker_run_args or [])
        self.env = dict(env) if env is not None else None
        self.log = log if log is not None else JobLog()
        self.container_runtime = container_runtime

        self.local_jobs_dir = self.working_dir / "cd4pe_job" / "jobs" / "unix"
        self.local_repo_dir = self.working_dir / "cd4pe_job" / "repo"

    @classmethod
    def from_params(
        cls,
        params: JobParams | Mapping[str, Any],
        *,
        log: Optional[JobLog] = None,
        transport: Optional[Transport] = None,
        base_env: Optional[Mapping[str, str]] = None,
    ) -> JobOrchestrator:
        """Resolve job configuration; raises before any network or process activity."""
        if not isinstance(params, JobParams):
            params = JobParams.from_mapping(params)
        client = APIClient(params.deployment_config(), transport=transport)
        return cls(
            client,
            params.working_dir,
            docker_image=params.docker_image,
            docker_run_args=params.docker_run_args,
            env=params.job_environment(base_env),
            log=log,
        )

    @property
    def docker_based_job(self) -> bool:
        return self.docker_image is not None

    def run(self) -> JobReport:
        """Fetch, unpack and run the job end-to-end."""
        archive = self.get_job_script_and_control_repo()
        self.unpack_job_bundle(archive)
        return self.run_job()

    # ------------------------------------------------------------------
    # Fetch
    # ------------------------------------------------------------------

    def make_working_dir(self) -> None:
        self.working_dir.mkdir(parents=True, exist_ok=True)

    def get_job_script_and_control_repo(self) -> Path:
        self.make_working_dir()
        target_file = self.working_dir / JOB_ARCHIVE_NAME
        response = self.client.get_job_script_and_control_repo(target_file)
        if not response.ok:
            raise APISemanticError(
                operation="GetJobScriptAndControlRepo",
                status_code=response.status_code,
                body=response.text,
            )
        self.log.push(f"Downloaded job bundle to {target_file}.")
        return target_file

    def unpack_job_bundle(self, archive: Path) -> None:
        # a previous job's scripts must not leak into this one
        shutil.rmtree(self.working_dir / "cd4pe_job", ignore_errors=True)
        try:
            with tarfile.open(str(archive), mode="r:gz") as tar:
                tar.extractall(path=str(self.working_dir), filter="data")
        except (tarfile.TarError, OSError) as e:
            raise JobExecutionError(
                stage=ManifestStage.JOB.value,
                message=f"Could not unpack job bundle {archive}: {e}",
            ) from e
        self.log.push(f"Unpacked job bundle into {self.working_dir}.")

    # ------------------------------------------------------------------
    # Execute
    # ------------------------------------------------------------------

    def run_job(self) -> JobReport:
        result = self.execute_manifest(ManifestStage.JOB)
        next_stage = (
            ManifestStage.AFTER_JOB_SUCCESS if result.succeeded else ManifestStage.AFTER_JOB_FAILURE
        )
        return self.on_job_complete(result, next_stage)

    def on_job_complete(self, result: ExecutionResult, next_stage: ManifestStage) -> JobReport:
        if not self.stage_script(next_stage).exists():
            return JobReport(job=result)

        self.log.push(f"{next_stage.value} script specified.")
        followup = self.execute_manifest(next_stage)
        return JobReport(job=result, followup=(next_stage, followup))

    def stage_script(self, stage: ManifestStage) -> Path:
        return self.local_jobs_dir / stage.value

    def execute_manifest(self, stage: ManifestStage) -> ExecutionResult:
        self.log.push(f"Executing {stage.value} manifest.")
        if self.docker_based_job:
            self.log.push(
                f"Docker image specified. Running {stage.value} manifest on docker image: {self.docker_image}."
            )
            result = self.run_with_docker(stage)
        else:
            self.log.push(f"No docker image specified. Running {stage.value} manifest directly on machine.")
            result = self.run_with_system(stage)

        if result.succeeded:
            self.log.push(f"{stage.value} succeeded!")
        else:
            self.log.push(f"{stage.value} failed with exit code: {result.exit_code}: {result.message}")
        return result

    def run_with_system(self, stage: ManifestStage) -> ExecutionResult:
        if not self.local_repo_dir.is_dir():
            raise JobExecutionError(
                stage=stage.value,
                message=f"control repo not found: {self.local_repo_dir}",
            )
        script = self.stage_script(stage).resolve()
        return run_system_cmd([str(script)], cwd=self.local_repo_dir.resolve(), env=self.env)

    def get_docker_run_cmd(self, stage: ManifestStage) -> List[str]:
        repo_volume_mount = f"{self.local_repo_dir.resolve()}:{CONTAINER_REPO_DIR}"
        scripts_volume_mount = f"{self.local_jobs_dir.resolve()}:{CONTAINER_JOBS_DIR}"
        return [
            self.container_runtime,
            "run",
            *self.docker_run_args,
            "-v", repo_volume_mount,
            "-v", scripts_volume_mount,
            self.docker_image,
            f"{CONTAINER_JOBS_DIR}/{stage.value}",
        ]

    def run_with_docker(self, stage: ManifestStage) -> ExecutionResult:
        return run_system_cmd(self.get_docker_run_cmd(stage), env=self.env)


def run_job_from_params(
    params: JobParams | Mapping[str, Any],
    *,
    log: Optional[JobLog] = None,
    transport: Optional[Transport] = None,
) -> JobReport:
    """Configure, fetch and run a job in one call."""
    return JobOrchestrator.from_params(params, log=log, transport=transport).run()
