# cli.py
from __future__ import annotations

import sys

import click

from cd4pe_runner.agent.executor import JobOrchestrator
from cd4pe_runner.agent.models import JobLog
from cd4pe_runner.config import DEFAULT_WORKING_DIR, JobParams
from cd4pe_runner.errors import (
    APIConnectionError,
    APISemanticError,
    CD4PEError,
    ConfigurationError,
    ServerExhaustedError,
)
from cd4pe_runner.ui.console import Console, get_console, set_console

EXIT_CONFIG_ERROR = 2


@click.group()
@click.option(
    "--debug",
    is_flag=True,
    default=False,
    help="Enable debug mode (show request/progress logs and stack traces)",
)
@click.pass_context
def cli(ctx, debug):
    """cd4pe-runner: run CD4PE jobs on this agent."""
    console = Console(debug=debug)
    set_console(console)
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug


@cli.command("run-job")
@click.option("--web-ui-endpoint", envvar="CD4PE_WEB_UI_ENDPOINT", default=None,
              help="CD4PE web UI endpoint (e.g., https://cd4pe.example.com:8080)")
@click.option("--token", envvar="CD4PE_TOKEN", default=None, help="Job token")
@click.option("--job-owner", envvar="CD4PE_JOB_OWNER", default=None, help="Owner (workspace) of the job")
@click.option("--job-instance-id", envvar="CD4PE_JOB_INSTANCE_ID", default=None, help="Job instance to run")
@click.option("--docker-image", default=None, help="Run the job inside this container image")
@click.option("--docker-run-arg", "docker_run_args", multiple=True,
              help="Extra argument for `docker run` (repeatable, order is kept)")
@click.option("--env-var", "env_vars", multiple=True, help="KEY=VALUE passed to job scripts (repeatable)")
@click.option("--working-dir", default=DEFAULT_WORKING_DIR, show_default=True,
              help="Directory the job bundle is downloaded and unpacked into")
@click.option("--print-logs/--no-print-logs", default=False, show_default=True,
              help="Print the job's progress log after the run")
@click.pass_context
def run_job(ctx, web_ui_endpoint, token, job_owner, job_instance_id, docker_image,
            docker_run_args, env_vars, working_dir, print_logs):
    """Fetch a job from CD4PE, run it, and print the report as JSON."""
    console = get_console()
    log = JobLog()

    try:
        params = JobParams.from_mapping({
            "cd4pe_web_ui_endpoint": web_ui_endpoint,
            "cd4pe_token": token,
            "cd4pe_job_owner": job_owner,
            "job_instance_id": job_instance_id,
            "docker_image": docker_image,
            "docker_run_args": list(docker_run_args),
            "env_vars": list(env_vars),
            "working_dir": working_dir,
        })
        orchestrator = JobOrchestrator.from_params(params, log=log)
    except ConfigurationError as e:
        console.print_error(
            "Invalid configuration",
            str(e),
            suggestion="Pass the value as an option or set its CD4PE_* environment variable.",
        )
        sys.exit(EXIT_CONFIG_ERROR)

    console.print_job_started(
        job_instance_id=params.job_instance_id,
        api=orchestrator.client.service_url,
        docker_image=params.docker_image,
    )

    try:
        report = orchestrator.run()
    except KeyboardInterrupt:
        console.print_info("\nInterrupted by user")
        sys.exit(130)
    except APIConnectionError as e:
        console.print_error(
            "Network error",
            str(e),
            suggestion="Verify the web UI endpoint is correct and CD4PE is running.",
        )
        sys.exit(1)
    except (ServerExhaustedError, APISemanticError) as e:
        console.print_error("API request failed", str(e))
        sys.exit(1)
    except CD4PEError as e:
        console.print_exception(e)
        sys.exit(1)
    finally:
        if print_logs:
            console.print_logs(log)

    console.print_stage_result("job", report.job.exit_code)
    if report.followup is not None:
        stage, result = report.followup
        console.print_stage_result(stage.report_key, result.exit_code)
    console.print_report(report.to_dict())

    if not report.job.succeeded:
        sys.exit(1)


def main() -> None:
    cli(obj={})


if __name__ == "__main__":
    main()
