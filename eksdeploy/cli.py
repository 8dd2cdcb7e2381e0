"""Command-line entry point: one subcommand per former Makefile target."""

import argparse
import logging
import sys
import time
from collections.abc import Callable, Sequence
from typing import Optional

from colorama import Fore, Style
from dotenv import find_dotenv, load_dotenv
from pydantic import ValidationError

from eksdeploy.console import (
    configure_logging,
    print_error,
    print_header,
    print_info,
    print_success,
    print_warning,
)
from eksdeploy.context import RunContext
from eksdeploy.driver import Driver, build_plan
from eksdeploy.errors import (
    ControlPlaneError,
    CyclicDependencyError,
    DeploymentError,
    DuplicateStageError,
    UnknownStageError,
    UnresolvedVariableError,
)
from eksdeploy.executor import CommandExecutor
from eksdeploy.models import Direction, RunReport
from eksdeploy.resolver import VariableResolver
from eksdeploy.runner import CommandRunner
from eksdeploy.services import ControlPlane
from eksdeploy.settings import Settings
from eksdeploy.templates import discover_templates
from eksdeploy.validation import collect_variable_errors, validate_template_tokens
from eksdeploy.workflows import WORKFLOWS, Workflow, build_catalog, build_sources, select_stages

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_ABORTED = 1
EXIT_CONFIG = 2

STATIC_ERRORS = (
    CyclicDependencyError,
    DuplicateStageError,
    UnknownStageError,
    UnresolvedVariableError,
)

# flag dest -> Settings field
OVERRIDES = {
    "stack_name": "stack_name",
    "region": "aws_region",
    "profile": "aws_profile",
    "parameters_file": "parameters_file",
    "max_parallel": "max_parallel_stages",
    "log_level": "log_level",
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="eksdeploy",
        description="Deploy and tear down the grafana-eks cluster and its workloads",
    )
    parser.add_argument("--stack-name", help="CloudFormation stack name (env: STACK_NAME)")
    parser.add_argument("--region", help="AWS region (env: AWS_REGION)")
    parser.add_argument("--profile", help="AWS credential profile (env: AWS_PROFILE)")
    parser.add_argument("--parameters-file", help="Stack parameters file (env: PARAMETERS_FILE)")
    parser.add_argument(
        "--max-parallel",
        type=int,
        help="Stages allowed to run at once (env: MAX_PARALLEL_STAGES)",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        type=str.upper,
        help="Log verbosity (env: LOG_LEVEL)",
    )

    subparsers = parser.add_subparsers(dest="command", metavar="COMMAND", required=True)
    for workflow in WORKFLOWS.values():
        sub = subparsers.add_parser(workflow.name, help=workflow.description)
        sub.add_argument(
            "--stage",
            dest="stages",
            action="append",
            default=[],
            metavar="ID",
            help="Only run this stage (repeatable)",
        )
    plan = subparsers.add_parser("plan", help="Print the ordered stages of a workflow")
    plan.add_argument("workflow", choices=sorted(WORKFLOWS))
    plan.add_argument("--stage", dest="stages", action="append", default=[], metavar="ID")
    subparsers.add_parser("status", help="Print the stack status")
    subparsers.add_parser("outputs", help="Print the stack outputs")
    subparsers.add_parser("validate", help="Validate the template, stage graph and manifests")
    return parser


def settings_from_args(args: argparse.Namespace) -> Settings:
    """Settings from env/.env, with any command-line flag taking precedence."""
    overrides = {
        field: getattr(args, dest)
        for dest, field in OVERRIDES.items()
        if getattr(args, dest, None) is not None
    }
    return Settings(**overrides)


def runner_env(settings: Settings) -> dict[str, str]:
    """Environment exported to aws, eksctl, helm and kubectl."""
    env = {"AWS_REGION": settings.aws_region, "AWS_DEFAULT_REGION": settings.aws_region}
    if settings.aws_profile:
        env["AWS_PROFILE"] = settings.aws_profile
    return env


def run_workflow(
    workflow: Workflow,
    settings: Settings,
    stage_ids: Sequence[str] = (),
    runner: Optional[CommandRunner] = None,
    control_plane: Optional[ControlPlane] = None,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> RunReport:
    graph = select_stages(workflow, settings, stage_ids)
    sources = build_sources(settings)
    runner = runner or CommandRunner(env=runner_env(settings))
    control_plane = control_plane or ControlPlane(settings)

    resolver = VariableResolver(settings, sources, control_plane, runner, sleep=sleep, clock=clock)
    executor = CommandExecutor(settings, resolver, runner, sleep=sleep, clock=clock)
    driver = Driver(executor, sources, max_parallel=settings.max_parallel_stages)

    print_info(f"Stack: {settings.stack_name}  Cluster: {settings.cluster_name}  Region: {settings.aws_region}")
    return driver.run(graph, workflow.direction, RunContext(settings.builtins()))


def show_plan(workflow: Workflow, settings: Settings, stage_ids: Sequence[str] = ()) -> int:
    graph = select_stages(workflow, settings, stage_ids)
    print_header(f"Plan: {workflow.name} ({workflow.direction.value})")
    for position, step in enumerate(build_plan(graph, workflow.direction), start=1):
        marker = "" if step.action else f" {Fore.YELLOW}(nothing to do){Style.RESET_ALL}"
        after = f" after {', '.join(step.after)}" if step.after else ""
        print(f"  {position:2d}. {Fore.WHITE}{Style.BRIGHT}{step.stage.id}{Style.RESET_ALL}"
              f" [{step.stage.group}]{after}{marker}")
    return EXIT_OK


def show_status(settings: Settings, control_plane: Optional[ControlPlane] = None) -> int:
    control_plane = control_plane or ControlPlane(settings)
    status = control_plane.stack_status(settings.stack_name)
    if status is None:
        print_error(f"Stack {settings.stack_name} does not exist")
        return EXIT_ABORTED
    print(status)
    return EXIT_OK


def show_outputs(settings: Settings, control_plane: Optional[ControlPlane] = None) -> int:
    control_plane = control_plane or ControlPlane(settings)
    outputs = control_plane.stack_outputs(settings.stack_name)
    if outputs is None:
        print_error(f"Stack {settings.stack_name} does not exist")
        return EXIT_ABORTED
    if not outputs:
        print_warning(f"Stack {settings.stack_name} has no outputs")
        return EXIT_OK
    width = max(len(key) for key in outputs)
    print(f"{Style.BRIGHT}{'OutputKey'.ljust(width)}  OutputValue{Style.RESET_ALL}")
    print(f"{'-' * width}  {'-' * 11}")
    for key in sorted(outputs):
        print(f"{key.ljust(width)}  {outputs[key]}")
    return EXIT_OK


def validate(settings: Settings, control_plane: Optional[ControlPlane] = None) -> int:
    """Check the template through the API, then everything checkable offline."""
    control_plane = control_plane or ControlPlane(settings)
    exit_code = EXIT_OK

    print_header("Validating")
    try:
        control_plane.validate_template(settings.template_file)
        print_success(f"Template {settings.template_file} is valid")
    except OSError as e:
        print_error(f"Cannot read template {settings.template_file}: {e}")
        exit_code = EXIT_CONFIG
    except ControlPlaneError as e:
        print_error(str(e))
        exit_code = max(exit_code, EXIT_ABORTED)

    sources = build_sources(settings)
    for direction in Direction:
        graph = build_catalog(settings, direction)
        try:
            graph.topological_order()
        except STATIC_ERRORS as e:
            print_error(f"{direction.value}: {e}")
            exit_code = EXIT_CONFIG
            continue
        errors = collect_variable_errors(graph, direction, settings.builtins(), sources)
        for error in errors:
            print_error(f"{direction.value}: {error.field}: {error.message}")
        if errors:
            exit_code = EXIT_CONFIG
        else:
            print_success(f"{direction.value} graph: {len(graph)} stages, all variables resolvable")

    templates = discover_templates(settings.manifests_dir)
    try:
        token_errors = validate_template_tokens(templates)
    except OSError as e:
        print_error(f"Cannot read manifest templates: {e}")
        return EXIT_CONFIG
    for error in token_errors:
        print_error(f"{error.field}: {error.message} ({error.value})")
    if token_errors:
        exit_code = EXIT_CONFIG
    else:
        print_success(f"{len(templates)} manifest template(s) checked")
    return exit_code


def main(argv: Optional[Sequence[str]] = None) -> int:
    load_dotenv(find_dotenv(usecwd=True))
    args = build_parser().parse_args(argv)
    try:
        settings = settings_from_args(args)
    except ValidationError as e:
        print_error(f"Invalid configuration: {e}")
        return EXIT_CONFIG
    configure_logging(settings.log_level, settings.log_file)
    logger.debug("Settings: %s", settings.model_dump())

    try:
        if args.command in WORKFLOWS:
            print_header(f"eksdeploy {args.command}")
            return run_workflow(WORKFLOWS[args.command], settings, args.stages).exit_code
        if args.command == "plan":
            return show_plan(WORKFLOWS[args.workflow], settings, args.stages)
        if args.command == "status":
            return show_status(settings)
        if args.command == "outputs":
            return show_outputs(settings)
        return validate(settings)
    except STATIC_ERRORS as e:
        print_error(str(e))
        return EXIT_CONFIG
    except DeploymentError as e:
        print_error(str(e))
        return EXIT_ABORTED
    except KeyboardInterrupt:
        print(f"\n{Fore.YELLOW}Operation cancelled by user{Style.RESET_ALL}")
        return EXIT_ABORTED


if __name__ == "__main__":
    sys.exit(main())
