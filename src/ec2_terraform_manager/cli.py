#!/usr/bin/env python3
"""EC2 Terraform Manager CLI"""

from __future__ import annotations

import os
from typing import Any, Callable

import click
from rich.panel import Panel
from rich.prompt import IntPrompt, Prompt
from rich.table import Table

from ec2_terraform_manager import __version__
from ec2_terraform_manager.aws_client import AWSInventoryClient
from ec2_terraform_manager.console import (
    CONSOLE,
    print_error,
    print_header,
    print_status,
    print_warning,
    set_debug,
)
from ec2_terraform_manager.document import list_record_keys
from ec2_terraform_manager.errors import (
    ExitCode,
    ManagerError,
    PostWriteValidationError,
    RecordNotFoundError,
    RecordValidationError,
)
from ec2_terraform_manager.operations import InstanceManager
from ec2_terraform_manager.prompts import InstancePrompter
from ec2_terraform_manager.records import summarize
from ec2_terraform_manager.repository import ConfigRepository
from ec2_terraform_manager.settings import Settings, load_settings
from ec2_terraform_manager.terraform_manager import TerraformManager

MENU_OPTIONS = (
    "List instances",
    "Create new instance",
    "Import existing instance",
    "Validate configuration",
    "Plan changes",
    "Apply changes",
    "Remove instance from configuration",
    "Backup state",
    "Exit",
)
LIVE_COLUMNS = ("InstanceId", "Name", "InstanceType", "State", "PrivateIpAddress")


def build_repository(settings: Settings) -> ConfigRepository:
    return ConfigRepository(settings.document_path, settings.backup_path, settings.lock_timeout)


def build_manager(settings: Settings) -> InstanceManager:
    """Wire the manager to the real AWS, terraform and terminal collaborators"""
    return InstanceManager(
        settings=settings,
        repository=build_repository(settings),
        terraform=TerraformManager(settings.work_dir, settings.terraform_binary),
        provider=AWSInventoryClient(
            settings.region,
            settings.profile,
            max_attempts=settings.max_attempts,
            retry_base_delay=settings.retry_base_delay,
        ),
        prompter=InstancePrompter(settings),
    )


class AppContext:
    """Settings plus a lazily built manager"""

    def __init__(self, settings: Settings) -> None:
        self.settings: Settings = settings
        self._manager: InstanceManager | None = None

    @property
    def manager(self) -> InstanceManager:
        if self._manager is None:
            self._manager = build_manager(self.settings)
        return self._manager


def report_error(error: ManagerError) -> None:
    """Print *error* with whatever detail its type carries"""
    print_error(f"{error.__class__.__name__}: {error}")
    if isinstance(error, RecordNotFoundError) and error.available:
        CONSOLE.print("\nAvailable instances:")
        for key in error.available:
            CONSOLE.print(f"  • {key}")
    elif isinstance(error, RecordValidationError):
        for problem in error.problems:
            CONSOLE.print(f"  • {problem}")
    elif isinstance(error, PostWriteValidationError) and error.backup is not None:
        if error.restored:
            print_status(f"Restored configuration from {error.backup}")
        else:
            print_warning(f"Previous configuration is in {error.backup}")


def display_results(result: dict[str, Any], title: str = "Results") -> None:
    """Display operation results in a nice table"""
    if not result:
        return
    table = Table(title=title, show_header=True, header_style="bold magenta")
    table.add_column("Step", style="cyan", width=20)
    table.add_column("Status", style="green", width=10)
    table.add_column("Details", style="white")

    for step, details in result.items():
        status = "✅ Success" if details.get("success", False) else "❌ Failed"
        table.add_row(
            step.replace("_", " ").title(),
            status,
            str(details.get("details", "")),
        )

    CONSOLE.print("\n")
    CONSOLE.print(table)


def display_inventory(inventory: dict[str, Any]) -> None:
    tracked = Table(title="Instances in Terraform state", show_header=True, header_style="bold")
    tracked.add_column("Address", style="cyan")
    for address in inventory["tracked"]:
        tracked.add_row(address)
    CONSOLE.print(tracked)

    configured = Table(title="Instances in configuration", show_header=True, header_style="bold")
    configured.add_column("Resource", style="cyan")
    configured.add_column("Name")
    configured.add_column("Type")
    configured.add_column("Subnet")
    for key, record in inventory["configured"]:
        if record is None:
            configured.add_row(key, "(unparsed)", "", "")
        else:
            fields = dict(summarize(record))
            configured.add_row(key, record.name, fields["Instance Type"], fields["Subnet"])
    CONSOLE.print(configured)

    live = Table(title="Instances in AWS", show_header=True, header_style="bold")
    for column in LIVE_COLUMNS:
        live.add_column(column, style="cyan" if column == "InstanceId" else "white")
    for row in inventory["live"]:
        live.add_row(*(row.get(column, "") for column in LIVE_COLUMNS))
    CONSOLE.print(live)


def run_operation(ctx: click.Context, operation: Callable[[], Any], title: str) -> Any:
    """Run *operation*, turning ManagerError into the matching exit code"""
    try:
        result = operation()
    except ManagerError as e:
        report_error(e)
        ctx.exit(int(e.exit_code))
    except KeyboardInterrupt:
        print_warning("Interrupted")
        ctx.exit(int(ExitCode.ERROR))
    if isinstance(result, dict) and title:
        display_results(result, title)
    return result


@click.group(invoke_without_command=True)
@click.option(
    "--workdir",
    "-w",
    type=click.Path(file_okay=False),
    default=".",
    show_default=True,
    help="Directory holding main.tf and the Terraform state",
)
@click.option("--settings", "settings_file", type=click.Path(dir_okay=False), help="YAML settings file")
@click.option("--region", help="AWS region for the provider block and API calls")
@click.option("--profile", help="AWS named profile")
@click.option("--debug", is_flag=True, help="Print [DEBUG] output")
@click.version_option(__version__, prog_name="ec2-terraform-manager")
@click.pass_context
def cli(
    ctx: click.Context,
    workdir: os.PathLike | str,
    settings_file: str | None,
    region: str | None,
    profile: str | None,
    debug: bool,
):
    """EC2 Terraform Manager - keep EC2 instances in a single Terraform main.tf"""
    overrides: dict[str, Any] = {"region": region, "profile": profile}
    if debug:
        overrides["debug"] = True
    try:
        settings = load_settings(workdir, settings_file, overrides=overrides)
    except ManagerError as e:
        report_error(e)
        ctx.exit(int(e.exit_code))
    set_debug(settings.debug)
    ctx.obj = AppContext(settings)

    if ctx.invoked_subcommand is None:
        ctx.invoke(menu)


@cli.command()
@click.pass_obj
@click.pass_context
def create(ctx: click.Context, app: AppContext):
    """Interactively add a new instance to main.tf"""
    run_operation(ctx, lambda: app.manager.create(), "Create Results")


@cli.command(name="import")
@click.argument("instance_id", required=False)
@click.option("--yes", "-y", "assume_yes", is_flag=True, help="Overwrite an existing record without asking")
@click.pass_obj
@click.pass_context
def import_command(ctx: click.Context, app: AppContext, instance_id: str | None, assume_yes: bool):
    """Import an existing EC2 instance into main.tf and Terraform state"""
    if not instance_id:
        CONSOLE.print(f"Usage: {ctx.command_path} <instance-id>")
        CONSOLE.print(f"Example: {ctx.command_path} i-0b7fc7c40f824a8b9")
        ctx.exit(int(ExitCode.USAGE))
    run_operation(ctx, lambda: app.manager.import_instance(instance_id, assume_yes=assume_yes), "Import Results")


@cli.command()
@click.argument("resource_key", required=False)
@click.option("--forget", is_flag=True, help="Also drop the instance from Terraform state so it keeps running")
@click.pass_obj
@click.pass_context
def remove(ctx: click.Context, app: AppContext, resource_key: str | None, forget: bool):
    """Remove an instance from main.tf"""
    if not resource_key:
        CONSOLE.print(f"Usage: {ctx.command_path} <resource_name>")
        CONSOLE.print(f"Example: {ctx.command_path} web_server_1")
        repository = build_repository(app.settings)
        CONSOLE.print(f"\nCurrent instances in {repository.path.name}:")
        if not repository.exists():
            CONSOLE.print(f"  No {repository.path.name} found")
        else:
            keys = list_record_keys(repository.read())
            for key in keys:
                CONSOLE.print(f"  • {key}")
            if not keys:
                CONSOLE.print("  None found")
        ctx.exit(int(ExitCode.USAGE))
    run_operation(ctx, lambda: app.manager.remove(resource_key, forget=forget), "Remove Results")


@cli.command(name="list")
@click.pass_obj
@click.pass_context
def list_command(ctx: click.Context, app: AppContext):
    """Show instances in state, in main.tf and in AWS"""
    inventory = run_operation(ctx, lambda: app.manager.list_instances(), "")
    display_inventory(inventory)


@cli.command()
@click.pass_obj
@click.pass_context
def validate(ctx: click.Context, app: AppContext):
    """Check main.tf, terraform validate and AWS credentials"""
    try:
        manager = app.manager
    except ManagerError as e:
        report_error(e)
        ctx.exit(int(e.exit_code))
    try:
        manager.validate_setup()
    except ManagerError as e:
        display_results(manager.results, "Validation Results")
        report_error(e)
        ctx.exit(int(e.exit_code))
    display_results(manager.results, "Validation Results")


@cli.command()
@click.pass_obj
@click.pass_context
def plan(ctx: click.Context, app: AppContext):
    """Run terraform plan"""
    run_operation(ctx, lambda: app.manager.plan(), "")


@cli.command()
@click.option("--yes", "-y", "assume_yes", is_flag=True, help="Apply without asking")
@click.pass_obj
@click.pass_context
def apply(ctx: click.Context, app: AppContext, assume_yes: bool):
    """Run terraform apply"""
    run_operation(ctx, lambda: app.manager.apply(assume_yes=assume_yes), "")


@cli.command()
@click.pass_obj
@click.pass_context
def backup(ctx: click.Context, app: AppContext):
    """Copy main.tf and the Terraform state into backup_<timestamp>/"""
    run_operation(ctx, lambda: app.manager.backup_state(), "Backup Results")


def _menu_step(manager: InstanceManager, choice: int) -> bool:
    """Run one menu choice; False means exit"""
    if choice == 1:
        display_inventory(manager.list_instances())
    elif choice == 2:
        display_results(manager.create(), "Create Results")
    elif choice == 3:
        instance_id = Prompt.ask("Enter instance ID to import").strip()
        if instance_id:
            display_results(manager.import_instance(instance_id), "Import Results")
        else:
            print_error("An instance id is required")
    elif choice == 4:
        try:
            manager.validate_setup()
        finally:
            display_results(manager.results, "Validation Results")
    elif choice == 5:
        manager.plan()
    elif choice == 6:
        manager.apply()
    elif choice == 7:
        keys = list_record_keys(manager.repository.read())
        CONSOLE.print("Current instances:")
        for key in keys:
            CONSOLE.print(f"  • {key}")
        if not keys:
            CONSOLE.print("  None found")
        key = Prompt.ask("Enter resource name to remove").strip()
        if key:
            display_results(manager.remove(key, forget=True), "Remove Results")
        else:
            print_error("A resource name is required")
    elif choice == 8:
        display_results(manager.backup_state(), "Backup Results")
    else:
        return False
    return True


@cli.command()
@click.pass_obj
def menu(app: AppContext):
    """Numbered management menu"""
    CONSOLE.print(
        Panel.fit(
            "[bold blue]EC2 Terraform Manager[/bold blue]\n"
            f"Region: {app.settings.region} | Configuration: {app.settings.document_path}",
            border_style="blue",
        )
    )
    try:
        manager = app.manager
    except ManagerError as e:
        report_error(e)
        raise click.exceptions.Exit(int(e.exit_code)) from e
    while True:
        print_header("EC2 INSTANCE MANAGEMENT")
        for number, label in enumerate(MENU_OPTIONS, start=1):
            CONSOLE.print(f"  {number}) {label}")
        CONSOLE.print()
        choice = IntPrompt.ask(
            "Choose option",
            default=1,
            choices=[str(i) for i in range(1, len(MENU_OPTIONS) + 1)],
        )
        try:
            if not _menu_step(manager, choice):
                return
        except ManagerError as e:
            report_error(e)
        except KeyboardInterrupt:
            print_warning("Interrupted")

        CONSOLE.print()
        Prompt.ask("Press Enter to continue", default="", show_default=False)


def main() -> None:
    cli(prog_name="ec2-terraform-manager")


if __name__ == "__main__":
    main()
