"""Interactive prompts for building an instance record"""

from __future__ import annotations

from typing import Any, Iterable, Sequence

from rich.prompt import Confirm, IntPrompt, Prompt
from rich.table import Table

from ec2_terraform_manager.aws_client import AWSInventoryClient
from ec2_terraform_manager.console import CONSOLE, print_error, print_status, print_subheader, print_warning
from ec2_terraform_manager.errors import ManagerError
from ec2_terraform_manager.models import (
    DEFAULT_TAG_KEYS,
    SECURITY_GROUP_RE,
    ExtraVolume,
    IdentityConfig,
    InstanceRecord,
    MetadataPolicy,
    NetworkConfig,
    Protection,
    RootVolume,
)
from ec2_terraform_manager.records import summarize
from ec2_terraform_manager.settings import ImagePreset, Settings

VOLUME_TYPES = ["gp3", "gp2", "io1", "io2"]
EXTRA_DEVICE_LETTERS = "fghijklmn"


def default_device_path(index: int) -> str:
    """Suggested device for the *index*-th (1-based) additional volume"""
    if 1 <= index <= len(EXTRA_DEVICE_LETTERS):
        return f"/dev/sd{EXTRA_DEVICE_LETTERS[index - 1]}"
    return "/dev/sdf"


def _show_rows(title: str, columns: Sequence[str], rows: Iterable[dict[str, Any]]) -> None:
    table = Table(title=title, show_header=True, header_style="bold")
    for column in columns:
        table.add_column(column, style="cyan" if column == columns[0] else "white")
    count = 0
    for row in rows:
        table.add_row(*(str(row.get(column, "")) for column in columns))
        count += 1
    if count:
        CONSOLE.print(table)
    else:
        print_warning(f"No {title.lower()} found")


def _show_names(title: str, names: Sequence[str]) -> None:
    if not names:
        print_warning(f"No {title.lower()} found")
        return
    CONSOLE.print(f"[bold]{title}:[/bold]")
    for name in names:
        CONSOLE.print(f"  • {name}")


def _optional(value: str) -> str | None:
    value = value.strip()
    return value or None


class InstancePrompter:
    """Asks the operator for everything an InstanceRecord needs"""

    def __init__(self, settings: Settings) -> None:
        self.settings = settings

    def ask_name(self) -> str:
        while True:
            name = Prompt.ask("Enter instance name").strip()
            if name:
                return name
            print_error("Instance name cannot be empty")

    def confirm(self, question: str, default: bool = False) -> bool:
        return Confirm.ask(question, default=default)

    def show_summary(self, record: InstanceRecord, title: str = "Configuration Summary") -> None:
        table = Table(title=title, show_header=False)
        table.add_column("Field", style="cyan")
        table.add_column("Value", style="white")
        for label, value in summarize(record):
            table.add_row(label, value)
        CONSOLE.print(table)

    def collect_record(self, name: str, provider: AWSInventoryClient) -> InstanceRecord:
        """Walk the operator through the full instance configuration"""
        print_subheader("Instance Configuration")
        CONSOLE.print("Common instance types:")
        for hint in self.settings.instance_type_hints:
            CONSOLE.print(f"  {hint}")
        instance_class = self._ask_required("Enter instance type")

        _show_rows("Available VPCs", ["VpcId", "Name", "CIDR"], provider.list_vpcs())
        vpc_id = self._ask_required("Enter VPC ID")

        _show_rows(f"Subnets in {vpc_id}", ["SubnetId", "Name", "CIDR", "AZ"], provider.list_subnets(vpc_id))
        subnet_id = self._ask_required("Enter Subnet ID")

        _show_rows(
            f"Security groups in {vpc_id}",
            ["GroupId", "GroupName", "Description"],
            provider.list_security_groups(vpc_id),
        )
        security_groups = self._ask_security_groups()

        image = self._ask_image(provider)

        _show_names("Available IAM instance profiles", provider.list_instance_profiles())
        iam_profile = _optional(Prompt.ask("IAM instance profile name (Enter for none)", default=""))

        _show_names("Available key pairs", provider.list_key_pairs())
        key_name = _optional(Prompt.ask("Key pair name (Enter for none)", default=""))

        private_ip = _optional(Prompt.ask("Private IP address (Enter for auto-assign)", default=""))
        monitoring = Confirm.ask("Enable detailed monitoring?", default=False)

        print_subheader("Storage Configuration")
        root_volume = RootVolume(
            size_gib=self._ask_size("Root volume size in GB", 20),
            volume_type=Prompt.ask("Root volume type", choices=VOLUME_TYPES, default="gp3"),
            encrypted=Confirm.ask("Encrypt root volume?", default=True),
        )
        extra_volumes = self._ask_extra_volumes()

        user_data_path = _optional(Prompt.ask("User data script path (Enter for none)", default=""))
        protection = Protection(
            termination_protected=Confirm.ask("Enable termination protection?", default=False),
            stop_protected=Confirm.ask("Enable stop protection?", default=False),
        )
        tags = self._ask_tags()

        return InstanceRecord(
            name=name,
            image=image,
            instance_class=instance_class,
            network=NetworkConfig(
                subnet_id=subnet_id,
                vpc_id=vpc_id,
                private_ip=private_ip,
                security_group_ids=security_groups,
            ),
            identity=IdentityConfig(iam_profile=iam_profile, key_name=key_name),
            monitoring_enabled=monitoring,
            root_volume=root_volume,
            extra_volumes=extra_volumes,
            user_data_path=user_data_path,
            metadata_policy=MetadataPolicy(),
            protection=protection,
            tags=tags,
            environment=self.settings.environment,
        )

    def _ask_required(self, question: str) -> str:
        while True:
            answer = Prompt.ask(question).strip()
            if answer:
                return answer
            print_error("A value is required")

    def _ask_size(self, question: str, default: int) -> int:
        while True:
            size = IntPrompt.ask(question, default=default)
            if size > 0:
                return size
            print_error("Size must be a positive number of GB")

    def _ask_security_groups(self) -> list[str]:
        print_status("Enter Security Group IDs (sg-xxxxx), not names")
        while True:
            groups = Prompt.ask("Security group IDs (space-separated)", default="").split()
            invalid = [group for group in groups if not SECURITY_GROUP_RE.match(group)]
            if not invalid:
                return groups
            for group in invalid:
                print_error(f"Invalid security group format: {group} (use IDs like sg-08b61d2c25fc4fe3f)")

    def _ask_image(self, provider: AWSInventoryClient) -> str:
        presets: tuple[ImagePreset, ...] = self.settings.image_presets
        CONSOLE.print("[bold]AMI Options:[/bold]")
        for index, preset in enumerate(presets, start=1):
            CONSOLE.print(f"  {index}. {preset.label}")
        custom = len(presets) + 1
        CONSOLE.print(f"  {custom}. Custom AMI ID")
        choice = IntPrompt.ask(
            f"Choose AMI option (1-{custom})",
            default=1,
            choices=[str(i) for i in range(1, custom + 1)],
        )
        if choice == custom:
            return self._ask_required("Enter custom AMI ID")

        preset = presets[choice - 1]
        print_status(f"Finding latest AMI for {preset.label}...")
        image = provider.find_latest_image(preset.pattern, preset.owner)
        if not image:
            raise ManagerError(f"Could not determine AMI ID for {preset.label}")
        print_status(f"Found: {image}")
        return image

    def _ask_extra_volumes(self) -> list[ExtraVolume]:
        volumes: list[ExtraVolume] = []
        if not Confirm.ask("Add additional EBS volumes?", default=False):
            return volumes
        while True:
            index = len(volumes) + 1
            CONSOLE.print(f"\n[bold]--- Additional Volume {index} ---[/bold]")
            volumes.append(
                ExtraVolume(
                    device_path=Prompt.ask("Device name", default=default_device_path(index)).strip(),
                    size_gib=self._ask_size("Volume size in GB", 100),
                    volume_type=Prompt.ask("Volume type", choices=VOLUME_TYPES, default="gp3"),
                    encrypted=Confirm.ask("Encrypt volume?", default=True),
                    delete_on_termination=Confirm.ask("Delete on termination?", default=False),
                    label=f"volume-{index}",
                )
            )
            print_status(f"Volume {index} configured")
            if not Confirm.ask("Add another volume?", default=False):
                return volumes

    def _ask_tags(self) -> dict[str, str]:
        print_status("Configure additional tags (Name, Terraform and Environment are added automatically)")
        tags: dict[str, str] = {}
        while True:
            key = Prompt.ask("Tag key (Enter to finish)", default="").strip()
            if not key:
                return tags
            if key in DEFAULT_TAG_KEYS:
                print_warning(f"Skipping '{key}' - this is a default tag")
                continue
            tags[key] = Prompt.ask(f"Tag value for '{key}'", default="")
