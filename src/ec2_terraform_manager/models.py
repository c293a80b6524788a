"""Instance record data model"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

from ec2_terraform_manager.errors import RecordValidationError

DEFAULT_TAG_KEYS: tuple[str, ...] = ("Name", "Terraform", "Environment")
DEFAULT_ENVIRONMENT = "staging"
RESOURCE_TYPE = "aws_instance"
RESOURCE_NAME = "managed_instances"

SECURITY_GROUP_RE = re.compile(r"^sg-[0-9a-f]+$")
_UNSAFE_KEY_CHARS = re.compile(r"[^A-Za-z0-9_]")
_UNDERSCORE_RUNS = re.compile(r"_+")


def derive_resource_key(name: str) -> str:
    """Map a display name to its resource key.

    Surrounding whitespace is dropped, every character outside
    ``[A-Za-z0-9_]`` becomes ``_`` and runs of ``_`` collapse to one.
    """
    return _UNDERSCORE_RUNS.sub("_", _UNSAFE_KEY_CHARS.sub("_", name.strip()))


def resource_address(key: str) -> str:
    """Terraform address of the managed instance stored under *key*."""
    return f'{RESOURCE_TYPE}.{RESOURCE_NAME}["{key}"]'


@dataclass
class NetworkConfig:
    subnet_id: str
    vpc_id: str
    private_ip: str | None = None
    security_group_ids: list[str] = field(default_factory=list)


@dataclass
class IdentityConfig:
    iam_profile: str | None = None
    key_name: str | None = None


@dataclass
class RootVolume:
    size_gib: int = 20
    volume_type: str = "gp3"
    encrypted: bool = True
    tags: dict[str, str] = field(default_factory=dict)


@dataclass
class ExtraVolume:
    device_path: str
    size_gib: int = 100
    volume_type: str = "gp3"
    encrypted: bool = True
    delete_on_termination: bool = False
    label: str = "volume-1"


@dataclass
class MetadataPolicy:
    http_endpoint_enabled: bool = True
    tokens_required: bool = True
    hop_limit: int = 2
    tags_exposed: bool = True


@dataclass
class Protection:
    termination_protected: bool = False
    stop_protected: bool = False


@dataclass
class InstanceRecord:
    """Desired configuration of one managed EC2 instance.

    ``tags`` holds custom tags only; ``Name``, ``Terraform`` and
    ``Environment`` come from ``name`` and ``environment`` and are always
    emitted first by :meth:`all_tags`.
    """

    name: str
    image: str
    instance_class: str
    network: NetworkConfig
    identity: IdentityConfig = field(default_factory=IdentityConfig)
    monitoring_enabled: bool = False
    root_volume: RootVolume = field(default_factory=RootVolume)
    extra_volumes: list[ExtraVolume] = field(default_factory=list)
    user_data_path: str | None = None
    metadata_policy: MetadataPolicy = field(default_factory=MetadataPolicy)
    protection: Protection = field(default_factory=Protection)
    tags: dict[str, str] = field(default_factory=dict)
    environment: str = DEFAULT_ENVIRONMENT

    @property
    def resource_key(self) -> str:
        return derive_resource_key(self.name)

    @property
    def address(self) -> str:
        return resource_address(self.resource_key)

    def all_tags(self) -> dict[str, str]:
        tags = {"Name": self.name, "Terraform": "true", "Environment": self.environment}
        for key, value in self.tags.items():
            if key not in tags:
                tags[key] = value
        return tags


def validate_record(record: InstanceRecord) -> None:
    """Check *record* against the schema, raising RecordValidationError."""
    problems: list[str] = []

    if not record.name.strip():
        problems.append("instance name is empty")
    elif not record.resource_key.strip("_"):
        problems.append(f"instance name {record.name!r} yields an empty resource key")

    for label, value in (
        ("image", record.image),
        ("instance type", record.instance_class),
        ("subnet id", record.network.subnet_id),
        ("VPC id", record.network.vpc_id),
    ):
        if not value or not value.strip():
            problems.append(f"{label} is empty")

    for group in record.network.security_group_ids:
        if not SECURITY_GROUP_RE.match(group):
            problems.append(f"invalid security group id {group!r} (expected sg-xxxxxxxx)")

    if record.root_volume.size_gib <= 0:
        problems.append("root volume size must be positive")

    devices: set[str] = set()
    for volume in record.extra_volumes:
        if volume.size_gib <= 0:
            problems.append(f"volume {volume.device_path} size must be positive")
        if not volume.device_path.startswith("/dev/"):
            problems.append(f"device path {volume.device_path!r} must start with /dev/")
        if volume.device_path in devices:
            problems.append(f"device path {volume.device_path} is used twice")
        devices.add(volume.device_path)

    if not 1 <= record.metadata_policy.hop_limit <= 64:
        problems.append("metadata hop limit must be between 1 and 64")

    for key in record.tags:
        if not key.strip():
            problems.append("tag keys may not be empty")
        elif key in DEFAULT_TAG_KEYS:
            problems.append(f"tag {key!r} is set automatically and may not be given as a custom tag")

    if not record.environment.strip():
        problems.append("environment is empty")

    if problems:
        raise RecordValidationError(problems)
