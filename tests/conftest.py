"""Shared fixtures for the ec2-terraform-manager test suite."""
from __future__ import annotations

import random
from pathlib import Path
from typing import Any, Callable
from unittest.mock import MagicMock

import pytest

from ec2_terraform_manager.aws_client import AWSInventoryClient
from ec2_terraform_manager.document import render_document
from ec2_terraform_manager.models import InstanceRecord, NetworkConfig, Protection
from ec2_terraform_manager.operations import InstanceManager
from ec2_terraform_manager.prompts import InstancePrompter
from ec2_terraform_manager.records import render_record
from ec2_terraform_manager.repository import ConfigRepository
from ec2_terraform_manager.settings import Settings
from ec2_terraform_manager.terraform_manager import TerraformManager

REGION = "ap-northeast-1"


def make_record(name: str = "web server", **overrides: Any) -> InstanceRecord:
    """Minimal valid record; keyword arguments replace top-level fields."""
    values: dict[str, Any] = {
        "name": name,
        "image": "ami-123",
        "instance_class": "t3.micro",
        "network": NetworkConfig(subnet_id="subnet-1", vpc_id="vpc-1", security_group_ids=["sg-0abc"]),
    }
    values.update(overrides)
    return InstanceRecord(**values)


def make_document(*records: InstanceRecord) -> str:
    return render_document([render_record(record) for record in records], region=REGION)


NAME_ALPHABET = (
    "abcXYZ019_ -./\\"
    "{}[]()\"'$%#=@!"
    "\u00e9\u00df\u540d\u524d\U0001f600"
)


def random_name(rng: random.Random, max_length: int = 16) -> str:
    """Display name drawn from letters, separators, HCL punctuation and non-ASCII."""
    while True:
        name = "".join(rng.choice(NAME_ALPHABET) for _ in range(rng.randint(1, max_length)))
        if name.strip():
            return name


def list_backups(repository: ConfigRepository) -> list[Path]:
    return sorted(repository.backup_dir.glob(f"{repository.path.name}.backup.*"))


def make_snapshot(
    instance_id: str = "i-0123456789abcdef0",
    name: str = "prod-db",
    instance_type: str = "m5.large",
    **extra: Any,
) -> dict[str, Any]:
    """describe_instances entry for an instance with one root volume."""
    instance: dict[str, Any] = {
        "InstanceId": instance_id,
        "ImageId": "ami-999",
        "InstanceType": instance_type,
        "SubnetId": "subnet-9",
        "VpcId": "vpc-9",
        "PrivateIpAddress": "10.0.0.5",
        "KeyName": "ops",
        "IamInstanceProfile": {"Arn": "arn:aws:iam::123456789012:instance-profile/app/db-role"},
        "SecurityGroups": [{"GroupId": "sg-0def", "GroupName": "db"}],
        "Monitoring": {"State": "disabled"},
        "RootDeviceName": "/dev/xvda",
        "BlockDeviceMappings": [
            {"DeviceName": "/dev/xvda", "Ebs": {"VolumeId": "vol-root", "DeleteOnTermination": True}},
        ],
        "MetadataOptions": {
            "HttpEndpoint": "enabled",
            "HttpTokens": "required",
            "HttpPutResponseHopLimit": 2,
            "InstanceMetadataTags": "disabled",
        },
        "Tags": [
            {"Key": "Name", "Value": name},
            {"Key": "Team", "Value": "data"},
            {"Key": "aws:cloudformation:stack-name", "Value": "legacy"},
        ],
    }
    instance.update(extra)
    return instance


ROOT_VOLUME = {"VolumeId": "vol-root", "Size": 50, "VolumeType": "gp3", "Encrypted": True, "Tags": []}


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(work_dir=tmp_path, region=REGION)


@pytest.fixture
def repository(settings: Settings) -> ConfigRepository:
    return ConfigRepository(settings.document_path, settings.backup_path, lock_timeout=0.5)


@pytest.fixture
def terraform(tmp_path: Path) -> MagicMock:
    mock = MagicMock(spec=TerraformManager)
    mock.work_dir = tmp_path
    (tmp_path / ".terraform").mkdir()
    mock.validate.return_value = "Success! The configuration is valid."
    mock.plan.return_value = "No changes."
    mock.apply.return_value = "Apply complete!"
    mock.state_list.return_value = []
    mock.has_tracked_resource.return_value = False
    return mock


@pytest.fixture
def provider() -> MagicMock:
    mock = MagicMock(spec=AWSInventoryClient)
    mock.describe_instance.return_value = make_snapshot()
    mock.collect_volumes.return_value = {"vol-root": ROOT_VOLUME}
    mock.get_instance_protection.return_value = Protection()
    mock.list_instances.return_value = []
    mock.caller_identity.return_value = {"account": "123456789012", "arn": "arn:aws:iam::123456789012:user/ops"}
    return mock


@pytest.fixture
def prompter() -> MagicMock:
    mock = MagicMock(spec=InstancePrompter)
    mock.confirm.return_value = True
    return mock


@pytest.fixture
def manager(
    settings: Settings,
    repository: ConfigRepository,
    terraform: MagicMock,
    provider: MagicMock,
    prompter: MagicMock,
) -> InstanceManager:
    return InstanceManager(settings, repository, terraform, provider, prompter)


@pytest.fixture
def write_document(repository: ConfigRepository) -> Callable[..., str]:
    def _write(*records: InstanceRecord) -> str:
        text = make_document(*records)
        repository.path.write_text(text, encoding="utf-8")
        return text

    return _write
