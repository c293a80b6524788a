"""AWS client for the EC2 inventory queries the manager needs"""

from __future__ import annotations

from typing import Any, Callable, TypeVar

import boto3
from botocore.exceptions import BotoCoreError, ClientError, ConnectTimeoutError, EndpointConnectionError

from ec2_terraform_manager.console import print_debug
from ec2_terraform_manager.errors import ProviderError
from ec2_terraform_manager.models import Protection
from ec2_terraform_manager.retry import retry_with_backoff

T = TypeVar("T")

RETRYABLE_ERROR_CODES = frozenset(
    {
        "Throttling",
        "ThrottlingException",
        "RequestLimitExceeded",
        "RequestThrottled",
        "ServiceUnavailable",
        "InternalError",
    }
)


def _is_transient(error: BaseException) -> bool:
    if isinstance(error, ClientError):
        return error.response.get("Error", {}).get("Code") in RETRYABLE_ERROR_CODES
    return isinstance(error, (EndpointConnectionError, ConnectTimeoutError))


def _name_tag(item: dict[str, Any]) -> str:
    for tag in item.get("Tags", []) or []:
        if tag.get("Key") == "Name":
            return tag.get("Value", "")
    return ""


class AWSInventoryClient:
    """boto3 wrapper answering inventory queries about EC2 instances"""

    def __init__(
        self,
        region: str,
        profile: str | None = None,
        max_attempts: int = 1,
        retry_base_delay: float = 2.0,
        session: boto3.Session | None = None,
    ) -> None:
        self.region: str = region
        self.max_attempts: int = max_attempts
        self.retry_base_delay: float = retry_base_delay
        try:
            self.session: boto3.Session = session or boto3.Session(profile_name=profile, region_name=region)
        except BotoCoreError as e:
            raise ProviderError(f"Failed to create AWS session: {e.__class__.__name__}: {e}") from e
        self._clients: dict[str, Any] = {}

    def _client(self, service: str) -> Any:
        if service not in self._clients:
            self._clients[service] = self.session.client(service, region_name=self.region)
        return self._clients[service]

    def _call(self, description: str, func: Callable[[], T]) -> T:
        print_debug(f"AWS: {description}")
        try:
            return retry_with_backoff(
                func,
                description=description,
                max_attempts=self.max_attempts,
                base_delay=self.retry_base_delay,
                retry_on=(ClientError, BotoCoreError),
                retry_if=_is_transient,
            )
        except (ClientError, BotoCoreError) as e:
            raise ProviderError(f"Failed to {description}: {e.__class__.__name__}: {e}") from e

    def caller_identity(self) -> dict[str, str]:
        """Return the account and ARN of the current credentials"""
        response = self._call("get caller identity", lambda: self._client("sts").get_caller_identity())
        return {"account": response.get("Account", ""), "arn": response.get("Arn", "")}

    def find_latest_image(self, pattern: str, owner: str = "amazon") -> str | None:
        """Return the newest available image id whose name matches *pattern*"""
        response = self._call(
            f"find images matching {pattern}",
            lambda: self._client("ec2").describe_images(
                Owners=[owner],
                Filters=[
                    {"Name": "name", "Values": [pattern]},
                    {"Name": "state", "Values": ["available"]},
                ],
            ),
        )
        images = response.get("Images", [])
        if not images:
            return None
        latest = max(images, key=lambda image: image.get("CreationDate", ""))
        return latest["ImageId"]

    def describe_instance(self, instance_id: str) -> dict[str, Any]:
        response = self._call(
            f"describe instance {instance_id}",
            lambda: self._client("ec2").describe_instances(InstanceIds=[instance_id]),
        )
        for reservation in response.get("Reservations", []):
            for instance in reservation.get("Instances", []):
                return instance
        raise ProviderError(f"Instance {instance_id} not found")

    def describe_volume(self, volume_id: str) -> dict[str, Any]:
        response = self._call(
            f"describe volume {volume_id}",
            lambda: self._client("ec2").describe_volumes(VolumeIds=[volume_id]),
        )
        volumes = response.get("Volumes", [])
        if not volumes:
            raise ProviderError(f"Volume {volume_id} not found")
        return volumes[0]

    def get_instance_protection(self, instance_id: str) -> Protection:
        """Read the termination and stop protection attributes"""
        ec2 = self._client("ec2")
        termination = self._call(
            f"read termination protection of {instance_id}",
            lambda: ec2.describe_instance_attribute(InstanceId=instance_id, Attribute="disableApiTermination"),
        )
        stop = self._call(
            f"read stop protection of {instance_id}",
            lambda: ec2.describe_instance_attribute(InstanceId=instance_id, Attribute="disableApiStop"),
        )
        return Protection(
            termination_protected=bool(termination.get("DisableApiTermination", {}).get("Value", False)),
            stop_protected=bool(stop.get("DisableApiStop", {}).get("Value", False)),
        )

    def _paginate(self, service: str, operation: str, key: str, description: str, **kwargs: Any) -> list[dict[str, Any]]:
        def collect() -> list[dict[str, Any]]:
            paginator = self._client(service).get_paginator(operation)
            items: list[dict[str, Any]] = []
            for page in paginator.paginate(**kwargs):
                items.extend(page.get(key, []))
            return items

        return self._call(description, collect)

    def list_vpcs(self) -> list[dict[str, str]]:
        vpcs = self._paginate("ec2", "describe_vpcs", "Vpcs", "list VPCs")
        return [
            {"VpcId": vpc["VpcId"], "Name": _name_tag(vpc), "CIDR": vpc.get("CidrBlock", "")}
            for vpc in vpcs
        ]

    def list_subnets(self, vpc_id: str) -> list[dict[str, str]]:
        subnets = self._paginate(
            "ec2",
            "describe_subnets",
            "Subnets",
            f"list subnets of {vpc_id}",
            Filters=[{"Name": "vpc-id", "Values": [vpc_id]}],
        )
        return [
            {
                "SubnetId": subnet["SubnetId"],
                "Name": _name_tag(subnet),
                "CIDR": subnet.get("CidrBlock", ""),
                "AZ": subnet.get("AvailabilityZone", ""),
            }
            for subnet in subnets
        ]

    def list_security_groups(self, vpc_id: str) -> list[dict[str, str]]:
        groups = self._paginate(
            "ec2",
            "describe_security_groups",
            "SecurityGroups",
            f"list security groups of {vpc_id}",
            Filters=[{"Name": "vpc-id", "Values": [vpc_id]}],
        )
        return [
            {
                "GroupId": group["GroupId"],
                "GroupName": group.get("GroupName", ""),
                "Description": group.get("Description", ""),
            }
            for group in groups
        ]

    def list_instance_profiles(self) -> list[str]:
        profiles = self._paginate("iam", "list_instance_profiles", "InstanceProfiles", "list IAM instance profiles")
        return [profile["InstanceProfileName"] for profile in profiles]

    def list_key_pairs(self) -> list[str]:
        response = self._call("list key pairs", lambda: self._client("ec2").describe_key_pairs())
        return [pair["KeyName"] for pair in response.get("KeyPairs", [])]

    def list_instances(self) -> list[dict[str, str]]:
        reservations = self._paginate("ec2", "describe_instances", "Reservations", "list instances")
        rows: list[dict[str, str]] = []
        for reservation in reservations:
            for instance in reservation.get("Instances", []):
                rows.append(
                    {
                        "InstanceId": instance["InstanceId"],
                        "Name": _name_tag(instance),
                        "InstanceType": instance.get("InstanceType", ""),
                        "State": instance.get("State", {}).get("Name", ""),
                        "PrivateIpAddress": instance.get("PrivateIpAddress", "") or "",
                    }
                )
        return rows

    def collect_volumes(self, instance: dict[str, Any]) -> dict[str, dict[str, Any]]:
        """describe_volume for every EBS mapping of *instance*, keyed by volume id"""
        volumes: dict[str, dict[str, Any]] = {}
        for mapping in instance.get("BlockDeviceMappings", []):
            volume_id = mapping.get("Ebs", {}).get("VolumeId")
            if volume_id:
                volumes[volume_id] = self.describe_volume(volume_id)
        return volumes
