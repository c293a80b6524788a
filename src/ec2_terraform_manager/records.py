"""Conversion between InstanceRecord and its block in main.tf"""

from __future__ import annotations

from typing import Any, Mapping

from ec2_terraform_manager import hcl
from ec2_terraform_manager.errors import RecordParseError
from ec2_terraform_manager.models import (
    DEFAULT_ENVIRONMENT,
    DEFAULT_TAG_KEYS,
    ExtraVolume,
    IdentityConfig,
    InstanceRecord,
    MetadataPolicy,
    NetworkConfig,
    Protection,
    RootVolume,
)

RECORD_LEVEL = 2
UNNAMED = "unnamed"
ROOT_DEVICE_FALLBACKS = ("/dev/xvda", "/dev/sda1")

_MISSING = object()


def _enabled(flag: bool) -> str:
    return "enabled" if flag else "disabled"


def record_attributes(record: InstanceRecord) -> dict[str, Any]:
    """Attribute mapping of *record* in the order it is written to main.tf."""
    return {
        "ami": record.image,
        "instance_type": record.instance_class,
        "subnet_id": record.network.subnet_id,
        "vpc_id": record.network.vpc_id,
        "security_group_ids": list(record.network.security_group_ids),
        "iam_instance_profile": record.identity.iam_profile,
        "key_name": record.identity.key_name,
        "private_ip": record.network.private_ip,
        "monitoring": record.monitoring_enabled,
        "root_volume_size": record.root_volume.size_gib,
        "root_volume_type": record.root_volume.volume_type,
        "root_volume_encrypted": record.root_volume.encrypted,
        "root_volume_tags": dict(record.root_volume.tags),
        "ebs_volumes": [
            {
                "device_name": volume.device_path,
                "volume_size": volume.size_gib,
                "volume_type": volume.volume_type,
                "encrypted": volume.encrypted,
                "delete_on_termination": volume.delete_on_termination,
                "name": volume.label,
            }
            for volume in record.extra_volumes
        ],
        "user_data_path": record.user_data_path,
        "http_endpoint": _enabled(record.metadata_policy.http_endpoint_enabled),
        "http_tokens": "required" if record.metadata_policy.tokens_required else "optional",
        "http_hop_limit": record.metadata_policy.hop_limit,
        "metadata_tags": _enabled(record.metadata_policy.tags_exposed),
        "termination_protection": record.protection.termination_protected,
        "stop_protection": record.protection.stop_protected,
        "tags": record.all_tags(),
    }


def render_record(record: InstanceRecord, level: int = RECORD_LEVEL) -> str:
    """Render *record* as its ``<resource_key> = { ... }`` block."""
    return hcl.format_entry(record.resource_key, record_attributes(record), level)


def _take(attrs: Mapping[str, Any], name: str, kind: type | tuple[type, ...], default: Any = _MISSING) -> Any:
    if name not in attrs:
        if default is _MISSING:
            raise RecordParseError(f"attribute '{name}' is missing")
        return default
    value = attrs[name]
    if value is None and default is None:
        return None
    if isinstance(value, bool) and kind in (int, (int, float)):
        raise RecordParseError(f"attribute '{name}' must be a number")
    if not isinstance(value, kind):
        raise RecordParseError(f"attribute '{name}' has unexpected value {value!r}")
    return value


def _string_map(value: Any, name: str) -> dict[str, str]:
    if not isinstance(value, dict) or not all(isinstance(v, str) for v in value.values()):
        raise RecordParseError(f"attribute '{name}' must map strings to strings")
    return dict(value)


def record_from_attributes(attrs: Mapping[str, Any]) -> InstanceRecord:
    tags = _string_map(_take(attrs, "tags", dict), "tags")
    if "Name" not in tags:
        raise RecordParseError("tags do not include Name")

    volumes: list[ExtraVolume] = []
    for index, item in enumerate(_take(attrs, "ebs_volumes", list, []), start=1):
        if not isinstance(item, dict):
            raise RecordParseError("ebs_volumes entries must be objects")
        volumes.append(
            ExtraVolume(
                device_path=_take(item, "device_name", str),
                size_gib=_take(item, "volume_size", int),
                volume_type=_take(item, "volume_type", str, "gp3"),
                encrypted=_take(item, "encrypted", bool, True),
                delete_on_termination=_take(item, "delete_on_termination", bool, False),
                label=_take(item, "name", str, f"volume-{index}"),
            )
        )

    groups = _take(attrs, "security_group_ids", list, [])
    if not all(isinstance(group, str) for group in groups):
        raise RecordParseError("security_group_ids must be a list of strings")

    return InstanceRecord(
        name=tags["Name"],
        image=_take(attrs, "ami", str),
        instance_class=_take(attrs, "instance_type", str),
        network=NetworkConfig(
            subnet_id=_take(attrs, "subnet_id", str),
            vpc_id=_take(attrs, "vpc_id", str),
            private_ip=_take(attrs, "private_ip", str, None),
            security_group_ids=list(groups),
        ),
        identity=IdentityConfig(
            iam_profile=_take(attrs, "iam_instance_profile", str, None),
            key_name=_take(attrs, "key_name", str, None),
        ),
        monitoring_enabled=_take(attrs, "monitoring", bool, False),
        root_volume=RootVolume(
            size_gib=_take(attrs, "root_volume_size", int, 20),
            volume_type=_take(attrs, "root_volume_type", str, "gp3"),
            encrypted=_take(attrs, "root_volume_encrypted", bool, False),
            tags=_string_map(_take(attrs, "root_volume_tags", dict, {}), "root_volume_tags"),
        ),
        extra_volumes=volumes,
        user_data_path=_take(attrs, "user_data_path", str, None),
        metadata_policy=MetadataPolicy(
            http_endpoint_enabled=_take(attrs, "http_endpoint", str, "enabled") == "enabled",
            tokens_required=_take(attrs, "http_tokens", str, "optional") == "required",
            hop_limit=_take(attrs, "http_hop_limit", int, 1),
            tags_exposed=_take(attrs, "metadata_tags", str, "disabled") == "enabled",
        ),
        protection=Protection(
            termination_protected=_take(attrs, "termination_protection", bool, False),
            stop_protected=_take(attrs, "stop_protection", bool, False),
        ),
        tags={k: v for k, v in tags.items() if k not in DEFAULT_TAG_KEYS},
        environment=tags.get("Environment", DEFAULT_ENVIRONMENT),
    )


def parse_record(text: str) -> tuple[str, InstanceRecord]:
    """Read a record block back; raises RecordParseError for non-literal blocks."""
    try:
        key, attrs = hcl.parse_entry(text)
    except hcl.HclSyntaxError as e:
        raise RecordParseError(f"Cannot parse record block: {e}") from e
    if not isinstance(attrs, dict):
        raise RecordParseError(f"Record '{key}' is not an object")
    try:
        return key, record_from_attributes(attrs)
    except RecordParseError as e:
        raise RecordParseError(f"Record '{key}': {e}") from e


def _tag_map(tags: Any) -> dict[str, str]:
    return {tag["Key"]: tag.get("Value", "") for tag in tags or []}


def _importable_tags(tags: Mapping[str, str]) -> dict[str, str]:
    # aws: tags are reserved and cannot be managed through the API
    return {k: v for k, v in tags.items() if not k.startswith("aws:")}


def _root_mapping(instance: Mapping[str, Any]) -> Mapping[str, Any] | None:
    mappings = [m for m in instance.get("BlockDeviceMappings", []) if "Ebs" in m]
    root_device = instance.get("RootDeviceName")
    for mapping in mappings:
        if mapping.get("DeviceName") == root_device:
            return mapping
    for mapping in mappings:
        if mapping.get("DeviceName") in ROOT_DEVICE_FALLBACKS:
            return mapping
    return None


def record_from_snapshot(
    instance: Mapping[str, Any],
    volumes: Mapping[str, Mapping[str, Any]],
    protection: Protection,
    environment: str = DEFAULT_ENVIRONMENT,
) -> InstanceRecord:
    """Build a record from ``describe_instances`` data.

    *volumes* maps volume ids to ``describe_volumes`` entries for the
    instance's EBS mappings; mappings without an entry keep default values.
    """
    tags = _tag_map(instance.get("Tags"))
    name = tags.get("Name") or UNNAMED

    root_volume = RootVolume(size_gib=20, volume_type="gp3", encrypted=False)
    root = _root_mapping(instance)
    if root is not None:
        info = volumes.get(root["Ebs"].get("VolumeId", ""))
        if info is not None:
            root_volume = RootVolume(
                size_gib=info.get("Size", 20),
                volume_type=info.get("VolumeType", "gp3"),
                encrypted=bool(info.get("Encrypted", False)),
                tags=_importable_tags(_tag_map(info.get("Tags"))),
            )

    extra: list[ExtraVolume] = []
    for mapping in instance.get("BlockDeviceMappings", []):
        if mapping is root or "Ebs" not in mapping:
            continue
        info = volumes.get(mapping["Ebs"].get("VolumeId", "")) or {}
        label = f"volume-{len(extra) + 1}"
        volume_name = _tag_map(info.get("Tags")).get("Name", "")
        if volume_name.startswith(f"{name}-") and len(volume_name) > len(name) + 1:
            label = volume_name[len(name) + 1 :]
        extra.append(
            ExtraVolume(
                device_path=mapping["DeviceName"],
                size_gib=info.get("Size", 100),
                volume_type=info.get("VolumeType", "gp3"),
                encrypted=bool(info.get("Encrypted", False)),
                delete_on_termination=bool(mapping["Ebs"].get("DeleteOnTermination", False)),
                label=label,
            )
        )

    profile_arn = (instance.get("IamInstanceProfile") or {}).get("Arn")
    options = instance.get("MetadataOptions") or {}

    return InstanceRecord(
        name=name,
        image=instance.get("ImageId", ""),
        instance_class=instance.get("InstanceType", ""),
        network=NetworkConfig(
            subnet_id=instance.get("SubnetId", ""),
            vpc_id=instance.get("VpcId", ""),
            private_ip=instance.get("PrivateIpAddress"),
            security_group_ids=[group["GroupId"] for group in instance.get("SecurityGroups", [])],
        ),
        identity=IdentityConfig(
            iam_profile=profile_arn.rsplit("/", 1)[-1] if profile_arn else None,
            key_name=instance.get("KeyName"),
        ),
        monitoring_enabled=(instance.get("Monitoring") or {}).get("State") == "enabled",
        root_volume=root_volume,
        extra_volumes=extra,
        metadata_policy=MetadataPolicy(
            http_endpoint_enabled=options.get("HttpEndpoint", "enabled") == "enabled",
            tokens_required=options.get("HttpTokens", "optional") == "required",
            hop_limit=options.get("HttpPutResponseHopLimit", 1),
            tags_exposed=options.get("InstanceMetadataTags", "disabled") == "enabled",
        ),
        protection=protection,
        tags={k: v for k, v in _importable_tags(tags).items() if k not in DEFAULT_TAG_KEYS},
        environment=tags.get("Environment") or environment,
    )


def summarize(record: InstanceRecord) -> list[tuple[str, str]]:
    """Human-readable (label, value) rows describing *record*."""
    root = record.root_volume
    rows = [
        ("Instance Name", record.name),
        ("Resource Name", record.resource_key),
        ("Instance Type", record.instance_class),
        ("AMI ID", record.image),
        ("VPC", record.network.vpc_id),
        ("Subnet", record.network.subnet_id),
        ("Security Groups", " ".join(record.network.security_group_ids) or "-"),
        ("Private IP", record.network.private_ip or "auto-assign"),
        ("IAM Profile", record.identity.iam_profile or "-"),
        ("Key Pair", record.identity.key_name or "-"),
        ("Root Volume", f"{root.size_gib}GB {root.volume_type} (encrypted: {str(root.encrypted).lower()})"),
    ]
    for volume in record.extra_volumes:
        rows.append(("Additional Volume", f"{volume.device_path} {volume.size_gib}GB {volume.volume_type}"))
    rows.append(
        (
            "Protection",
            f"termination: {str(record.protection.termination_protected).lower()}, "
            f"stop: {str(record.protection.stop_protected).lower()}",
        )
    )
    rows.append(("Tags", ", ".join(f"{k}={v}" for k, v in record.all_tags().items())))
    return rows
