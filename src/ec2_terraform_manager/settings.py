"""Settings for ec2-terraform-manager

Values are layered, later sources winning:

1. Built-in defaults.
2. A YAML settings file: ``--settings``, ``EC2TF_SETTINGS_FILE`` or
   ``.ec2tf.yml`` in the working directory.
3. Environment variables prefixed with ``EC2TF_`` (``EC2TF_REGION``,
   ``EC2TF_LOCK_TIMEOUT``...). Values go through ``yaml.safe_load`` so
   booleans and numbers parse naturally. Unknown names are ignored with a
   warning; unknown keys in the YAML file are an error.
4. Command-line flags.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Mapping

import yaml

from ec2_terraform_manager.console import print_warning
from ec2_terraform_manager.errors import SettingsError

ENV_PREFIX = "EC2TF_"
SETTINGS_FILE_ENV_VAR = f"{ENV_PREFIX}SETTINGS_FILE"
DEFAULT_SETTINGS_FILE = ".ec2tf.yml"


@dataclass(frozen=True)
class ImagePreset:
    """A named AMI search: newest available image matching ``pattern``."""

    label: str
    pattern: str
    owner: str


DEFAULT_IMAGE_PRESETS: tuple[ImagePreset, ...] = (
    ImagePreset("Latest Amazon Linux 2023", "al2023-ami-*-x86_64", "amazon"),
    ImagePreset(
        "Latest Ubuntu 22.04 LTS",
        "ubuntu/images/hvm-ssd/ubuntu-jammy-22.04-amd64-server-*",
        "099720109477",
    ),
    ImagePreset(
        "Latest Ubuntu 20.04 LTS",
        "ubuntu/images/hvm-ssd/ubuntu-focal-20.04-amd64-server-*",
        "099720109477",
    ),
)

DEFAULT_INSTANCE_TYPE_HINTS: tuple[str, ...] = (
    "t3.micro, t3.small, t3.medium, t3.large",
    "c5.large, c5.xlarge, c5.2xlarge, c5.4xlarge",
    "m5.large, m5.xlarge, m5.2xlarge, m5.4xlarge",
)


@dataclass(frozen=True)
class Settings:
    work_dir: Path = field(default_factory=Path.cwd)
    document: str = "main.tf"
    region: str = "ap-northeast-1"
    profile: str | None = None
    environment: str = "staging"
    provider_version: str = "~> 5.0"
    prevent_destroy: bool = True
    terraform_binary: str = "terraform"
    backup_dir: Path | None = None
    lock_timeout: float = 10.0
    max_attempts: int = 1
    retry_base_delay: float = 2.0
    debug: bool = False
    image_presets: tuple[ImagePreset, ...] = DEFAULT_IMAGE_PRESETS
    instance_type_hints: tuple[str, ...] = DEFAULT_INSTANCE_TYPE_HINTS

    @property
    def document_path(self) -> Path:
        return self.work_dir / self.document

    @property
    def backup_path(self) -> Path:
        if self.backup_dir is None:
            return self.work_dir
        return self.backup_dir if self.backup_dir.is_absolute() else self.work_dir / self.backup_dir


_FIELD_NAMES = {f.name for f in fields(Settings)} - {"work_dir"}


def load_settings(
    work_dir: os.PathLike | str | None = None,
    settings_file: os.PathLike | str | None = None,
    env: Mapping[str, str] | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> Settings:
    """Build Settings from defaults, settings file, environment and overrides."""
    environ = dict(os.environ if env is None else env)
    root = Path(work_dir) if work_dir is not None else Path.cwd()

    raw: dict[str, Any] = {}
    path = _determine_settings_path(root, settings_file, environ)
    if path is not None:
        raw.update(_load_yaml_file(path))
    raw.update(_env_overrides(environ))
    raw.update({k: v for k, v in (overrides or {}).items() if v is not None})

    unknown = sorted(set(raw) - _FIELD_NAMES)
    if unknown:
        raise SettingsError(f"Unknown settings: {', '.join(unknown)}")
    return _build(root.expanduser().resolve(), raw)


def _determine_settings_path(
    root: Path,
    settings_file: os.PathLike | str | None,
    environ: Mapping[str, str],
) -> Path | None:
    explicit = settings_file or environ.get(SETTINGS_FILE_ENV_VAR)
    if explicit:
        path = Path(explicit).expanduser()
        if not path.is_file():
            raise SettingsError(f"Settings file not found: {path}")
        return path
    candidate = root / DEFAULT_SETTINGS_FILE
    return candidate if candidate.is_file() else None


def _load_yaml_file(path: Path) -> dict[str, Any]:
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise SettingsError(f"Invalid YAML in {path}: {e}") from e
    if not isinstance(data, dict):
        raise SettingsError(f"Settings file {path} must contain a mapping")
    return {str(k).replace("-", "_"): v for k, v in data.items()}


def _env_overrides(environ: Mapping[str, str]) -> dict[str, Any]:
    result: dict[str, Any] = {}
    for key, value in environ.items():
        if not key.startswith(ENV_PREFIX) or key == SETTINGS_FILE_ENV_VAR:
            continue
        name = key[len(ENV_PREFIX) :].lower()
        if name in ("image_presets", "instance_type_hints"):
            continue
        if name not in _FIELD_NAMES:
            print_warning(f"Ignoring unknown environment variable {key}")
            continue
        result[name] = _coerce(value)
    return result


def _coerce(raw: str) -> Any:
    try:
        return yaml.safe_load(raw)
    except yaml.YAMLError:
        return raw


def _expect_str(value: Any, key: str, *, optional: bool = False) -> str | None:
    if value is None and optional:
        return None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        value = str(value)
    if not isinstance(value, str) or not value.strip():
        raise SettingsError(f"Setting '{key}' must be a non-empty string")
    return value


def _expect_bool(value: Any, key: str) -> bool:
    if not isinstance(value, bool):
        raise SettingsError(f"Setting '{key}' must be true or false")
    return value


def _expect_number(value: Any, key: str, *, minimum: float, integer: bool = False) -> Any:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise SettingsError(f"Setting '{key}' must be a number")
    if integer and not isinstance(value, int):
        raise SettingsError(f"Setting '{key}' must be an integer")
    if value < minimum:
        raise SettingsError(f"Setting '{key}' must be at least {minimum}")
    return value


def _image_presets(value: Any) -> tuple[ImagePreset, ...]:
    if not isinstance(value, list) or not value:
        raise SettingsError("Setting 'image_presets' must be a non-empty list")
    presets: list[ImagePreset] = []
    for item in value:
        if not isinstance(item, dict):
            raise SettingsError("Each image preset must be a mapping with label, pattern and owner")
        try:
            presets.append(
                ImagePreset(
                    label=str(item["label"]),
                    pattern=str(item["pattern"]),
                    owner=str(item.get("owner", "amazon")),
                )
            )
        except KeyError as e:
            raise SettingsError(f"Image preset is missing {e}") from e
    return tuple(presets)


def _build(root: Path, raw: Mapping[str, Any]) -> Settings:
    settings = Settings(work_dir=root)
    values: dict[str, Any] = {}
    for key, value in raw.items():
        if key in ("document", "region", "environment", "provider_version", "terraform_binary"):
            values[key] = _expect_str(value, key)
        elif key == "profile":
            values[key] = _expect_str(value, key, optional=True)
        elif key == "backup_dir":
            values[key] = None if value is None else Path(str(value)).expanduser()
        elif key in ("prevent_destroy", "debug"):
            values[key] = _expect_bool(value, key)
        elif key == "lock_timeout":
            values[key] = float(_expect_number(value, key, minimum=0))
        elif key == "max_attempts":
            values[key] = _expect_number(value, key, minimum=1, integer=True)
        elif key == "retry_base_delay":
            values[key] = float(_expect_number(value, key, minimum=0))
        elif key == "image_presets":
            values[key] = _image_presets(value)
        elif key == "instance_type_hints":
            if not isinstance(value, list):
                raise SettingsError("Setting 'instance_type_hints' must be a list")
            values[key] = tuple(str(item) for item in value)
    return replace(settings, **values)
