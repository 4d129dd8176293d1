"""Loading and validation for YAML-based device models (control tables)."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from importlib import resources
from importlib.resources.abc import Traversable
from pathlib import Path
from typing import Any

import yaml
from jsonschema import ValidationError, validators

from mttr.core.errors import ModelLoadError, ModelValidationError
from mttr.core.model import Access, DeviceModel, FieldSchema

LOGGER = logging.getLogger(__name__)


class UniqueKeyLoader(yaml.SafeLoader):
    """YAML loader that rejects duplicate mapping keys."""


# Labels such as "On"/"Off" must stay strings.
UniqueKeyLoader.yaml_implicit_resolvers = {
    key: list(value) for key, value in yaml.SafeLoader.yaml_implicit_resolvers.items()
}

for first_char, mappings in list(UniqueKeyLoader.yaml_implicit_resolvers.items()):
    UniqueKeyLoader.yaml_implicit_resolvers[first_char] = [
        (tag, regexp)
        for tag, regexp in mappings
        if tag != "tag:yaml.org,2002:bool"
    ]


def _construct_mapping(loader: UniqueKeyLoader, node: yaml.Node, deep: bool = False) -> dict[Any, Any]:
    mapping: dict[Any, Any] = {}
    for key_node, value_node in node.value:
        key = loader.construct_object(key_node, deep=deep)
        if key in mapping:
            raise ModelValidationError(f"Duplicate key '{key}' in YAML document")
        mapping[key] = loader.construct_object(value_node, deep=deep)
    return mapping


UniqueKeyLoader.add_constructor(
    yaml.resolver.BaseResolver.DEFAULT_MAPPING_TAG,
    _construct_mapping,
)


@dataclass(frozen=True)
class LoadedModels:
    models: dict[int, DeviceModel]
    warnings: tuple[str, ...]


class ModelRegistry:
    """Lookup of device models by model number.

    An unknown model number is not an error: callers get ``None`` and are
    expected to disable reads and writes for that device.
    """

    def __init__(self, models: dict[int, DeviceModel], warnings: tuple[str, ...] = ()) -> None:
        self._models = dict(models)
        self.warnings = warnings

    @classmethod
    def load(cls) -> ModelRegistry:
        loaded = load_models()
        return cls(loaded.models, loaded.warnings)

    def get(self, model_number: int) -> DeviceModel | None:
        return self._models.get(model_number)

    def list_models(self) -> list[DeviceModel]:
        return sorted(self._models.values(), key=lambda m: m.model_number)


def _load_schema_validator() -> Any:
    schema_text = resources.files("mttr.schemas").joinpath("model.schema.json").read_text(
        encoding="utf-8"
    )
    schema = json.loads(schema_text)
    validator_cls = validators.validator_for(schema)
    validator_cls.check_schema(schema)
    return validator_cls(schema)


def _model_dirs() -> tuple[Path, Path]:
    xdg_config = Path(os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config"))
    xdg_data = Path(os.environ.get("XDG_DATA_HOME", Path.home() / ".local/share"))
    return xdg_config / "mttr/models", xdg_data / "mttr/models"


def _read_yaml(path: Path | Traversable) -> dict[str, Any]:
    try:
        content = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ModelLoadError(f"Could not read model file {path}: {exc}") from exc

    try:
        loaded = yaml.load(content, Loader=UniqueKeyLoader)
    except yaml.YAMLError as exc:
        raise ModelValidationError(f"Invalid YAML in {path}: {exc}") from exc

    if not isinstance(loaded, dict):
        raise ModelValidationError(f"Model file {path} must contain a mapping at root")
    return loaded


def _normalize_bool(value: Any, *, context: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered == "true":
            return True
        if lowered == "false":
            return False
    raise ModelValidationError(f"{context} must be boolean true/false")


def _normalize_value_map(raw: dict[Any, Any], *, context: str) -> dict[int, str]:
    value_map: dict[int, str] = {}
    for key, label in raw.items():
        try:
            raw_value = int(str(key).strip(), 0)
        except ValueError as exc:
            raise ModelValidationError(f"{context} key '{key}' is not an integer") from exc
        if raw_value in value_map:
            raise ModelValidationError(f"{context} maps value {raw_value} more than once")
        value_map[raw_value] = label if isinstance(label, str) else str(label)
    return value_map


def _size_bounds(size: int) -> tuple[int, int]:
    bits = 8 * size
    return -(1 << (bits - 1)), (1 << bits) - 1


def _build_field(spec: dict[str, Any], *, context: str) -> FieldSchema:
    size = int(spec["size"])
    value_range: tuple[int, int] | None = None
    if "range" in spec:
        low, high = (int(v) for v in spec["range"])
        if low > high:
            raise ModelValidationError(f"{context}.range minimum {low} exceeds maximum {high}")
        lowest, highest = _size_bounds(size)
        if low < lowest or high > highest:
            raise ModelValidationError(
                f"{context}.range [{low}, {high}] does not fit in {size} byte(s)"
            )
        value_range = (low, high)

    value_map = None
    if "value_map" in spec:
        value_map = _normalize_value_map(spec["value_map"], context=f"{context}.value_map")

    return FieldSchema(
        address=int(spec["address"]),
        size=size,
        name=spec["name"],
        access=Access(spec["access"]),
        range=value_range,
        value_map=value_map,
        unit=spec.get("unit"),
        identity=_normalize_bool(spec.get("identity", False), context=f"{context}.identity"),
    )


def _build_model(doc: dict[str, Any], source: Path | Traversable) -> DeviceModel:
    validator = _load_schema_validator()
    try:
        validator.validate(doc)
    except ValidationError as exc:
        path = ".".join(str(p) for p in exc.path)
        where = f" ({path})" if path else ""
        raise ModelValidationError(f"Schema validation failed for {source}{where}: {exc.message}") from exc

    model_number = int(doc["model_number"])
    fields: list[FieldSchema] = []
    seen: set[int] = set()
    for index, spec in enumerate(doc["fields"]):
        field = _build_field(spec, context=f"{model_number}.fields[{index}]")
        if field.address in seen:
            raise ModelValidationError(
                f"Model {model_number} declares address {field.address} more than once ({source})"
            )
        seen.add(field.address)
        fields.append(field)

    identity_fields = [f for f in fields if f.identity]
    if len(identity_fields) > 1:
        names = ", ".join(f.name for f in identity_fields)
        raise ModelValidationError(f"Model {model_number} marks several identity fields: {names}")

    return DeviceModel(
        model_number=model_number,
        name=doc["name"],
        fields=tuple(sorted(fields, key=lambda f: f.address)),
    )


def _iter_packaged_model_paths() -> list[Traversable]:
    model_root = resources.files("mttr.models")
    return [item for item in model_root.iterdir() if item.name.endswith((".yml", ".yaml"))]


def _iter_user_model_paths() -> list[Path]:
    paths: list[Path] = []
    for directory in _model_dirs():
        if not directory.exists() or not directory.is_dir():
            continue
        paths.extend(sorted(p for p in directory.iterdir() if p.suffix in {".yml", ".yaml"}))
    return paths


def load_model_file(path: Path) -> DeviceModel:
    return _build_model(_read_yaml(path), path)


def load_models() -> LoadedModels:
    models: dict[int, DeviceModel] = {}
    warnings: list[str] = []

    for path in sorted(_iter_packaged_model_paths(), key=lambda p: p.name):
        model = _build_model(_read_yaml(path), path)
        models[model.model_number] = model

    for path in _iter_user_model_paths():
        model = _build_model(_read_yaml(path), path)
        if model.model_number in models:
            warning = f"User model {model.model_number} ({model.name}) overrides packaged model"
            LOGGER.warning(warning)
            warnings.append(warning)
        models[model.model_number] = model

    return LoadedModels(models=models, warnings=tuple(warnings))
