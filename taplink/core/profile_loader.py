"""Profile loading and validation for YAML-based taplink device profiles."""

from __future__ import annotations

import json
import logging
import os
import re
from dataclasses import dataclass
from importlib import resources
from importlib.resources.abc import Traversable
from pathlib import Path
from typing import Any

import yaml
from jsonschema import ValidationError as SchemaValidationError
from jsonschema import validators

from taplink.core.errors import ProfileLoadError, ProfileValidationError
from taplink.core.model import DispenserSettings, LinkSpec, MatchRules, Profile

_UUID_RE = re.compile(r"^[0-9a-f]{4}$|^[0-9a-f]{8}$|^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$")
DEFAULT_PROFILE_ID = "nus_tap"
LOGGER = logging.getLogger(__name__)


class UniqueKeyLoader(yaml.SafeLoader):
    """YAML loader that rejects duplicate mapping keys."""


UniqueKeyLoader.yaml_implicit_resolvers = {
    key: list(value) for key, value in yaml.SafeLoader.yaml_implicit_resolvers.items()
}

for first_char, mappings in list(UniqueKeyLoader.yaml_implicit_resolvers.items()):
    UniqueKeyLoader.yaml_implicit_resolvers[first_char] = [
        (tag, regexp)
        for tag, regexp in mappings
        if tag != "tag:yaml.org,2002:bool"
    ]


def _construct_mapping(loader: UniqueKeyLoader, node: yaml.Node, deep: bool = False) -> dict[str, Any]:
    mapping: dict[str, Any] = {}
    for key_node, value_node in node.value:
        key = loader.construct_object(key_node, deep=deep)
        if key in mapping:
            raise ProfileValidationError(f"Duplicate key '{key}' in YAML document")
        mapping[key] = loader.construct_object(value_node, deep=deep)
    return mapping


UniqueKeyLoader.add_constructor(
    yaml.resolver.BaseResolver.DEFAULT_MAPPING_TAG,
    _construct_mapping,
)


@dataclass(frozen=True)
class LoadedProfiles:
    profiles: dict[str, Profile]
    warnings: tuple[str, ...]


def _load_schema_validator() -> Any:
    schema_text = resources.files("taplink.schemas").joinpath("profile.schema.json").read_text(
        encoding="utf-8"
    )
    schema = json.loads(schema_text)
    validator_cls = validators.validator_for(schema)
    validator_cls.check_schema(schema)
    return validator_cls(schema)


def _profile_dirs() -> tuple[Path, Path]:
    xdg_config = Path(os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config"))
    xdg_data = Path(os.environ.get("XDG_DATA_HOME", Path.home() / ".local/share"))
    return xdg_config / "taplink/profiles", xdg_data / "taplink/profiles"


def _read_yaml(path: Path | Traversable) -> dict[str, Any]:
    try:
        content = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ProfileLoadError(f"Could not read profile file {path}: {exc}") from exc

    try:
        loaded = yaml.load(content, Loader=UniqueKeyLoader)
    except yaml.YAMLError as exc:
        raise ProfileValidationError(f"Invalid YAML in {path}: {exc}") from exc

    if not isinstance(loaded, dict):
        raise ProfileValidationError(f"Profile file {path} must contain a mapping at root")
    return loaded


def _normalize_address_prefix(prefix: str) -> str:
    return prefix.strip().upper()


def _normalize_uuid(value: str, *, context: str) -> str:
    normalized = value.strip().lower()
    if not _UUID_RE.match(normalized):
        raise ProfileValidationError(
            f"{context} must be a 16-bit, 32-bit, or 128-bit UUID string"
        )
    return normalized


def _normalize_bool(value: Any, *, context: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered == "true":
            return True
        if lowered == "false":
            return False
    raise ProfileValidationError(f"{context} must be boolean true/false")


def _normalize_separator(value: Any, *, context: str) -> str:
    if not isinstance(value, str) or len(value) != 1:
        raise ProfileValidationError(f"{context} must be exactly one character")
    return value


def _build_profile(doc: dict[str, Any], source: Path | Traversable) -> Profile:
    validator = _load_schema_validator()
    try:
        validator.validate(doc)
    except SchemaValidationError as exc:
        path = ".".join(str(p) for p in exc.path)
        where = f" ({path})" if path else ""
        raise ProfileValidationError(f"Schema validation failed for {source}{where}: {exc.message}") from exc

    profile_id = doc["id"]
    link_doc = doc["link"]
    link = LinkSpec(
        service_uuid=_normalize_uuid(
            link_doc["service_uuid"],
            context=f"{profile_id}.link.service_uuid",
        ),
        characteristic_uuid=_normalize_uuid(
            link_doc["characteristic_uuid"],
            context=f"{profile_id}.link.characteristic_uuid",
        ),
        max_chunk_length=int(link_doc.get("max_chunk_length", 20)),
        write_with_response=_normalize_bool(
            link_doc.get("write_with_response", True),
            context=f"{profile_id}.link.write_with_response",
        ),
        timeout_s=float(link_doc.get("timeout_s", 10.0)),
    )

    separators = doc.get("separators", {})
    dispenser_doc = doc.get("dispenser", {})
    defaults = DispenserSettings()
    dispenser = DispenserSettings(
        tap_side=int(dispenser_doc.get("tap_side", defaults.tap_side)),
        volume_ml=int(dispenser_doc.get("volume_ml", defaults.volume_ml)),
        price_cents=int(dispenser_doc.get("price_cents", defaults.price_cents)),
        balance_cents=int(dispenser_doc.get("balance_cents", defaults.balance_cents)),
        accepted_device_ids=tuple(int(i) for i in dispenser_doc.get("accepted_device_ids", [])),
    )

    match_doc = doc.get("match", {})
    return Profile(
        id=profile_id,
        name=doc["name"],
        match=MatchRules(
            name_contains=tuple(match_doc.get("name_contains", [])),
            address_prefix=tuple(
                _normalize_address_prefix(p) for p in match_doc.get("address_prefix", [])
            ),
        ),
        link=link,
        receive_separator=_normalize_separator(
            separators.get("receive", "\n"),
            context=f"{profile_id}.separators.receive",
        ),
        send_separator=_normalize_separator(
            separators.get("send", "\n"),
            context=f"{profile_id}.separators.send",
        ),
        dispenser=dispenser,
    )


def _iter_packaged_profile_paths() -> list[Traversable]:
    profile_root = resources.files("taplink.profiles")
    return [item for item in profile_root.iterdir() if item.name.endswith((".yml", ".yaml"))]


def _iter_user_profile_paths() -> list[Path]:
    paths: list[Path] = []
    for directory in _profile_dirs():
        if not directory.exists() or not directory.is_dir():
            continue
        paths.extend(sorted(p for p in directory.iterdir() if p.suffix in {".yml", ".yaml"}))
    return paths


def load_profiles() -> LoadedProfiles:
    profiles: dict[str, Profile] = {}
    warnings: list[str] = []

    for path in sorted(_iter_packaged_profile_paths(), key=lambda p: p.name):
        doc = _read_yaml(path)
        profile = _build_profile(doc, path)
        profiles[profile.id] = profile

    for path in _iter_user_profile_paths():
        doc = _read_yaml(path)
        profile = _build_profile(doc, path)
        if profile.id in profiles:
            warning = f"User profile '{profile.id}' overrides packaged profile"
            LOGGER.warning(warning)
            warnings.append(warning)
        profiles[profile.id] = profile

    return LoadedProfiles(profiles=profiles, warnings=tuple(warnings))


def get_profile(profile_id: str | None = None, loaded: LoadedProfiles | None = None) -> Profile:
    loaded = loaded or load_profiles()
    wanted = profile_id or DEFAULT_PROFILE_ID
    profile = loaded.profiles.get(wanted)
    if profile is None:
        available = ", ".join(sorted(loaded.profiles))
        raise ProfileLoadError(f"Unknown profile '{wanted}'. Available: {available}")
    return profile
