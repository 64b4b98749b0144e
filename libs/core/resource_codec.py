"""YAML text form of resources, for embedding in and extracting from prompts.

Composed resources carry their name across the text boundary in the
``upbound.io/name`` annotation. The model may reorder, drop or add documents,
so the annotation is the only thing that ties a document back to a name.
"""

from __future__ import annotations

import copy
import json
import re
from typing import Any, Dict, Mapping, Tuple

import yaml
from pydantic import ValidationError

from .errors import IdentityConflictError, IdentityMissingError, SerializationError
from .models import Resource

IDENTITY_ANNOTATION = "upbound.io/name"
DOCUMENT_SEPARATOR = "---"

_DOCUMENT_BOUNDARY = re.compile(r"^---(?=\s|$)", re.MULTILINE)
_OPENING_FENCE = re.compile(r"\A```[\w.+-]*[ \t]*(?:\n|\Z)")
_CLOSING_FENCE = re.compile(r"(?:\A|\n)```[ \t]*\Z")


class _ResourceLoader(yaml.SafeLoader):
    """SafeLoader that leaves timestamps as strings, like a JSON round trip would."""


_ResourceLoader.yaml_implicit_resolvers = {
    first: [(tag, regexp) for tag, regexp in resolvers if tag != "tag:yaml.org,2002:timestamp"]
    for first, resolvers in yaml.SafeLoader.yaml_implicit_resolvers.items()
}


def encode_one(resource: Resource) -> str:
    return _dump(resource.resource, "cannot convert resource to YAML")


def encode_many(resources: Mapping[str, Resource]) -> str:
    # Iteration order of the mapping decides document order; callers must not
    # rely on it.
    parts: list[str] = []
    for name, resource in resources.items():
        document = _with_identity(resource.resource, name)
        parts.append(f"{DOCUMENT_SEPARATOR}\n")
        parts.append(_dump(document, "cannot convert composed resource to YAML"))
    return "".join(parts)


def decode_many(text: str) -> Dict[str, Resource]:
    out: Dict[str, Resource] = {}
    for fragment in _DOCUMENT_BOUNDARY.split(text):
        if not fragment.strip():
            continue
        document = _load_mapping(fragment)
        name = identity_of(document)
        if not name:
            raise IdentityMissingError(f"missing '{IDENTITY_ANNOTATION}' annotation")
        if name in out:
            raise IdentityConflictError(
                f"'{IDENTITY_ANNOTATION}' annotation {name!r} must be unique within the YAML stream",
                name,
            )
        out[name] = _as_resource(document)
    return out


def identity_of(document: Mapping[str, Any]) -> str:
    metadata = document.get("metadata")
    if not isinstance(metadata, Mapping):
        return ""
    annotations = metadata.get("annotations")
    if not isinstance(annotations, Mapping):
        return ""
    value = annotations.get(IDENTITY_ANNOTATION)
    if isinstance(value, str):
        return value
    # Scalars read the way a JSON path lookup renders them (false, 12, 1.5).
    if isinstance(value, (bool, int, float)):
        return json.dumps(value)
    return ""


def strip_framing(text: str) -> str:
    """Remove markdown code fences the model sometimes wraps its answer in."""
    stripped = text.strip()
    while True:
        unfenced = _OPENING_FENCE.sub("", stripped, count=1)
        unfenced = _CLOSING_FENCE.sub("", unfenced, count=1).strip()
        if unfenced == stripped:
            return stripped
        stripped = unfenced


def to_display_text(resource: Resource) -> str:
    try:
        return json.dumps(resource.resource, indent=4, ensure_ascii=False)
    except (TypeError, ValueError) as exc:
        raise SerializationError(f"cannot convert resource to JSON: {exc}") from exc


def resource_from_text(text: str) -> Tuple[str, Resource]:
    """Interpret text as one structured document, YAML first and JSON second."""
    try:
        document = yaml.load(text, Loader=_ResourceLoader)
    except yaml.YAMLError:
        try:
            document = json.loads(text)
        except ValueError as exc:
            raise SerializationError(f"cannot parse JSON: {exc}") from exc
    if not isinstance(document, dict):
        raise SerializationError("cannot parse JSON: document is not an object")
    metadata = document.get("metadata")
    name = ""
    if isinstance(metadata, Mapping) and metadata.get("name") is not None:
        name = str(metadata["name"])
    return name, _as_resource(document)


def _with_identity(document: Mapping[str, Any], name: str) -> Dict[str, Any]:
    out = copy.deepcopy(dict(document))
    metadata = out.setdefault("metadata", {})
    if metadata is None:
        metadata = out["metadata"] = {}
    if not isinstance(metadata, dict):
        raise SerializationError(f"cannot set {IDENTITY_ANNOTATION} annotation: metadata is not an object")
    annotations = metadata.setdefault("annotations", {})
    if annotations is None:
        annotations = metadata["annotations"] = {}
    if not isinstance(annotations, dict):
        raise SerializationError(f"cannot set {IDENTITY_ANNOTATION} annotation: annotations is not an object")
    annotations[IDENTITY_ANNOTATION] = name
    return out


def _dump(document: Mapping[str, Any], context: str) -> str:
    try:
        return yaml.safe_dump(
            dict(document),
            default_flow_style=False,
            sort_keys=True,
            allow_unicode=True,
        )
    except yaml.YAMLError as exc:
        raise SerializationError(f"{context}: {exc}") from exc


def _as_resource(document: Dict[Any, Any]) -> Resource:
    try:
        return Resource(resource=document)
    except ValidationError as exc:
        raise SerializationError(f"document is not a resource object: {exc}") from exc


def _load_mapping(fragment: str) -> Dict[str, Any]:
    try:
        document = yaml.load(fragment, Loader=_ResourceLoader)
    except yaml.YAMLError as exc:
        raise SerializationError(f"cannot parse YAML: {exc}") from exc
    if not isinstance(document, dict):
        raise SerializationError("cannot parse YAML: document is not a mapping")
    return document
