"""Reading and writing the bookmark document as YAML.

The local data file, the sync base and every snapshot share this format.
Writes are atomic: the new text lands in a sibling ``.tmp`` file that is
flushed to disk and then renamed over the target.
"""

import os
from pathlib import Path
from typing import Any, Dict

import yaml

from ..models.snapshot import DOCUMENT_VERSION, BookmarkData

COLLECTIONS = ("bookmarks", "folders", "tags")


class YAMLError(Exception):
    """The document could not be read, parsed or written."""

    pass


def serialize_document(document: BookmarkData) -> str:
    """Render a document as block-style YAML with ISO timestamps.

    Raises:
        YAMLError: If serialization fails
    """
    try:
        return yaml.safe_dump(
            document.model_dump(mode="json"),
            default_flow_style=False,
            sort_keys=False,
            allow_unicode=True,
        )
    except yaml.YAMLError as e:
        raise YAMLError(f"Failed to serialize document: {e}") from e


def deserialize_document(yaml_str: str) -> BookmarkData:
    """Parse YAML text into a document.

    Raises:
        YAMLError: If the text is empty, not YAML, or not a valid document
    """
    try:
        data = yaml.safe_load(yaml_str)
    except yaml.YAMLError as e:
        raise YAMLError(f"Invalid YAML format: {e}") from e

    if data is None:
        raise YAMLError("YAML content is empty")

    validate_yaml_structure(data)

    try:
        return BookmarkData(**data)
    except ValueError as e:
        raise YAMLError(f"Document does not match the bookmark schema: {e}") from e


def load_document_from_file(file_path: Path) -> BookmarkData:
    """Read and parse the document at file_path.

    Raises:
        YAMLError: If the file is missing, unreadable or invalid
    """
    if not file_path.exists():
        raise YAMLError(f"File not found: {file_path}")

    try:
        text = file_path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise YAMLError(f"Failed to read {file_path}: {e}") from e

    return deserialize_document(text)


def save_document_to_file(document: BookmarkData, file_path: Path) -> None:
    """Atomically replace file_path with the serialized document.

    Raises:
        YAMLError: If the document cannot be serialized or written
    """
    text = serialize_document(document)
    tmp_path = file_path.with_name(file_path.name + ".tmp")
    try:
        file_path.parent.mkdir(parents=True, exist_ok=True)
        with open(tmp_path, "w", encoding="utf-8") as f:
            f.write(text)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, file_path)
    except OSError as e:
        tmp_path.unlink(missing_ok=True)
        raise YAMLError(f"Failed to save document to {file_path}: {e}") from e


def validate_yaml_structure(data: Dict[str, Any]) -> None:
    """Check the top level of a parsed document before model validation.

    Raises:
        YAMLError: If it is not a mapping, lacks a collection, or comes from
            a newer major document version
    """
    if not isinstance(data, dict):
        raise YAMLError("Document must be a mapping")

    missing_fields = [name for name in ("version", *COLLECTIONS) if name not in data]
    if missing_fields:
        raise YAMLError(f"Missing required fields in YAML: {', '.join(missing_fields)}")

    for name in COLLECTIONS:
        if not isinstance(data[name], list):
            raise YAMLError(f"'{name}' must be a list")

    major = str(data["version"]).split(".")[0]
    if major != DOCUMENT_VERSION.split(".")[0]:
        raise YAMLError(
            f"Unsupported document version {data['version']} (expected {DOCUMENT_VERSION})"
        )
