"""JSON encoding of backup metadata."""

import json
from datetime import datetime, timezone
from typing import Any, Dict

from .grouper import validate_prefix_digits
from .models import BackupMetadata, Snapshot, TreeNode, SCHEMA_VERSION
from ..exceptions import InvalidPrefixDigits, MetadataLoadFailure, UnsupportedSchemaVersion


def _format_time(dt: datetime) -> str:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.isoformat()


def _parse_time(value: str) -> datetime:
    dt = datetime.fromisoformat(value)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def node_to_dict(node: TreeNode) -> Dict[str, Any]:
    data = {
        'name': node.name,
        'size': node.size,
        'mod_time': _format_time(node.modified_at),
        'is_dir': node.is_directory,
    }
    if node.children:
        data['children'] = {name: node_to_dict(child) for name, child in sorted(node.children.items())}
    return data


def node_from_dict(data: Dict[str, Any]) -> TreeNode:
    """Build a node from its JSON form.

    Raises:
        ValueError: If a directory's size is not the sum of its children.
    """
    children = {name: node_from_dict(child) for name, child in (data.get('children') or {}).items()}
    node = TreeNode(
        name=data['name'],
        size=int(data['size']),
        modified_at=_parse_time(data['mod_time']),
        is_directory=bool(data['is_dir']),
        children=children,
    )
    if node.is_directory and node.size != sum(child.size for child in children.values()):
        raise ValueError(f"directory {node.name} has size {node.size}, "
                         f"children sum to {sum(child.size for child in children.values())}")
    return node


def metadata_to_dict(metadata: BackupMetadata) -> Dict[str, Any]:
    return {
        'version': metadata.schema_version,
        'prefix_digits': metadata.prefix_digits,
        'backup_time': _format_time(metadata.captured_at),
        'file_tree': {shard: node_to_dict(node) for shard, node in sorted(metadata.snapshot.items())},
        'checksums': dict(sorted(metadata.checksums.items())),
    }


def metadata_from_dict(data: Dict[str, Any]) -> BackupMetadata:
    """Build metadata from its decoded JSON form.

    Raises:
        UnsupportedSchemaVersion: If the document has an unknown version.
        MetadataLoadFailure: If the document is malformed.
    """
    if not isinstance(data, dict):
        raise MetadataLoadFailure("metadata document must be a JSON object")

    version = data.get('version')
    if version != SCHEMA_VERSION:
        raise UnsupportedSchemaVersion(version)

    try:
        prefix_digits = validate_prefix_digits(data['prefix_digits'])
        snapshot: Snapshot = {
            shard: node_from_dict(node) for shard, node in (data.get('file_tree') or {}).items()
        }
        checksums = {str(k): str(v) for k, v in (data.get('checksums') or {}).items()}
        captured_at = _parse_time(data['backup_time'])
    except InvalidPrefixDigits as e:
        raise MetadataLoadFailure(f"invalid metadata: {e}") from e
    except (KeyError, TypeError, ValueError, AttributeError) as e:
        raise MetadataLoadFailure(f"malformed metadata: {e!r}") from e

    return BackupMetadata(
        prefix_digits=prefix_digits,
        captured_at=captured_at,
        snapshot=snapshot,
        checksums=checksums,
        schema_version=version,
    )


def dumps(metadata: BackupMetadata) -> str:
    return json.dumps(metadata_to_dict(metadata), indent=2)


def loads(content) -> BackupMetadata:
    """Decode metadata from JSON text or bytes."""
    try:
        if isinstance(content, bytes):
            content = content.decode('utf-8')
        data = json.loads(content)
    except ValueError as e:
        raise MetadataLoadFailure(f"failed to parse metadata: {e}") from e
    return metadata_from_dict(data)
