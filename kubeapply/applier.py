"""
applier.py

Responsibility: The contract between the builder and whatever applies documents.

The builder only ever calls `Applier.apply_with_owner`; transport, retries and
apply semantics belong to the implementation (see `kube_client.py`).
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from dataclasses import dataclass
from typing import Any, Protocol, TextIO

import yaml

from kubeapply.owner import OwnerReference, stamp_owner

logger = logging.getLogger(__name__)

# Kinds that never carry metadata.namespace; used when no API discovery is available.
CLUSTER_SCOPED_KINDS = frozenset(
    {
        "APIService",
        "ClusterRole",
        "ClusterRoleBinding",
        "CustomResourceDefinition",
        "IngressClass",
        "MutatingWebhookConfiguration",
        "Namespace",
        "Node",
        "PersistentVolume",
        "PriorityClass",
        "StorageClass",
        "ValidatingWebhookConfiguration",
    }
)


class ManifestError(ValueError):
    pass


@dataclass(frozen=True)
class YamlDocument:
    """One rendered manifest file: its source key and the bytes to apply."""

    source: str
    content: bytes


class Applier(Protocol):
    def apply_with_owner(self, doc: YamlDocument, namespace: str, owner: OwnerReference | None) -> None: ...


def iter_objects(doc: YamlDocument) -> Iterator[dict[str, Any]]:
    """
    Yield the non-empty objects of a (possibly multi-document) YAML manifest.
    """
    try:
        loaded = list(yaml.safe_load_all(doc.content))
    except yaml.YAMLError as e:
        raise ManifestError(f"Invalid YAML in {doc.source}: {e}") from e

    for i, obj in enumerate(loaded):
        if obj is None:
            continue
        if not isinstance(obj, dict):
            raise ManifestError(f"Document {i} in {doc.source} is not a mapping (got {type(obj).__name__})")
        yield obj


def prepare_object(
    obj: dict[str, Any],
    *,
    namespace: str | None,
    owner: OwnerReference | None,
) -> dict[str, Any]:
    """
    Return a copy of `obj` with the owner stamped and `metadata.namespace` defaulted.

    `namespace=None` means the object is cluster-scoped and must not carry one.
    """
    out = stamp_owner(obj, owner) if owner is not None else dict(obj)
    meta = dict(out.get("metadata") or {})
    if namespace is None:
        meta.pop("namespace", None)
    else:
        meta.setdefault("namespace", namespace)
    out["metadata"] = meta
    return out


class DryRunApplier:
    """
    Applier that writes the objects it would apply to a text stream as YAML.
    """

    def __init__(self, stream: TextIO) -> None:
        self._stream = stream

    def apply_with_owner(self, doc: YamlDocument, namespace: str, owner: OwnerReference | None) -> None:
        for obj in iter_objects(doc):
            kind = str(obj.get("kind") or "")
            target_ns = None if kind in CLUSTER_SCOPED_KINDS else namespace
            prepared = prepare_object(obj, namespace=target_ns, owner=owner)
            self._stream.write(f"---\n# Source: {doc.source}\n")
            self._stream.write(yaml.safe_dump(prepared, sort_keys=False))
            logger.debug("dry-run: %s %s from %s", kind, prepared["metadata"].get("name"), doc.source)
