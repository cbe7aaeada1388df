"""
owner.py

Responsibility: Describe the owning resource stamped onto every applied object.

Kubernetes garbage-collects an object once all of its `metadata.ownerReferences`
are gone, so pointing a whole batch at one owner ties the batch's lifetime to it.
"""

from __future__ import annotations

import copy
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any


class OwnerError(ValueError):
    pass


@dataclass(frozen=True)
class OwnerReference:
    """Identity of the owning object, in the shape of a Kubernetes OwnerReference."""

    api_version: str
    kind: str
    name: str
    uid: str | None = None
    namespace: str | None = None
    controller: bool = False
    block_owner_deletion: bool = True

    @classmethod
    def from_object(cls, obj: Mapping[str, Any]) -> OwnerReference:
        """
        Build a reference from a manifest mapping (`apiVersion`, `kind`, `metadata`).
        """
        if not isinstance(obj, Mapping):
            raise OwnerError(f"Owner must be a manifest mapping, got {type(obj).__name__}")

        meta = obj.get("metadata") or {}
        if not isinstance(meta, Mapping):
            raise OwnerError("Owner `metadata` must be a mapping")

        api_version = str(obj.get("apiVersion") or "").strip()
        kind = str(obj.get("kind") or "").strip()
        name = str(meta.get("name") or "").strip()
        missing = [f for f, v in (("apiVersion", api_version), ("kind", kind), ("metadata.name", name)) if not v]
        if missing:
            raise OwnerError(f"Owner object is missing required field(s): {', '.join(missing)}")

        uid = meta.get("uid")
        namespace = meta.get("namespace")
        return cls(
            api_version=api_version,
            kind=kind,
            name=name,
            uid=str(uid) if uid else None,
            namespace=str(namespace) if namespace else None,
        )

    def to_manifest(self) -> dict[str, Any]:
        ref: dict[str, Any] = {
            "apiVersion": self.api_version,
            "kind": self.kind,
            "name": self.name,
        }
        if self.uid:
            ref["uid"] = self.uid
        ref["controller"] = self.controller
        ref["blockOwnerDeletion"] = self.block_owner_deletion
        return ref

    def _matches(self, ref: Mapping[str, Any]) -> bool:
        if self.uid and ref.get("uid"):
            return ref.get("uid") == self.uid
        return ref.get("kind") == self.kind and ref.get("name") == self.name


def stamp_owner(obj: Mapping[str, Any], owner: OwnerReference) -> dict[str, Any]:
    """
    Return a copy of `obj` whose `metadata.ownerReferences` contains `owner` exactly once.
    """
    out = copy.deepcopy(dict(obj))
    meta = out.get("metadata")
    if not isinstance(meta, dict):
        meta = {}
        out["metadata"] = meta

    refs = [r for r in meta.get("ownerReferences") or [] if not (isinstance(r, Mapping) and owner._matches(r))]
    refs.append(owner.to_manifest())
    meta["ownerReferences"] = refs
    return out
