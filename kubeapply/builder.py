"""
builder.py

Responsibility: Collect manifest documents for one apply pass and dispatch them.

A Builder accumulates:
- raw documents, applied verbatim
- templates (body + data), rendered right before the pass
- at most one owner, stamped onto every applied object

`apply_all` renders everything first and only then starts calling the Applier,
so a broken template never leaves a half-applied batch behind. Apply itself is
not transactional: a failing document stops the loop, earlier ones stay applied.

A Builder is single-owner: registration methods mutate it without locking.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any

from kubeapply.applier import Applier, YamlDocument
from kubeapply.owner import OwnerReference
from kubeapply.renderer import render_template, template_values

logger = logging.getLogger(__name__)


class ApplyError(RuntimeError):
    def __init__(self, key: str, cause: BaseException) -> None:
        super().__init__(f"failed to apply file {key}: {cause}")
        self.key = key


@dataclass(frozen=True)
class TemplateEntry:
    body: bytes
    data: Mapping[str, Any]


def _as_bytes(content: bytes | str) -> bytes:
    if isinstance(content, str):
        return content.encode("utf-8")
    return bytes(content)


class Builder:
    def __init__(self) -> None:
        self._resources: dict[str, bytes] = {}
        self._templates: dict[str, TemplateEntry] = {}
        self._owner: OwnerReference | None = None

    @property
    def resources(self) -> Mapping[str, bytes]:
        return MappingProxyType(self._resources)

    @property
    def templates(self) -> Mapping[str, TemplateEntry]:
        return MappingProxyType(self._templates)

    @property
    def owner(self) -> OwnerReference | None:
        return self._owner

    def with_yaml_resource(self, key: str, content: bytes | str) -> Builder:
        self._resources[key] = _as_bytes(content)
        return self

    def with_template(self, key: str, body: bytes | str, data: Any) -> Builder:
        """
        Register a template body together with the data its placeholders read.

        `data` is normalized here (see `renderer.template_values`), so a bad
        data object fails at registration rather than mid-pass.
        """
        self._templates[key] = TemplateEntry(body=_as_bytes(body), data=template_values(data))
        return self

    def with_owner(self, owner: OwnerReference | Mapping[str, Any]) -> Builder:
        if isinstance(owner, OwnerReference):
            self._owner = owner
        else:
            self._owner = OwnerReference.from_object(owner)
        return self

    def render(self) -> dict[str, YamlDocument]:
        """
        Render all templates and merge them with the raw documents.

        Order: raw documents in registration order, then template-only keys.
        A key registered both ways yields the rendered template, in the raw slot.
        """
        rendered: dict[str, bytes] = {}
        for key, entry in self._templates.items():
            rendered[key] = render_template(key, entry.body, entry.data)
            logger.debug("rendered template %s (%d bytes)", key, len(rendered[key]))

        merged = dict(self._resources)
        merged.update(rendered)
        return {key: YamlDocument(source=key, content=content) for key, content in merged.items()}

    def apply_all(self, applier: Applier, namespace: str) -> list[str]:
        """
        Render, then apply every document to `namespace` in order.

        Returns the keys applied. Raises RenderError before any apply call, or
        ApplyError (cause chained) for the first document the Applier rejects.
        """
        logger.debug("rendering %d template(s)", len(self._templates))
        try:
            docs = self.render()
        except Exception:
            logger.error("render failed; nothing was applied")
            raise

        logger.debug("dispatching %d document(s) to namespace %s", len(docs), namespace)
        applied: list[str] = []
        for key, doc in docs.items():
            try:
                applier.apply_with_owner(doc, namespace, self._owner)
            except Exception as e:
                logger.error("apply failed for %s after %d applied document(s)", key, len(applied))
                raise ApplyError(key, e) from e
            applied.append(key)
            logger.info("applied %s", key)

        return applied
