from __future__ import annotations

from pathlib import Path

import pytest

from kubeapply.applier import YamlDocument
from kubeapply.owner import OwnerReference

TESTDATA = Path(__file__).parent / "testdata"


class RecordingApplier:
    """Applier double: records every call and raises the configured error on the given call numbers."""

    def __init__(self, fail_on: dict[int, Exception] | None = None) -> None:
        self.calls: list[tuple[YamlDocument, str, OwnerReference | None]] = []
        self._fail_on = fail_on or {}

    def apply_with_owner(self, doc: YamlDocument, namespace: str, owner: OwnerReference | None) -> None:
        self.calls.append((doc, namespace, owner))
        err = self._fail_on.get(len(self.calls))
        if err is not None:
            raise err


@pytest.fixture
def multi_doc() -> bytes:
    return (TESTDATA / "multi-doc.yaml").read_bytes()


@pytest.fixture
def multi_doc_template() -> bytes:
    return (TESTDATA / "multi-doc-template.yaml").read_bytes()


@pytest.fixture
def owner_object() -> dict:
    return {
        "apiVersion": "v1",
        "kind": "ServiceAccount",
        "metadata": {
            "name": "le-service-account",
            "namespace": "le-namespace",
            "uid": "6a1c9f3e-0000-4000-8000-000000000001",
        },
    }
