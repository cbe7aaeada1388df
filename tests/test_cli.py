from __future__ import annotations

import dataclasses
from pathlib import Path

import pytest
import yaml

from kubeapply import cli
from kubeapply.kube_client import KubeAPIError
from kubeapply.owner import OwnerReference

TESTDATA = Path(__file__).parent / "testdata"


def test_dry_run_renders_and_stamps(capsys: pytest.CaptureFixture[str]) -> None:
    rc = cli.main(
        [
            "apply",
            str(TESTDATA / "multi-doc.yaml"),
            "--template",
            str(TESTDATA / "multi-doc-template.yaml"),
            "--set",
            "Owner=team-a",
            "--owner",
            str(TESTDATA / "owner.yaml"),
            "--namespace",
            "le-namespace",
            "--dry-run",
        ]
    )

    assert rc == 0
    objs = [o for o in yaml.safe_load_all(capsys.readouterr().out) if o]
    assert [o["kind"] for o in objs] == ["ServiceAccount", "Role", "ConfigMap", "RoleBinding"]
    assert objs[2]["data"] == {"owner": "team-a"}
    assert objs[3]["subjects"][0]["namespace"] == "le-namespace"
    for o in objs:
        assert o["metadata"]["namespace"] == "le-namespace"
        assert o["metadata"]["ownerReferences"][0]["name"] == "le-owner"


def test_render_error_exits_nonzero(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    broken = tmp_path / "broken.yaml"
    broken.write_text("hello {{ .Namespace ", encoding="utf-8")

    rc = cli.main(["apply", "--template", str(broken), "-n", "le-namespace", "--dry-run"])

    assert rc == 1
    assert f"error: failed to parse template for file {broken}: line 1:" in capsys.readouterr().err


def test_missing_input_exits_nonzero(capsys: pytest.CaptureFixture[str]) -> None:
    rc = cli.main(["apply", "-n", "le-namespace", "--dry-run"])

    assert rc == 1
    assert "Nothing to apply" in capsys.readouterr().err


def test_apply_uses_kube_client(monkeypatch: pytest.MonkeyPatch) -> None:
    seen: list[tuple[str, str]] = []

    class FakeClient:
        def __init__(self, server: str, token: str | None, **kwargs: object) -> None:
            assert server == "https://k8s.example.invalid"
            assert token == "tok"

        def apply_with_owner(self, doc, namespace, owner) -> None:  # noqa: ANN001
            seen.append((doc.source, namespace))

    monkeypatch.setattr(cli, "KubeClient", FakeClient)
    path = str(TESTDATA / "multi-doc.yaml")

    rc = cli.main(["apply", path, "-n", "le-namespace", "--server", "https://k8s.example.invalid", "--token", "tok"])

    assert rc == 0
    assert seen == [(path, "le-namespace")]


def test_owner_uid_is_resolved_before_apply(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    owner_file = tmp_path / "owner.yaml"
    owner_file.write_text("apiVersion: v1\nkind: ServiceAccount\nmetadata:\n  name: le-owner\n", encoding="utf-8")
    events: list[str] = []
    owners: list[OwnerReference | None] = []

    class FakeClient:
        def __init__(self, server: str, token: str | None, **kwargs: object) -> None:
            pass

        def resolve_owner(self, owner: OwnerReference, namespace: str) -> OwnerReference:
            events.append(f"resolve {owner.name} in {namespace}")
            return dataclasses.replace(owner, uid="uid-live", namespace=namespace)

        def apply_with_owner(self, doc, namespace, owner) -> None:  # noqa: ANN001
            events.append(f"apply {doc.source}")
            owners.append(owner)

    monkeypatch.setattr(cli, "KubeClient", FakeClient)
    path = str(TESTDATA / "multi-doc.yaml")

    rc = cli.main(["apply", path, "-n", "le-namespace", "--owner", str(owner_file), "--server", "https://k"])

    assert rc == 0
    assert events == ["resolve le-owner in le-namespace", f"apply {path}"]
    assert owners[0] is not None and owners[0].uid == "uid-live"


def test_owner_with_uid_is_not_looked_up(monkeypatch: pytest.MonkeyPatch) -> None:
    class FakeClient:
        def __init__(self, server: str, token: str | None, **kwargs: object) -> None:
            pass

        def resolve_owner(self, owner, namespace):  # noqa: ANN001, ANN201
            raise AssertionError("owner already has a uid")

        def apply_with_owner(self, doc, namespace, owner) -> None:  # noqa: ANN001
            assert owner.uid == "0b7c1e2a-5d2f-4c1e-9a6b-3f1d2e4c5b6a"

    monkeypatch.setattr(cli, "KubeClient", FakeClient)

    rc = cli.main(
        [
            "apply",
            str(TESTDATA / "multi-doc.yaml"),
            "-n",
            "le-namespace",
            "--owner",
            str(TESTDATA / "owner.yaml"),
            "--server",
            "https://k",
        ]
    )

    assert rc == 0


def test_unresolvable_owner_exits_before_apply(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    owner_file = tmp_path / "owner.yaml"
    owner_file.write_text("apiVersion: v1\nkind: ServiceAccount\nmetadata:\n  name: ghost\n", encoding="utf-8")
    applied: list[str] = []

    class FakeClient:
        def __init__(self, server: str, token: str | None, **kwargs: object) -> None:
            pass

        def resolve_owner(self, owner, namespace):  # noqa: ANN001, ANN201
            raise KubeAPIError(404, "GET", "/api/v1/namespaces/le-namespace/serviceaccounts/ghost", "not found")

        def apply_with_owner(self, doc, namespace, owner) -> None:  # noqa: ANN001
            applied.append(doc.source)

    monkeypatch.setattr(cli, "KubeClient", FakeClient)

    rc = cli.main(
        ["apply", str(TESTDATA / "multi-doc.yaml"), "-n", "le-namespace", "--owner", str(owner_file), "--server", "https://k"]
    )

    assert rc == 1
    assert applied == []
    assert "error: Kubernetes API error 404 GET" in capsys.readouterr().err


def test_config_errors_exit_nonzero(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    monkeypatch.delenv("KUBEAPPLY_SERVER", raising=False)
    monkeypatch.setenv("KUBECONFIG", str(tmp_path / "missing-config"))

    rc = cli.main(["apply", str(TESTDATA / "multi-doc.yaml"), "-n", "le-namespace", "--server", " "])

    assert rc == 1
    assert "error: kubeconfig file does not exist" in capsys.readouterr().err
