"""
config.py

Responsibility: Load everything the CLI needs from files and the environment.

- Cluster connection: CLI flags, then KUBEAPPLY_SERVER / KUBEAPPLY_TOKEN,
  then a kubeconfig (KUBECONFIG or ~/.kube/config).
- Template values: a YAML mapping file plus `--set key=value` overrides.
- Owner: a YAML manifest of the owning object.

The rest of the package treats the returned objects as the single source of truth.
"""

from __future__ import annotations

import atexit
import base64
import binascii
import contextlib
import os
import tempfile
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from kubeapply.owner import OwnerError, OwnerReference


class ConfigError(ValueError):
    pass


@dataclass(frozen=True)
class ClusterConfig:
    """Connection settings for KubeClient."""

    server: str
    token: str | None = None
    verify: bool | str = True
    # (certificate path, key path) for client certificate authentication.
    cert: tuple[str, str] | None = None


def _load_yaml_mapping(path: str | Path, what: str) -> dict[str, Any]:
    p = Path(path)
    if not p.exists():
        raise ConfigError(f"{what} file does not exist: {p}")
    try:
        data = yaml.safe_load(p.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        raise ConfigError(f"{what} file is not valid YAML: {p}: {e}") from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"{what} file must contain a mapping/object at the top level: {p}")
    return data


def _named(entries: Any, name: str, section: str) -> dict[str, Any]:
    """
    Find `name` in a kubeconfig list section (`clusters`, `users`, `contexts`).
    """
    for entry in entries or []:
        if isinstance(entry, Mapping) and entry.get("name") == name:
            body = entry.get(section[:-1]) or {}
            if not isinstance(body, Mapping):
                raise ConfigError(f"kubeconfig {section} entry `{name}` must be a mapping")
            return dict(body)
    raise ConfigError(f"kubeconfig has no {section[:-1]} named `{name}`")


def _remove_file(path: str) -> None:
    with contextlib.suppress(FileNotFoundError):
        os.remove(path)


def _write_inline_data(field: str, encoded: str, suffix: str) -> str:
    """
    Decode a kubeconfig `*-data` field into a temp file removed at exit; requests only takes paths.
    """
    try:
        raw = base64.b64decode(str(encoded), validate=True)
    except binascii.Error as e:
        raise ConfigError(f"kubeconfig `{field}` is not valid base64: {e}") from e
    fd, path = tempfile.mkstemp(prefix="kubeapply-", suffix=suffix)
    atexit.register(_remove_file, path)
    with os.fdopen(fd, "wb") as f:
        f.write(raw)
    return path


def _file_or_data(entry: Mapping[str, Any], field: str, base_dir: Path, suffix: str) -> str | None:
    if entry.get(f"{field}-data"):
        return _write_inline_data(f"{field}-data", entry[f"{field}-data"], suffix)
    if entry.get(field):
        return str(base_dir / entry[field])
    return None


def _read_token_file(path: Path) -> str:
    try:
        return path.read_text(encoding="utf-8").strip()
    except OSError as e:
        raise ConfigError(f"kubeconfig tokenFile cannot be read: {path}: {e.strerror or e}") from e


def load_kubeconfig(path: str | Path, context: str | None = None) -> ClusterConfig:
    """
    Resolve server, TLS verification and credentials from a kubeconfig file.

    Supported user credentials are bearer tokens (`token` or `tokenFile`) and
    client certificates (`client-certificate[-data]` + `client-key[-data]`).
    Plugin based credentials (`exec`, `auth-provider`) and basic auth raise
    ConfigError instead of silently falling back to anonymous requests.
    Relative file references are resolved against the kubeconfig's directory.
    """
    kc_path = Path(path).expanduser()
    data = _load_yaml_mapping(kc_path, "kubeconfig")
    base_dir = kc_path.parent

    ctx_name = context or data.get("current-context")
    if not ctx_name:
        raise ConfigError(f"kubeconfig has no current-context and no --context was given: {kc_path}")

    ctx = _named(data.get("contexts"), ctx_name, "contexts")
    cluster = _named(data.get("clusters"), ctx.get("cluster"), "clusters")
    user_name = ctx.get("user")
    user = _named(data.get("users"), user_name, "users") if user_name else {}

    server = str(cluster.get("server") or "").strip()
    if not server:
        raise ConfigError(f"kubeconfig cluster `{ctx.get('cluster')}` has no server")

    verify: bool | str = True
    if cluster.get("insecure-skip-tls-verify"):
        verify = False
    else:
        verify = _file_or_data(cluster, "certificate-authority", base_dir, ".crt") or True

    token = user.get("token")
    if not token and user.get("tokenFile"):
        token = _read_token_file(base_dir / user["tokenFile"])

    cert = None
    cert_path = _file_or_data(user, "client-certificate", base_dir, ".crt")
    key_path = _file_or_data(user, "client-key", base_dir, ".key")
    if cert_path or key_path:
        if not (cert_path and key_path):
            raise ConfigError(f"kubeconfig user `{user_name}` needs both client-certificate and client-key")
        cert = (cert_path, key_path)

    if not token and cert is None:
        unsupported = [m for m in ("exec", "auth-provider", "username") if user.get(m)]
        if unsupported:
            raise ConfigError(
                f"kubeconfig user `{user_name}` uses unsupported authentication ({', '.join(unsupported)}); "
                "use a token (--token / KUBEAPPLY_TOKEN) or client certificates"
            )

    return ClusterConfig(server=server, token=str(token) if token else None, verify=verify, cert=cert)


def resolve_cluster_config(
    *,
    server: str | None = None,
    token: str | None = None,
    kubeconfig: str | None = None,
    context: str | None = None,
    insecure: bool = False,
    environ: Mapping[str, str] | None = None,
) -> ClusterConfig:
    env = os.environ if environ is None else environ
    server = (server or env.get("KUBEAPPLY_SERVER") or "").strip()
    token = token or env.get("KUBEAPPLY_TOKEN")

    if server:
        return ClusterConfig(server=server, token=token or None, verify=not insecure)

    kc = kubeconfig or env.get("KUBECONFIG") or str(Path("~/.kube/config").expanduser())
    # KUBECONFIG may be a path list; the first entry wins.
    kc = kc.split(os.pathsep)[0]
    cfg = load_kubeconfig(kc, context=context)
    return ClusterConfig(
        server=cfg.server,
        token=token or cfg.token,
        verify=False if insecure else cfg.verify,
        cert=cfg.cert,
    )


def load_values(path: str | Path) -> dict[str, Any]:
    return _load_yaml_mapping(path, "values")


def parse_set_values(pairs: list[str]) -> dict[str, Any]:
    """
    Parse `key=value` overrides. Values go through YAML so `replicas=3` is an int.
    """
    out: dict[str, Any] = {}
    for raw in pairs:
        if "=" not in raw:
            raise ConfigError(f"--set expects key=value, got: {raw!r}")
        k, v = raw.split("=", 1)
        k = k.strip()
        if not k:
            raise ConfigError(f"--set has an empty key: {raw!r}")
        try:
            out[k] = yaml.safe_load(v) if v else ""
        except yaml.YAMLError:
            out[k] = v
    return out


def merge_values(*layers: Mapping[str, Any]) -> dict[str, Any]:
    merged: dict[str, Any] = {}
    for layer in layers:
        merged.update(layer)
    # Deterministic ordering at the boundary.
    return dict(sorted(merged.items(), key=lambda kv: str(kv[0])))


def load_owner(path: str | Path) -> OwnerReference:
    data = _load_yaml_mapping(path, "owner")
    try:
        return OwnerReference.from_object(data)
    except OwnerError as e:
        raise ConfigError(f"{path}: {e}") from e
