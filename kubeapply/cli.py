"""
cli.py

Responsibility: CLI entrypoint for kubeapply.

High-level flow (single command `apply`):
1) Read manifest files -> Builder (raw documents and templates)
2) Load template values and the optional owner
3) Pick an Applier: KubeClient, or DryRunApplier with --dry-run
4) Builder.apply_all(applier, namespace)

This module should orchestrate behavior but keep concerns isolated:
- Rendering: `renderer.py`
- Collection and dispatch: `builder.py`
- Cluster API: `kube_client.py`
- Files / environment: `config.py`
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from kubeapply.applier import Applier, DryRunApplier, ManifestError
from kubeapply.builder import ApplyError, Builder
from kubeapply.config import (
    ConfigError,
    load_owner,
    load_values,
    merge_values,
    parse_set_values,
    resolve_cluster_config,
)
from kubeapply.kube_client import KubeAPIError, KubeClient
from kubeapply.owner import OwnerError
from kubeapply.renderer import RenderError

logger = logging.getLogger(__name__)


class CLIError(RuntimeError):
    pass


def _read(path: str) -> bytes:
    p = Path(path)
    if not p.is_file():
        raise CLIError(f"Manifest file does not exist: {p}")
    return p.read_bytes()


def _build(args: argparse.Namespace) -> Builder:
    if not args.files and not args.templates:
        raise CLIError("Nothing to apply: pass manifest files and/or --template files")

    values = merge_values(
        {"Namespace": args.namespace},
        load_values(args.values) if args.values else {},
        parse_set_values(args.set or []),
    )

    builder = Builder()
    for path in args.files:
        builder.with_yaml_resource(path, _read(path))
    for path in args.templates or []:
        builder.with_template(path, _read(path), values)
    if args.owner:
        builder.with_owner(load_owner(args.owner))
    return builder


def _kube_client(args: argparse.Namespace) -> KubeClient:
    cfg = resolve_cluster_config(
        server=args.server,
        token=args.token,
        kubeconfig=args.kubeconfig,
        context=args.context,
        insecure=bool(args.insecure),
    )
    logger.debug("using API server %s", cfg.server)
    return KubeClient(cfg.server, cfg.token, verify=cfg.verify, cert=cfg.cert, field_manager=args.field_manager)


def apply_cmd(args: argparse.Namespace) -> int:
    builder = _build(args)

    applier: Applier
    if args.dry_run:
        applier = DryRunApplier(sys.stdout)
    else:
        client = _kube_client(args)
        owner = builder.owner
        # The API server rejects ownerReferences without a uid.
        if owner is not None and not owner.uid:
            builder.with_owner(client.resolve_owner(owner, args.namespace))
        applier = client

    applied = builder.apply_all(applier, args.namespace)
    logger.info("applied %d file(s) to namespace %s", len(applied), args.namespace)
    return 0


def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="kubeapply", description="Apply a batch of manifests under one owner")
    p.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    sub = p.add_subparsers(dest="command", required=True)

    a = sub.add_parser("apply", help="Render templates and apply all manifests to a namespace")
    a.add_argument("files", nargs="*", help="Manifest files applied verbatim")
    a.add_argument("-n", "--namespace", required=True, help="Target namespace")
    a.add_argument("-t", "--template", dest="templates", action="append", help="Templated manifest file (repeatable)")
    a.add_argument("--values", default=None, help="YAML file with template values")
    a.add_argument("--set", action="append", help="Template value override key=value (repeatable)")
    a.add_argument("--owner", default=None, help="YAML manifest of the owning object")
    a.add_argument("--dry-run", action="store_true", help="Print objects instead of applying them")

    a.add_argument("--server", default=None, help="API server URL (or set env KUBEAPPLY_SERVER)")
    a.add_argument("--token", default=None, help="Bearer token (or set env KUBEAPPLY_TOKEN)")
    a.add_argument("--kubeconfig", default=None, help="kubeconfig path (default: $KUBECONFIG or ~/.kube/config)")
    a.add_argument("--context", default=None, help="kubeconfig context (default: current-context)")
    a.add_argument("--insecure", action="store_true", help="Skip TLS verification")
    a.add_argument("--field-manager", default="kubeapply", help="Server-side apply field manager")

    a.set_defaults(func=apply_cmd)
    return p


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )
    try:
        return int(args.func(args))
    except (CLIError, ConfigError, OwnerError, RenderError, ApplyError, ManifestError, KubeAPIError) as e:
        print(f"error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
