"""
kubeapply package

This package applies a batch of Kubernetes manifests, raw and templated, under
one owner reference so the whole batch is garbage-collected with its owner.

Key responsibilities are split across modules:
- `builder.py`: collect documents and dispatch the apply pass
- `renderer.py`: render `{{ .Field }}` templates into manifests
- `owner.py`: owner reference shape and stamping
- `applier.py`: the Applier contract and a dry-run implementation
- `kube_client.py`: isolated Kubernetes API interactions (server-side apply)
- `config.py`: kubeconfig, template values and owner loading
- `cli.py`: CLI entrypoint and orchestration (read -> render -> apply)
"""

from __future__ import annotations

from kubeapply.applier import Applier, YamlDocument
from kubeapply.builder import ApplyError, Builder
from kubeapply.owner import OwnerReference
from kubeapply.renderer import RenderError, render_template

__all__ = [
    "Applier",
    "ApplyError",
    "Builder",
    "OwnerReference",
    "RenderError",
    "YamlDocument",
    "__version__",
    "render_template",
]

__version__ = "0.1.0"
