"""
kube_client.py

Responsibility: Isolate all direct Kubernetes API server interaction.

This module must be the only place that:
- Constructs API server endpoints
- Sends HTTP requests to the cluster
- Interprets API responses / Status error payloads

Objects are written with server-side apply, so re-applying an unchanged batch is a no-op.
"""

from __future__ import annotations

import dataclasses
import json
import logging
from dataclasses import dataclass
from typing import Any

import requests

from kubeapply.applier import YamlDocument, iter_objects, prepare_object
from kubeapply.owner import OwnerReference

logger = logging.getLogger(__name__)

APPLY_PATCH_CONTENT_TYPE = "application/apply-patch+yaml"


class KubeAPIError(RuntimeError):
    def __init__(self, status: int, method: str, path: str, message: str) -> None:
        super().__init__(f"Kubernetes API error {status} {method} {path}: {message}")
        self.status = status


@dataclass(frozen=True)
class APIResource:
    group_version: str
    kind: str
    name: str
    namespaced: bool

    @property
    def prefix(self) -> str:
        if "/" in self.group_version:
            return f"/apis/{self.group_version}"
        return f"/api/{self.group_version}"

    def path(self, name: str, namespace: str | None) -> str:
        if self.namespaced:
            return f"{self.prefix}/namespaces/{namespace}/{self.name}/{name}"
        return f"{self.prefix}/{self.name}/{name}"


class KubeClient:
    def __init__(
        self,
        server: str,
        token: str | None = None,
        *,
        verify: bool | str = True,
        cert: tuple[str, str] | None = None,
        field_manager: str = "kubeapply",
        timeout: float = 30,
    ) -> None:
        if not server.strip():
            raise KubeAPIError(0, "-", "-", "API server URL is required.")
        self._server = server.rstrip("/")
        self._token = token
        self._verify = verify
        self._cert = cert
        self._field_manager = field_manager
        self._timeout = timeout
        self._discovery: dict[str, dict[str, APIResource]] = {}

    def _headers(self, content_type: str | None = None) -> dict[str, str]:
        headers = {
            "Accept": "application/json",
            "User-Agent": "kubeapply",
        }
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        if content_type:
            headers["Content-Type"] = content_type
        return headers

    def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, str] | None = None,
        body: str | None = None,
        content_type: str | None = None,
    ) -> Any:
        url = f"{self._server}{path}"
        r = requests.request(
            method,
            url,
            headers=self._headers(content_type),
            params=params,
            data=body,
            verify=self._verify,
            cert=self._cert,
            timeout=self._timeout,
        )
        if r.status_code >= 400:
            try:
                payload = r.json()
            except ValueError:
                payload = {"message": r.text}
            raise KubeAPIError(r.status_code, method, path, payload.get("message", payload))
        if not r.content:
            return None
        return r.json()

    def resource_for(self, api_version: str, kind: str) -> APIResource:
        """
        Resolve a kind to its REST resource using API discovery (cached per group version).
        """
        resources = self._discovery.get(api_version)
        if resources is None:
            prefix = f"/apis/{api_version}" if "/" in api_version else f"/api/{api_version}"
            data = self._request("GET", prefix) or {}
            resources = {}
            for item in data.get("resources", []):
                # Subresources (pods/log, deployments/scale) share the parent's kind.
                if "/" in item.get("name", ""):
                    continue
                resources[item["kind"]] = APIResource(
                    group_version=api_version,
                    kind=item["kind"],
                    name=item["name"],
                    namespaced=bool(item.get("namespaced")),
                )
            self._discovery[api_version] = resources
            logger.debug("discovered %d resource(s) for %s", len(resources), api_version)

        resource = resources.get(kind)
        if resource is None:
            raise KubeAPIError(404, "GET", api_version, f"no resource of kind {kind} in {api_version}")
        return resource

    def resolve_owner(self, owner: OwnerReference, namespace: str) -> OwnerReference:
        """
        Read the live owner object and return the reference with its server-assigned uid.

        A namespaced owner without `metadata.namespace` is looked up in `namespace`.
        """
        resource = self.resource_for(owner.api_version, owner.kind)
        owner_ns = (owner.namespace or namespace) if resource.namespaced else None
        path = resource.path(owner.name, owner_ns)
        live = self._request("GET", path) or {}
        uid = (live.get("metadata") or {}).get("uid")
        if not uid:
            raise KubeAPIError(0, "GET", path, "owner object has no metadata.uid")
        logger.debug("resolved owner %s %s to uid %s", owner.kind, owner.name, uid)
        return dataclasses.replace(owner, uid=str(uid), namespace=owner_ns)

    def apply_object(self, obj: dict[str, Any], namespace: str, owner: OwnerReference | None) -> dict[str, Any]:
        """
        Server-side apply one object and return the live object from the response.
        """
        api_version = str(obj.get("apiVersion") or "")
        kind = str(obj.get("kind") or "")
        name = str((obj.get("metadata") or {}).get("name") or "")
        if not (api_version and kind and name):
            raise KubeAPIError(0, "PATCH", "-", "object must define apiVersion, kind and metadata.name")

        resource = self.resource_for(api_version, kind)
        target_ns = None
        if resource.namespaced:
            target_ns = (obj.get("metadata") or {}).get("namespace") or namespace
        prepared = prepare_object(obj, namespace=target_ns, owner=owner)

        path = resource.path(name, target_ns)
        # JSON is valid YAML, which is what the apply-patch content type expects.
        return self._request(
            "PATCH",
            path,
            params={"fieldManager": self._field_manager, "force": "true"},
            body=json.dumps(prepared),
            content_type=APPLY_PATCH_CONTENT_TYPE,
        )

    def apply_with_owner(self, doc: YamlDocument, namespace: str, owner: OwnerReference | None) -> None:
        for obj in iter_objects(doc):
            live = self.apply_object(obj, namespace, owner)
            meta = (live or {}).get("metadata") or {}
            logger.debug("applied %s %s/%s from %s", obj.get("kind"), meta.get("namespace", "-"), meta.get("name"), doc.source)
