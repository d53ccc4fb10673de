"""
Manifest Module

Builds Kubernetes v1 manifests from normalized service descriptors.
Each service becomes a ReplicationController and, when it has ports,
a Service fronting its lowest container port.
"""

import shlex
from typing import Iterable, List, Optional, Dict, Any
from models import ServiceDescriptor
from utils import logger, InvalidConfiguration, MANIFESTS_GENERATED

API_VERSION = "v1"


def _require_name(service: ServiceDescriptor) -> str:
    if not isinstance(service.name, str) or not service.name:
        raise InvalidConfiguration("Service name is required to generate manifests")
    return service.name


def _mount_paths(service: ServiceDescriptor) -> List[Any]:
    return [
        volume.get("path")
        for volume in service.volumes
        if isinstance(volume, dict) and volume.get("path")
    ]


def _container(service: ServiceDescriptor, name: str) -> Dict[str, Any]:
    container = {
        "name": name,
        "image": service.source,
        "ports": [
            {"containerPort": port["containerPort"], "hostPort": port["hostPort"]}
            for port in service.port_candidates()
        ],
        "env": [
            {"name": env["variable"], "value": env.get("value")}
            for env in service.environment
            if isinstance(env, dict) and env.get("variable")
        ],
        "volumeMounts": [
            {"name": f"{name}-volume-{index}", "mountPath": path}
            for index, path in enumerate(_mount_paths(service))
        ],
    }
    if service.command:
        container["command"] = shlex.split(str(service.command))
    return container


def replication_controller(service: ServiceDescriptor) -> Dict[str, Any]:
    """Build the ReplicationController running the service's containers

    Args:
        service (ServiceDescriptor): Normalized service

    Returns:
        dict: ReplicationController manifest with ``replicas`` set from ``scale()``
    """
    name = _require_name(service)
    labels = {"name": name}

    manifest = {
        "apiVersion": API_VERSION,
        "kind": "ReplicationController",
        "metadata": {"name": name, "labels": labels},
        "spec": {
            "replicas": service.scale(),
            "selector": labels,
            "template": {
                "metadata": {"labels": labels},
                "spec": {
                    "containers": [_container(service, name)],
                    "volumes": [
                        {"name": f"{name}-volume-{index}", "emptyDir": {}}
                        for index in range(len(_mount_paths(service)))
                    ],
                },
            },
        },
    }
    MANIFESTS_GENERATED.labels(kind="ReplicationController").inc()
    return manifest


def service_manifest(service: ServiceDescriptor) -> Optional[Dict[str, Any]]:
    """Build the Service for the lowest container port, or None without ports"""
    name = _require_name(service)
    port = service.min_port()
    if port is None:
        logger.info("Service has no ports, skipping Service manifest", service=name)
        return None

    manifest = {
        "apiVersion": API_VERSION,
        "kind": "Service",
        "metadata": {"name": name, "labels": {"name": name}},
        "spec": {
            "selector": {"name": name},
            "ports": [{"port": port["hostPort"], "targetPort": port["containerPort"]}],
        },
    }
    MANIFESTS_GENERATED.labels(kind="Service").inc()
    return manifest


def generate_manifests(services: Iterable[ServiceDescriptor]) -> List[Dict[str, Any]]:
    """Generate manifests for every service, in input order"""
    manifests = []
    for service in services:
        manifests.append(replication_controller(service))
        fronting_service = service_manifest(service)
        if fronting_service is not None:
            manifests.append(fronting_service)

    logger.info("Manifests generated", count=len(manifests))
    return manifests
