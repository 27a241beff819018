"""Admission policies.

A policy decides what happens to one kind of object. It is called with the
decoded object and the resource descriptor from the request and returns the
patch operations to apply, or raises PolicyError to reject the object.
Returning None or an empty list approves the object unchanged.

Policies are called concurrently from the server's worker threads and must
not keep per-request state on the instance.
"""

import logging

from pydantic import BaseModel
from typing_extensions import Protocol

from exc import PolicyError
from models import (
    Container,
    GroupVersionResource,
    PatchAction,
    PatchOp,
    Pod,
    ResourceRequirements,
    json_patch_escape,
)
from providers import Catalog

LOG = logging.getLogger(__name__)

POD_RESOURCE = GroupVersionResource(version="v1", resource="pods")


class AdmissionPolicy(Protocol):
    resource: GroupVersionResource
    model: type[BaseModel]

    def __call__(
        self, obj: BaseModel, resource: GroupVersionResource
    ) -> list[PatchAction] | None: ...


def resource_patches(
    index: int, container: Container, requirements: ResourceRequirements
) -> list[PatchAction]:
    """Generate patch operations that give a container the requested resources.

    Existing settings for resources the compute unit does not mention are
    left alone. Parent objects are added before anything beneath them.
    """

    base = f"/spec/containers/{index}/resources"
    wanted = requirements.model_dump(exclude_none=True)

    if not wanted:
        return []

    if container.resources is None:
        return [PatchAction(op=PatchOp.ADD, path=base, value=wanted)]

    patches = []
    current = container.resources.model_dump()
    for section, values in wanted.items():
        if current.get(section) is None:
            patches.append(
                PatchAction(op=PatchOp.ADD, path=f"{base}/{section}", value=values)
            )
            continue

        for name, quantity in values.items():
            patches.append(
                PatchAction(
                    op=PatchOp.ADD,
                    path=f"{base}/{section}/{json_patch_escape(name)}",
                    value=quantity,
                )
            )

    return patches


class ComputeUnitPolicy(AdmissionPolicy):
    """Assign compute units to the containers of application pods.

    A pod opts in with the annotation `<prefix>/app: "true"` and names a unit
    for each container with `<prefix>/computeunit/<container name>`. A unit
    annotation that does not match any container is rejected. Containers
    without one are left alone.

    Without a catalog, unit names are validated but nothing is patched.
    """

    resource = POD_RESOURCE
    model = Pod

    def __init__(self, prefix: str, catalog: Catalog | None = None):
        self.prefix = prefix
        self.catalog = catalog

    @property
    def app_annotation(self):
        return f"{self.prefix}/app"

    @property
    def computeunit_prefix(self):
        return f"{self.prefix}/computeunit/"

    def __call__(self, obj, resource):
        pod = obj
        annotations = pod.metadata.annotations

        # check if pod is application
        if annotations.get(self.app_annotation) != "true":
            return []

        # container name -> compute unit; local to this call
        claimed = {
            key.removeprefix(self.computeunit_prefix): value
            for key, value in annotations.items()
            if key.startswith(self.computeunit_prefix)
        }

        patches = []
        for index, container in enumerate(pod.spec.containers):
            unit = claimed.pop(container.name, None)
            if unit is None:
                continue

            patches.extend(self.container_patches(index, container, unit))

        if claimed:
            raise PolicyError(
                "unexpected computeunit reference: {}".format(", ".join(sorted(claimed)))
            )

        return patches

    def container_patches(self, index, container, unit):
        if self.catalog is None:
            LOG.debug("no catalog configured, not patching container %s", container.name)
            return []

        requirements = self.catalog.lookup(unit)
        if requirements is None:
            raise PolicyError(
                f"unknown computeunit {unit!r} for container {container.name!r}"
            )

        return resource_patches(index, container, requirements)
