import pytest

from conftest import PREFIX, make_pod
from exc import PolicyError
from models import (
    Container,
    GroupVersionResource,
    PatchAction,
    Pod,
    ResourceRequirements,
)
from policies import POD_RESOURCE, ComputeUnitPolicy, resource_patches


def app_pod(units, containers=("main",)):
    annotations = {f"{PREFIX}/app": "true"}
    for name, unit in units.items():
        annotations[f"{PREFIX}/computeunit/{name}"] = unit
    return Pod.model_validate(make_pod(annotations, containers))


def test_pod_resource():
    assert POD_RESOURCE == GroupVersionResource(group="", version="v1", resource="pods")
    assert str(POD_RESOURCE) == "v1/pods"


def test_cup_not_application():
    policy = ComputeUnitPolicy(PREFIX)
    pod = Pod.model_validate(make_pod({f"{PREFIX}/computeunit/ghost": "single-core"}))
    assert policy(pod, POD_RESOURCE) == []


@pytest.mark.parametrize("value", ["false", "True", "1", ""])
def test_cup_app_annotation_must_be_true(value):
    policy = ComputeUnitPolicy(PREFIX)
    pod = Pod.model_validate(
        make_pod({f"{PREFIX}/app": value, f"{PREFIX}/computeunit/ghost": "x"})
    )
    assert policy(pod, POD_RESOURCE) == []


def test_cup_matching_container():
    policy = ComputeUnitPolicy(PREFIX)
    pod = app_pod({"a": "single-core"}, containers=("a",))
    assert policy(pod, POD_RESOURCE) == []


def test_cup_container_without_annotation():
    policy = ComputeUnitPolicy(PREFIX)
    pod = app_pod({"a": "single-core"}, containers=("a", "sidecar"))
    assert policy(pod, POD_RESOURCE) == []


def test_cup_unexpected_reference():
    policy = ComputeUnitPolicy(PREFIX)
    pod = app_pod({"a": "single-core", "ghost": "single-core"}, containers=("a",))
    with pytest.raises(PolicyError, match="unexpected computeunit reference: ghost"):
        policy(pod, POD_RESOURCE)


def test_cup_unexpected_references_are_listed():
    policy = ComputeUnitPolicy(PREFIX)
    pod = app_pod({"zeta": "gpu", "alpha": "gpu"}, containers=())
    with pytest.raises(PolicyError, match="alpha, zeta"):
        policy(pod, POD_RESOURCE)


def test_cup_other_prefixes_ignored():
    policy = ComputeUnitPolicy(PREFIX)
    annotations = {
        f"{PREFIX}/app": "true",
        "other.example.org/computeunit/ghost": "single-core",
    }
    pod = Pod.model_validate(make_pod(annotations))
    assert policy(pod, POD_RESOURCE) == []


def test_cup_does_not_modify_annotations(catalog):
    policy = ComputeUnitPolicy(PREFIX, catalog=catalog)
    pod = app_pod({"main": "single-core"})
    before = dict(pod.metadata.annotations)
    policy(pod, POD_RESOURCE)
    assert pod.metadata.annotations == before


def test_cup_idempotent(catalog):
    policy = ComputeUnitPolicy(PREFIX, catalog=catalog)
    pod = app_pod({"main": "single-core", "sidecar": "gpu"}, containers=("main", "sidecar"))
    assert policy(pod, POD_RESOURCE) == policy(pod, POD_RESOURCE)

    bad = app_pod({"ghost": "gpu"})
    errors = []
    for _ in range(2):
        with pytest.raises(PolicyError) as err:
            policy(bad, POD_RESOURCE)
        errors.append(str(err.value))
    assert errors[0] == errors[1]


def test_cup_patches_with_catalog(catalog):
    policy = ComputeUnitPolicy(PREFIX, catalog=catalog)
    pod = app_pod({"sidecar": "gpu"}, containers=("main", "sidecar"))
    patches = policy(pod, POD_RESOURCE)
    assert patches == [
        PatchAction(
            op="add",
            path="/spec/containers/1/resources",
            value={"limits": {"nvidia.com/gpu": "1"}},
        )
    ]


def test_cup_unknown_unit(catalog):
    policy = ComputeUnitPolicy(PREFIX, catalog=catalog)
    pod = app_pod({"main": "quantum"})
    with pytest.raises(PolicyError, match="quantum"):
        policy(pod, POD_RESOURCE)


def test_resource_patches_parent_before_child():
    container = Container(
        name="main",
        resources=ResourceRequirements(limits={"cpu": "500m", "ephemeral-storage": "1Gi"}),
    )
    requirements = ResourceRequirements(
        limits={"cpu": "1", "nvidia.com/gpu": "1"},
        requests={"cpu": "1"},
    )
    patches = resource_patches(2, container, requirements)
    assert [(p.op, p.path, p.value) for p in patches] == [
        ("add", "/spec/containers/2/resources/limits/cpu", "1"),
        ("add", "/spec/containers/2/resources/limits/nvidia.com~1gpu", "1"),
        ("add", "/spec/containers/2/resources/requests", {"cpu": "1"}),
    ]


def test_resource_patches_empty_unit():
    container = Container(name="main")
    assert resource_patches(0, container, ResourceRequirements()) == []
