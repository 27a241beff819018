import pytest

import mutate
from providers import StaticCatalog


PREFIX = "example.com"

UNITS = {
    "single-core": {
        "limits": {"cpu": 1, "memory": "1Gi"},
        "requests": {"cpu": 1, "memory": "1Gi"},
    },
    "gpu": {
        "limits": {"nvidia.com/gpu": 1},
    },
}

POD_RESOURCE = {"group": "", "version": "v1", "resource": "pods"}


def make_pod(annotations=None, containers=("main",)):
    return {
        "metadata": {"name": "test-pod", "annotations": dict(annotations or {})},
        "spec": {
            "containers": [
                {"name": name, "image": "quay.io/example/app:latest"}
                if isinstance(name, str)
                else name
                for name in containers
            ]
        },
    }


def make_review(
    obj, uid="1234", resource=POD_RESOURCE, api_version="admission.k8s.io/v1"
):
    return {
        "apiVersion": api_version,
        "kind": "AdmissionReview",
        "request": {
            "uid": uid,
            "resource": resource,
            "operation": "CREATE",
            "object": obj,
        },
    }


@pytest.fixture()
def catalog():
    return StaticCatalog(UNITS)


@pytest.fixture()
def app(catalog):
    app = mutate.create_app(
        ANNOTATION_PREFIX=PREFIX,
        CATALOG=catalog,
        TESTING=True,
    )
    yield app


@pytest.fixture()
def client(app):
    return app.test_client()
