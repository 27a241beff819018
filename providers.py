import logging

import pydantic
import yaml

from kubernetes import config, client
from openshift.dynamic import DynamicClient
from openshift.dynamic.exceptions import DynamicApiError
from typing_extensions import Protocol, override

from exc import ProviderError
from models import ResourceRequirements

LOG = logging.getLogger(__name__)


class Catalog(Protocol):
    """Maps compute unit names to the resources a container should get.

    Catalogs are loaded once, when the application starts; lookups never
    perform I/O, so policies that use them stay pure.
    """

    def lookup(self, name: str) -> ResourceRequirements | None: ...


def parse_units(units) -> dict[str, ResourceRequirements]:
    if not isinstance(units, dict):
        raise ProviderError("compute unit catalog must be a mapping")

    try:
        return {
            str(name): ResourceRequirements.model_validate(spec or {})
            for name, spec in units.items()
        }
    except pydantic.ValidationError as err:
        LOG.warning("invalid compute unit definition: %s", err)
        raise ProviderError("invalid compute unit definition")


class StaticCatalog(Catalog):
    def __init__(self, units):
        super().__init__()
        self._units = parse_units(units)

    @override
    def lookup(self, name):
        return self._units.get(name)

    def __len__(self):
        return len(self._units)


class FileCatalog(StaticCatalog):
    """Read compute units from a YAML document such as:

        single-core:
          limits: {cpu: 1, memory: 1Gi}
          requests: {cpu: 1, memory: 1Gi}
    """

    def __init__(self, path):
        try:
            with open(path) as fd:
                units = yaml.safe_load(fd)
        except (OSError, yaml.YAMLError) as err:
            LOG.warning("unable to read compute unit catalog %s: %s", path, err)
            raise ProviderError(f"unable to read compute unit catalog {path}")

        super().__init__(units or {})


class ConfigMapCatalog(StaticCatalog):
    """Read compute units from a ConfigMap, one data key per unit."""

    def __init__(self, namespace, name):
        """Allocate a Kubernetes dynamic client and fetch the ConfigMap"""

        try:
            config.load_config()
        except config.ConfigException as err:
            LOG.warning("unable to configure Kubernetes client: %s", err)
            raise ProviderError("unable to configure Kubernetes client")

        k8s_client = client.ApiClient()
        dyn_client = DynamicClient(k8s_client)
        configmap_resource = dyn_client.resources.get(api_version="v1", kind="ConfigMap")

        try:
            configmap = configmap_resource.get(name=name, namespace=namespace)
        except DynamicApiError as err:
            LOG.warning("unable to read configmap %s/%s: %s", namespace, name, err)
            raise ProviderError(f"unable to read configmap {namespace}/{name}")

        super().__init__(self.parse_data(configmap.data or {}))

    @staticmethod
    def parse_data(data):
        units = {}
        for key, value in dict(data).items():
            try:
                units[key] = yaml.safe_load(value)
            except yaml.YAMLError as err:
                LOG.warning("invalid compute unit %s: %s", key, err)
                raise ProviderError(f"invalid compute unit {key}")
        return units
