import base64
from typing import Annotated, Any, Literal
from pydantic import (
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    RootModel,
    model_validator,
    field_validator,
)
from enum import StrEnum


class ApiVersion(StrEnum):
    V1 = "admission.k8s.io/v1"
    V1BETA1 = "admission.k8s.io/v1beta1"


class Operation(StrEnum):
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    CONNECT = "CONNECT"


class PatchType(StrEnum):
    JSONPatch = "JSONPatch"


class PatchOp(StrEnum):
    REPLACE = "replace"
    ADD = "add"
    REMOVE = "remove"


class PatchAction(BaseModel):
    op: PatchOp
    path: str
    value: Any = None

    @model_validator(mode="after")
    def validate_value(self):
        has_value = "value" in self.model_fields_set
        if self.op == PatchOp.REMOVE and has_value:
            raise ValueError("remove operation must not carry a value")
        if self.op != PatchOp.REMOVE and not has_value:
            raise ValueError(f"{self.op} operation requires a value")

        return self


# https://jsonpatch.com/
class Patch(RootModel[list[PatchAction]]):
    def serialize(self) -> bytes:
        # Unset values are left out so that "remove" has no value key, while
        # an explicit null for "add" or "replace" is kept.
        return self.model_dump_json(exclude_unset=True).encode()


def json_patch_escape(val):
    return val.replace("~", "~0").replace("/", "~1")


# https://kubernetes.io/docs/reference/generated/kubernetes-api/v1.30/#groupversionresource-v1-meta
class GroupVersionResource(BaseModel):
    model_config = ConfigDict(frozen=True)

    group: str = ""
    version: str
    resource: str

    def __str__(self):
        return "/".join(part for part in (self.group, self.version, self.resource) if part)


class GroupVersionKind(BaseModel):
    group: str = ""
    version: str
    kind: str


# https://kubernetes.io/docs/reference/generated/kubernetes-api/v1.30/#status-v1-meta
class AdmissionReviewStatus(BaseModel):
    message: str


# https://kubernetes.io/docs/reference/config-api/apiserver-admission.v1/#admission-k8s-io-v1-AdmissionResponse
class AdmissionResponse(BaseModel):
    allowed: bool
    status: AdmissionReviewStatus | None = None
    uid: str
    patchType: PatchType | None = None
    patch: str | None = None

    @field_validator("patch", mode="before")
    @classmethod
    def validate_patch(cls, val):
        if isinstance(val, Patch):
            val = base64.b64encode(val.serialize()).decode()
        elif isinstance(val, (str, bytes)):
            # Make sure the base64 string contains valid data.
            Patch.model_validate_json(base64.b64decode(val))
            if isinstance(val, bytes):
                val = val.decode()
        return val

    @model_validator(mode="after")
    def validate_model(self):
        if self.patch and not self.patchType:
            raise ValueError("missing patchType field")
        if self.patchType and not self.patch:
            raise ValueError(f"patchType is {self.patchType} but there is no patch")
        if self.patch and not self.allowed:
            raise ValueError("a denied response cannot carry a patch")
        if not self.allowed and self.status is None:
            raise ValueError("a denied response must carry a status message")
        if self.allowed and self.status is not None:
            raise ValueError("an allowed response cannot carry a status message")

        return self

    def decoded_patch(self) -> Patch | None:
        if self.patch is None:
            return None
        return Patch.model_validate_json(base64.b64decode(self.patch))


# https://kubernetes.io/docs/reference/config-api/apiserver-admission.v1/#admission-k8s-io-v1-AdmissionRequest
class AdmissionRequest(BaseModel):
    uid: Annotated[str, Field(min_length=1)]
    kind: GroupVersionKind | None = None
    resource: GroupVersionResource
    subResource: str | None = None
    name: str | None = None
    namespace: str | None = None
    operation: Operation = Operation.CREATE
    object: dict[str, Any] | None = None
    oldObject: dict[str, Any] | None = None
    dryRun: bool | None = None


# https://kubernetes.io/docs/reference/config-api/apiserver-admission.v1/#admission-k8s-io-v1-AdmissionReview
class AdmissionReview(BaseModel):
    apiVersion: ApiVersion
    kind: Literal["AdmissionReview"] = "AdmissionReview"
    request: AdmissionRequest | None = None
    response: AdmissionResponse | None = None

    @model_validator(mode="after")
    def validate_model(self):
        if not (self.request or self.response):
            raise ValueError("must contain a request or a response")

        return self


def quantity_to_str(val):
    # Kubernetes serializes quantities as strings, but hand-written
    # configuration often uses bare numbers ("cpu: 1").
    if isinstance(val, (int, float)):
        return str(val)
    return val


Quantity = Annotated[str, BeforeValidator(quantity_to_str)]


# https://kubernetes.io/docs/reference/generated/kubernetes-api/v1.30/#resourcerequirements-v1-core
class ResourceRequirements(BaseModel):
    limits: dict[str, Quantity] | None = None
    requests: dict[str, Quantity] | None = None


class Container(BaseModel):
    name: str
    image: str | None = None
    resources: ResourceRequirements | None = None


class PodSpec(BaseModel):
    containers: list[Container] = []


class Metadata(BaseModel):
    name: str | None = None
    namespace: str | None = None
    labels: dict[str, str] = {}
    annotations: dict[str, str] = {}


class Pod(BaseModel):
    metadata: Metadata = Metadata()
    spec: PodSpec = PodSpec()
