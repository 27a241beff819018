"""Translate admission reviews and embedded objects between bytes and models.

Decoding is lenient about fields it does not know, since the API server adds
new ones over time, but strict about the envelope's shape: a body that is not
an AdmissionReview at all raises DecodeError.
"""

import logging
from typing import Any, TypeVar

import pydantic
from pydantic_core import PydanticSerializationError

from exc import DecodeError, InternalError
from models import AdmissionReview

LOG = logging.getLogger(__name__)

M = TypeVar("M", bound=pydantic.BaseModel)


def describe_validationerror(err: pydantic.ValidationError) -> str:
    """Render validation errors as one short line per problem."""
    return "; ".join(
        "{}: {}".format(".".join(str(part) for part in e["loc"]) or "body", e["msg"])
        for e in err.errors()
    )


def decode_review(data: bytes | str) -> AdmissionReview:
    try:
        return AdmissionReview.model_validate_json(data)
    except pydantic.ValidationError as err:
        raise DecodeError(
            f"invalid admission review: {describe_validationerror(err)}"
        ) from err


def decode_resource(raw: dict[str, Any] | bytes | str | None, model: type[M]) -> M:
    """Decode the object embedded in an admission request into `model`.

    Callers only do this once they know the request is for the kind that
    `model` describes.
    """
    if raw is None:
        raise DecodeError("admission request does not contain an object")

    try:
        if isinstance(raw, (bytes, str)):
            return model.model_validate_json(raw)
        return model.model_validate(raw)
    except pydantic.ValidationError as err:
        raise DecodeError(
            f"invalid {model.__name__} object: {describe_validationerror(err)}"
        ) from err


def encode_review(review: AdmissionReview) -> bytes:
    try:
        return review.model_dump_json(exclude_none=True).encode()
    except PydanticSerializationError as err:
        LOG.error("failed to encode admission review: %s", err)
        raise InternalError("failed to encode admission review") from err
