import functools
import logging
import sys

import pydantic

from flask import Flask, request, current_app
from werkzeug.exceptions import UnsupportedMediaType

from codec import decode_resource, decode_review, encode_review
from models import (
    AdmissionRequest,
    AdmissionReview,
    AdmissionResponse,
    AdmissionReviewStatus,
    Patch,
    PatchType,
)
from policies import AdmissionPolicy, ComputeUnitPolicy
from providers import ConfigMapCatalog, FileCatalog
from exc import ApplicationError, DecodeError, InternalError, PolicyError

LOG = logging.getLogger(__name__)
logging.basicConfig(level=logging.INFO)


class DEFAULTS:
    ANNOTATION_PREFIX = "aic.4paradigm.com"
    CATALOG = None
    CATALOG_FILE = None
    CATALOG_CONFIGMAP = None
    POLICIES = None
    TLS_DIR = "/run/secrets/tls"
    TLS_CERT_FILE = "tls.crt"
    TLS_KEY_FILE = "tls.key"
    BIND_ADDRESS = "0.0.0.0"
    PORT = 8443
    REQUEST_TIMEOUT = 10


def jsonresponse():
    """Transforms the response from a view function into a JSON object."""

    def _outer(func):
        @functools.wraps(func)
        def _inner(*args, **kwargs):
            res = func(*args, **kwargs)
            if isinstance(res, AdmissionReview):
                return current_app.response_class(
                    encode_review(res), mimetype="application/json"
                )
            else:
                return res

        return _inner

    return _outer


def admit(policy: AdmissionPolicy, req: AdmissionRequest) -> AdmissionResponse:
    """Run a policy against one admission request and build the response.

    Requests that carry no object (DELETE and CONNECT reviews) have nothing
    to mutate and are allowed unchanged.
    """

    # The webhook configuration should only send us the resource this policy
    # is registered for. Anything else is let through untouched.
    if req.resource != policy.resource:
        LOG.warning(
            "request %s: expected resource %s, got %s", req.uid, policy.resource, req.resource
        )
        return AdmissionResponse(uid=req.uid, allowed=True)

    if req.object is None:
        LOG.info("request %s: %s has no object, allowing", req.uid, req.operation)
        return AdmissionResponse(uid=req.uid, allowed=True)

    try:
        obj = decode_resource(req.object, policy.model)
    except DecodeError as err:
        LOG.error("request %s: %s", req.uid, err)
        raise InternalError(f"could not decode {req.resource} object")

    try:
        patches = policy(obj, req.resource)
        patch = Patch(patches) if patches else None
    except PolicyError as err:
        LOG.info("request %s: denied: %s", req.uid, err)
        return AdmissionResponse(
            uid=req.uid,
            allowed=False,
            status=AdmissionReviewStatus(message=str(err)),
        )
    except pydantic.ValidationError:
        LOG.exception("request %s: policy returned an invalid patch", req.uid)
        raise InternalError("invalid patch from admission policy")
    except Exception:
        LOG.exception("request %s: policy evaluation failed", req.uid)
        raise InternalError("failed to evaluate admission policy")

    # If there is nothing to change, return without a patch
    if patch is None:
        return AdmissionResponse(uid=req.uid, allowed=True)

    LOG.info("request %s: patching %d field(s)", req.uid, len(patch.root))
    return AdmissionResponse(
        uid=req.uid,
        allowed=True,
        patchType=PatchType.JSONPatch,
        patch=patch,
    )


def admission_view(policy: AdmissionPolicy):
    """Adapt a policy into a view function that speaks the AdmissionReview protocol."""

    @jsonresponse()
    def review_object():
        if not request.is_json:
            raise UnsupportedMediaType()

        body = decode_review(request.get_data())
        if body.request is None:
            raise DecodeError("admission review does not contain a request")

        return AdmissionReview(
            apiVersion=body.apiVersion,
            response=admit(policy, body.request),
        )

    return review_object


def handle_decodeerror(err):
    return str(err), 400, {"content-type": "text/plain"}


def handle_applicationerror(err):
    return str(err), 500, {"content-type": "text/plain"}


def health():
    return "OK", 200, {"content-type": "text/plain"}


def load_catalog(app):
    if app.config["CATALOG"] is not None:
        return app.config["CATALOG"]

    if app.config["CATALOG_FILE"]:
        return FileCatalog(app.config["CATALOG_FILE"])

    if app.config["CATALOG_CONFIGMAP"]:
        namespace, _, name = app.config["CATALOG_CONFIGMAP"].rpartition("/")
        if not namespace or not name:
            LOG.error("CATALOG_CONFIGMAP must be <namespace>/<name>")
            sys.exit(1)
        return ConfigMapCatalog(namespace, name)

    LOG.info("No compute unit catalog configured; pods will not be patched")
    return None


def create_app(**config) -> Flask:
    """Use an application factory [1] to create the Flask app.

    Each entry in the POLICIES mapping binds a URL path to the policy that
    handles reviews posted there. By default `/mutate` is served by a
    ComputeUnitPolicy for pods.

    [1]: https://flask.palletsprojects.com/en/3.0.x/patterns/appfactories/
    """

    app = Flask(__name__)
    app.config.from_object(DEFAULTS)
    app.config.from_prefixed_env("COMPUTEUNIT")
    if config:
        app.config.update(config)

    if not app.config.get("ANNOTATION_PREFIX"):
        LOG.error("Missing annotation prefix configuration")
        sys.exit(1)

    policies = app.config["POLICIES"]
    if policies is None:
        policies = {
            "/mutate": ComputeUnitPolicy(
                app.config["ANNOTATION_PREFIX"], catalog=load_catalog(app)
            )
        }
    app.policies = dict(policies)

    app.errorhandler(DecodeError)(handle_decodeerror)
    app.errorhandler(ApplicationError)(handle_applicationerror)
    app.add_url_rule("/healthz", view_func=health)
    for path, policy in app.policies.items():
        LOG.info("Serving %s reviews at %s", policy.resource, path)
        app.add_url_rule(
            path,
            endpoint=f"review:{path}",
            view_func=admission_view(policy),
            methods=["POST"],
        )

    return app
