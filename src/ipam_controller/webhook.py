"""FastAPI application serving the pod mutating admission webhook."""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict

from fastapi import FastAPI, HTTPException

from kubevirt_ipam.mutator import (
    HTTP_INTERNAL_SERVER_ERROR,
    AdmissionRequest,
    AdmissionResponse,
    PodMutator,
)

LOG = logging.getLogger(__name__)

MUTATE_POD_PATH = "/mutate-v1-pod"


def create_app(mutator: PodMutator, ready: Callable[[], bool] = lambda: True) -> FastAPI:
    app = FastAPI(title="KubeVirt IPAM claims webhook")

    @app.get("/healthz")
    def healthz():
        return {"status": "ok"}

    @app.get("/readyz")
    def readyz():
        if not ready():
            raise HTTPException(status_code=503, detail="not ready")
        return {"status": "ok"}

    @app.post(MUTATE_POD_PATH)
    def mutate_pod(review: Dict[str, Any]):
        """Handle an ``AdmissionReview`` for a pod create request."""
        if not isinstance(review.get("request"), dict):
            raise HTTPException(status_code=400, detail="admission review without a request")

        request = AdmissionRequest.from_review(review)
        try:
            response = mutator.handle(request)
        except Exception as exc:
            LOG.exception("admission of request %s failed", request.uid)
            response = AdmissionResponse.errored(HTTP_INTERNAL_SERVER_ERROR, exc)

        LOG.debug(
            "admission request %s: allowed=%s code=%s message=%s patches=%d",
            request.uid,
            response.allowed,
            response.code,
            response.message,
            len(response.patches),
        )
        return response.to_review(request.uid)

    return app
