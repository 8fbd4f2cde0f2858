import base64
import json

from fastapi.testclient import TestClient

from ipam_controller.webhook import MUTATE_POD_PATH, create_app
from kubevirt_ipam.mutator import PodMutator
from kubevirt_ipam.objects import Interface
from kubevirt_ipam.store import InMemoryStore

from testobjects import build_nad, build_vmi, launcher_pod, multus_network, pod_network


def build_client(ready=lambda: True) -> TestClient:
    store = InMemoryStore(
        build_nad("supadupanet", name="goodnet", allowPersistentIPs=True),
        build_vmi(
            "vm1",
            networks=[pod_network("podnet"), multus_network("randomnet", "supadupanet")],
            interfaces=[Interface("podnet"), Interface("randomnet")],
        ),
    )
    mutator = PodMutator(store, sleep=lambda _: None)
    return TestClient(create_app(mutator, ready=ready))


def review(pod: dict) -> dict:
    return {
        "apiVersion": "admission.k8s.io/v1",
        "kind": "AdmissionReview",
        "request": {"uid": "705ab4f5-6393-11e8-b7cc-42010a800002", "namespace": "ns1", "object": pod},
    }


def test_health_endpoints():
    client = build_client()

    assert client.get("/healthz").json() == {"status": "ok"}
    assert client.get("/readyz").status_code == 200


def test_readyz_reports_not_ready():
    client = build_client(ready=lambda: False)

    assert client.get("/readyz").status_code == 503


def test_mutate_pod_returns_patch():
    client = build_client()
    pod = launcher_pod(
        "vm1", annotations={"k8s.v1.cni.cncf.io/networks": '[{"name":"supadupanet"}]'}
    )

    resp = client.post(MUTATE_POD_PATH, json=review(pod))

    assert resp.status_code == 200
    body = resp.json()
    assert body["apiVersion"] == "admission.k8s.io/v1"
    assert body["kind"] == "AdmissionReview"
    response = body["response"]
    assert response["uid"] == "705ab4f5-6393-11e8-b7cc-42010a800002"
    assert response["allowed"] is True
    assert response["patchType"] == "JSONPatch"
    patch = json.loads(base64.b64decode(response["patch"]))
    assert patch == [
        {
            "op": "replace",
            "path": "/metadata/annotations/k8s.v1.cni.cncf.io~1networks",
            "value": '[{"name":"supadupanet","namespace":"ns1","ipam-claim-reference":"vm1.randomnet"}]',
        }
    ]


def test_mutate_pod_allows_non_vm_pods():
    client = build_client()

    resp = client.post(MUTATE_POD_PATH, json=review(launcher_pod(None)))

    response = resp.json()["response"]
    assert response["allowed"] is True
    assert response["status"] == {"code": 200, "message": "not a VM"}
    assert "patch" not in response


def test_mutate_pod_reports_client_errors():
    client = build_client()
    pod = launcher_pod("vm1", annotations={"k8s.v1.cni.cncf.io/networks": "{not json}"})

    response = client.post(MUTATE_POD_PATH, json=review(pod)).json()["response"]

    assert response["allowed"] is False
    assert response["status"]["code"] == 400


def test_mutate_pod_rejects_reviews_without_request():
    client = build_client()

    resp = client.post(MUTATE_POD_PATH, json={"kind": "AdmissionReview"})

    assert resp.status_code == 400
