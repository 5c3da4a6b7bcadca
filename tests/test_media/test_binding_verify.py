# tests/test_media/test_binding_verify.py

import pytest

BASE = "/api/v1"
KEY = {"X-Internal-Key": "unit-test-internal-key"}


@pytest.fixture()
def issued(api):
    client, _ = api
    r = client.get(f"{BASE}/content/vid-paid/media", headers={"x-user-id": "user-active"})
    assert r.status_code == 200, r.text
    return r.json()


def _verify(client, token, principal, resource_id, headers=KEY):
    return client.post(
        f"{BASE}/media/binding/verify",
        headers=headers,
        json={"token": token, "principal": principal, "resourceId": resource_id},
    )


def test_binding_verifies_for_its_principal(api, issued):
    client, _ = api
    r = _verify(client, issued["principalBinding"], "user-active", "vid-paid")
    assert r.status_code == 200
    assert r.json() == {"valid": True}
    assert r.headers["Cache-Control"] == "no-store"


def test_forwarded_binding_is_rejected_and_audited(api, issued):
    client, events = api
    r = _verify(client, issued["principalBinding"], "user-trial", "vid-paid")
    assert r.status_code == 403
    body = r.json()
    assert body["valid"] is False
    assert body["reason"] == "invalid_binding"
    assert events[-1]["action"] == "binding_rejected"
    assert events[-1]["principal"] == "user-trial"


def test_binding_for_other_resource_is_rejected(api, issued):
    client, _ = api
    assert _verify(client, issued["principalBinding"], "user-active", "vid-free").status_code == 403


def test_expired_binding_is_rejected(api, issued, fixed_clock):
    client, _ = api
    fixed_clock.advance(seconds=1801)
    assert _verify(client, issued["principalBinding"], "user-active", "vid-paid").status_code == 403


@pytest.mark.parametrize("headers", [{}, {"X-Internal-Key": "wrong"}])
def test_internal_key_required(api, issued, headers):
    client, _ = api
    r = _verify(client, issued["principalBinding"], "user-active", "vid-paid", headers=headers)
    assert r.status_code == 401
