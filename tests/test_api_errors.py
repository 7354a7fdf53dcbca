import pytest
from fastapi import Depends, FastAPI, Request
from fastapi.testclient import TestClient

from schemaguard.api import client_dependency, install_error_handlers
from schemaguard.core.enforcement import EnforcedClient
from schemaguard.core.errors import EvaluationError


@pytest.fixture()
def api(schema, raw, config):
    app = FastAPI()
    install_error_handlers(app)
    get_db = client_dependency(schema, raw, config=config)

    @app.middleware("http")
    async def _auth(request: Request, call_next):
        uid = request.headers.get("x-user")
        request.state.user = {"id": uid, "role": "USER"} if uid else None
        return await call_next(request)

    @app.get("/bookings")
    def list_bookings(db: EnforcedClient = Depends(get_db)):
        return db.find_many("Booking")

    @app.post("/bookings")
    def create_booking(body: dict, db: EnforcedClient = Depends(get_db)):
        return db.create("Booking", data=body)

    @app.patch("/bookings/{booking_id}")
    def update_booking(booking_id: str, body: dict, db: EnforcedClient = Depends(get_db)):
        return db.update("Booking", where={"id": booking_id}, data=body)

    @app.post("/posts")
    def create_post(body: dict, db: EnforcedClient = Depends(get_db)):
        return db.create("Post", data=body)

    @app.delete("/posts/{post_id}")
    def delete_post(post_id: int, db: EnforcedClient = Depends(get_db)):
        return db.delete("Post", where={"id": post_id})

    @app.get("/models/{name}")
    def list_model(name: str, db: EnforcedClient = Depends(get_db)):
        return db.find_many(name)

    @app.get("/broken")
    def broken():
        raise EvaluationError("cannot compare Account.secret with a Number value", model="Account")

    return TestClient(app)


def test_principal_comes_from_request_state(api):
    r = api.post("/bookings", json={"ownerId": "u-alice"}, headers={"x-user": "u-alice"})
    assert r.status_code == 200
    assert r.json()["ownerId"] == "u-alice"

    assert len(api.get("/bookings", headers={"x-user": "u-alice"}).json()) == 1
    assert api.get("/bookings", headers={"x-user": "u-bob"}).json() == []
    assert api.get("/bookings").json() == []


def test_policy_violation_is_403(api):
    booking = api.post("/bookings", json={"ownerId": "u-alice"}, headers={"x-user": "u-alice"}).json()
    r = api.patch(
        f"/bookings/{booking['id']}",
        json={"note": "mine now"},
        headers={"x-user": "u-bob", "x-request-id": "req-1"},
    )
    assert r.status_code == 403
    body = r.json()
    assert body["request_id"] == "req-1"
    assert body["detail"]["error"] == "PolicyViolation"
    assert body["detail"]["model"] == "Booking"
    assert body["detail"]["operation"] == "update"
    assert "mine now" not in r.text


def test_validation_error_is_422(api):
    r = api.post("/posts", json={"title": "x", "authorId": "u-alice"}, headers={"x-user": "u-alice"})
    assert r.status_code == 422
    detail = r.json()["detail"]
    assert detail["error"] == "ValidationError"
    assert [i["field"] for i in detail["issues"]] == ["title"]
    assert "request_id" not in r.json()


def test_missing_record_is_404(api):
    r = api.delete("/posts/99", headers={"x-user": "u-alice"})
    assert r.status_code == 404
    assert r.json()["detail"]["error"] == "RecordNotFound"


def test_unsupported_nested_write_is_400(api):
    r = api.post(
        "/posts",
        json={"title": "hello", "author": {"create": {"email": "a@x.io", "password": "pw"}}},
        headers={"x-user": "u-alice"},
    )
    assert r.status_code == 400
    assert r.json()["detail"]["error"] == "UnsupportedOperation"
    assert r.json()["detail"]["field"] == "author"


def test_unknown_model_is_400(api):
    r = api.get("/models/Nope")
    assert r.status_code == 400
    assert r.json()["detail"]["error"] == "UnknownModelError"


def test_evaluation_errors_are_opaque(api):
    r = api.get("/broken", headers={"x-request-id": "req-9"})
    assert r.status_code == 500
    assert r.json() == {"detail": "Internal Server Error", "request_id": "req-9"}
    assert "Account" not in r.text
    assert "Traceback" not in r.text
