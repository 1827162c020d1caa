"""API tests running the FastAPI app against sqlite and a stubbed gateway."""

from datetime import datetime, timezone

import httpx
import pytest
import pytest_asyncio

from credisphere.api.v1.auth import get_current_session
from credisphere.api.v1.reports import get_gateway
from credisphere.core.database import get_db
from credisphere.core.session import AuthEvent, Session
from credisphere.main import app

from conftest import ANALYZE_PATH, CHAT_PATH, CLASSIFY_PATH, UPLOAD_PATH, json_response

BUREAU_CLASSIFICATION = {
    "api_calls": ["bureauA", "bureauB"],
    "requested_data": [["ssn", "name"], ["name", "income"]],
}


@pytest_asyncio.fixture
async def client(session_maker, gateway):
    async def override_db():
        async with session_maker() as session:
            yield session

    async def override_gateway():
        yield gateway

    app.dependency_overrides[get_db] = override_db
    app.dependency_overrides[get_gateway] = override_gateway
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://testserver") as c:
        yield c
    app.dependency_overrides = {}


@pytest.fixture
def authed_client(client, user):
    session = Session.from_user(user)
    app.dependency_overrides[get_current_session] = lambda: session
    return client


@pytest.mark.asyncio
async def test_signup_login_me_logout(client):
    events = []
    unsubscribe = app.state.auth_events.subscribe(lambda event, session: events.append(event))
    try:
        resp = await client.post("/api/v1/auth/signup", json={
            "email": "New.Analyst@FirstBank.com",
            "password": "s3cret-pass",
            "organization_name": "First Bank",
        })
        assert resp.status_code == 201
        assert resp.json()["organization_name"] == "First Bank"

        me = await client.get("/api/v1/auth/me")
        assert me.status_code == 200
        assert me.json()["email"] == "new.analyst@firstbank.com"

        await client.post("/api/v1/auth/logout")
        assert (await client.get("/api/v1/auth/me")).status_code == 401

        bad = await client.post("/api/v1/auth/login", data={"username": "new.analyst@firstbank.com", "password": "wrong"})
        assert bad.status_code == 401

        good = await client.post("/api/v1/auth/login", data={"username": "new.analyst@firstbank.com", "password": "s3cret-pass"})
        assert good.status_code == 200
        assert (await client.get("/api/v1/auth/me")).status_code == 200
    finally:
        unsubscribe()

    assert events == [AuthEvent.SIGNED_UP, AuthEvent.SIGNED_OUT, AuthEvent.SIGNED_IN]


@pytest.mark.asyncio
async def test_duplicate_signup_is_rejected(client, user):
    resp = await client.post("/api/v1/auth/signup", json={
        "email": user.email,
        "password": "s3cret-pass",
        "organization_name": "Again",
    })
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_reports_require_authentication(client):
    assert (await client.get("/api/v1/reports")).status_code == 401


@pytest.mark.asyncio
async def test_report_workflow_over_http(authed_client, gateway_stub):
    gateway_stub.on(CLASSIFY_PATH, BUREAU_CLASSIFICATION)
    gateway_stub.on(ANALYZE_PATH, {"markdown": "## Applicant is low risk"})

    created = await authed_client.post("/api/v1/reports", json={"query": "check score for loan applicant John"})
    assert created.status_code == 201
    state = created.json()
    report_id = state["report_id"]
    assert state["step"] == 2
    assert state["form_fields"] == ["ssn", "name", "income"]

    saved = await authed_client.put(f"/api/v1/reports/{report_id}/fields", json={"values": {"ssn": "123", "name": "John"}})
    assert saved.status_code == 200
    assert saved.json()["missing_fields"] == ["income"]

    incomplete = await authed_client.post(f"/api/v1/reports/{report_id}/submit", json={})
    assert incomplete.status_code == 400
    assert "income" in incomplete.json()["detail"]
    assert gateway_stub.count(ANALYZE_PATH) == 0

    submitted = await authed_client.post(f"/api/v1/reports/{report_id}/submit", json={"values": {"income": "85000"}})
    assert submitted.status_code == 200
    assert submitted.json()["step"] == 3
    assert gateway_stub.bodies(ANALYZE_PATH)[0]["api_calls"][1] == {
        "endpoint": "bureauB", "fields": {"name": "John", "income": "85000"},
    }

    detail = (await authed_client.get(f"/api/v1/reports/{report_id}")).json()
    assert detail["text_paragraph_markdown"] == "## Applicant is low risk"
    assert detail["data"]["classification"]["api_calls"] == ["bureauA", "bureauB"]
    assert detail["data"]["user_inputs"]["values"] == {"ssn": "123", "name": "John", "income": "85000"}

    history = (await authed_client.get("/api/v1/reports")).json()
    assert [item["report_id"] for item in history] == [report_id]
    assert history[0]["has_narrative"] is True

    dashboard = (await authed_client.get("/api/v1/dashboard")).json()
    assert dashboard["total_reports"] == 1
    assert dashboard["completed_reports"] == 1


@pytest.mark.asyncio
async def test_gateway_failure_maps_to_bad_gateway(authed_client, gateway_stub):
    gateway_stub.on(CLASSIFY_PATH, lambda request: json_response({"oops": True}, status_code=500))

    resp = await authed_client.post("/api/v1/reports", json={"query": "check score"})

    assert resp.status_code == 502
    assert "Failed to process your query" in resp.json()["detail"]


@pytest.mark.asyncio
async def test_unknown_field_is_a_bad_request(authed_client, gateway_stub):
    gateway_stub.on(CLASSIFY_PATH, BUREAU_CLASSIFICATION)
    report_id = (await authed_client.post("/api/v1/reports", json={"query": "check"})).json()["report_id"]

    resp = await authed_client.put(f"/api/v1/reports/{report_id}/fields", json={"values": {"shoe_size": "9"}})

    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_cannot_touch_another_users_report(authed_client, repository, other_user):
    await repository.create_report("foreign-report", other_user.id, "their query")

    assert (await authed_client.delete("/api/v1/reports/foreign-report")).status_code == 404
    assert (await authed_client.get("/api/v1/reports/foreign-report")).status_code == 404
    assert await repository.get_report("foreign-report", other_user.id) is not None


@pytest.mark.asyncio
async def test_delete_own_report(authed_client, repository, user):
    await repository.create_report("mine", user.id, "my query")

    assert (await authed_client.delete("/api/v1/reports/mine")).status_code == 204
    assert await repository.get_report("mine", user.id) is None


@pytest.mark.asyncio
async def test_upload_supporting_pdfs(authed_client, gateway_stub):
    gateway_stub.on(CLASSIFY_PATH, BUREAU_CLASSIFICATION)
    gateway_stub.on(UPLOAD_PATH, {"stored": 1})
    report_id = (await authed_client.post("/api/v1/reports", json={"query": "check"})).json()["report_id"]

    not_pdf = await authed_client.post(
        f"/api/v1/reports/{report_id}/files",
        files=[("files", ("notes.txt", b"hello", "text/plain"))],
    )
    assert not_pdf.status_code == 400

    resp = await authed_client.post(
        f"/api/v1/reports/{report_id}/files",
        files=[("files", ("statement.pdf", b"%PDF-1.7 body", "application/pdf"))],
    )
    assert resp.status_code == 202
    assert resp.json()["filenames"] == ["statement.pdf"]
    assert gateway_stub.count(UPLOAD_PATH) == 1


@pytest.mark.asyncio
async def test_chat_round_trip(authed_client, gateway_stub, repository, user):
    await repository.create_report("rep-chat", user.id, "check score")
    gateway_stub.on(CHAT_PATH, {"response": "Debt-to-income is 31%."})

    resp = await authed_client.post("/api/v1/reports/rep-chat/messages", json={"content": "What is the DTI?"})
    assert resp.status_code == 201
    assert [m["is_user"] for m in resp.json()] == [True, False]

    history = (await authed_client.get("/api/v1/reports/rep-chat/messages")).json()
    assert [m["content"] for m in history] == ["What is the DTI?", "Debt-to-income is 31%."]


@pytest.mark.asyncio
async def test_chat_empty_reply_uses_fallback(authed_client, gateway_stub, repository, user):
    await repository.create_report("rep-chat", user.id, "check score")
    gateway_stub.on(CHAT_PATH, {})

    resp = await authed_client.post("/api/v1/reports/rep-chat/messages", json={"content": "Hello?"})

    assert resp.json()[1]["content"] == "Sorry, I couldn't process your request."


@pytest.mark.asyncio
async def test_chat_gateway_failure_keeps_question(authed_client, gateway_stub, repository, user):
    await repository.create_report("rep-chat", user.id, "check score")
    gateway_stub.on(CHAT_PATH, lambda request: json_response({}, status_code=500))

    resp = await authed_client.post("/api/v1/reports/rep-chat/messages", json={"content": "Still there?"})

    assert resp.status_code == 502
    messages = await repository.list_chat_messages("rep-chat", user.id)
    assert [m.content for m in messages] == ["Still there?"]


@pytest.mark.asyncio
async def test_chat_on_missing_report_is_not_found(authed_client):
    resp = await authed_client.get("/api/v1/reports/nope/messages")
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_fields_are_locked_after_completion(authed_client, gateway_stub):
    gateway_stub.on(CLASSIFY_PATH, BUREAU_CLASSIFICATION)
    gateway_stub.on(ANALYZE_PATH, {"markdown": "## Low risk"})
    report_id = (await authed_client.post("/api/v1/reports", json={"query": "check"})).json()["report_id"]
    values = {"ssn": "1", "name": "John", "income": "85000"}
    assert (await authed_client.post(f"/api/v1/reports/{report_id}/submit", json={"values": values})).status_code == 200

    resp = await authed_client.put(f"/api/v1/reports/{report_id}/fields", json={"values": {"income": "999999"}})
    assert resp.status_code == 400
    resp = await authed_client.put(f"/api/v1/reports/{report_id}/fields", json={})
    assert resp.status_code == 400

    detail = (await authed_client.get(f"/api/v1/reports/{report_id}")).json()
    assert detail["data"]["user_inputs"]["values"] == values


@pytest.mark.asyncio
@pytest.mark.parametrize("password", ["x" * 80, "é" * 40])
async def test_signup_rejects_passwords_bcrypt_cannot_hash(client, password):
    resp = await client.post("/api/v1/auth/signup", json={
        "email": "long.password@firstbank.com",
        "password": password,
        "organization_name": "First Bank",
    })
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_report_history_filters(authed_client, repository, user):
    for report_id, created_at in [
        ("loan-aaa", datetime(2024, 3, 1, 9, tzinfo=timezone.utc)),
        ("loan-bbb", datetime(2024, 3, 5, 22, tzinfo=timezone.utc)),
        ("card-aaa", datetime(2024, 3, 9, 9, tzinfo=timezone.utc)),
    ]:
        report = await repository.create_report(report_id, user.id, "query")
        report.created_at = created_at
        await repository.db.commit()

    resp = await authed_client.get("/api/v1/reports", params={"search": "LOAN"})
    assert [item["report_id"] for item in resp.json()] == ["loan-bbb", "loan-aaa"]

    resp = await authed_client.get("/api/v1/reports", params={"from_date": "2024-03-02", "to_date": "2024-03-05"})
    assert [item["report_id"] for item in resp.json()] == ["loan-bbb"]

    resp = await authed_client.get("/api/v1/reports", params={"search": "aaa", "to_date": "2024-03-05"})
    assert [item["report_id"] for item in resp.json()] == ["loan-aaa"]

    resp = await authed_client.get("/api/v1/reports", params={"from_date": "2024-03-09", "to_date": "2024-03-01"})
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_failed_query_is_retried_on_the_same_report(authed_client, gateway_stub):
    gateway_stub.on(CLASSIFY_PATH, lambda request: json_response({}, status_code=503))
    failed = await authed_client.post("/api/v1/reports", json={"query": "check score"})
    assert failed.status_code == 502
    report_id = failed.headers["x-report-id"]

    gateway_stub.on(CLASSIFY_PATH, BUREAU_CLASSIFICATION)
    retried = await authed_client.post(f"/api/v1/reports/{report_id}/query", json={"query": "check score for John"})

    assert retried.status_code == 200
    assert retried.json()["report_id"] == report_id
    assert retried.json()["step"] == 2
    history = (await authed_client.get("/api/v1/reports")).json()
    assert [item["report_id"] for item in history] == [report_id]

    again = await authed_client.post(f"/api/v1/reports/{report_id}/query", json={"query": "another"})
    assert again.status_code == 400
