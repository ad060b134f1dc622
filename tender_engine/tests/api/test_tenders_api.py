from tender_engine.tests.factories import (
    ADMIN,
    COLLEAGUE,
    COMPANY,
    FREELANCER_A,
    FREELANCER_B,
    OTHER_COMPANY,
    PROPOSAL_TEXT,
    auth,
    tender_payload,
)

API = "/api/v1"


def _create(client, actor=COMPANY, **overrides):
    r = client.post(f"{API}/tenders", json=tender_payload(**overrides), headers=auth(actor))
    assert r.status_code == 201, r.text
    return r.json()


def _published(client, **overrides):
    tender = _create(client, **overrides)
    r = client.post(f"{API}/tenders/{tender['tenderId']}/publish", headers=auth(COMPANY))
    assert r.status_code == 200, r.text
    return r.json()


def _bid(client, actor, tender_id, amount="1500.00"):
    return client.post(
        f"{API}/proposals",
        json={
            "tenderId": tender_id,
            "bidAmount": amount,
            "proposalText": PROPOSAL_TEXT,
            "estimatedTimeline": "2-4 weeks",
        },
        headers=auth(actor),
    )


def test_create_tender_returns_draft_owned_by_organization(client):
    body = _create(client)
    assert body["status"] == "draft"
    assert body["ownerId"] == "org-acme"
    assert body["createdBy"] == COMPANY.actor_id
    assert body["budget"] == {
        "min": "1000.00",
        "max": "2000.00",
        "currency": "ETB",
        "isNegotiable": False,
    }
    assert body["version"] == 1
    assert body["proposalIds"] == []


def test_unknown_fields_are_rejected(client):
    r = client.post(
        f"{API}/tenders", json=tender_payload(ownerId="someone-else"), headers=auth(COMPANY)
    )
    assert r.status_code == 422


def test_validation_reports_every_issue(client):
    r = client.post(
        f"{API}/tenders",
        json=tender_payload(
            budget={"min": "500.00", "max": "100.00", "currency": "XXX"},
            deadline="2001-01-01T00:00:00+00:00",
            duration=0,
        ),
        headers=auth(COMPANY),
    )
    assert r.status_code == 422
    detail = r.json()["detail"]
    assert detail["code"] == "ValidationFailed"
    codes = {issue["code"] for issue in detail["issues"]}
    assert codes == {"InvalidBudget", "InvalidCurrency", "DeadlineInPast", "InvalidDuration"}


def test_bidders_cannot_create_tenders(client):
    r = client.post(f"{API}/tenders", json=tender_payload(), headers=auth(FREELANCER_A))
    assert r.status_code == 403
    assert r.json()["detail"]["code"] == "NotAuthorized"


def test_draft_is_hidden_until_published(client):
    tender = _create(client)
    tid = tender["tenderId"]

    assert client.get(f"{API}/tenders/{tid}", headers=auth(FREELANCER_A)).status_code == 404
    assert client.get(f"{API}/tenders/{tid}", headers=auth(COLLEAGUE)).status_code == 200

    r = client.post(f"{API}/tenders/{tid}/publish", headers=auth(COMPANY))
    assert r.status_code == 200
    assert r.json()["status"] == "published"

    r = client.get(f"{API}/tenders/{tid}", headers=auth(FREELANCER_A))
    assert r.status_code == 200
    listed = client.get(f"{API}/tenders", headers=auth(FREELANCER_A)).json()
    assert [t["tenderId"] for t in listed["items"]] == [tid]


def test_bidders_do_not_see_competitors_or_invitees(client):
    tender = _published(client)
    tid = tender["tenderId"]
    assert _bid(client, FREELANCER_A, tid).status_code == 201

    seen_by_bidder = client.get(f"{API}/tenders/{tid}", headers=auth(FREELANCER_B)).json()
    assert seen_by_bidder["proposalIds"] is None
    assert seen_by_bidder["invitedParties"] is None
    assert seen_by_bidder["proposalCount"] == 1

    seen_by_owner = client.get(f"{API}/tenders/{tid}", headers=auth(COMPANY)).json()
    assert len(seen_by_owner["proposalIds"]) == 1


def test_detail_counts_views(client):
    tid = _published(client)["tenderId"]
    client.get(f"{API}/tenders/{tid}", headers=auth(FREELANCER_A))
    r = client.get(f"{API}/tenders/{tid}", headers=auth(FREELANCER_B))
    assert r.json()["views"] == 2


def test_illegal_transition_is_conflict(client):
    tid = _create(client)["tenderId"]
    r = client.post(f"{API}/tenders/{tid}/complete", headers=auth(COMPANY))
    assert r.status_code == 409
    detail = r.json()["detail"]
    assert detail["code"] == "InvalidTransition"
    assert detail["current"] == "draft"
    assert detail["requested"] == "completed"


def test_other_company_cannot_manage(client):
    tid = _published(client)["tenderId"]
    r = client.post(f"{API}/tenders/{tid}/cancel", headers=auth(OTHER_COMPANY))
    # other companies cannot see the tender at all
    assert r.status_code == 404


def test_patch_with_stale_expected_version(client):
    tender = _create(client)
    tid = tender["tenderId"]

    r = client.patch(
        f"{API}/tenders/{tid}",
        json={"title": "Office fit-out, phase one", "expectedVersion": 1},
        headers=auth(COMPANY),
    )
    assert r.status_code == 200
    assert r.json()["version"] == 2

    r = client.patch(
        f"{API}/tenders/{tid}",
        json={"title": "Again", "expectedVersion": 1},
        headers=auth(COMPANY),
    )
    assert r.status_code == 409
    assert r.json()["detail"]["code"] == "StaleState"


def test_cancel_withdraws_pending_proposals(client):
    tid = _published(client)["tenderId"]
    a = _bid(client, FREELANCER_A, tid).json()
    b = _bid(client, FREELANCER_B, tid).json()

    r = client.post(
        f"{API}/tenders/{tid}/cancel",
        json={"reason": "Project postponed"},
        headers=auth(COMPANY),
    )
    assert r.status_code == 200
    body = r.json()
    assert body["tender"]["status"] == "cancelled"
    assert body["tender"]["cancellationReason"] == "Project postponed"
    assert set(body["withdrawnProposalIds"]) == {a["proposalId"], b["proposalId"]}
    assert body["unconvertedProposalIds"] == []
    assert body["degraded"] is False

    mine = client.get(f"{API}/proposals/{a['proposalId']}", headers=auth(FREELANCER_A)).json()
    assert mine["status"] == "withdrawn"


def test_save_toggle_and_saved_list(client):
    tid = _published(client)["tenderId"]

    r = client.post(f"{API}/tenders/{tid}/save", headers=auth(FREELANCER_A))
    assert r.json() == {"tenderId": tid, "saved": True, "totalSaves": 1}

    saved = client.get(f"{API}/tenders/saved", headers=auth(FREELANCER_A)).json()
    assert [t["tenderId"] for t in saved] == [tid]
    assert saved[0]["savedByMe"] is True

    r = client.post(f"{API}/tenders/{tid}/save", headers=auth(FREELANCER_A))
    assert r.json() == {"tenderId": tid, "saved": False, "totalSaves": 0}
    assert client.get(f"{API}/tenders/saved", headers=auth(FREELANCER_A)).json() == []


def test_mine_lists_organization_tenders(client):
    _create(client, title="One")
    _create(client, actor=COLLEAGUE, title="Two")
    _create(client, actor=OTHER_COMPANY, title="Elsewhere")

    titles = {t["title"] for t in client.get(f"{API}/tenders/mine", headers=auth(COMPANY)).json()}
    assert titles == {"One", "Two"}


def test_list_filters_and_pagination(client):
    _published(client, title="Kitchen remodel", budget={"min": "100", "max": "500"})
    _published(client, title="Server migration", category="IT", skillsRequired=["Linux"])
    _published(client, title="Brand refresh", category="design")

    r = client.get(f"{API}/tenders", params={"category": "IT"}, headers=auth(FREELANCER_A))
    assert [t["title"] for t in r.json()["items"]] == ["Server migration"]

    r = client.get(f"{API}/tenders", params={"skills": "linux"}, headers=auth(FREELANCER_A))
    assert [t["title"] for t in r.json()["items"]] == ["Server migration"]

    r = client.get(f"{API}/tenders", params={"search": "KITCHEN"}, headers=auth(FREELANCER_A))
    assert [t["title"] for t in r.json()["items"]] == ["Kitchen remodel"]

    r = client.get(f"{API}/tenders", params={"max_budget": "600"}, headers=auth(FREELANCER_A))
    assert [t["title"] for t in r.json()["items"]] == ["Kitchen remodel"]

    r = client.get(f"{API}/tenders", params={"limit": 2, "page": 2}, headers=auth(FREELANCER_A))
    body = r.json()
    assert body["total"] == 3
    assert body["pages"] == 2
    assert len(body["items"]) == 1

    r = client.get(f"{API}/tenders", params={"limit": 500}, headers=auth(FREELANCER_A))
    assert r.status_code == 422


def test_admin_sees_drafts_in_listing(client):
    _create(client, title="Draft only")
    r = client.get(f"{API}/tenders", headers=auth(ADMIN))
    assert [t["title"] for t in r.json()["items"]] == ["Draft only"]


def test_idempotent_create_replays_first_response(client):
    headers = {**auth(COMPANY), "Idempotency-Key": "create-1"}
    payload = tender_payload(title="Once only")

    first = client.post(f"{API}/tenders", json=payload, headers=headers)
    second = client.post(f"{API}/tenders", json=payload, headers=headers)
    assert first.status_code == 201
    assert second.status_code == 201
    assert second.json()["tenderId"] == first.json()["tenderId"]
    assert len(client.get(f"{API}/tenders/mine", headers=auth(COMPANY)).json()) == 1

    conflict = client.post(
        f"{API}/tenders", json=tender_payload(title="Something else"), headers=headers
    )
    assert conflict.status_code == 409
    assert conflict.json()["detail"]["code"] == "IdempotencyConflict"


def test_oversized_idempotency_key_rejected(client):
    headers = {**auth(COMPANY), "Idempotency-Key": "k" * 129}
    r = client.post(f"{API}/tenders", json=tender_payload(), headers=headers)
    assert r.status_code == 400
