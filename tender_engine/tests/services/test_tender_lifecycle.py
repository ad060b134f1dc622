from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import select

from tender_engine.core.errors import (
    InvalidTransition,
    NotAuthorized,
    NotFound,
    PendingDecisions,
    StaleState,
    ValidationFailed,
)
from tender_engine.core.events import EventType
from tender_engine.models.enums import (
    ProposalStatus,
    TenderCategory,
    TenderStatus,
    Visibility,
)
from tender_engine.models.event_log import EventLog
from tender_engine.policies.rbac import SYSTEM_ACTOR
from tender_engine.services.tender_lifecycle import TenderFilters, TenderPatch
from tender_engine.tests.factories import (
    ADMIN,
    COLLEAGUE,
    COMPANY,
    FREELANCER_A,
    FREELANCER_B,
    OTHER_COMPANY,
    future,
    make_terms,
)


def test_create_starts_in_draft_owned_by_organization(db, facade, sink):
    tender = facade.create_tender(db, COMPANY, make_terms())

    assert tender.status == TenderStatus.draft.value
    assert tender.owner_id == "org-acme"
    assert tender.created_by == COMPANY.actor_id
    assert tender.version == 1
    assert tender.proposal_ids == []
    assert sink.types() == [EventType.TENDER_CREATED]


def test_create_reports_every_validation_issue(db, facade):
    terms = make_terms(
        budget_min=Decimal("3000"),
        budget_max=Decimal("2000"),
        currency="XYZ",
        deadline=future(-1),
    )
    with pytest.raises(ValidationFailed) as exc:
        facade.create_tender(db, COMPANY, terms)

    assert sorted(exc.value.codes) == ["DeadlineInPast", "InvalidBudget", "InvalidCurrency"]
    assert facade.list_my_tenders(db, COMPANY) == []


def test_bidders_cannot_create_tenders(db, facade):
    with pytest.raises(NotAuthorized):
        facade.create_tender(db, FREELANCER_A, make_terms())


def test_publish_open_complete_path(db, facade, sink):
    tender = facade.create_tender(db, COMPANY, make_terms())
    tender = facade.publish_tender(db, COMPANY, tender.id)
    assert tender.status == TenderStatus.published.value
    assert tender.published_at is not None

    # a colleague from the same organization shares ownership
    tender = facade.open_tender(db, COLLEAGUE, tender.id)
    assert tender.status == TenderStatus.open.value

    tender = facade.complete_tender(db, COMPANY, tender.id)
    assert tender.status == TenderStatus.completed.value
    assert tender.closed_at is not None

    assert sink.types() == [
        EventType.TENDER_CREATED,
        EventType.TENDER_PUBLISHED,
        EventType.TENDER_OPENED,
        EventType.TENDER_COMPLETED,
    ]


def test_publish_revalidates_deadline(db, facade):
    tender = facade.create_tender(db, COMPANY, make_terms(deadline=future(1)))

    with pytest.raises(ValidationFailed) as exc:
        facade.publish_tender(db, COMPANY, tender.id, now=future(2))
    assert exc.value.codes == ["DeadlineInPast"]

    db.refresh(tender)
    assert tender.status == TenderStatus.draft.value


def test_illegal_edges_raise_invalid_transition(db, facade):
    tender = facade.create_tender(db, COMPANY, make_terms())

    with pytest.raises(InvalidTransition) as exc:
        facade.open_tender(db, COMPANY, tender.id)
    assert exc.value.current == "draft"
    assert exc.value.requested == "open"

    with pytest.raises(InvalidTransition):
        facade.complete_tender(db, COMPANY, tender.id)


@pytest.mark.parametrize("terminal", ["complete", "cancel"])
def test_terminal_tenders_refuse_all_transitions(db, facade, published_tender, terminal):
    tender = published_tender()
    if terminal == "complete":
        facade.open_tender(db, COMPANY, tender.id)
        facade.complete_tender(db, COMPANY, tender.id)
    else:
        facade.cancel_tender(db, COMPANY, tender.id)

    for call in (
        lambda: facade.publish_tender(db, COMPANY, tender.id),
        lambda: facade.open_tender(db, COMPANY, tender.id),
        lambda: facade.complete_tender(db, COMPANY, tender.id),
        lambda: facade.cancel_tender(db, COMPANY, tender.id),
    ):
        with pytest.raises(InvalidTransition):
            call()

    with pytest.raises(InvalidTransition):
        facade.update_tender(db, COMPANY, tender.id, TenderPatch(title="renamed"))


def test_non_owner_cannot_transition(db, facade, published_tender):
    tender = published_tender()

    # can see it, but does not own it
    with pytest.raises(NotAuthorized):
        facade.open_tender(db, FREELANCER_A, tender.id)

    # cannot even see it
    with pytest.raises(NotFound):
        facade.open_tender(db, OTHER_COMPANY, tender.id)

    assert facade.open_tender(db, ADMIN, tender.id).status == TenderStatus.open.value


def test_system_actor_limited_to_open_and_cancel(db, facade, published_tender):
    tender = published_tender()
    facade.open_tender(db, SYSTEM_ACTOR, tender.id)

    with pytest.raises(NotAuthorized):
        facade.complete_tender(db, SYSTEM_ACTOR, tender.id)

    result = facade.cancel_tender(db, SYSTEM_ACTOR, tender.id, reason="deadline passed")
    assert result.tender.status == TenderStatus.cancelled.value
    assert result.tender.cancellation_reason == "deadline passed"


def test_complete_blocked_by_pending_proposals(db, facade, published_tender, submit):
    tender = published_tender()
    p1 = submit(FREELANCER_A, tender.id)
    p2 = submit(FREELANCER_B, tender.id)
    facade.open_tender(db, COMPANY, tender.id)

    with pytest.raises(PendingDecisions) as exc:
        facade.complete_tender(db, COMPANY, tender.id)
    assert sorted(exc.value.proposal_ids) == sorted([str(p1.id), str(p2.id)])
    assert exc.value.to_detail()["proposalIds"] == exc.value.proposal_ids

    facade.update_proposal_status(db, COMPANY, p1.id, ProposalStatus.under_review)
    facade.update_proposal_status(db, COMPANY, p1.id, ProposalStatus.rejected)
    facade.update_proposal_status(db, FREELANCER_B, p2.id, ProposalStatus.withdrawn)

    tender = facade.complete_tender(db, COMPANY, tender.id)
    assert tender.status == TenderStatus.completed.value


def test_cancel_cascades_withdrawal_then_complete_is_invalid(db, facade, published_tender, submit, sink):
    tender = published_tender()
    p1 = submit(FREELANCER_A, tender.id)
    p2 = submit(FREELANCER_B, tender.id)

    result = facade.cancel_tender(db, COMPANY, tender.id, reason="budget withdrawn")

    assert result.tender.status == TenderStatus.cancelled.value
    assert sorted(result.withdrawn_proposal_ids) == sorted([str(p1.id), str(p2.id)])
    assert result.unconverted_proposal_ids == []
    assert result.degraded is False

    for p in (p1, p2):
        db.refresh(p)
        assert p.status == ProposalStatus.withdrawn.value
        assert p.withdrawal_reason

    with pytest.raises(InvalidTransition):
        facade.complete_tender(db, COMPANY, tender.id)

    assert sink.types().count(EventType.PROPOSAL_WITHDRAWN) == 2
    assert EventType.TENDER_CANCELLED in sink.types()


def test_cancel_cascade_converges_on_already_withdrawn(db, facade, published_tender, submit):
    tender = published_tender()
    p1 = submit(FREELANCER_A, tender.id)
    p2 = submit(FREELANCER_B, tender.id)
    facade.update_proposal_status(db, FREELANCER_A, p1.id, ProposalStatus.withdrawn)

    result = facade.cancel_tender(db, COMPANY, tender.id)
    assert result.withdrawn_proposal_ids == [str(p2.id)]
    assert result.unconverted_proposal_ids == []

    # re-running the cascade is harmless
    again = facade.reconcile_cancelled_tender(db, COMPANY, tender.id)
    assert again.withdrawn_proposal_ids == []
    assert again.degraded is False


def test_cancel_cascade_failure_is_reported_not_raised(
    db, facade, published_tender, submit, monkeypatch
):
    tender = published_tender()
    p1 = submit(FREELANCER_A, tender.id)
    p2 = submit(FREELANCER_B, tender.id)

    real = facade.proposals.withdraw_for_cancellation

    def flaky(db_, proposal_id, **kwargs):
        if proposal_id == p1.id:
            raise StaleState("Proposal", proposal_id)
        return real(db_, proposal_id, **kwargs)

    monkeypatch.setattr(facade.proposals, "withdraw_for_cancellation", flaky)

    result = facade.cancel_tender(db, COMPANY, tender.id)
    assert result.tender.status == TenderStatus.cancelled.value
    assert result.degraded is True
    assert result.unconverted_proposal_ids == [str(p1.id)]
    assert result.withdrawn_proposal_ids == [str(p2.id)]

    # the next reconcile converges the leftover
    monkeypatch.setattr(facade.proposals, "withdraw_for_cancellation", real)
    again = facade.reconcile_cancelled_tender(db, COMPANY, tender.id)
    assert again.withdrawn_proposal_ids == [str(p1.id)]


def test_update_revalidates_and_bumps_version(db, facade):
    tender = facade.create_tender(db, COMPANY, make_terms())
    v1 = tender.version

    tender = facade.update_tender(
        db,
        COMPANY,
        tender.id,
        TenderPatch(title="New title", budget_max=Decimal("5000"), skills_required=["Plumbing"]),
    )
    assert tender.title == "New title"
    assert tender.budget_max == Decimal("5000")
    assert tender.skills_required == ["Plumbing"]
    assert tender.version == v1 + 1

    with pytest.raises(ValidationFailed) as exc:
        facade.update_tender(db, COMPANY, tender.id, TenderPatch(budget_min=Decimal("9000")))
    assert exc.value.codes == ["InvalidBudget"]


def test_budget_cut_cannot_strand_live_bids(db, facade, published_tender, submit):
    tender = published_tender(budget_max=Decimal("2000"))
    bid = submit(FREELANCER_A, tender.id, bid=Decimal("3900"))
    version = tender.version

    with pytest.raises(ValidationFailed) as exc:
        facade.update_tender(db, COMPANY, tender.id, TenderPatch(budget_max=Decimal("1000")))
    assert exc.value.codes == ["BidOutOfRange"]
    assert exc.value.issues[0].extra["highestBid"] == "3900.00"

    db.refresh(tender)
    assert tender.budget_max == Decimal("2000")

    # the cap the live bid needs is still fine
    tender = facade.update_tender(db, COMPANY, tender.id, TenderPatch(budget_max=Decimal("1950")))
    assert tender.budget_max == Decimal("1950")
    assert tender.version > version

    # a withdrawn bid no longer holds the maximum up
    facade.update_proposal_status(db, FREELANCER_A, bid.id, ProposalStatus.withdrawn)
    tender = facade.update_tender(db, COMPANY, tender.id, TenderPatch(budget_max=Decimal("1000")))
    assert tender.budget_max == Decimal("1000")


def test_update_with_old_version_is_stale(db, facade):
    tender = facade.create_tender(db, COMPANY, make_terms())
    seen = tender.version
    facade.update_tender(db, COMPANY, tender.id, TenderPatch(title="First edit"))

    with pytest.raises(StaleState):
        facade.update_tender(
            db, COMPANY, tender.id, TenderPatch(title="Second edit"), expected_version=seen
        )


def test_update_replaces_invitations(db, facade):
    tender = facade.create_tender(
        db,
        COMPANY,
        make_terms(visibility=Visibility.invite_only, invited_parties=["u-free-a", "u-x"]),
    )
    tender = facade.update_tender(
        db, COMPANY, tender.id, TenderPatch(invited_parties=["u-x", "u-free-b"])
    )
    assert tender.invited_parties == ["u-free-b", "u-x"]


def test_get_for_viewer_counts_views_without_version_bump(db, facade, published_tender):
    tender = published_tender()
    version = tender.version

    facade.get_tender(db, FREELANCER_A, tender.id)
    seen = facade.get_tender(db, FREELANCER_B, tender.id)

    assert seen.views == 2
    assert seen.version == version


def test_get_hides_draft_and_invite_only(db, facade, published_tender):
    draft = facade.create_tender(db, COMPANY, make_terms())
    with pytest.raises(NotFound):
        facade.get_tender(db, FREELANCER_A, draft.id)

    private = published_tender(visibility=Visibility.invite_only, invited_parties=["u-free-a"])
    assert facade.get_tender(db, FREELANCER_A, private.id).id == private.id
    with pytest.raises(NotFound):
        facade.get_tender(db, FREELANCER_B, private.id)


def test_list_visible_filters_and_pagination(db, facade, published_tender):
    published_tender(title="Kitchen remodel", category=TenderCategory.construction)
    published_tender(
        title="Landing page",
        category=TenderCategory.IT,
        skills_required=["React", "CSS"],
        budget_min=Decimal("100"),
        budget_max=Decimal("500"),
    )
    published_tender(visibility=Visibility.invite_only, invited_parties=["u-free-b"])
    facade.create_tender(db, COMPANY, make_terms(title="Draft only"))

    page = facade.list_tenders(db, FREELANCER_A)
    titles = sorted(t.title for t in page.items)
    assert titles == ["Kitchen remodel", "Landing page"]
    assert page.total == 2

    page = facade.list_tenders(db, FREELANCER_B)
    assert page.total == 3

    it = facade.list_tenders(db, FREELANCER_A, TenderFilters(category=TenderCategory.IT))
    assert [t.title for t in it.items] == ["Landing page"]

    react = facade.list_tenders(db, FREELANCER_A, TenderFilters(skills=["react"]))
    assert [t.title for t in react.items] == ["Landing page"]

    cheap = facade.list_tenders(db, FREELANCER_A, TenderFilters(max_budget=Decimal("1000")))
    assert [t.title for t in cheap.items] == ["Landing page"]

    found = facade.list_tenders(db, FREELANCER_A, TenderFilters(search="KITCHEN"))
    assert [t.title for t in found.items] == ["Kitchen remodel"]

    by_budget = facade.list_tenders(
        db, FREELANCER_A, TenderFilters(sort="budget_max", order="asc", limit=1, page=2)
    )
    assert [t.title for t in by_budget.items] == ["Kitchen remodel"]
    assert by_budget.pages == 2


def test_owner_lists_include_own_drafts(db, facade, published_tender):
    published_tender(title="Live")
    facade.create_tender(db, COMPANY, make_terms(title="Draft"))

    page = facade.list_tenders(db, COMPANY)
    assert sorted(t.title for t in page.items) == ["Draft", "Live"]

    drafts = facade.list_tenders(db, COMPANY, TenderFilters(status=TenderStatus.draft))
    assert [t.title for t in drafts.items] == ["Draft"]

    assert sorted(t.title for t in facade.list_my_tenders(db, COLLEAGUE)) == ["Draft", "Live"]
    assert facade.list_my_tenders(db, OTHER_COMPANY) == []


def test_list_expired_finds_passed_deadlines(db, facade, published_tender):
    tender = published_tender(deadline=future(1))
    assert facade.list_expired_tenders(db) == []

    expired = facade.list_expired_tenders(db, now=future(2))
    assert [t.id for t in expired] == [tender.id]

    # past its deadline it drops out of bidder listings
    later = facade.tenders.list_visible(db, actor=FREELANCER_A, now=future(2))
    assert later.total == 0
    assert facade.tenders.list_visible(db, actor=COMPANY, now=future(2)).total == 1


def test_events_are_staged_in_outbox(db, facade):
    tender = facade.create_tender(db, COMPANY, make_terms())
    facade.publish_tender(db, COMPANY, tender.id)

    rows = db.execute(
        select(EventLog).where(EventLog.aggregate_id == str(tender.id)).order_by(EventLog.created_at)
    ).scalars().all()
    assert [r.event_type for r in rows] == [EventType.TENDER_CREATED, EventType.TENDER_PUBLISHED]
    assert rows[1].payload_json["to"] == "published"


def test_deadline_edit_must_stay_future(db, facade, published_tender):
    tender = published_tender()
    with pytest.raises(ValidationFailed) as exc:
        facade.update_tender(
            db, COMPANY, tender.id, TenderPatch(deadline=future(-1) - timedelta(hours=1))
        )
    assert exc.value.codes == ["DeadlineInPast"]
