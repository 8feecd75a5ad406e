from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor

import pytest

from fulfillment_service.app.exceptions import (
    ConsistencyViolationError,
    CredentialInUseError,
    CredentialNotFoundError,
    PlanNotFoundError,
)
from fulfillment_service.app.services.credential_pool_service import (
    parse_credential_lines,
)
from fulfillment_service.tests.fakes import build_engine, build_plan


def test_bulk_import_partial_success() -> None:
    engine = build_engine()
    plan = engine.plan_repo.insert(build_plan())

    result = engine.pool.bulk_import(plan.id, ["alice,pw1", "broken-line", "bob,pw2"])

    assert result.success_count == 2
    assert len(result.errors) == 1
    assert result.errors[0].startswith("line 2: ")
    assert engine.pool.stats(plan.id).total == 2


def test_bulk_import_rejects_duplicates_in_batch_and_pool() -> None:
    engine = build_engine()
    plan = engine.plan_repo.insert(build_plan())
    engine.credential_repo.add(plan.id, "alice")

    result = engine.pool.bulk_import(
        plan.id, ["alice,pw", "", "carol,pw", "carol,other", "dave,pw"]
    )

    assert result.success_count == 2
    assert [e.split(":")[0] for e in result.errors] == ["line 1", "line 4"]


def test_bulk_import_unknown_plan() -> None:
    engine = build_engine()
    with pytest.raises(PlanNotFoundError):
        engine.pool.bulk_import("missing", ["a,b"])


@pytest.mark.parametrize(
    "line", ["a,b,c", "a,", ",b", "nocomma", " , "]
)
def test_parse_rejects_malformed_lines(line: str) -> None:
    parsed, errors = parse_credential_lines([line])
    assert parsed == []
    assert errors and errors[0].startswith("line 1: ")


def test_parse_skips_blank_lines_but_keeps_numbering() -> None:
    parsed, errors = parse_credential_lines(["", "  ", "u1, p1 "])
    assert errors == []
    assert [(p.line_no, p.username, p.password) for p in parsed] == [(3, "u1", "p1")]


def test_claim_returns_oldest_and_none_when_empty() -> None:
    engine = build_engine()
    first = engine.credential_repo.add("plan-a", "first")
    engine.credential_repo.add("plan-a", "second")

    claimed = engine.pool.claim_one("plan-a", "order-1", "user-1")
    assert claimed.id == first.id
    assert claimed.is_bound_to("order-1")

    engine.pool.claim_one("plan-a", "order-1", "user-1")
    assert engine.pool.claim_one("plan-a", "order-1", "user-1") is None


def test_concurrent_claims_never_share_a_credential() -> None:
    engine = build_engine()
    for i in range(25):
        engine.credential_repo.add("plan-a", f"user{i}")

    with ThreadPoolExecutor(max_workers=16) as executor:
        results = list(
            executor.map(
                lambda n: engine.pool.claim_one("plan-a", f"order-{n}", "u"), range(60)
            )
        )

    claimed = [c for c in results if c is not None]
    assert len(claimed) == 25
    assert len({c.id for c in claimed}) == 25

    stats = engine.pool.stats("plan-a")
    assert (stats.total, stats.available, stats.assigned) == (25, 0, 25)


def test_last_unit_has_exactly_one_winner() -> None:
    engine = build_engine()
    engine.credential_repo.add("plan-a", "only")

    with ThreadPoolExecutor(max_workers=8) as executor:
        results = list(
            executor.map(
                lambda n: engine.pool.claim_one("plan-a", f"order-{n}", "u"), range(8)
            )
        )

    assert sum(1 for r in results if r is not None) == 1


def test_release_is_idempotent_and_conserves_stock() -> None:
    engine = build_engine()
    engine.credential_repo.add("plan-a", "one")
    engine.credential_repo.add("plan-a", "two")
    claimed = engine.pool.claim_one("plan-a", "order-1", "user-1")

    first = engine.pool.release(claimed.id)
    second = engine.pool.release(claimed.id)

    assert first.is_assigned is False
    assert second.is_assigned is False
    stats = engine.pool.stats("plan-a")
    assert stats.available + stats.assigned == stats.total == 2
    assert stats.available == 2


def test_release_guarded_by_order_refuses_foreign_binding() -> None:
    engine = build_engine()
    engine.credential_repo.add("plan-a", "one")
    claimed = engine.pool.claim_one("plan-a", "order-1", "user-1")

    with pytest.raises(ConsistencyViolationError):
        engine.pool.release(claimed.id, expected_order_id="order-2")

    assert engine.credential_repo.find_by_id(claimed.id).is_bound_to("order-1")


def test_release_unknown_credential() -> None:
    engine = build_engine()
    with pytest.raises(CredentialNotFoundError):
        engine.pool.release("missing")


def test_delete_rejected_while_assigned() -> None:
    engine = build_engine()
    free = engine.credential_repo.add("plan-a", "free")
    engine.credential_repo.add("plan-a", "taken")
    engine.pool.claim_one("plan-a", "order-1", "user-1")
    taken = engine.pool.list_for_order("order-1")[0]

    engine.pool.delete(free.id)
    with pytest.raises(CredentialInUseError):
        engine.pool.delete(taken.id)
    with pytest.raises(CredentialNotFoundError):
        engine.pool.delete(free.id)


def test_stats_all_reports_every_plan() -> None:
    engine = build_engine()
    engine.credential_repo.add("plan-a", "a1")
    engine.credential_repo.add("plan-b", "b1")
    engine.credential_repo.add("plan-b", "b2")
    engine.pool.claim_one("plan-b", "order-1", "user-1")

    stats = {s.plan_id: s for s in engine.pool.stats_all()}

    assert stats["plan-a"].available == 1
    assert (stats["plan-b"].available, stats["plan-b"].assigned) == (1, 1)
