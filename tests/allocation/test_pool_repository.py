from __future__ import annotations

from datetime import timedelta

import pytest
from sqlalchemy import select

from tokenpool.allocation.errors import AllocationServiceError, ReservationConflict
from tokenpool.allocation.pool import PoolRepository
from tokenpool.infrastructure.persistence.models import TokenModel


def test_reserve_prefers_half_claimed_then_oldest(session_factory, seed, clock) -> None:
    first, second, third = seed.tokens(3)
    other = seed.claimant()
    seed.deliver(other, second)
    claimant_id = seed.claimant()

    with session_factory() as session:
        pool = PoolRepository(session, clock=clock)
        candidate = pool.reserve_token(claimant_id)
        assert candidate.id == second
        assert candidate.claim_count == 1
        assert pool.reserve_token(claimant_id, exclude=[second]).id == first


def test_reserve_skips_tokens_already_delivered_to_claimant(session_factory, seed, clock) -> None:
    first, second = seed.tokens(2)
    claimant_id = seed.claimant()
    seed.deliver(claimant_id, first)

    with session_factory() as session:
        pool = PoolRepository(session, clock=clock)
        assert pool.reserve_token(claimant_id).id == second
        assert pool.reserve_token(claimant_id, exclude=[second]) is None


def test_reserve_returns_none_when_pool_is_full(session_factory, seed, clock) -> None:
    (token_id,) = seed.tokens(1)
    seed.deliver(seed.claimant(), token_id)
    seed.deliver(seed.claimant(), token_id)

    newcomer = seed.claimant()

    with session_factory() as session:
        assert PoolRepository(session, clock=clock).reserve_token(newcomer) is None


def test_commit_reservation_is_conditional(session_factory, seed, clock) -> None:
    (token_id,) = seed.tokens(1)
    first, second, third = seed.claimant(), seed.claimant(), seed.claimant()

    with session_factory() as session:
        pool = PoolRepository(session, clock=clock)
        assert pool.commit_reservation(token_id, first, clock.now()).claim_count == 1
        committed = pool.commit_reservation(token_id, second, clock.now())
        assert committed.claim_count == 2
        assert pool.commit_reservation(token_id, third, clock.now()) is None
        session.commit()

    row = seed.token_row(token_id)
    assert row.claim_count == 2
    assert row.assigned_to == second
    assert row.assigned_at == clock.now()


def test_record_delivery_duplicate_is_a_conflict(session_factory, seed, clock) -> None:
    (token_id,) = seed.tokens(1)
    claimant_id = seed.claimant()
    seed.deliver(claimant_id, token_id)

    with session_factory() as session:
        with pytest.raises(ReservationConflict) as info:
            PoolRepository(session, clock=clock).record_delivery(claimant_id, token_id, clock.now())
        session.rollback()
    assert info.value.stage == "delivery"
    assert seed.deliveries() == [(claimant_id, token_id)]


def test_record_delivery_for_deleted_token_is_a_conflict(session_factory, seed, clock) -> None:
    claimant_id = seed.claimant()
    with session_factory() as session:
        with pytest.raises(ReservationConflict):
            PoolRepository(session, clock=clock).record_delivery(claimant_id, "gone", clock.now())
        session.rollback()


def test_release_reservation_never_goes_negative(session_factory, seed, clock) -> None:
    (token_id,) = seed.tokens(1)
    claimant_id = seed.claimant()
    with session_factory() as session:
        pool = PoolRepository(session, clock=clock)
        assert pool.commit_reservation(token_id, claimant_id, clock.now()) is not None
        assert pool.release_reservation(token_id) is True
        assert pool.release_reservation(token_id) is False
        session.commit()
    assert seed.token_row(token_id).claim_count == 0


def test_bulk_insert_counts_duplicates(session_factory, clock) -> None:
    with session_factory() as session:
        report = PoolRepository(session, clock=clock).bulk_insert(["value-aaaa", "value-bbbb", "value-aaaa"])
        session.commit()
    assert (report.inserted, report.duplicates, report.total) == (2, 1, 3)
    clock.advance(1)

    with session_factory() as session:
        again = PoolRepository(session, clock=clock).bulk_insert(["value-bbbb", "value-cccc"])
        session.commit()
        rows = session.execute(select(TokenModel.value, TokenModel.created_at).order_by(TokenModel.created_at)).all()
    assert (again.inserted, again.duplicates, again.total) == (1, 1, 2)
    assert [row.value for row in rows][:2] == ["value-aaaa", "value-bbbb"]
    assert rows[0].created_at < rows[1].created_at


def test_bulk_delete_window_from_id_anchor(session_factory, seed, clock) -> None:
    token_ids = seed.tokens(25)
    claimant_id = seed.claimant()
    seed.deliver(claimant_id, token_ids[2])
    seed.deliver(claimant_id, token_ids[5])
    seed.deliver(claimant_id, token_ids[20])

    with session_factory() as session:
        report = PoolRepository(session, clock=clock).bulk_delete(token_ids[2], 10)
        session.commit()

    assert report.token_ids == tuple(token_ids[2:12])
    assert report.deleted_tokens == 10
    assert report.deleted_deliveries == 2
    assert seed.token_row(token_ids[1]) is not None
    assert seed.token_row(token_ids[2]) is None
    assert seed.token_row(token_ids[12]) is not None
    assert seed.deliveries() == [(claimant_id, token_ids[20])]
    seed.assert_consistent()


def test_bulk_delete_from_value_anchor_stops_at_pool_end(session_factory, seed, clock) -> None:
    token_ids = seed.tokens(6)
    anchor_value = seed.token_value(token_ids[3])

    with session_factory() as session:
        report = PoolRepository(session, clock=clock).bulk_delete(anchor_value, 10)
        session.commit()
    assert report.token_ids == tuple(token_ids[3:])
    assert report.deleted_tokens == 3


def test_bulk_delete_unknown_anchor_is_invalid_input(session_factory, seed, clock) -> None:
    seed.tokens(3)
    with session_factory() as session:
        with pytest.raises(AllocationServiceError) as info:
            PoolRepository(session, clock=clock).bulk_delete("00000000-0000-0000-0000-000000000000", 10)
    assert info.value.code == "INVALID_INPUT"
    assert info.value.http_status == 400


def test_list_tokens_filters_and_masks(session_factory, seed, clock) -> None:
    token_ids = seed.tokens(5, prefix="a-long-token-value-that-gets-masked")
    seed.deliver(seed.claimant(), token_ids[0])
    seed.deliver(seed.claimant(), token_ids[0])
    seed.deliver(seed.claimant(), token_ids[1])

    with session_factory() as session:
        pool = PoolRepository(session, clock=clock)
        assert pool.list_tokens("available").total == 3
        assert [item.id for item in pool.list_tokens("partial").items] == [token_ids[1]]
        assert [item.id for item in pool.list_tokens("full").items] == [token_ids[0]]
        assert pool.list_tokens("assigned").total == 2

        page = pool.list_tokens("all", limit=2, offset=0)
        assert page.total == 5
        assert page.has_more is True
        assert [item.id for item in page.items] == [token_ids[4], token_ids[3]]
        assert page.items[0].value_preview == "a-long-token-value-t..."

        with pytest.raises(AllocationServiceError):
            pool.list_tokens("bogus")  # type: ignore[arg-type]


def test_pool_stats(session_factory, seed, clock) -> None:
    token_ids = seed.tokens(3)
    active = seed.claimant()
    seed.claimant(active=False)
    seed.claimant(expires_in=timedelta(seconds=-5))
    seed.deliver(active, token_ids[0])

    with session_factory() as session:
        stats = PoolRepository(session, clock=clock).pool_stats(clock.now())

    assert stats.tokens_total == 3
    assert stats.tokens_fresh == 2
    assert stats.tokens_partial == 1
    assert stats.tokens_full == 0
    assert stats.tokens_remaining == 3
    assert stats.tokens_assigned == 1
    assert stats.claims_remaining == 5
    assert stats.claimants_active == 1
    assert stats.claimants_expired == 2
