import asyncio
from datetime import datetime, timezone

import pytest

from services.document_store import (
    SERVER_TIMESTAMP,
    InMemoryAccountStore,
    ServerTimestamp,
    SqlAlchemyAccountStore,
    StoreClock,
    resolve_server_timestamps,
)


FIXED_NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def test_server_timestamp_is_a_singleton():
    assert ServerTimestamp() is SERVER_TIMESTAMP
    assert repr(SERVER_TIMESTAMP) == "SERVER_TIMESTAMP"


def test_store_clock_never_repeats_an_instant():
    clock = StoreClock(now=lambda: FIXED_NOW)
    first = clock.tick()
    second = clock.tick()
    third = clock.tick()
    assert first == FIXED_NOW
    assert first < second < third


def test_resolve_server_timestamps_reaches_nested_values():
    document = {
        "createdAt": SERVER_TIMESTAMP,
        "members": [{"joinedAt": SERVER_TIMESTAMP, "role": "owner"}],
        "metrics": {"lastUpdated": SERVER_TIMESTAMP, "tier": "nano"},
    }
    resolved = resolve_server_timestamps(document, FIXED_NOW)
    assert resolved["createdAt"] == FIXED_NOW
    assert resolved["members"][0] == {"joinedAt": FIXED_NOW, "role": "owner"}
    assert resolved["metrics"] == {"lastUpdated": FIXED_NOW, "tier": "nano"}
    assert document["createdAt"] is SERVER_TIMESTAMP


@pytest.mark.asyncio
async def test_in_memory_get_returns_none_for_missing_document():
    store = InMemoryAccountStore()
    assert await store.get("users", "missing") is None


@pytest.mark.asyncio
async def test_in_memory_merge_is_shallow_and_keeps_other_fields():
    store = InMemoryAccountStore(clock=StoreClock(now=lambda: FIXED_NOW))
    await store.put("users", "u1", {"id": "u1", "profile": {"bio": "hi", "country": "NG"}, "role": "owner"})

    merged = await store.merge("users", "u1", {"profile": {"bio": "new"}, "lastLoginAt": SERVER_TIMESTAMP})

    assert merged["role"] == "owner"
    assert merged["profile"] == {"bio": "new"}
    assert isinstance(merged["lastLoginAt"], datetime)
    assert await store.get("users", "u1") == merged


@pytest.mark.asyncio
async def test_in_memory_merge_creates_missing_document():
    store = InMemoryAccountStore()
    merged = await store.merge("users", "u2", {"onboardingStep": 2})
    assert merged == {"onboardingStep": 2}


@pytest.mark.asyncio
async def test_in_memory_store_isolates_callers_from_stored_copies():
    store = InMemoryAccountStore()
    document = {"id": "u1", "languages": ["en"]}
    await store.put("users", "u1", document)
    document["languages"].append("fr")

    fetched = await store.get("users", "u1")
    fetched["languages"].append("de")

    assert (await store.get("users", "u1"))["languages"] == ["en"]


@pytest.mark.asyncio
async def test_in_memory_put_many_shares_one_write_time():
    store = InMemoryAccountStore()
    user, influencer = await store.put_many(
        [
            ("users", "u1", {"id": "u1", "createdAt": SERVER_TIMESTAMP}),
            ("influencers", "u1", {"id": "u1", "createdAt": SERVER_TIMESTAMP}),
        ]
    )
    assert user["createdAt"] == influencer["createdAt"]
    assert store.collection_size("users") == 1
    assert store.collection_size("influencers") == 1


@pytest.mark.asyncio
async def test_sql_store_round_trips_nested_timestamps(session_maker):
    async with session_maker() as session:
        store = SqlAlchemyAccountStore(session, clock=StoreClock(now=lambda: FIXED_NOW))
        await store.put(
            "organizations",
            "org-1",
            {
                "id": "org-1",
                "members": [{"userId": "org-1", "joinedAt": SERVER_TIMESTAMP}],
                "createdAt": SERVER_TIMESTAMP,
            },
        )

    async with session_maker() as session:
        store = SqlAlchemyAccountStore(session)
        fetched = await store.get("organizations", "org-1")

    assert fetched["createdAt"] == FIXED_NOW
    assert fetched["members"][0]["joinedAt"] == FIXED_NOW
    assert fetched["members"][0]["userId"] == "org-1"


@pytest.mark.asyncio
async def test_sql_store_merge_overwrites_only_given_fields(session_maker):
    async with session_maker() as session:
        store = SqlAlchemyAccountStore(session)
        created = await store.put("users", "u1", {"id": "u1", "userType": "brand", "lastLoginAt": SERVER_TIMESTAMP})
        merged = await store.merge("users", "u1", {"lastLoginAt": SERVER_TIMESTAMP, "emailVerified": True})

    assert merged["userType"] == "brand"
    assert merged["emailVerified"] is True
    assert merged["lastLoginAt"] > created["lastLoginAt"]

    async with session_maker() as session:
        fetched = await SqlAlchemyAccountStore(session).get("users", "u1")
    assert fetched == merged


@pytest.mark.asyncio
async def test_sql_store_put_many_commits_all_documents(session_maker):
    async with session_maker() as session:
        store = SqlAlchemyAccountStore(session)
        await store.put_many(
            [
                ("organizations", "o1", {"id": "o1"}),
                ("users", "o1", {"id": "o1", "organizationId": "o1"}),
            ]
        )

    async with session_maker() as session:
        store = SqlAlchemyAccountStore(session)
        assert await store.get("organizations", "o1") == {"id": "o1"}
        assert await store.get("users", "o1") == {"id": "o1", "organizationId": "o1"}
        assert await store.get("influencers", "o1") is None


@pytest.mark.asyncio
async def test_sql_store_racing_puts_keep_the_last_write(session_maker):
    async with session_maker() as first_session, session_maker() as second_session:
        await asyncio.gather(
            SqlAlchemyAccountStore(first_session).put_many(
                [("users", "u1", {"id": "u1", "writer": "first"}), ("influencers", "u1", {"id": "u1"})]
            ),
            SqlAlchemyAccountStore(second_session).put_many(
                [("users", "u1", {"id": "u1", "writer": "second"}), ("influencers", "u1", {"id": "u1"})]
            ),
        )

    async with session_maker() as session:
        stored = await SqlAlchemyAccountStore(session).get("users", "u1")
    assert stored["writer"] in {"first", "second"}
    assert stored["id"] == "u1"


@pytest.mark.asyncio
async def test_sql_store_concurrent_merges_keep_both_fields(session_maker):
    async with session_maker() as session:
        await SqlAlchemyAccountStore(session).put("users", "u1", {"id": "u1", "userType": "brand"})

    async with session_maker() as first_session, session_maker() as second_session:
        await asyncio.gather(
            SqlAlchemyAccountStore(first_session).merge("users", "u1", {"lastLoginAt": SERVER_TIMESTAMP}),
            SqlAlchemyAccountStore(second_session).merge("users", "u1", {"stripeCustomerId": "cus_1"}),
        )

    async with session_maker() as session:
        stored = await SqlAlchemyAccountStore(session).get("users", "u1")
    assert stored["userType"] == "brand"
    assert stored["stripeCustomerId"] == "cus_1"
    assert isinstance(stored["lastLoginAt"], datetime)


@pytest.mark.asyncio
async def test_sql_store_merge_replaces_nested_values_whole(session_maker):
    async with session_maker() as session:
        store = SqlAlchemyAccountStore(session)
        await store.put("influencers", "c1", {"profile": {"bio": "old", "country": "NG"}, "metrics": {"tier": "micro"}})
        merged = await store.merge("influencers", "c1", {"profile": {"bio": "new"}, "searchableNiches": []})

    assert merged == {"profile": {"bio": "new"}, "metrics": {"tier": "micro"}, "searchableNiches": []}


@pytest.mark.asyncio
async def test_merge_many_applies_every_merge(session_maker):
    memory = InMemoryAccountStore()
    async with session_maker() as session:
        sql = SqlAlchemyAccountStore(session)
        for store in (memory, sql):
            await store.put("users", "u1", {"id": "u1", "plan": "pro"})
            user, influencer = await store.merge_many(
                [
                    ("users", "u1", {"onboardingCompleted": True, "updatedAt": SERVER_TIMESTAMP}),
                    ("influencers", "u1", {"profile": {"country": "KE"}}),
                ]
            )
            assert user["plan"] == "pro"
            assert user["onboardingCompleted"] is True
            assert influencer == {"profile": {"country": "KE"}}
