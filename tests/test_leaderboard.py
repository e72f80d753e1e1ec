"""Tests for leaderboard ranking and the admin overview."""

import asyncio
from decimal import Decimal

import pytest

from welloh.domain.models import Holding, Portfolio, Role, UserAccount
from welloh.errors import ValidationError
from welloh.services.leaderboard_service import LeaderboardService, rank_accounts, sort_overview


def make_account(account_id, cash, holdings=(), role=Role.USER, name=None):
    return UserAccount(
        id=account_id,
        full_name=name or account_id.title(),
        email=f"{account_id}@example.com",
        role=role,
        portfolio=Portfolio(
            cash=Decimal(cash),
            initial_value=Decimal("100000"),
            holdings=[
                Holding(ticker=t, exchange="NASDAQ", company_name=t, shares=s, purchase_price=Decimal(p))
                for t, s, p in holdings
            ],
        ),
    )


class RecordingLookup:
    def __init__(self, prices):
        self.prices = prices
        self.calls = []

    async def __call__(self, ticker):
        self.calls.append(ticker)
        return Decimal(self.prices[ticker])


@pytest.fixture
def accounts():
    return [
        make_account("alice", "50000", [("AAPL", 100, "100")]),
        make_account("bob", "90000", [("AAPL", 10, "100"), ("MSFT", 10, "100")]),
        make_account("root", "999999", role=Role.ADMIN),
        make_account("carol", "120000"),
    ]


def test_rank_excludes_admins_and_sorts_by_value(accounts):
    lookup = RecordingLookup({"AAPL": "800", "MSFT": "50"})
    ranked = asyncio.run(rank_accounts(accounts, lookup))

    assert [r.account.id for r in ranked] == ["alice", "carol", "bob"]
    assert [r.rank for r in ranked] == [1, 2, 3]
    assert ranked[0].total_value == Decimal("130000.00")
    assert ranked[0].level.name == "Apprentice"
    assert ranked[2].total_value == Decimal("98500.00")


def test_rank_issues_one_lookup_per_ticker(accounts):
    lookup = RecordingLookup({"AAPL": "100", "MSFT": "100"})
    asyncio.run(rank_accounts(accounts, lookup))
    assert sorted(lookup.calls) == ["AAPL", "MSFT"]


def test_rank_without_lookup_uses_cost(accounts):
    ranked = asyncio.run(rank_accounts(accounts, None))
    assert [r.account.id for r in ranked] == ["carol", "bob", "alice"]
    assert [r.total_value for r in ranked] == [
        Decimal("120000.00"),
        Decimal("92000.00"),
        Decimal("60000.00"),
    ]


def test_ranked_row_serialization(accounts):
    ranked = asyncio.run(rank_accounts(accounts[3:], None))
    row = ranked[0].to_dict()
    assert row["rank"] == 1
    assert row["return_percentage"] == "20.00"
    assert "email" not in row
    assert ranked[0].to_dict(include_email=True)["email"] == "carol@example.com"


def test_sort_overview(accounts):
    ranked = asyncio.run(rank_accounts(accounts, None))
    by_name = sort_overview(ranked, "full_name")
    assert [r.account.id for r in by_name] == ["alice", "bob", "carol"]

    by_return = sort_overview(ranked, "return_percentage", descending=True)
    assert by_return[0].account.id == "carol"

    with pytest.raises(ValidationError):
        sort_overview(ranked, "password")


def test_service_reads_store(store):
    asyncio.run(store.create_account("Zed", "zed@example.com", "secret123"))
    asyncio.run(store.create_account("Root", "root@example.com", "secret123", role=Role.ADMIN))

    service = LeaderboardService(store)
    rows = asyncio.run(service.leaderboard())
    assert [r.account.full_name for r in rows] == ["Zed"]
    assert rows[0].total_value == Decimal("100000.00")
