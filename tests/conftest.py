"""
Pytest configuration and shared fixtures.
"""

import asyncio
import copy
from datetime import datetime
from typing import Dict, Optional

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient

from bookcatalog.config import settings
from bookcatalog.core.aggregation import AggregationEngine
from bookcatalog.core.review_store import BookState, ReviewStore, UserToken, reviews_from_json, reviews_to_json
from bookcatalog.database import close_database, init_database


class FakeReviewStore:
    """
    In-memory stand-in for ReviewStore.

    Every call yields to the event loop so concurrent engine calls interleave
    the way they would against a real database.
    """

    def __init__(self):
        self.books: Dict[int, dict] = {}
        self.users: Dict[int, UserToken] = {}
        self.persist_calls = 0
        self.conflicts_to_inject = 0
        self.persist_gate: Optional[asyncio.Event] = None
        self.persist_started = asyncio.Event()
        self.persist_finished = asyncio.Event()

    def add_book(self, book_id, reviews=None, total_rating=None, total_reviews=None):
        reviews = [dict(r) for r in (reviews or [])]
        self.books[book_id] = {
            "reviews": reviews,
            "total_rating": sum(r["rating"] for r in reviews) if total_rating is None else total_rating,
            "total_reviews": len(reviews) if total_reviews is None else total_reviews,
            "version": 0,
        }

    def add_user(self, user_id, token, issued_at=None):
        self.users[user_id] = UserToken(token=token, issued_at=issued_at or datetime.utcnow())

    def row(self, book_id):
        return self.books[book_id]

    async def load_book(self, book_id):
        await asyncio.sleep(0)
        row = self.books.get(book_id)
        if row is None:
            return None
        return BookState(
            book_id=book_id,
            reviews=reviews_from_json(book_id, copy.deepcopy(row["reviews"])),
            total_rating=row["total_rating"],
            total_reviews=row["total_reviews"],
            version=row["version"],
        )

    async def persist_book_aggregate(self, book_id, reviews, total_rating, total_reviews, expected_version):
        self.persist_started.set()
        if self.persist_gate is not None:
            await self.persist_gate.wait()
        await asyncio.sleep(0)
        self.persist_calls += 1
        row = self.books[book_id]

        if self.conflicts_to_inject > 0:
            # another writer got there first
            self.conflicts_to_inject -= 1
            row["version"] += 1
            return False

        if row["version"] != expected_version:
            return False

        row.update(
            reviews=reviews_to_json(reviews),
            total_rating=total_rating,
            total_reviews=total_reviews,
            version=row["version"] + 1,
        )
        self.persist_finished.set()
        return True

    async def load_user_token(self, user_id):
        await asyncio.sleep(0)
        return self.users.get(user_id)


@pytest.fixture
def fake_store():
    return FakeReviewStore()


@pytest.fixture
def engine(fake_store):
    return AggregationEngine(fake_store)


@pytest.fixture
def test_settings(tmp_path, monkeypatch):
    """Point the global settings at a throwaway database and disable file logging."""
    monkeypatch.setattr(settings.database, "url", f"sqlite+aiosqlite:///{tmp_path / 'catalog.db'}")
    monkeypatch.setattr(settings.logging, "file", "")
    monkeypatch.setattr(settings.security, "bcrypt_rounds", 4)
    return settings


@pytest.fixture
def client(test_settings):
    """Create test client with a fresh database."""
    from bookcatalog.web.app import app

    with TestClient(app) as test_client:
        yield test_client


@pytest_asyncio.fixture
async def session_maker(tmp_path):
    maker = await init_database(f"sqlite+aiosqlite:///{tmp_path / 'store.db'}")
    yield maker
    await close_database()


@pytest.fixture
def sql_store(session_maker):
    return ReviewStore(session_maker, timeout=5.0)


@pytest.fixture
def make_user(client):
    """Return a callable that signs up a user and returns the response body."""

    def _signup(username="reader", name="Reader", password="secret123"):
        response = client.post("/signup", json={"username": username, "name": name, "password": password})
        assert response.status_code == 201, response.text
        return response.json()

    return _signup


@pytest.fixture
def registered_user(make_user):
    return make_user()


@pytest.fixture
def book_id(client, registered_user):
    response = client.post(
        "/books",
        json={"user_id": registered_user["user_id"], "book_name": "Dune", "author_name": "Frank Herbert"},
        headers={"Authorization": f"Bearer {registered_user['token']}"},
    )
    assert response.status_code == 201, response.text
    return response.json()["book"]["id"]
