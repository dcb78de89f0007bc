from __future__ import annotations

import json
from typing import Any, Callable

import pytest
import requests

from catmatch.catalog import find_category_by_name
from catmatch.errors import ErrorKind, PersistenceError
from catmatch.models import Category, CompletionErr, CompletionOk, Item

SENTINEL_ID = 1


class FakeCatalog:
    """In-memory ProductStore + CategoryStore with WooCommerce-like set-add assignment."""

    def __init__(self, categories: list[Category], items: list[Item]) -> None:
        self.categories = {category.id: category for category in categories}
        self.items = {item.id: item for item in items}
        self.assignments: list[tuple[int, int]] = []
        self.created: list[str] = []
        self.fail_ids: set[int] = set()
        self.count_error: Exception | None = None

    def _uncategorized(self) -> list[Item]:
        return sorted(
            (item for item in self.items.values() if SENTINEL_ID in item.category_ids),
            key=lambda item: item.id,
        )

    def list_uncategorized_items(self, limit: int, offset: int, order_by: str = "id") -> list[Item]:
        return self._uncategorized()[offset : offset + limit]

    def count_uncategorized_items(self) -> int:
        if self.count_error is not None:
            raise self.count_error
        return len(self._uncategorized())

    def get_item(self, item_id: int) -> Item:
        return self.items[item_id]

    def assign_category(self, item_id: int, category_id: int) -> None:
        if item_id in self.fail_ids:
            raise PersistenceError(f"write for product {item_id} failed")
        item = self.items[item_id]
        wanted = (set(item.category_ids) | {category_id}) - {SENTINEL_ID}
        self.items[item_id] = Item(item.id, item.title, item.description, frozenset(wanted))
        self.assignments.append((item_id, category_id))

    def list_categories(self, include_empty: bool = True) -> list[Category]:
        return sorted(self.categories.values(), key=lambda category: category.id)

    def ensure_category(self, name: str) -> Category:
        existing = find_category_by_name(self.list_categories(), name)
        if existing is not None:
            return existing
        category = Category(max(self.categories) + 1, name, "", name.lower())
        self.categories[category.id] = category
        self.created.append(name)
        return category

    def category_of(self, item_id: int) -> set[int]:
        return set(self.items[item_id].category_ids)


class ScriptedClient:
    """Completion client double: answers come from a callable over the prompt."""

    model = "test-model"

    def __init__(self, answer: Callable[[str], Any]) -> None:
        self.answer = answer
        self.prompts: list[str] = []

    def complete(self, prompt, params=None, *, timeout=30):
        self.prompts.append(prompt)
        reply = self.answer(prompt)
        if isinstance(reply, (CompletionOk, CompletionErr)):
            return reply
        return CompletionOk(str(reply))


def transport_failure(_prompt: str) -> CompletionErr:
    return CompletionErr(ErrorKind.TRANSPORT, "Completion request failed: timed out")


class FakeResponse:
    def __init__(self, status_code: int = 200, payload: Any = None, headers: dict[str, str] | None = None, text: str | None = None):
        self.status_code = status_code
        self._payload = payload
        self.headers = headers or {}
        if text is None:
            text = json.dumps(payload) if payload is not None else ""
        self.text = text
        self.content = text.encode("utf-8")

    def json(self):
        if self._payload is None:
            return json.loads(self.text)
        return self._payload

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"HTTP {self.status_code}")


def make_categories() -> list[Category]:
    return [
        Category(SENTINEL_ID, "Uncategorized", "", "uncategorized"),
        Category(10, "Home & Garden", "Outdoor living", "home-garden"),
        Category(11, "Garden Tools", "Spades, rakes and shears", "garden-tools"),
        Category(12, "Kitchen", "Cookware and utensils", "kitchen"),
    ]


def make_items(count: int) -> list[Item]:
    return [Item(i, f"Widget {i}", f"Description {i}", frozenset({SENTINEL_ID})) for i in range(1, count + 1)]


@pytest.fixture
def categories() -> list[Category]:
    return make_categories()


@pytest.fixture
def make_catalog():
    def _make(count: int = 12, categories: list[Category] | None = None) -> FakeCatalog:
        return FakeCatalog(categories if categories is not None else make_categories(), make_items(count))

    return _make


@pytest.fixture(autouse=True)
def isolated_config(tmp_path, monkeypatch):
    config_file = tmp_path / "config.json"
    config_file.write_text("{}", encoding="utf-8")
    monkeypatch.setenv("CATMATCH_CONFIG_FILE", str(config_file))
    return config_file
