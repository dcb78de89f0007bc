"""Catalog collaborators: the product/category stores the categorizer reads and writes.

``ProductStore`` and ``CategoryStore`` are the only surfaces the job and the
external-site resolver depend on.  ``WooCommerceCatalog`` implements both
over the WooCommerce REST API (``/wp-json/wc/v3``).

The uncategorized pool is every product still tagged with the sentinel
category, including products that also carry other categories.  The REST
filter cannot express "only the sentinel", and offset paging has to run over
the same set the store counts.  Assigning a category drops the stale sentinel
tag, so such products leave the pool after one pass.

Configuration (environment variables or ``configs/config.json``)
----------------------------------------------------------------
  WOO_URL              : store base URL, e.g. https://shop.example.com
  WOO_CONSUMER_KEY     : REST API consumer key
  WOO_CONSUMER_SECRET  : REST API consumer secret
  UNCATEGORIZED_SLUG   : slug of the sentinel category (default: uncategorized)
"""
from __future__ import annotations

import logging
import unicodedata
from typing import Any, Protocol, Sequence

import requests

from .config import env_or_config
from .errors import AuthorizationError, ConfigError, PersistenceError, TransportError
from .models import Category, Item

logger = logging.getLogger(__name__)

API_PREFIX = "/wp-json/wc/v3"
MAX_PER_PAGE = 100


def normalize_name(name: str) -> str:
    text = unicodedata.normalize("NFKC", str(name or ""))
    return " ".join(text.strip().casefold().split())


class ProductStore(Protocol):
    def list_uncategorized_items(self, limit: int, offset: int, order_by: str = "id") -> list[Item]:
        ...

    def count_uncategorized_items(self) -> int:
        ...

    def get_item(self, item_id: int) -> Item:
        ...

    def assign_category(self, item_id: int, category_id: int) -> None:
        ...


class CategoryStore(Protocol):
    def list_categories(self, include_empty: bool = True) -> list[Category]:
        ...

    def ensure_category(self, name: str) -> Category:
        ...


def find_category_by_name(categories: Sequence[Category], name: str) -> Category | None:
    wanted = normalize_name(name)
    if not wanted:
        return None
    for category in categories:
        if normalize_name(category.name) == wanted:
            return category
    return None


class WooCommerceCatalog:
    def __init__(
        self,
        base_url: str,
        consumer_key: str,
        consumer_secret: str,
        *,
        uncategorized_slug: str = "uncategorized",
        product_status: str = "publish",
        timeout: float = 30,
        session: requests.Session | None = None,
    ) -> None:
        if not base_url.strip():
            raise ConfigError("WOO_URL is empty. Set it in .env or the environment.")
        if not consumer_key.strip() or not consumer_secret.strip():
            raise ConfigError("WOO_CONSUMER_KEY / WOO_CONSUMER_SECRET are empty.")
        root = base_url.rstrip("/")
        self.api_url = root if root.endswith(API_PREFIX) else f"{root}{API_PREFIX}"
        self.auth = (consumer_key.strip(), consumer_secret.strip())
        self.uncategorized_slug = uncategorized_slug
        self.product_status = product_status
        self.timeout = timeout
        self.session = session or requests.Session()
        self._uncategorized_id: int | None = None

    @classmethod
    def from_config(cls, session: requests.Session | None = None) -> "WooCommerceCatalog":
        return cls(
            str(env_or_config("WOO_URL", "store.url", "")),
            str(env_or_config("WOO_CONSUMER_KEY", "store.consumer_key", "")),
            str(env_or_config("WOO_CONSUMER_SECRET", "store.consumer_secret", "")),
            uncategorized_slug=str(env_or_config("UNCATEGORIZED_SLUG", "store.uncategorized_slug", "uncategorized")),
            product_status=str(env_or_config("WOO_PRODUCT_STATUS", "store.product_status", "publish")),
            session=session,
        )

    # ------------------------------------------------------------------
    # HTTP helpers
    # ------------------------------------------------------------------

    def request(self, method: str, path: str, *, write: bool = False, **kwargs: Any) -> requests.Response:
        url = f"{self.api_url}/{path.lstrip('/')}"
        failure = PersistenceError if write else TransportError
        try:
            response = self.session.request(method, url, auth=self.auth, timeout=self.timeout, **kwargs)
        except requests.RequestException as exc:
            raise failure(f"{method} {path} failed: {exc}") from exc
        if response.status_code in {401, 403}:
            raise AuthorizationError(f"{method} {path} was rejected with HTTP {response.status_code}.")
        if not 200 <= response.status_code < 300:
            raise failure(f"{method} {path} returned HTTP {response.status_code}: {response.text[:200]}")
        return response

    @staticmethod
    def decode_json(response: requests.Response, method: str, path: str, *, write: bool = False) -> Any:
        try:
            return response.json()
        except ValueError as exc:
            failure = PersistenceError if write else TransportError
            raise failure(f"{method} {path} returned a non-JSON body.") from exc

    def request_json(self, method: str, path: str, *, write: bool = False, **kwargs: Any) -> Any:
        response = self.request(method, path, write=write, **kwargs)
        return self.decode_json(response, method, path, write=write)

    def get_paginated(self, path: str, params: dict[str, Any] | None = None) -> list[dict[str, Any]]:
        items: list[dict[str, Any]] = []
        page = 1
        while True:
            query = dict(params or {}, per_page=MAX_PER_PAGE, page=page)
            response = self.request("GET", path, params=query)
            data = self.decode_json(response, "GET", path)
            if not isinstance(data, list):
                break
            items.extend(row for row in data if isinstance(row, dict))
            total_pages = int(response.headers.get("X-WP-TotalPages", "1") or 1)
            if page >= total_pages or not data:
                break
            page += 1
        return items

    # ------------------------------------------------------------------
    # Mapping
    # ------------------------------------------------------------------

    @staticmethod
    def _to_category(row: dict[str, Any]) -> Category:
        return Category(
            id=int(row["id"]),
            name=str(row.get("name") or ""),
            description=str(row.get("description") or ""),
            slug=str(row.get("slug") or ""),
        )

    @staticmethod
    def _to_item(row: dict[str, Any]) -> Item:
        category_ids = frozenset(int(c["id"]) for c in row.get("categories") or [] if isinstance(c, dict) and "id" in c)
        return Item(
            id=int(row["id"]),
            title=str(row.get("name") or ""),
            description=str(row.get("description") or row.get("short_description") or ""),
            category_ids=category_ids,
        )

    def uncategorized_category_id(self) -> int:
        if self._uncategorized_id is None:
            data = self.request_json("GET", "products/categories", params={"slug": self.uncategorized_slug})
            if not isinstance(data, list) or not data:
                raise ConfigError(f"Sentinel category '{self.uncategorized_slug}' does not exist in the store.")
            self._uncategorized_id = int(data[0]["id"])
        return self._uncategorized_id

    def _uncategorized_query(self) -> dict[str, Any]:
        return {"category": self.uncategorized_category_id(), "status": self.product_status}

    # ------------------------------------------------------------------
    # ProductStore
    # ------------------------------------------------------------------

    def list_uncategorized_items(self, limit: int, offset: int, order_by: str = "id") -> list[Item]:
        if limit <= 0:
            return []
        params = dict(
            self._uncategorized_query(),
            per_page=min(limit, MAX_PER_PAGE),
            offset=max(offset, 0),
            orderby=order_by,
            order="asc",
        )
        data = self.request_json("GET", "products", params=params)
        if not isinstance(data, list):
            raise TransportError("Product listing returned an unexpected payload.")
        return [self._to_item(row) for row in data if isinstance(row, dict)]

    def count_uncategorized_items(self) -> int:
        params = dict(self._uncategorized_query(), per_page=1, page=1)
        response = self.request("GET", "products", params=params)
        total = response.headers.get("X-WP-Total")
        if total is None:
            data = self.decode_json(response, "GET", "products")
            return len(data) if isinstance(data, list) else 0
        try:
            return int(total)
        except ValueError as exc:
            raise TransportError(f"GET products returned an invalid X-WP-Total header: {total!r}") from exc

    def get_item(self, item_id: int) -> Item:
        data = self.request_json("GET", f"products/{int(item_id)}")
        if not isinstance(data, dict):
            raise TransportError(f"Product {item_id} returned an unexpected payload.")
        return self._to_item(data)

    def assign_category(self, item_id: int, category_id: int) -> None:
        item = self.get_item(item_id)
        sentinel = self.uncategorized_category_id()
        wanted = (set(item.category_ids) | {int(category_id)}) - {sentinel}
        if wanted == set(item.category_ids):
            return
        payload = {"categories": [{"id": cid} for cid in sorted(wanted)]}
        self.request_json("PUT", f"products/{int(item_id)}", write=True, json=payload)
        logger.info("product %s assigned to category %s", item_id, category_id)

    # ------------------------------------------------------------------
    # CategoryStore
    # ------------------------------------------------------------------

    def list_categories(self, include_empty: bool = True) -> list[Category]:
        params = {"hide_empty": "false" if include_empty else "true", "orderby": "id", "order": "asc"}
        rows = self.get_paginated("products/categories", params)
        return sorted((self._to_category(row) for row in rows), key=lambda category: category.id)

    def ensure_category(self, name: str) -> Category:
        existing = find_category_by_name(self.list_categories(include_empty=True), name)
        if existing is not None:
            return existing
        data = self.request_json("POST", "products/categories", write=True, json={"name": name.strip()})
        if not isinstance(data, dict):
            raise PersistenceError(f"Creating category '{name}' returned an unexpected payload.")
        logger.info("created category '%s' (id=%s)", name, data.get("id"))
        return self._to_category(data)
