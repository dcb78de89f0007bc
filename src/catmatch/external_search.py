"""Ask the completion service where product titles sit in external sites' taxonomies.

Each site page is fetched once, item titles are sent three at a time together
with the (truncated) HTML, and the model answers with a flat JSON object of
``{"title": "Category or not found"}``.  Anything unparsable degrades to
``"not found"`` for the whole batch.

Usage
-----
    # Preview guesses for the first 30 uncategorized products
    python -m catmatch.external_search --url https://shop-a.example --url https://shop-b.example

    # Assign guesses that name an existing category
    python -m catmatch.external_search --url https://shop-a.example --apply
"""
from __future__ import annotations

import argparse
import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Iterable, Sequence

import requests

from .catalog import CategoryStore, ProductStore, find_category_by_name
from .completion_client import EXTRACTION_PARAMS, EXTRACTION_TIMEOUT, CompletionClient
from .config import REPO_ROOT, load_env_file
from .errors import PersistenceError, TransportError
from .models import NOT_FOUND, Item, ItemCategoryGuess
from .prompts import MAX_TITLES_PER_BATCH, build_batch_extraction_prompt

logger = logging.getLogger(__name__)

MAX_SITE_URLS = 2
SITE_FETCH_TIMEOUT = 15.0


def _extract_object_block(text: str) -> str | None:
    """Return the first balanced ``{...}`` region, ignoring braces inside JSON strings."""
    start = text.find("{")
    if start == -1:
        return None
    depth = 0
    in_string = False
    escape_next = False
    for i in range(start, len(text)):
        ch = text[i]
        if escape_next:
            escape_next = False
            continue
        if ch == "\\" and in_string:
            escape_next = True
            continue
        if ch == '"':
            in_string = not in_string
            continue
        if in_string:
            continue
        if ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return text[start : i + 1]
    return None


def parse_category_map(text: str | None) -> dict[str, str] | None:
    """Decode a flat title -> category map from a model response, or None."""
    if not text or not isinstance(text, str):
        return None
    defenced = re.sub(r"^```(?:json)?\s*\n?", "", text.strip(), count=1, flags=re.IGNORECASE)
    defenced = re.sub(r"\n?\s*```\s*$", "", defenced).strip()
    block = _extract_object_block(defenced)
    if block is None:
        return None
    try:
        parsed = json.loads(block)
    except (json.JSONDecodeError, ValueError):
        return None
    if not isinstance(parsed, dict):
        return None
    mapping: dict[str, str] = {}
    for key, value in parsed.items():
        if isinstance(value, str) and value.strip():
            mapping[str(key)] = value.strip()
        else:
            mapping[str(key)] = NOT_FOUND
    return mapping


def _lookup_title(mapping: dict[str, str], title: str) -> str:
    if title in mapping:
        return mapping[title]
    folded = title.strip().casefold()
    for key, value in mapping.items():
        if key.strip().casefold() == folded:
            return value
    return NOT_FOUND


def batch_items(items: Sequence[Item], size: int) -> Iterable[Sequence[Item]]:
    for i in range(0, len(items), size):
        yield items[i : i + size]


class ExternalSiteResolver:
    def __init__(
        self,
        client: CompletionClient,
        *,
        session: requests.Session | None = None,
        fetch_timeout: float = SITE_FETCH_TIMEOUT,
        completion_timeout: float = EXTRACTION_TIMEOUT,
        batch_size: int = MAX_TITLES_PER_BATCH,
    ) -> None:
        self.client = client
        self.session = session or requests.Session()
        self.fetch_timeout = fetch_timeout
        self.completion_timeout = completion_timeout
        self.batch_size = min(max(batch_size, 1), MAX_TITLES_PER_BATCH)
        self.stats = {"pages_fetched": 0, "pages_failed": 0, "batches": 0, "batch_failures": 0}

    def fetch_page(self, url: str) -> str | None:
        try:
            response = self.session.get(url, timeout=self.fetch_timeout)
            response.raise_for_status()
        except requests.RequestException as exc:
            logger.warning("skipping %s: %s", url, exc)
            self.stats["pages_failed"] += 1
            return None
        body = response.text or ""
        if not body.strip():
            logger.warning("skipping %s: empty body", url)
            self.stats["pages_failed"] += 1
            return None
        self.stats["pages_fetched"] += 1
        return body

    def extract_batch(self, titles: Sequence[str], html: str, instructions: str | None = None) -> dict[str, str]:
        """Map each title to a category name or ``"not found"``; never raises on bad output."""
        self.stats["batches"] += 1
        prompt = build_batch_extraction_prompt(titles, html, instructions)
        result = self.client.complete(prompt, EXTRACTION_PARAMS, timeout=self.completion_timeout)
        mapping = parse_category_map(result.text) if result.ok else None
        if mapping is None:
            reason = result.message if not result.ok else "response was not a JSON object"
            logger.warning("extraction batch fell back to '%s': %s", NOT_FOUND, reason)
            self.stats["batch_failures"] += 1
            return {title: NOT_FOUND for title in titles}
        return {title: _lookup_title(mapping, title) for title in titles}

    def check_sites_for_items(
        self,
        items: Sequence[Item],
        site_urls: Sequence[str],
        instructions: str | None = None,
    ) -> list[ItemCategoryGuess]:
        urls = [url.strip() for url in site_urls if url and url.strip()]
        if not urls:
            raise ValueError("At least one site URL is required.")
        if len(urls) > MAX_SITE_URLS:
            raise ValueError(f"At most {MAX_SITE_URLS} site URLs are supported, got {len(urls)}.")

        guesses: dict[int, ItemCategoryGuess] = {
            item.id: ItemCategoryGuess(item_id=item.id, title=item.title) for item in items
        }
        for url in urls:
            pending = [item for item in items if not guesses[item.id].found]
            if not pending:
                break
            html = self.fetch_page(url)
            if html is None:
                continue
            for batch in batch_items(pending, self.batch_size):
                mapping = self.extract_batch([item.title for item in batch], html, instructions)
                for item in batch:
                    category = mapping.get(item.title, NOT_FOUND)
                    if category.strip().lower() == NOT_FOUND:
                        continue
                    if not guesses[item.id].found:
                        guesses[item.id] = ItemCategoryGuess(item.id, item.title, category, url)
        return [guesses[item.id] for item in items]


@dataclass
class AssignmentReport:
    assigned: list[dict[str, Any]] = field(default_factory=list)
    errors: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"assigned": self.assigned, "errors": self.errors, "ok": not self.errors}


def assign_found_categories(
    products: ProductStore,
    categories: CategoryStore,
    updates: Iterable[tuple[int, str]],
) -> AssignmentReport:
    """Write operator-confirmed (item id, category name) pairs back to the store."""
    report = AssignmentReport()
    vocabulary = categories.list_categories(include_empty=True)
    for item_id, name in updates:
        name = str(name or "").strip()
        if not item_id or not name or name.lower() == NOT_FOUND:
            report.errors.append({"item_id": item_id, "category": name, "message": "Missing product id or category."})
            continue
        category = find_category_by_name(vocabulary, name)
        if category is None:
            report.errors.append({"item_id": item_id, "category": name, "message": "Unknown category."})
            continue
        try:
            products.assign_category(int(item_id), category.id)
        except (PersistenceError, TransportError) as exc:
            report.errors.append({"item_id": item_id, "category": name, "message": str(exc)})
            continue
        report.assigned.append({"item_id": item_id, "category": category.name, "category_id": category.id})
    return report


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Look up uncategorized products on external sites.")
    parser.add_argument("--url", action="append", default=[], help="External site URL (max 2).")
    parser.add_argument("--instructions", default="", help="Extra hints for the model.")
    parser.add_argument("--limit", type=int, default=30, help="How many uncategorized products to check.")
    parser.add_argument("--apply", action="store_true", help="Assign guesses that name an existing category.")
    return parser


def main() -> int:
    from .catalog import WooCommerceCatalog
    from .config import load_categorizer_settings

    load_env_file(REPO_ROOT / ".env")
    args = build_parser().parse_args()
    settings = load_categorizer_settings()
    client = CompletionClient.from_config()
    catalog = WooCommerceCatalog.from_config()
    resolver = ExternalSiteResolver(
        client,
        fetch_timeout=settings.site_fetch_timeout,
        completion_timeout=settings.batch_completion_timeout,
    )

    items = catalog.list_uncategorized_items(max(args.limit, 1), 0, order_by="id")
    print(f"[start] Checking {len(items)} product(s) against {len(args.url)} site(s)", flush=True)
    guesses = resolver.check_sites_for_items(items, args.url, args.instructions or None)
    for guess in guesses:
        tag = "found" if guess.found else "skip"
        print(f"[{tag}] {guess.title} -> {guess.category}", flush=True)

    found = [(guess.item_id, guess.category) for guess in guesses if guess.found]
    if args.apply and found:
        report = assign_found_categories(catalog, catalog, found)
        for error in report.errors:
            print(f"[warn] {error['item_id']} '{error['category']}': {error['message']}", flush=True)
        print(f"[summary] assigned={len(report.assigned)} errors={len(report.errors)}", flush=True)
    print(f"[summary] found={len(found)}/{len(guesses)} stats={json.dumps(resolver.stats)}", flush=True)
    print("[done] External search complete.", flush=True)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
