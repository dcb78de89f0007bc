"""Prompt rendering for category classification and external-site extraction."""
from __future__ import annotations

from typing import Iterable, Sequence

from rapidfuzz import fuzz

from .models import NOT_FOUND, Category, Item

HTML_CHAR_BUDGET = 6000
MAX_TITLES_PER_BATCH = 3


def _category_lines(categories: Iterable[Category]) -> str:
    lines = []
    for category in categories:
        description = " ".join((category.description or "").split())
        lines.append(f"- {category.name}: {description}" if description else f"- {category.name}")
    return "\n".join(lines)


def select_prompt_categories(item: Item, categories: Sequence[Category], limit: int) -> list[Category]:
    """Keep at most ``limit`` categories, preferring those closest to the item text.

    The returned list keeps the input (id) order so prompts stay deterministic.
    """
    if limit <= 0 or len(categories) <= limit:
        return list(categories)
    item_text = f"{item.title} {item.description}".lower()
    scored = [
        (fuzz.token_set_ratio(item_text, f"{category.name} {category.description}".lower()), index)
        for index, category in enumerate(categories)
    ]
    # Highest score first; ties fall back to enumeration order.
    scored.sort(key=lambda pair: (-pair[0], pair[1]))
    keep = sorted(index for _score, index in scored[:limit])
    return [categories[index] for index in keep]


def build_classification_prompt(item: Item, categories: Sequence[Category]) -> str:
    description = (item.description or "").strip()
    return f"""
Given the following product title and description, select the most relevant category from the list.

Product Title: {item.title}
Product Description: {description}

Categories:
{_category_lines(categories)}

Respond with ONLY the category name exactly as written in the list, on a single line.
Do not wrap it in quotes or punctuation. No commentary.""".strip()


def truncate_html(html: str, budget: int = HTML_CHAR_BUDGET) -> str:
    return (html or "")[: max(budget, 0)]


def build_batch_extraction_prompt(
    titles: Sequence[str],
    html_body: str,
    instructions: str | None = None,
) -> str:
    if not titles:
        raise ValueError("At least one product title is required.")
    if len(titles) > MAX_TITLES_PER_BATCH:
        raise ValueError(f"At most {MAX_TITLES_PER_BATCH} titles fit in one extraction prompt, got {len(titles)}.")
    example = ", ".join(f'"{title}": "Category or {NOT_FOUND}"' for title in titles)
    guidance = f"\nInstructions for searching categories: {instructions.strip()}\n" if instructions and instructions.strip() else ""
    title_lines = "\n".join(f"- {title}" for title in titles)
    return f"""
Given the following HTML and a list of product titles, for each product determine if it is present on the site
and, if so, what its category is. If the page does not list categories directly, use any sitemap, menu,
breadcrumb or category listing it links to.
{guidance}
Product Titles:
{title_lines}

Return ONLY a flat JSON object with each product title, exactly as written above, as a key and either the
category name or the string "{NOT_FOUND}" as the value, like:
{{{example}}}

HTML:
{truncate_html(html_body)}""".strip()
