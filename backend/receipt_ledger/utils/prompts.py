"""Prompt templates for receipt extraction.

Keeping the prompt in a central location makes it easier to iterate on
its content and keeps the extraction service free of long string
literals. The prompt is rebuilt per call because it embeds the caller's
category list.
"""

from __future__ import annotations

from textwrap import dedent
from typing import Iterable

from receipt_ledger.models.schemas import Category


def format_category_list(categories: Iterable[Category]) -> str:
    """Render categories as ``- Name (id: ...)`` lines."""
    lines = [f"- {cat.name} (id: {cat.id})" for cat in categories]
    return "\n".join(lines) if lines else "- (no categories available)"


def build_extraction_prompt(categories: Iterable[Category]) -> str:
    """Return the extraction prompt for a receipt image.

    The prompt lists every available category with its id and tells the
    model to categorise items one by one, group items of the same category
    into one expense, list the grouped items in the note, report amounts
    as integer minor units and dates as ``YYYY-MM-DD``.
    """
    template = dedent(
        """
        You are a receipt OCR system. Analyze this receipt image and extract
        transaction information.

        AVAILABLE CATEGORIES:
        {categories}

        CATEGORIZATION RULES:
        1. Analyze EACH purchased item on the receipt individually and assign
           it to one of the AVAILABLE CATEGORIES based on what the item is,
           not on the fact that it was bought together with other items.
        2. Food and household goods often share a receipt; keep them apart.

        GROUPING RULES:
        1. Create a separate expense for each category that appears on the receipt.
        2. Within a category, combine all of its items into ONE expense.
        3. In the "note" field, list EVERY item included in that expense.

        AMOUNTS:
        - Report every amount as an integer number of minor currency units
          (cents, grosze, pence): multiply the printed amount by 100.
        - Examples: $50.25 = 5025, 141.76 PLN = 14176.

        DATES:
        - Report the purchase date in YYYY-MM-DD format, e.g. "2022-01-25".

        OUTPUT FORMAT (valid JSON only):
        {{
          "merchant": "Store Name",
          "date": "YYYY-MM-DD",
          "totalAmount": 14176,
          "expenses": [
            {{
              "amount": 12000,
              "categoryId": "groceries-category-id",
              "categoryName": "Groceries",
              "note": "milk, eggs, bread",
              "confidence": 0.95
            }},
            {{
              "amount": 2176,
              "categoryId": "household-category-id",
              "categoryName": "Household",
              "note": "paper towels, dish soap",
              "confidence": 0.9
            }}
          ],
          "confidence": 0.92
        }}

        Use only category ids from the list above; use null for "categoryId"
        when no category fits. "confidence" is your certainty between 0 and 1.

        IMPORTANT: Return ONLY valid JSON, no additional text or explanation.
        """
    ).strip()
    return template.format(categories=format_category_list(categories))
