"""
Tests for tool result formatting.

Scenarios:
1. Fresh batch of products
2. Continuation batch after "show more"
3. Empty first page ("nothing specific found")
4. Empty later page ("that's everything")
5. FAQ formatting
"""

import os
import sys
import pytest

# Add project root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from product_assistant.formatter import format_faqs, format_product, format_products
from product_assistant.models import FaqResult, ProductResult


# =============================================================================
# Test Fixtures
# =============================================================================

@pytest.fixture
def banners():
    """Three banner products as the gateway would return them."""
    return [
        ProductResult(
            product_ref="BAN-001",
            title="13oz Vinyl Banner",
            description="Durable outdoor banner with hemmed edges.",
            price=24.5,
            url="https://example.com/banners/13oz",
            similarity=0.91
        ),
        ProductResult(
            product_ref="BAN-002",
            title="Mesh Banner",
            price=39.0,
            similarity=0.84
        ),
        ProductResult(
            product_ref="BAN-003",
            similarity=0.72
        ),
    ]


# =============================================================================
# Product results
# =============================================================================

class TestProductFormatting:
    """Formatting of product search results."""

    def test_fresh_batch_marker(self, banners):
        text = format_products(banners, "banners", 0)
        assert text.startswith("[NEW RESULTS] Found 3 product(s) for \"banners\".")
        assert "[CONTINUATION]" not in text

    def test_continuation_marker(self, banners):
        text = format_products(banners[:2], "banners", 3)
        assert text.startswith("[CONTINUATION]")
        assert "results 4-5" in text

    def test_one_block_per_product(self, banners):
        text = format_products(banners, "banners", 0)
        blocks = text.split("\n\n")
        assert len(blocks) == 4
        assert blocks[1].startswith("Product: 13oz Vinyl Banner")
        assert blocks[3].startswith("Product: BAN-003")

    def test_only_present_fields_listed(self, banners):
        block = format_product(banners[1])
        assert "Price: $39.00" in block
        assert "Description" not in block
        assert "URL" not in block
        assert "Details" not in block

    def test_blank_fields_omitted(self):
        block = format_product(ProductResult(
            product_ref="BAN-004",
            title="Pole Banner",
            description="   ",
            similarity=0.5
        ))
        assert "Description" not in block

    def test_whitespace_title_falls_back_to_reference(self):
        block = format_product(ProductResult(product_ref="BAN-005", title="   ", similarity=0.5))

        assert block.splitlines()[0] == "Product: BAN-005"
        assert "Reference" not in block

    def test_relevance_percentage(self, banners):
        assert "(Relevance: 91.0%)" in format_product(banners[0])

    def test_empty_first_page(self):
        text = format_products([], "holographic stickers", 0)
        assert text.startswith("[NO SPECIFIC RESULTS]")
        assert "general knowledge" in text
        assert "[NO MORE RESULTS]" not in text

    def test_empty_later_page(self):
        text = format_products([], "banners", 3)
        assert text.startswith("[NO MORE RESULTS]")
        assert "everything" in text

    def test_formatting_is_deterministic(self, banners):
        assert format_products(banners, "banners", 3) == format_products(banners, "banners", 3)


# =============================================================================
# FAQ results
# =============================================================================

class TestFaqFormatting:
    """Formatting of FAQ search results."""

    def test_faq_blocks(self):
        faqs = [
            FaqResult(
                question="Can decals be used outdoors?",
                answer="Yes, our laminated decals last 5+ years outside.",
                product_ref="DEC-010",
                similarity=0.88
            )
        ]
        text = format_faqs(faqs, "outdoor decals")

        assert text.startswith("[NEW RESULTS] Found 1 FAQ entry")
        assert "Q: Can decals be used outdoors?" in text
        assert "A: Yes, our laminated decals last 5+ years outside." in text
        assert "Related product: DEC-010" in text

    def test_empty_faqs(self):
        text = format_faqs([], "warranty")
        assert text.startswith("[NO SPECIFIC RESULTS]")


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
