"""
Canon Tool

Loads the proprietary frameworks, templates and compliance rules that guide
content generation for a content type. Canon changes rarely, so lookups go
through the long-lived ``canon`` cache class, scoped per business profile.
"""

import logging
from typing import Literal

from pydantic import BaseModel, Field

from ..cache import DataClass, TieredCache
from ..providers.record_store import RecordStore
from .registry import ToolContext, ToolKind, ToolRegistry

logger = logging.getLogger(__name__)

CANON_TABLE = "canon_items"

CanonCategory = Literal["template", "framework", "compliance", "all"]
CanonContentType = Literal["email", "ad", "landing-page", "script", "general"]


class FetchCanonArgs(BaseModel):
    category: CanonCategory = Field(..., description="Category of canon to fetch")
    content_type: CanonContentType = Field(
        ..., description="Content type to fetch canon for"
    )


class CanonLibrary:
    """Cached access to canon items."""

    def __init__(self, store: RecordStore, cache: TieredCache):
        self._store = store
        self._cache = cache

    def fetch(
        self,
        business_profile_id: str,
        content_type: str,
        category: str = "all",
    ) -> list[dict]:
        """
        Active canon items for a content type (plus ``general`` items),
        highest priority first.
        """
        key = f"profile:{business_profile_id}:{content_type}:{category}"

        def load() -> list[dict]:
            filters: dict = {
                "business_profile_id": business_profile_id,
                "content_type": sorted({content_type, "general"}),
                "is_active": True,
            }
            if category != "all":
                filters["category"] = category
            rows = self._store.query_records(CANON_TABLE, filters, order_by="-priority")
            logger.debug(f"Loaded {len(rows)} canon items for {content_type}/{category}")
            return [_strip_embedding(r) for r in rows]

        return self._cache.get_or_compute(DataClass.CANON, key, load)

    def compliance_rules(self, business_profile_id: str, content_type: str) -> list[dict]:
        """Flattened rule list from every compliance item for a content type."""
        rules: list[dict] = []
        for item in self.fetch(business_profile_id, content_type, "compliance"):
            for rule in (item.get("content") or {}).get("rules", []):
                # Free-text rules are guidance only and cannot be evaluated.
                if not isinstance(rule, dict):
                    continue
                rules.append({"source": item.get("name", ""), **rule})
        return rules

    def invalidate(self, business_profile_id: str) -> int:
        """Drop every cached canon lookup for a business profile."""
        removed = self._cache.invalidate_class(
            DataClass.CANON, f"profile:{business_profile_id}:"
        )
        logger.info(f"Invalidated {removed} canon cache entries for {business_profile_id}")
        return removed


def _strip_embedding(record: dict) -> dict:
    return {k: v for k, v in record.items() if k != "embedding"}


def format_canon_for_llm(items: list[dict]) -> str:
    """Render canon items as model-readable guidance."""
    if not items:
        return "No canon found for this content type. Use general best practices."

    sections = []
    for item in items:
        header = f"## {item.get('name', 'Untitled')} ({item.get('category', 'canon')})"
        lines = [header]
        if item.get("description"):
            lines.append(item["description"])
        if item.get("instructions"):
            lines.append(f"Instructions: {item['instructions']}")
        content = item.get("content") or {}
        for key, value in content.items():
            if key == "rules":
                for rule in value:
                    if not isinstance(rule, dict):
                        lines.append(f"- Rule: {rule}")
                        continue
                    lines.append(f"- Rule ({rule.get('severity', 'error')}): {_describe_rule(rule)}")
            elif isinstance(value, list):
                lines.append(f"{key}:")
                lines.extend(f"- {v}" for v in value)
            else:
                lines.append(f"{key}: {value}")
        sections.append("\n".join(lines))
    return "\n\n".join(sections)


def _describe_rule(rule: dict) -> str:
    if rule.get("message"):
        return rule["message"]
    return f"{rule.get('type')} {rule.get('value')}"


def register(registry: ToolRegistry, library: CanonLibrary) -> None:
    """Register fetch_canon with the registry."""

    def handle(args: FetchCanonArgs, context: ToolContext) -> dict:
        context.progress(f"Loading {args.content_type} canon...")
        items = library.fetch(context.business_profile_id, args.content_type, args.category)
        rule_count = sum(
            len((item.get("content") or {}).get("rules", [])) or 1 for item in items
        )
        context.insight(
            "canon_summary",
            f"Canon loaded: {rule_count} rules",
            count=len(items),
            content_type=args.content_type,
            category=args.category,
        )
        return {"items": items}

    registry.register(
        name="fetch_canon",
        description=(
            "Load proprietary frameworks, templates, and compliance rules for content "
            "generation. Call this EARLY after understanding user intent to guide all "
            "subsequent tool usage."
        ),
        arguments=FetchCanonArgs,
        handler=handle,
        kind=ToolKind.READ_AUGMENTATION,
        formatter=lambda output: format_canon_for_llm(output["items"]),
    )
