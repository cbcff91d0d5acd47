"""
Content Execution Tool

Stateless second model pass that turns a structured brief into a marketing
artifact. The draft is streamed to the client as ``artifact-*`` events while
it is generated and persisted as an artifact record when it completes.
"""

import logging
import time
import uuid
from typing import TYPE_CHECKING, Any, Literal, Optional

from pydantic import BaseModel, Field, model_validator

from ..errors import RunCancelled, TransportError
from ..models import StopReason, ToolResult
from ..orchestration.decoder import ResponseDecoder
from ..providers.record_store import RecordStore
from .registry import ToolContext, ToolKind, ToolRegistry

if TYPE_CHECKING:
    from ..providers.model import ModelProvider

logger = logging.getLogger(__name__)

ARTIFACTS_TABLE = "artifacts"

ContentType = Literal["email", "ad", "landing-page", "script"]

REQUIRED_FIELDS: dict[str, tuple[str, ...]] = {
    "email": ("purpose", "target_audience", "key_message", "cta", "tone"),
    "ad": (
        "platform",
        "ad_type",
        "objective",
        "target_audience",
        "product_service",
        "unique_value",
        "cta",
        "tone",
    ),
    "landing-page": (
        "purpose",
        "product_service",
        "target_audience",
        "unique_value",
        "key_benefits",
        "cta",
        "tone",
    ),
    "script": ("purpose", "target_audience", "key_message", "cta", "tone"),
}

SYSTEM_PROMPTS = {
    "email": (
        "You are an expert email copywriter. Write one conversion-focused email with "
        "a subject line, a strong opening, short paragraphs and a single clear CTA."
    ),
    "ad": (
        "You are an expert advertising copywriter. Write platform-appropriate ad copy "
        "with a headline, primary text and a clear CTA."
    ),
    "landing-page": (
        "You are an expert conversion copywriter. Write a landing page with a hero "
        "section, benefits, social proof and a clear CTA."
    ),
    "script": (
        "You are an expert scriptwriter. Write a script with a hook, body and CTA, "
        "including delivery cues where useful."
    ),
}


class ContentBrief(BaseModel):
    """Union of the per-content-type brief fields."""

    purpose: Optional[str] = None
    target_audience: Optional[str] = None
    key_message: Optional[str] = None
    cta: Optional[str] = None
    tone: Optional[str] = None
    platform: Optional[str] = Field(None, description="Ad platform (Facebook, Google, ...)")
    ad_type: Optional[str] = Field(None, description="single image, carousel, video, text")
    objective: Optional[str] = Field(None, description="awareness, consideration, conversion")
    product_service: Optional[str] = None
    unique_value: Optional[str] = None
    key_benefits: Optional[list[str]] = None
    social_proof: Optional[str] = None
    format: Optional[str] = Field(None, description="Script format (youtube, tiktok, vsl, ...)")
    duration: Optional[str] = None
    frameworks: Optional[Any] = Field(None, description="Canon frameworks to apply")
    brand_guidelines: Optional[Any] = None
    additional_context: Optional[str] = None


class ContentExecutionArgs(BaseModel):
    content_type: ContentType = Field(..., description="Type of content to generate")
    brief: ContentBrief = Field(..., description="Structured brief for the content")

    @model_validator(mode="after")
    def check_required_fields(self) -> "ContentExecutionArgs":
        missing = [
            name
            for name in REQUIRED_FIELDS[self.content_type]
            if not getattr(self.brief, name)
        ]
        if missing:
            raise ValueError(
                f"{self.content_type} brief is missing: {', '.join(missing)}"
            )
        return self


def artifact_title(content_type: str, brief: ContentBrief) -> str:
    if content_type == "email":
        return f"Email: {brief.purpose}"
    if content_type == "ad":
        return f"{brief.platform} Ad: {brief.objective}"
    if content_type == "landing-page":
        return f"Landing Page: {brief.product_service}"
    return f"{brief.format or 'Video'} Script: {brief.purpose}"


def build_user_prompt(content_type: str, brief: ContentBrief) -> str:
    lines = [f"Create {content_type} content from this brief:", ""]
    for name, value in brief.model_dump(exclude_none=True).items():
        label = name.replace("_", " ").title()
        if isinstance(value, list):
            lines.append(f"{label}:")
            lines.extend(f"- {item}" for item in value)
        else:
            lines.append(f"{label}: {value}")
    return "\n".join(lines)


class ContentGenerator:
    """
    Runs the generation model profile and stores the resulting artifact.

    Args:
        provider: Model provider configured with the generator profile
        store: Record store for artifact records
    """

    def __init__(self, provider: "ModelProvider", store: RecordStore):
        self._provider = provider
        self._store = store

    def generate(self, args: ContentExecutionArgs, context: ToolContext) -> ToolResult:
        prefix = f"[{context.run_id}]"
        artifact_id = str(uuid.uuid4())
        title = artifact_title(args.content_type, args.brief)
        events = context.events
        start = time.time()

        context.progress(f"Generating {args.content_type} content...")
        events.artifact_begin(artifact_id, args.content_type, title)

        parts: list[str] = []

        def on_text(fragment: str) -> None:
            parts.append(fragment)
            events.artifact_chunk(artifact_id, fragment)

        messages = [
            {"role": "system", "content": SYSTEM_PROMPTS[args.content_type]},
            {"role": "user", "content": build_user_prompt(args.content_type, args.brief)},
        ]
        decoder = ResponseDecoder(on_text=on_text, label=context.run_id)

        try:
            for increment in self._provider.stream_turn(messages):
                if context.cancelled:
                    self._save(args, context, artifact_id, title, "".join(parts), "partial", {})
                    logger.info(f"{prefix} Generation cancelled, partial artifact {artifact_id} saved")
                    raise RunCancelled(f"run {context.run_id} cancelled during generation")
                decoder.feed(increment)
        except TransportError as e:
            events.artifact_end(artifact_id, status="failed")
            logger.error(f"{prefix} Content generation failed: {e}")
            return ToolResult.fail(f"content generation failed: {e}", artifact_id=artifact_id)

        turn = decoder.finish()
        content = turn.text
        elapsed_ms = int((time.time() - start) * 1000)
        metadata = {
            "model": self._provider.model,
            "input_tokens": turn.input_tokens,
            "output_tokens": turn.output_tokens,
            "generation_time_ms": elapsed_ms,
            "truncated": turn.stop_reason == StopReason.LENGTH_LIMIT,
        }

        status = "failed"
        try:
            self._save(args, context, artifact_id, title, content, "complete", metadata)
            status = "complete"
        finally:
            events.artifact_end(artifact_id, status=status, title=title)

        logger.info(
            f"{prefix} Artifact {artifact_id} '{title}' generated "
            f"({len(content)} chars, {turn.output_tokens} tokens, {elapsed_ms}ms)"
        )
        return ToolResult.ok(
            f"Generated {args.content_type} artifact '{title}' (artifact_id: {artifact_id}).\n\n"
            f"{content}",
            artifact_id=artifact_id,
            title=title,
            content_type=args.content_type,
            input_tokens=turn.input_tokens,
            output_tokens=turn.output_tokens,
        )

    def _save(
        self,
        args: ContentExecutionArgs,
        context: ToolContext,
        artifact_id: str,
        title: str,
        content: str,
        status: str,
        metadata: dict,
    ) -> dict:
        return self._store.create_record(
            ARTIFACTS_TABLE,
            {
                "id": artifact_id,
                "conversation_id": context.conversation_id,
                "message_id": context.message_id,
                "user_id": context.user_id,
                "business_profile_id": context.business_profile_id,
                "artifact_type": args.content_type,
                "title": title,
                "content": content,
                "status": status,
                "brief": args.brief.model_dump(exclude_none=True),
                "metadata": metadata,
            },
        )


def register(registry: ToolRegistry, generator: ContentGenerator) -> None:
    """Register content_execution with the registry."""
    registry.register(
        name="content_execution",
        description=(
            "Generate a marketing artifact (email, ad, landing-page or script) from a "
            "structured brief. Call once you have loaded canon and gathered the brand "
            "and offer details the brief needs."
        ),
        arguments=ContentExecutionArgs,
        handler=generator.generate,
        kind=ToolKind.GENERATION,
    )
