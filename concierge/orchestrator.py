"""Layout orchestration using OpenAI chat completions.

Provides:
- format_context: Serialize retrieved evidence into explicit "Field: value" records.
- build_messages: System prompt + trimmed history + the templated user message.
- parse_orchestrator_response: Extract the layout plan, explanation, follow-ups and the
  contact flag from model text. Never raises.
- orchestrate: Run the model call with a timeout; any failure degrades to an apology
  with an empty layout and the contact call-to-action.

Layout items are extracted here, not validated; the assembler validates components.
"""
import asyncio
import json
import logging
import re
from typing import Any, Dict, List, Optional, Sequence

from openai import APIError

from concierge.config import settings
from concierge.embedding import get_client
from concierge.performance import track
from concierge.prompts import NO_CONTENT_BLOCK, SYSTEM_PROMPT, USER_TEMPLATE
from concierge.schemas import ChatMessage, LayoutComponent, LayoutPlan, OrchestratorOutput, RetrievedContext

logger = logging.getLogger(__name__)

ERROR_EXPLANATION = (
    "I apologize, but I encountered an issue while assembling your pitch deck. "
    "Please try again or contact our Strategy Lead directly for assistance."
)
PARSE_FAILURE_EXPLANATION = "I encountered an issue assembling your pitch deck. Please try rephrasing your query."
NO_CONTENT_EXPLANATION = (
    "I couldn't find work in our portfolio that matches this request yet. "
    "Please contact our Strategy Lead for a personalized consultation."
)
NO_CONTENT_SIGNALS = ("contact our strategy lead", "no relevant")

JSON_BLOCK = re.compile(r"```json\s*([\s\S]*?)\s*```")
FOLLOW_UP_SECTION = re.compile(
    r"(?:\*\*Want to explore.*?\*\*|Follow-up questions:)([\s\S]*?)(?:$|\n\n)",
    re.IGNORECASE,
)
FOLLOW_UP_SPLIT = re.compile(r"\*\*Want to explore|Follow-up questions:", re.IGNORECASE)
BULLET = re.compile(r"^\s*(?:[-•*]|\d+[.)])\s*")


def fallback_output(explanation: str = ERROR_EXPLANATION) -> OrchestratorOutput:
    """Empty layout with the contact call-to-action."""
    return OrchestratorOutput(layout_plan=LayoutPlan(), explanation=explanation, contact_cta=True)


def format_context(context: RetrievedContext) -> str:
    """Render evidence as numbered records the model can read without inference.

    Args:
        context: Retrieved chunks, visual assets and metrics.

    Returns:
        str: Sections separated by "---", or the NO RELEVANT CONTENT FOUND block.
    """
    sections: List[str] = []

    if context.chunks:
        records = []
        for i, c in enumerate(context.chunks, start=1):
            records.append(
                "\n".join(
                    [
                        f"[Chunk {i}]",
                        f"Case Study: {c.document_title}",
                        f"Client: {c.client_name or 'N/A'}",
                        f"Document Type: {c.document_type}",
                        f"Slug: {c.slug or 'N/A'}",
                        f"Chunk Type: {c.chunk_type}",
                        f"Vimeo URL: {c.vimeo_url or 'None'}",
                        f"Thumbnail URL: {c.thumbnail_url or 'None'}",
                        f"Content: {c.content}",
                        f"Relevance Score: {c.combined_score:.3f}",
                    ]
                )
            )
        sections.append("## RETRIEVED CONTENT CHUNKS\n" + "\n\n".join(records))

    if context.visual_assets:
        records = []
        for i, a in enumerate(context.visual_assets, start=1):
            records.append(
                "\n".join(
                    [
                        f"[Asset {i}]",
                        f"Type: {a.asset_type}",
                        f"Caption: {a.caption or 'N/A'}",
                        f"Alt Text: {a.alt_text or 'N/A'}",
                        f"Description: {a.description or 'N/A'}",
                        f"Signed URL: {a.signed_url or 'UNAVAILABLE'}",
                        f"Relevance Score: {a.similarity_score:.3f}",
                    ]
                )
            )
        sections.append("## AVAILABLE VISUAL ASSETS\n" + "\n\n".join(records))

    if context.related_metrics:
        lines = [
            f"- {m.label}: {m.value}" + (f" ({m.context})" if m.context else "")
            for m in context.related_metrics
        ]
        sections.append("## AVAILABLE METRICS\n" + "\n".join(lines))

    if not sections:
        return NO_CONTENT_BLOCK
    return "\n\n---\n\n".join(sections)


def build_messages(
    query: str,
    context: RetrievedContext,
    history: Optional[Sequence[ChatMessage]] = None,
) -> List[Dict[str, str]]:
    """Assemble chat messages: system, the last MAX_HISTORY_MESSAGES turns, then the request."""
    messages = [{"role": "system", "content": SYSTEM_PROMPT}]
    recent = list(history or [])[-settings.MAX_HISTORY_MESSAGES:] if settings.MAX_HISTORY_MESSAGES > 0 else []
    messages.extend({"role": m.role, "content": m.content} for m in recent)
    messages.append({"role": "user", "content": USER_TEMPLATE.format(query=query, context=format_context(context))})
    return messages


def _extract_items(layout: List[Any]) -> List[LayoutComponent]:
    items: List[LayoutComponent] = []
    for raw in layout:
        if not isinstance(raw, dict) or not isinstance(raw.get("component"), str):
            logger.debug("Dropping non-component layout item: %r", raw)
            continue
        props = raw.get("props")
        items.append(LayoutComponent(component=raw["component"], props=props if isinstance(props, dict) else {}))
    return items


def _extract_follow_ups(text: str) -> List[str]:
    match = FOLLOW_UP_SECTION.search(text)
    if not match:
        return []
    questions = []
    for line in match.group(1).splitlines():
        q = BULLET.sub("", line).strip()
        if len(q) > 10 and q.endswith("?"):
            questions.append(q)
    return questions


def parse_orchestrator_response(text: str) -> OrchestratorOutput:
    """Parse model output into an OrchestratorOutput.

    Args:
        text: Raw model text: a ```json block, an explanation, optional follow-ups.

    Returns:
        OrchestratorOutput: Parsed result. Invalid JSON or a malformed "layout" yields the
            parse-failure apology with an empty layout and contact_cta=True. Text without a
            JSON block keeps the text as the explanation with an empty layout.
    """
    items: List[LayoutComponent] = []
    explanation = text.strip()

    match = JSON_BLOCK.search(text)
    if match:
        try:
            data = json.loads(match.group(1))
        except json.JSONDecodeError as e:
            logger.warning("Failed to parse layout JSON: %s", e)
            return fallback_output(PARSE_FAILURE_EXPLANATION)
        layout = data.get("layout", []) if isinstance(data, dict) else None
        if not isinstance(layout, list):
            logger.warning("Layout plan has no usable 'layout' list")
            return fallback_output(PARSE_FAILURE_EXPLANATION)
        items = _extract_items(layout)
        explanation = JSON_BLOCK.sub("", text, count=1).strip()

    follow_ups = _extract_follow_ups(explanation)
    explanation = FOLLOW_UP_SPLIT.split(explanation)[0].strip()
    lowered = explanation.lower()
    contact_cta = not items or any(signal in lowered for signal in NO_CONTENT_SIGNALS)

    return OrchestratorOutput(
        layout_plan=LayoutPlan(layout=items),
        explanation=explanation,
        suggested_follow_ups=follow_ups or None,
        contact_cta=contact_cta,
    )


async def orchestrate(
    query: str,
    context: RetrievedContext,
    history: Optional[Sequence[ChatMessage]] = None,
) -> OrchestratorOutput:
    """Ask the model for a layout plan grounded in the retrieved context.

    Args:
        query: User query text.
        context: Evidence bundle from the retriever.
        history: Prior conversation turns (trimmed to MAX_HISTORY_MESSAGES).

    Returns:
        OrchestratorOutput: Parsed plan, or a fallback with contact_cta=True when the
            context is empty, the call times out, or the API fails. Not retried.

    Raises:
        ConfigurationError: If the OpenAI API key is not configured.
    """
    if context.is_empty:
        logger.info("Empty context; returning no-content response without a model call")
        return fallback_output(NO_CONTENT_EXPLANATION)

    client = get_client()
    messages = build_messages(query, context, history)

    with track("orchestrator_time"):
        try:
            resp = await asyncio.wait_for(
                client.chat.completions.create(
                    model=settings.OPENAI_MODEL,
                    messages=messages,
                    temperature=settings.LLM_TEMPERATURE,
                    max_tokens=settings.MAX_OUTPUT_TOKENS,
                ),
                timeout=settings.LLM_TIMEOUT_SECONDS,
            )
        except asyncio.TimeoutError:
            logger.warning("Orchestrator call timed out after %ss", settings.LLM_TIMEOUT_SECONDS)
            return fallback_output()
        except APIError as e:
            logger.error("Orchestrator call failed: %s", e)
            return fallback_output()

    content = (resp.choices[0].message.content or "") if resp.choices else ""
    if not content.strip():
        logger.warning("Orchestrator returned no text content")
        return fallback_output()
    return parse_orchestrator_response(content)
