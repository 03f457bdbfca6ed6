"""
OpenAI Synthesizer - lede + narrative for one story

Implements weave.enrichment.Synthesizer. Failures and timeouts are
raised as SynthesisError; the scheduler leaves the story pending.
"""
import asyncio
import json
import logging
from typing import List, Optional

from openai import AsyncOpenAI

from config.settings import get_settings
from models.domain import Signal
from weave.enrichment import SynthesisRequest, SynthesisResult
from weave.errors import SynthesisError

logger = logging.getLogger(__name__)

MAX_SIGNALS_IN_PROMPT = 40


def format_signals(signals: List[Signal]) -> str:
    """One line per signal: most confident first, then by date."""
    def sort_key(s: Signal):
        date_val = s.content_date.isoformat() if s.content_date else 'z'
        return (-s.confidence, date_val, s.id)

    lines = []
    for s in sorted(signals, key=sort_key)[:MAX_SIGNALS_IN_PROMPT]:
        when = s.content_date.strftime('%Y-%m-%d') if s.content_date else 'undated'
        lines.append(
            f"[{s.id}] ({s.signal_type.value}, {s.source_domain or 'unknown source'}, {when}) "
            f"{s.title}: {s.summary}"
        )
    return "\n".join(lines)


class OpenAISynthesizer:
    """Story synthesis via chat completions in JSON mode."""

    def __init__(
        self,
        openai_client: AsyncOpenAI = None,
        model: str = None,
        timeout_seconds: float = None,
    ):
        settings = get_settings()
        self.openai_client = openai_client or AsyncOpenAI(api_key=settings.openai_api_key)
        self.model = model or settings.openai_model
        self.timeout_seconds = timeout_seconds or settings.openai_timeout_seconds

    def build_prompt(self, request: SynthesisRequest) -> str:
        story = request.story
        guidance = []
        if request.perspective_hint:
            guidance.append(request.perspective_hint)
        guidance.extend(request.editorial_notes)
        guidance_str = "\n".join(f"- {g}" for g in guidance) or "- None"

        return f"""Write a short news-style synthesis of this local story.

Story: {story.headline}
Tension: {story.summary}
Arc: {story.arc.value}
Status: {story.status.value} ({story.source_domain_count} sources, {story.type_diversity} signal types)

SIGNALS (each has an ID in brackets):
{format_signals(request.signals)}

EDITORIAL GUIDANCE:
{guidance_str}

Rules:
- Only state what the signals support; cite signal IDs in brackets after statements
- Keep distinct perspectives distinct; do not merge opposing accounts
- The lede is one or two sentences

Return JSON:
{{"lede": "...", "narrative": "..."}}"""

    async def synthesize(self, request: SynthesisRequest) -> SynthesisResult:
        prompt = self.build_prompt(request)
        try:
            response = await asyncio.wait_for(
                self.openai_client.chat.completions.create(
                    model=self.model,
                    messages=[{"role": "user", "content": prompt}],
                    response_format={"type": "json_object"},
                    temperature=0.3,
                ),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            raise SynthesisError(f"Synthesis timed out after {self.timeout_seconds}s") from e
        except Exception as e:
            raise SynthesisError(f"Synthesis call failed: {e}") from e

        result = parse_synthesis(response.choices[0].message.content)
        logger.info(
            f"📖 Synthesized {request.story.id}: {len(result.narrative)} chars "
            f"from {len(request.signals)} signals"
        )
        return result


def parse_synthesis(content: Optional[str]) -> SynthesisResult:
    try:
        data = json.loads(content or "")
    except json.JSONDecodeError as e:
        raise SynthesisError(f"Synthesis returned invalid JSON: {e}") from e

    lede = (data.get('lede') or "").strip()
    narrative = (data.get('narrative') or "").strip()
    if not lede or not narrative:
        raise SynthesisError("Synthesis response missing lede or narrative")
    return SynthesisResult(lede=lede, narrative=narrative)
