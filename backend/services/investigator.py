"""
OpenAI Investigator - curiosity research for thin tensions

Implements weave.curiosity.Investigator. The model is shown the tension,
its current respondents and a pool of nearby candidate signals, and
picks which candidates also respond to the tension. Only pool ids are
honoured by the caller.
"""
import asyncio
import json
import logging
from typing import Optional

from openai import AsyncOpenAI

from config.settings import get_settings
from weave.curiosity import DiscoveredRespondent, InvestigationRequest, InvestigationResult
from weave.errors import InvestigationError

logger = logging.getLogger(__name__)


class OpenAIInvestigator:

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

    def build_prompt(self, request: InvestigationRequest) -> str:
        respondents_str = "\n".join(
            f"- [{r.signal_id}] ({r.signal.signal_type.value}, {r.signal.source_domain}) {r.signal.title}"
            for r in request.respondents
        ) or "- none yet"
        candidates_str = "\n".join(
            f"- [{s.id}] ({s.signal_type.value}, {s.source_domain}) {s.title}: {s.summary[:200]}"
            for s in request.candidates
        ) or "- none"

        return f"""A local tension currently has one-sided evidence. Decide whether it is worth
investigating and which candidate signals respond to it.

TENSION: {request.tension.title}
{request.tension.summary}

ANCHOR SIGNAL: [{request.anchor.id}] {request.anchor.title}

CURRENT RESPONDENTS:
{respondents_str}

CANDIDATE SIGNALS:
{candidates_str}

A signal responds to the tension if it addresses, reports on, or reacts to it
(aid offered, a gathering about it, a need it creates, a notice concerning it).

Return JSON:
{{
  "curious": true/false,
  "reason": "one sentence",
  "respondents": [
    {{"signal_id": "...", "strength": 0.0-1.0, "explanation": "..."}}
  ]
}}"""

    async def investigate(self, request: InvestigationRequest) -> InvestigationResult:
        prompt = self.build_prompt(request)
        try:
            response = await asyncio.wait_for(
                self.openai_client.chat.completions.create(
                    model=self.model,
                    messages=[{"role": "user", "content": prompt}],
                    response_format={"type": "json_object"},
                    temperature=0.1,
                ),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            raise InvestigationError(f"Investigation timed out after {self.timeout_seconds}s") from e
        except Exception as e:
            raise InvestigationError(f"Investigation call failed: {e}") from e

        result = parse_investigation(response.choices[0].message.content)
        logger.info(
            f"🔎 Investigated {request.tension.id}: curious={result.curious}, "
            f"{len(result.respondents)} respondents proposed"
        )
        return result


def parse_investigation(content: Optional[str]) -> InvestigationResult:
    try:
        data = json.loads(content or "")
    except json.JSONDecodeError as e:
        raise InvestigationError(f"Investigation returned invalid JSON: {e}") from e

    respondents = []
    for item in data.get('respondents') or []:
        signal_id = item.get('signal_id') if isinstance(item, dict) else None
        if not signal_id:
            continue
        strength = min(max(float(item.get('strength', 0.5)), 0.0), 1.0)
        respondents.append(DiscoveredRespondent(
            signal_id=signal_id,
            strength=strength,
            explanation=item.get('explanation') or "",
        ))

    return InvestigationResult(
        curious=bool(data.get('curious')),
        respondents=respondents,
        reason=data.get('reason') or "",
    )
