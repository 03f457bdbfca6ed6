"""
Builders for weave test data.

Embeddings are small unit vectors so that similarity between two
candidates is exact and controlled by the test.
"""
import math
from typing import Iterable, List, Optional, Tuple

from models.domain import Signal, SignalType, Story, Tension
from utils.id_generator import generate_signal_id, generate_story_id, generate_tension_id
from weave.types import CandidateSignal, ResponseHint

SCOPE = "oakland"
DIM = 16


def unit_vector(index: int, dim: int = DIM) -> List[float]:
    vec = [0.0] * dim
    vec[index % dim] = 1.0
    return vec


def vector_with_similarity(similarity: float, base: int = 0, other: int = 1, dim: int = DIM) -> List[float]:
    """Unit vector whose cosine with unit_vector(base) is exactly `similarity`."""
    vec = [0.0] * dim
    vec[base] = similarity
    vec[other] = math.sqrt(max(1.0 - similarity ** 2, 0.0))
    return vec


def make_candidate(
    title: str,
    source_url: str,
    signal_type: str = "aid",
    index: int = 0,
    embedding: Optional[List[float]] = None,
    responds_to: Iterable[Tuple[str, float]] = (),
    confidence: float = 0.6,
    scope: str = SCOPE,
) -> CandidateSignal:
    return CandidateSignal(
        signal_type=signal_type,
        title=title,
        summary=f"{title} (summary)",
        source_url=source_url,
        scope=scope,
        confidence=confidence,
        embedding=embedding if embedding is not None else unit_vector(index),
        responds_to=[ResponseHint(tension_id=tid, strength=s) for tid, s in responds_to],
    )


def candidate_payload(
    title: str,
    source_url: str,
    signal_type: str = "aid",
    index: int = 0,
    responds_to: Iterable[Tuple[str, float]] = (),
) -> dict:
    """Wire-format candidate, as the extraction service sends it."""
    return make_candidate(title, source_url, signal_type, index, responds_to=responds_to).to_dict()


async def add_tension(store, title: str, tension_id: Optional[str] = None, scope: str = SCOPE) -> Tension:
    return await store.create_tension(Tension(
        id=tension_id or generate_tension_id(),
        title=title,
        summary=f"{title}, unresolved",
        scope=scope,
    ))


async def add_signal(
    store,
    source_url: str,
    signal_type: SignalType = SignalType.AID,
    index: int = 0,
    scope: str = SCOPE,
    title: Optional[str] = None,
) -> Signal:
    return await store.create_signal(Signal(
        id=generate_signal_id(),
        signal_type=signal_type,
        title=title or f"{signal_type.value} from {source_url}",
        source_url=source_url,
        scope=scope,
        embedding=unit_vector(index),
    ))


async def add_respondent(
    store,
    tension: Tension,
    source_url: str,
    signal_type: SignalType = SignalType.AID,
    index: int = 0,
    strength: float = 0.5,
) -> Signal:
    signal = await add_signal(store, source_url, signal_type, index, scope=tension.scope)
    await store.add_responds_to(signal.id, tension.id, strength, "responds")
    return signal


async def add_story(
    store,
    tension: Tension,
    signal_ids: Iterable[str] = (),
    run_seq: int = 1,
    **fields,
) -> Story:
    story, _ = await store.create_story(
        Story(
            id=generate_story_id(),
            tension_id=tension.id,
            scope=tension.scope,
            headline=tension.title,
            summary=tension.summary,
            **fields,
        ),
        list(signal_ids),
        run_seq,
    )
    return story
