"""
Reconciler - New / Duplicate / Corroboration decision per candidate signal.

Bands over the best same-type cosine similarity:

    sim < dedup_threshold                      -> Created
    sim >= corroborate_threshold, same URL     -> Deduplicated (re-scrape)
    sim >= corroborate_threshold, other URL    -> Corroborated
    gray band, different source domain         -> Corroborated
    gray band, same source domain              -> Deduplicated

Corroboration merges an Evidence entry by URL and recomputes confidence
from evidence count and domain diversity, bounded by max_confidence_boost.
A candidate whose embedding cannot be looked up is deferred to the next
run rather than dropped.
"""
import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Union

from models.domain import Evidence, Signal
from utils.id_generator import generate_signal_id
from utils.url_utils import extract_domain, normalize_url
from weave.errors import EmbeddingUnavailableError
from weave.store import GraphStore
from weave.types import CandidateSignal, OutcomeKind, ReconcileOutcome, WeaveParams

logger = logging.getLogger(__name__)

CONFIDENCE_CEILING = 0.99
BOOST_PER_CORROBORATION = 0.05
BOOST_PER_EXTRA_DOMAIN = 0.05


def decide_outcome(
    candidate_url: str,
    match_url: Optional[str],
    similarity: Optional[float],
    dedup_threshold: float,
    corroborate_threshold: float,
) -> OutcomeKind:
    """Pure band decision; see module docstring."""
    if match_url is None or similarity is None or similarity < dedup_threshold:
        return OutcomeKind.CREATED

    if similarity >= corroborate_threshold:
        if normalize_url(candidate_url) == normalize_url(match_url):
            return OutcomeKind.DEDUPLICATED
        return OutcomeKind.CORROBORATED

    if extract_domain(candidate_url) != extract_domain(match_url):
        return OutcomeKind.CORROBORATED
    return OutcomeKind.DEDUPLICATED


def corroborated_confidence(
    base_confidence: float,
    corroboration_count: int,
    source_diversity: int,
    max_boost: float,
) -> float:
    """base + min(0.05 per corroboration + 0.05 per extra domain, max_boost), capped below 1."""
    boost = (BOOST_PER_CORROBORATION * max(corroboration_count, 0)
             + BOOST_PER_EXTRA_DOMAIN * max(source_diversity - 1, 0))
    return min(base_confidence + min(boost, max_boost), CONFIDENCE_CEILING)


@dataclass
class BatchReport:
    created: int = 0
    deduplicated: int = 0
    corroborated: int = 0
    deferred: int = 0
    rejected: int = 0
    outcomes: List[ReconcileOutcome] = field(default_factory=list)

    def record(self, outcome: ReconcileOutcome):
        self.outcomes.append(outcome)
        if outcome.kind is OutcomeKind.CREATED:
            self.created += 1
        elif outcome.kind is OutcomeKind.DEDUPLICATED:
            self.deduplicated += 1
        else:
            self.corroborated += 1

    def to_dict(self) -> dict:
        return {
            'created': self.created,
            'deduplicated': self.deduplicated,
            'corroborated': self.corroborated,
            'deferred': self.deferred,
            'rejected': self.rejected,
        }


class Reconciler:
    """Folds candidate signals into the graph one at a time."""

    def __init__(self, store: GraphStore, params: Optional[WeaveParams] = None):
        self.store = store
        self.params = params or WeaveParams()

    async def reconcile(self, candidate: CandidateSignal) -> ReconcileOutcome:
        """
        Reconcile one candidate.

        Raises:
            EmbeddingUnavailableError: no embedding, or the similarity lookup failed
        """
        if not candidate.embedding:
            raise EmbeddingUnavailableError(f"Candidate '{candidate.title}' has no embedding")

        try:
            matches = await self.store.find_similar_signals(
                candidate.scope,
                candidate.signal_type,
                candidate.embedding,
                limit=self.params.similar_candidates,
            )
        except EmbeddingUnavailableError:
            raise
        except Exception as e:
            raise EmbeddingUnavailableError(f"Similarity lookup failed: {e}") from e

        best: Optional[Signal] = matches[0][0] if matches else None
        similarity: Optional[float] = matches[0][1] if matches else None

        kind = decide_outcome(
            candidate.source_url,
            best.source_url if best else None,
            similarity,
            self.params.dedup_threshold,
            self.params.corroborate_threshold,
        )

        if kind is OutcomeKind.CREATED:
            outcome = await self._create(candidate, similarity)
        elif kind is OutcomeKind.CORROBORATED:
            outcome = await self._corroborate(candidate, best, similarity)
        else:
            logger.info(
                f"🔁 Deduplicated '{candidate.title[:60]}' into {best.id} "
                f"(sim={similarity:.3f}, {extract_domain(candidate.source_url)})"
            )
            outcome = ReconcileOutcome(kind=kind, signal_id=best.id, similarity=similarity)

        outcome.responses_linked = await self._link_responses(outcome.signal_id, candidate)
        return outcome

    async def _create(self, candidate: CandidateSignal, similarity: Optional[float]) -> ReconcileOutcome:
        signal = await self.store.create_signal(candidate.to_signal(generate_signal_id()))
        await self.store.add_evidence(signal.id, Evidence(source_url=candidate.source_url))
        logger.debug(f"✨ Created signal {signal.id} ({signal.signal_type.value})")
        return ReconcileOutcome(
            kind=OutcomeKind.CREATED,
            signal_id=signal.id,
            similarity=similarity,
            evidence_added=True,
        )

    async def _corroborate(
        self,
        candidate: CandidateSignal,
        existing: Signal,
        similarity: float,
    ) -> ReconcileOutcome:
        added = await self.store.add_evidence(
            existing.id,
            Evidence(source_url=candidate.source_url, similarity=similarity),
        )
        if added:
            evidence = await self.store.list_evidence(existing.id)
            corroboration_count = max(len(evidence) - 1, 0)
            source_diversity = len({e.source_domain for e in evidence if e.source_domain}) or 1
            confidence = corroborated_confidence(
                existing.base_confidence,
                corroboration_count,
                source_diversity,
                self.params.max_confidence_boost,
            )
            await self.store.update_signal_confidence(
                existing.id, confidence, corroboration_count, source_diversity,
            )
            band = "high" if similarity >= self.params.corroborate_threshold else "gray"
            logger.info(
                f"🤝 Corroborated {existing.id} from {extract_domain(candidate.source_url)} "
                f"(sim={similarity:.3f}, band={band}, confidence={confidence:.2f})"
            )

        return ReconcileOutcome(
            kind=OutcomeKind.CORROBORATED,
            signal_id=existing.id,
            similarity=similarity,
            evidence_added=added,
        )

    async def _link_responses(self, signal_id: str, candidate: CandidateSignal) -> int:
        linked = 0
        for hint in candidate.responds_to:
            if await self.store.add_responds_to(signal_id, hint.tension_id, hint.strength, hint.explanation):
                linked += 1
            elif await self.store.get_tension(hint.tension_id) is None:
                logger.warning(f"⚠️  {signal_id} responds to unknown tension {hint.tension_id}")
        return linked

    async def reconcile_batch(
        self,
        candidates: Iterable[Union[CandidateSignal, dict]],
        scope: str,
    ) -> BatchReport:
        """
        Reconcile a batch. Candidates whose embedding lookup fails are
        deferred durably in the store and retried on the next run.
        """
        report = BatchReport()

        for item in candidates:
            if isinstance(item, CandidateSignal):
                candidate = item
            else:
                try:
                    candidate = CandidateSignal.from_dict(item, scope=scope)
                except (KeyError, TypeError, ValueError) as e:
                    report.rejected += 1
                    logger.error(f"❌ Rejected malformed candidate payload: {e}")
                    continue

            try:
                report.record(await self.reconcile(candidate))
            except EmbeddingUnavailableError as e:
                await self.store.defer_candidate(scope, candidate.to_dict(), str(e))
                report.deferred += 1
                logger.warning(f"⏳ Deferred '{candidate.title[:60]}' to next run: {e}")

        logger.info(
            f"📊 Reconciled batch for {scope}: {report.created} created, "
            f"{report.corroborated} corroborated, {report.deduplicated} deduplicated, "
            f"{report.deferred} deferred"
        )
        return report
