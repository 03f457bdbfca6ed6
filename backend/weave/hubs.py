"""
TensionHubFinder - storyless tensions ready to become Stories.

A hub is emitted only when the tension has at least `min_respondents`
RESPONDS_TO edges from at least `min_sources` distinct source keys.
Pure read: deterministic, idempotent, no writes.
"""
import logging
from typing import List, Optional

from utils.url_utils import source_key
from weave.store import GraphStore
from weave.types import TensionHub, WeaveParams

logger = logging.getLogger(__name__)


class TensionHubFinder:

    def __init__(self, store: GraphStore, params: Optional[WeaveParams] = None):
        self.store = store
        self.params = params or WeaveParams()

    async def find_hubs(self, scope: str) -> List[TensionHub]:
        hubs = []
        for tension in await self.store.list_storyless_tensions(scope):
            respondents = await self.store.get_respondents(tension.id)
            keys = {source_key(r.signal.source_url, self.params.source_key) for r in respondents}
            keys.discard('')

            if len(respondents) < self.params.min_respondents:
                continue
            if len(keys) < self.params.min_sources:
                logger.debug(
                    f"Tension {tension.id} has {len(respondents)} respondents "
                    f"but only {len(keys)} source(s)"
                )
                continue

            respondents.sort(key=lambda r: (-r.strength, r.signal_id))
            hubs.append(TensionHub(tension=tension, respondents=respondents, source_keys=keys))

        hubs.sort(key=lambda h: (-len(h.respondents), h.tension_id))
        logger.info(f"🔎 Found {len(hubs)} tension hubs in {scope}")
        return hubs
