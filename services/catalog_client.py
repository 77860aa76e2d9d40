"""
Activity Catalog Client

Adapters for the external activity catalog:
- candidate batches for a tag set (plus the base model on session start)
- fire-and-forget training notifications for the base model
- the full embeddings listing used for embedding lookups

The HTTP client uses blocking ``requests`` calls run in worker threads so the
duel controller can await them without stalling the event loop.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

import requests

from config.config import CatalogConfig
from models.candidate_pool import Activity

logger = logging.getLogger(__name__)


class CatalogError(RuntimeError):
    """Raised when the external catalog cannot serve a request."""


@dataclass
class CatalogBatch:
    """One batch of candidates returned by the catalog."""
    activities: List[Activity] = field(default_factory=list)
    session_id: Optional[str] = None
    base_weights: Optional[Dict[str, Any]] = None


class CatalogSource:
    """Interface the duel controller relies on."""

    async def fetch_batch(self, tags: List[str]) -> CatalogBatch:
        raise NotImplementedError

    async def submit_training(self, session_id: str, chosen_activity_id: Any, tags: List[str]) -> None:
        raise NotImplementedError

    async def fetch_embeddings(self) -> List[Activity]:
        raise NotImplementedError


class CatalogClient(CatalogSource):
    """HTTP client for the activity catalog backend."""

    def __init__(self, config: CatalogConfig = None, http_session: requests.Session = None):
        self.config = config if config is not None else CatalogConfig()
        self.http = http_session if http_session is not None else requests.Session()

    def _request(self, method: str, path: str, **kwargs) -> Any:
        """Perform one HTTP call and decode the JSON body."""
        url = self.config.get_url(path)
        try:
            response = self.http.request(method, url, timeout=self.config.request_timeout, **kwargs)
            response.raise_for_status()
        except requests.exceptions.ConnectionError:
            raise CatalogError(f"Cannot connect to catalog at {self.config.base_url}")
        except requests.exceptions.Timeout:
            raise CatalogError(f"Catalog request timed out: {method} {url}")
        except requests.exceptions.RequestException as e:
            raise CatalogError(f"Catalog request failed: {e}")

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise CatalogError(f"Invalid JSON from {url}: {e}")

    async def fetch_batch(self, tags: List[str]) -> CatalogBatch:
        """POST the tag list to the game start endpoint."""
        data = await asyncio.to_thread(self._request, 'POST', self.config.game_start_path, json=list(tags))
        return parse_game_start(data)

    async def submit_training(self, session_id: str, chosen_activity_id: Any, tags: List[str]) -> None:
        """Notify the base model trainer of a duel winner."""
        payload = {
            'session_id': session_id,
            'chosen_activity_id': chosen_activity_id,
            'context_tags': list(tags)
        }
        await asyncio.to_thread(self._request, 'POST', self.config.game_train_path, json=payload)

    async def fetch_embeddings(self) -> List[Activity]:
        """Fetch every activity that has a known embedding."""
        data = await asyncio.to_thread(self._request, 'GET', self.config.embeddings_path)
        if not isinstance(data, dict) or not isinstance(data.get('activities'), list):
            raise CatalogError("Invalid embeddings response format")

        activities = [Activity.from_dict(item) for item in data['activities']]
        logger.info(
            f"Loaded {len(activities)} activities with embeddings ({data.get('embedding_dimension', 'unknown')}D)"
        )
        return activities


def parse_game_start(data: Any) -> CatalogBatch:
    """
    Validate and convert a game start response.

    Expected shape: ``{'session_id': str, 'recommendations': [...], 'base_ai_weights': {...} | null}``
    """
    if not isinstance(data, dict) or not isinstance(data.get('recommendations'), list):
        raise CatalogError("Invalid response format from catalog: missing recommendations")

    try:
        activities = [Activity.from_dict(item) for item in data['recommendations']]
    except (KeyError, TypeError, ValueError) as e:
        raise CatalogError(f"Invalid activity record in catalog response: {e}")

    return CatalogBatch(
        activities=activities,
        session_id=data.get('session_id'),
        base_weights=data.get('base_ai_weights')
    )


class StaticCatalog(CatalogSource):
    """
    In-memory catalog serving successive slices of a fixed activity list.

    Used for offline demos and local development. Each call to fetch_batch
    returns the next ``batch_size`` activities; once exhausted it returns empty
    batches. Training notifications are recorded, not sent anywhere.
    """

    def __init__(self, activities: Iterable[Activity], batch_size: int = 12,
                 base_weights: Optional[Dict[str, Any]] = None, session_id: str = 'static-session'):
        self.activities = list(activities)
        self.batch_size = batch_size
        self.base_weights = base_weights
        self.session_id = session_id
        self.cursor = 0
        self.fetch_count = 0
        self.training_events: List[Dict[str, Any]] = []
        self.fail_next = 0
        self.delay = 0.0

    async def fetch_batch(self, tags: List[str]) -> CatalogBatch:
        self.fetch_count += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_next > 0:
            self.fail_next -= 1
            raise CatalogError("Static catalog configured to fail")

        batch = self.activities[self.cursor:self.cursor + self.batch_size]
        self.cursor += len(batch)
        return CatalogBatch(activities=batch, session_id=self.session_id, base_weights=self.base_weights)

    async def submit_training(self, session_id: str, chosen_activity_id: Any, tags: List[str]) -> None:
        self.training_events.append({
            'session_id': session_id,
            'chosen_activity_id': chosen_activity_id,
            'context_tags': list(tags)
        })

    async def fetch_embeddings(self) -> List[Activity]:
        return [activity for activity in self.activities if activity.has_embedding]
