"""
Portfolio Client Sessions.

Python rendition of the two browser clients of the service:

- `EditSession`: the owner's editor. Loads the private document, keeps a
  `draft` the caller edits, saves it as a whole-document replace and follows
  the owner's room so saves made from another tab show up here.
- `PublicViewer`: fetches a published document by username and follows the
  same room for live refresh.

Merge Rules (no field-level merge, last writer wins):
- A pushed document replaces `saved` unless its `updatedAt` is older than the
  one already held; stale pushes are ignored.
- The editor's `draft` follows `saved` only while there are no pending local
  edits. With pending edits the draft is left alone and `remote_changed` is
  set so a UI can offer to reload; the next `save()` overwrites the remote
  version.
- A viewer that receives an unpublished document drops it and calls its
  listeners with an empty document.
"""

import copy
import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from clients.api_client import PortfolioAPIClient
from clients.realtime_client import PortfolioSubscriber
from providers.asset_provider import AssetFile

logger = logging.getLogger(__name__)

Listener = Callable[[Dict[str, Any]], None]


def _timestamp(document: Optional[Dict[str, Any]]) -> Optional[datetime]:
    value = (document or {}).get("updatedAt")
    if not isinstance(value, str):
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00")).replace(tzinfo=None)
    except ValueError:
        return None


def is_stale(incoming: Dict[str, Any], current: Optional[Dict[str, Any]]) -> bool:
    """True when `incoming` is older than `current`"""
    incoming_at = _timestamp(incoming)
    current_at = _timestamp(current)
    if incoming_at is None or current_at is None:
        return False
    return incoming_at < current_at


class _LiveDocument:
    """Holds the last known saved document and notifies listeners on change"""

    def __init__(self, client: PortfolioAPIClient):
        self.client = client
        self.saved: Optional[Dict[str, Any]] = None
        self.subscriber: Optional[PortfolioSubscriber] = None
        self._listeners: List[Listener] = []

    def on_change(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def _notify(self, document: Dict[str, Any]) -> None:
        for listener in self._listeners:
            try:
                listener(document)
            except Exception as e:
                logger.error(f"Portfolio listener failed: {e}")

    def _follow(self, username: str, token: Optional[str], fetch, **subscriber_options) -> None:
        self.subscriber = PortfolioSubscriber(
            self.client.base_url,
            username,
            on_update=self.apply_remote,
            token=token,
            fetch=fetch,
            **subscriber_options,
        )
        self.subscriber.start()

    def apply_remote(self, document: Dict[str, Any]) -> bool:
        raise NotImplementedError

    async def close(self) -> None:
        if self.subscriber is not None:
            await self.subscriber.stop()
            self.subscriber = None


class EditSession(_LiveDocument):
    """Owner's editing session over the REST client and the live channel"""

    def __init__(self, client: PortfolioAPIClient):
        super().__init__(client)
        self.username: Optional[str] = None
        self.draft: Dict[str, Any] = {}
        self.dirty = False
        self.remote_changed = False

    async def open(self, live: bool = True, **subscriber_options) -> Dict[str, Any]:
        """Load the caller's document; requires a logged-in client"""
        user = await self.client.me()
        self.username = user["username"]
        self._replace_saved(await self.client.get_my_portfolio())

        if live:
            self._follow(
                self.username,
                self.client.token,
                self.client.get_my_portfolio,
                **subscriber_options,
            )
        return self.draft

    def _replace_saved(self, document: Dict[str, Any]) -> None:
        self.saved = document
        self.draft = copy.deepcopy(document)
        self.dirty = False
        self.remote_changed = False

    def edit(self, **changes: Any) -> Dict[str, Any]:
        """Change draft fields, using the camelCase document keys"""
        self.draft.update(changes)
        self.dirty = True
        return self.draft

    def discard(self) -> Dict[str, Any]:
        """Drop pending edits and return to the last saved document"""
        if self.saved is not None:
            self._replace_saved(self.saved)
        return self.draft

    async def save(self, files: Optional[Dict[str, AssetFile]] = None) -> Dict[str, Any]:
        document = await self.client.save_portfolio(self.draft, files)
        self._replace_saved(document)
        self._notify(document)
        return document

    def apply_remote(self, document: Dict[str, Any]) -> bool:
        """Merge a pushed document; returns whether it was accepted"""
        if is_stale(document, self.saved):
            logger.debug(f"Ignoring stale update for {self.username}")
            return False

        if document == self.saved:
            return False

        if self.dirty:
            self.saved = document
            self.remote_changed = True
        else:
            self._replace_saved(document)

        self._notify(document)
        return True


class PublicViewer(_LiveDocument):
    """Read-only view of a published portfolio with live refresh"""

    def __init__(self, client: PortfolioAPIClient, username: str):
        super().__init__(client)
        self.username = username.strip().lower()

    async def open(self, live: bool = True, **subscriber_options) -> Optional[Dict[str, Any]]:
        """Fetch the published document; None when it is not published"""
        self.saved = await self.client.get_public_portfolio(self.username)

        if live:
            self._follow(
                self.username,
                None,
                lambda: self.client.get_public_portfolio(self.username),
                **subscriber_options,
            )
        return self.saved

    def apply_remote(self, document: Dict[str, Any]) -> bool:
        if is_stale(document, self.saved) or document == self.saved:
            return False

        # Unpublishing is pushed like any other save
        if not document.get("isPublished", False):
            self.saved = None
            self._notify({})
            return True

        self.saved = document
        self._notify(document)
        return True
