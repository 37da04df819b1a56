"""
Client for the external note service.

The note store speaks JSON over HTTPS: every operation is a POST to
`<note_store_url>/<operation>` with the arguments as a JSON object and the
OAuth access token as a bearer token. Resource bodies are also served raw
from `<note_store_url>/resources/<guid>/data`.

All failures surface as classified errors (see notepress.ingestion.errors);
retrying and rate-limit waits happen in the shared HTTPClient.
"""

import base64
import logging
from typing import Any

from notepress.config.settings import get_settings
from notepress.ingestion.config import HTTPConfig
from notepress.ingestion.errors import TransientError
from notepress.ingestion.http_client import HTTPClient, RetryPolicy
from notepress.ingestion.schemas import (
    NoteFilter,
    NoteMetadata,
    Notebook,
    NotesMetadataList,
    NoteTag,
    ResourceData,
    SourceNote,
    SyncState,
    from_epoch_ms,
)

logger = logging.getLogger(__name__)

_METADATA_RESULT_SPEC = {
    "includeTitle": True,
    "includeTagGuids": True,
    "includeCreated": True,
    "includeUpdated": True,
}


class NoteStoreClient:
    """
    Async client for one authenticated note-service account.

    Usage:
        async with NoteStoreClient(token, note_store_url) as client:
            page = await client.find_notes_metadata(NoteFilter(notebook_guid=g))
            note = await client.get_note(page.notes[0].guid)
    """

    def __init__(
        self,
        access_token: str,
        note_store_url: str | None = None,
        config: HTTPConfig | None = None,
        retry_policy: RetryPolicy | None = None,
    ):
        settings = get_settings()
        self._config = config or HTTPConfig()
        self.retry_policy = retry_policy or RetryPolicy.from_config(self._config)
        self.base_url = (note_store_url or settings.note_store_url).rstrip("/")
        self._http = HTTPClient(
            retry_policy=self.retry_policy,
            timeout=self._config.timeout_seconds,
            headers={
                "Authorization": f"Bearer {access_token}",
                "User-Agent": settings.note_service_user_agent,
            },
            default_rate_limit_wait=self._config.default_rate_limit_wait_seconds,
            service_name="note_store",
        )

    async def __aenter__(self) -> "NoteStoreClient":
        await self._http.__aenter__()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self._http.__aexit__(exc_type, exc_val, exc_tb)

    async def _call(self, operation: str, **arguments: Any) -> Any:
        return await self._http.post_json(f"{self.base_url}/{operation}", arguments)

    async def list_tags(self) -> list[NoteTag]:
        data = await self._call("listTags")
        return [NoteTag(guid=t["guid"], name=t.get("name") or "") for t in data or []]

    async def get_tag(self, guid: str) -> NoteTag:
        data = await self._call("getTag", guid=guid)
        return NoteTag(guid=data["guid"], name=data.get("name") or "")

    async def list_notebooks(self) -> list[Notebook]:
        data = await self._call("listNotebooks")
        return [Notebook(guid=n["guid"], name=n.get("name") or "") for n in data or []]

    async def find_notes_metadata(
        self,
        note_filter: NoteFilter,
        offset: int = 0,
        max_notes: int = 50,
    ) -> NotesMetadataList:
        """
        Search note metadata.

        Args:
            note_filter: Notebook, tag and update-window criteria
            offset: Index of the first match to return
            max_notes: Page size

        Returns:
            One page of matches plus the total match count
        """
        data = await self._call(
            "findNotesMetadata",
            filter=note_filter.to_api(),
            offset=offset,
            maxNotes=max_notes,
            resultSpec=_METADATA_RESULT_SPEC,
        )
        notes = [NoteMetadata.from_api(n) for n in data.get("notes") or []]
        return NotesMetadataList(
            notes=notes,
            total_notes=int(data.get("totalNotes", len(notes))),
            start_index=int(data.get("startIndex", offset)),
        )

    async def get_note(self, guid: str) -> SourceNote:
        data = await self._call(
            "getNote",
            guid=guid,
            withContent=True,
            withResourcesData=False,
        )
        return SourceNote.from_api(data)

    async def get_resource(self, guid: str) -> ResourceData:
        """Fetch a resource with its body inlined as base64."""
        data = await self._call(
            "getResource",
            guid=guid,
            withData=True,
            withAttributes=True,
        )
        body = (data.get("data") or {}).get("body")
        if body is None:
            raise TransientError(f"Resource {guid} returned without a body")
        attributes = data.get("attributes") or {}
        return ResourceData(
            guid=data.get("guid", guid),
            data=base64.b64decode(body),
            mime=data.get("mime") or "application/octet-stream",
            filename=attributes.get("fileName"),
            width=data.get("width"),
            height=data.get("height"),
        )

    async def get_resource_bytes(self, guid: str) -> bytes:
        content, _ = await self._http.get_bytes(f"{self.base_url}/resources/{guid}/data")
        return content

    async def get_user_id(self) -> str:
        """Return the id of the account the token belongs to."""
        data = await self._call("getUser")
        return str(data["id"])

    async def get_sync_state(self) -> SyncState:
        data = await self._call("getSyncState")
        return SyncState(
            update_count=int(data["updateCount"]),
            current_time=from_epoch_ms(data.get("currentTime")),
            full_sync_before=from_epoch_ms(data.get("fullSyncBefore")),
        )
