"""Google Drive document source.

Walks a shared folder tree through the Drive v3 REST API and fetches the
text of each file. Content errors are cached as a sentinel string instead of
being raised, so one unreadable file never aborts a reindex.
"""
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx
import structlog

from docqa import config
from docqa.errors import ConnectorError

logger = structlog.get_logger()

FOLDER_MIME_TYPE = "application/vnd.google-apps.folder"
GOOGLE_DOC_MIME_TYPE = "application/vnd.google-apps.document"
ROOT_FOLDER_LABEL = "Root Folder"
UNAVAILABLE_PREFIX = "[Document content not accessible"

# Native Google formats that must be exported rather than downloaded
EXPORT_MIME_TYPES = {
    "application/vnd.google-apps.presentation": "text/plain",
    "application/vnd.google-apps.spreadsheet": "text/csv",
}


@dataclass
class DriveDocument:
    """A file listed from the document store."""

    id: str
    name: str
    mime_type: str
    parent_path: str = ROOT_FOLDER_LABEL
    web_view_link: str = ""


def unavailable_content(reason: str) -> str:
    return f"{UNAVAILABLE_PREFIX}: {reason}]"


def is_unavailable_content(content: str) -> bool:
    return content.startswith(UNAVAILABLE_PREFIX)


class DriveConnector:
    """Async client for listing and reading documents in a Drive folder."""

    def __init__(
        self,
        root_folder_id: str = None,
        access_token: str = None,
        max_depth: int = None,
        api_url: str = None,
        docs_api_url: str = None,
        timeout: float = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize the Drive connector.

        Args:
            root_folder_id: Folder whose tree forms the corpus (default from config)
            access_token: OAuth bearer token with drive.readonly scope
            max_depth: Maximum folder nesting to follow
            api_url: Drive v3 API base URL
            docs_api_url: Docs v1 API base URL
            timeout: Request timeout in seconds
            transport: Optional httpx transport (used by tests)
        """
        self.root_folder_id = root_folder_id or config.DRIVE_FOLDER_ID
        self.access_token = access_token if access_token is not None else config.DRIVE_ACCESS_TOKEN
        self.max_depth = config.DRIVE_MAX_DEPTH if max_depth is None else max_depth
        self.api_url = (api_url or config.DRIVE_API_URL).rstrip("/")
        self.docs_api_url = (docs_api_url or config.DOCS_API_URL).rstrip("/")
        self.timeout = timeout or config.DRIVE_TIMEOUT
        self._transport = transport
        self._content_cache: Dict[str, str] = {}

    def _client(self) -> httpx.AsyncClient:
        headers = {}
        if self.access_token:
            headers["Authorization"] = f"Bearer {self.access_token}"
        return httpx.AsyncClient(
            timeout=self.timeout,
            headers=headers,
            transport=self._transport,
        )

    async def list_documents(self) -> List[DriveDocument]:
        """List every non-folder file below the root folder.

        Returns:
            Documents ordered folder by folder, by name

        Raises:
            ConnectorError: If the root folder cannot be listed
        """
        if not self.root_folder_id:
            raise ConnectorError("drive", "no root folder configured (DRIVE_FOLDER_ID)")

        async with self._client() as client:
            try:
                root_files = await self._list_folder(client, self.root_folder_id)
            except (httpx.HTTPError, ValueError, AttributeError) as e:
                logger.error(
                    "drive_list_failed",
                    folder_id=self.root_folder_id,
                    error=str(e),
                )
                raise ConnectorError("drive", f"failed to list documents: {e}") from e

            documents = await self._collect(client, root_files, "", depth=0)

        logger.info("drive_documents_listed", count=len(documents))
        return documents

    async def _collect(
        self,
        client: httpx.AsyncClient,
        files: List[Dict[str, Any]],
        parent_path: str,
        depth: int,
    ) -> List[DriveDocument]:
        documents = []

        for file in files:
            current_path = f"{parent_path}/{file['name']}" if parent_path else file["name"]

            if file.get("mimeType") == FOLDER_MIME_TYPE:
                if depth + 1 > self.max_depth:
                    logger.warning(
                        "drive_max_depth_reached",
                        folder=current_path,
                        max_depth=self.max_depth,
                    )
                    continue
                try:
                    children = await self._list_folder(client, file["id"])
                except (httpx.HTTPError, ValueError, AttributeError) as e:
                    logger.error(
                        "drive_subfolder_list_failed",
                        folder_id=file["id"],
                        folder=current_path,
                        error=str(e),
                    )
                    continue
                documents.extend(
                    await self._collect(client, children, current_path, depth + 1)
                )
            else:
                documents.append(
                    DriveDocument(
                        id=file["id"],
                        name=file["name"],
                        mime_type=file.get("mimeType", ""),
                        parent_path=parent_path or ROOT_FOLDER_LABEL,
                        web_view_link=file.get("webViewLink", ""),
                    )
                )

        return documents

    async def _list_folder(
        self, client: httpx.AsyncClient, folder_id: str
    ) -> List[Dict[str, Any]]:
        """List the direct children of a folder, following pagination."""
        files = []
        page_token = None

        while True:
            params = {
                "q": f"'{folder_id}' in parents and trashed=false",
                "fields": "nextPageToken,files(id,name,mimeType,webViewLink)",
                "orderBy": "name",
                "supportsAllDrives": "true",
                "includeItemsFromAllDrives": "true",
            }
            if page_token:
                params["pageToken"] = page_token

            response = await client.get(f"{self.api_url}/files", params=params)
            response.raise_for_status()
            data = response.json()

            files.extend(data.get("files", []))
            page_token = data.get("nextPageToken")
            if not page_token:
                return files

    async def get_content(self, file_id: str, mime_type: str) -> str:
        """Fetch the plain-text content of a file.

        Results are cached by id. Errors produce a cached sentinel string
        starting with "[Document content not accessible".
        """
        if file_id in self._content_cache:
            return self._content_cache[file_id]

        try:
            async with self._client() as client:
                if mime_type == GOOGLE_DOC_MIME_TYPE:
                    content = await self._get_google_doc_text(client, file_id)
                elif mime_type in EXPORT_MIME_TYPES:
                    response = await client.get(
                        f"{self.api_url}/files/{file_id}/export",
                        params={"mimeType": EXPORT_MIME_TYPES[mime_type]},
                    )
                    response.raise_for_status()
                    content = response.text
                else:
                    response = await client.get(
                        f"{self.api_url}/files/{file_id}",
                        params={"alt": "media", "supportsAllDrives": "true"},
                    )
                    response.raise_for_status()
                    content = response.text

        except (httpx.HTTPError, ValueError, AttributeError, TypeError) as e:
            logger.error("drive_content_failed", file_id=file_id, error=str(e))
            content = unavailable_content(str(e))

        self._content_cache[file_id] = content
        return content

    async def _get_google_doc_text(self, client: httpx.AsyncClient, file_id: str) -> str:
        response = await client.get(f"{self.docs_api_url}/documents/{file_id}")
        response.raise_for_status()
        body = response.json().get("body", {})

        parts = []
        for element in body.get("content", []):
            paragraph = element.get("paragraph")
            if not paragraph:
                continue
            for text_element in paragraph.get("elements", []):
                text_run = text_element.get("textRun")
                if text_run:
                    parts.append(text_run.get("content", ""))
        return "".join(parts)

    def clear_cache(self) -> None:
        self._content_cache.clear()
