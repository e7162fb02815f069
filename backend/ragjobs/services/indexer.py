import asyncio
from typing import Any, Dict, List, Optional, Protocol

import httpx

from ragjobs.core.config import INDEXER_TIMEOUT_SEC, INDEXER_URL


class IndexingError(Exception):
    pass


class DocumentIndexer(Protocol):
    async def index(
        self,
        documents: List[Any],
        tenant_id: str,
        project_id: str,
        credential_ref: str,
    ) -> List[str]: ...


class HttpDocumentIndexer:
    """Indexes documents through the knowledge-store ingestion endpoint."""

    def __init__(
        self,
        base_url: str = INDEXER_URL,
        timeout: float = INDEXER_TIMEOUT_SEC,
        client: Optional[httpx.AsyncClient] = None,
        retries: int = 2,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.retries = retries
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout, connect=10.0)
        )

    async def close(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    async def index(
        self,
        documents: List[Any],
        tenant_id: str,
        project_id: str,
        credential_ref: str,
    ) -> List[str]:
        body: Dict[str, Any] = {
            "documents": documents,
            "tenant_id": tenant_id,
            "project_id": project_id,
            "credential_ref": credential_ref,
        }
        attempt = 0
        while True:
            try:
                response = await self.client.post(
                    f"{self.base_url}/index",
                    json=body,
                    headers={"Accept": "application/json"},
                )
            except httpx.HTTPError as exc:
                raise IndexingError(f"indexer unreachable: {exc}") from exc
            if response.status_code == 429 and attempt < self.retries:
                retry_after = response.headers.get("Retry-After")
                delay = 1.0
                if retry_after and retry_after.isdigit():
                    delay = max(1.0, float(retry_after))
                await asyncio.sleep(delay)
                attempt += 1
                continue
            if response.status_code >= 500 and attempt < self.retries:
                await asyncio.sleep(0.5 * (attempt + 1))
                attempt += 1
                continue
            if response.status_code >= 400:
                detail = response.text.strip() or response.reason_phrase
                raise IndexingError(f"indexer error {response.status_code}: {detail}")
            data = response.json() if response.content else {}
            chunk_ids = data.get("chunk_ids") if isinstance(data, dict) else None
            if not isinstance(chunk_ids, list):
                raise IndexingError("indexer response missing chunk_ids")
            return [str(chunk_id) for chunk_id in chunk_ids]
