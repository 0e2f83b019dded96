"""
Voiceflow analytics API client

Thin synchronous wrapper around the transcript endpoints. Every failure
(network, HTTP status, undecodable or malformed body) surfaces as a
TranscriptFetchError so callers can isolate it per transcript.
"""

import logging
from typing import Any, Dict, List, Optional

import requests
from jsonschema import ValidationError

from src.ingestion.config import SyncConfig
from src.ingestion.error_handler import TranscriptFetchError

from .schemas import TRANSCRIPT_BODY_SCHEMA, TRANSCRIPT_LIST_SCHEMA, body_transcript, validate_payload

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://analytics-api.voiceflow.com"


class VoiceflowClient:
    """
    Client for the Voiceflow transcript API

    Example:
        >>> client = VoiceflowClient(api_key="VF.DM.xxx")
        >>> items = client.list_transcripts("project-id", skip=0, take=100)
        >>> body = client.fetch_transcript(items[0]["id"])
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = 30.0,
        session: Optional[requests.Session] = None,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    @classmethod
    def from_config(cls, config: SyncConfig) -> "VoiceflowClient":
        """Build a client from sync configuration"""
        return cls(
            api_key=config.api_key or "",
            base_url=config.api_base_url,
            timeout=config.http_timeout_seconds,
        )

    def _headers(self, with_body: bool = False) -> Dict[str, str]:
        headers = {
            "authorization": self.api_key,
            "Accept": "application/json",
        }
        if with_body:
            headers["Content-Type"] = "application/json"
        return headers

    def _request(self, method: str, url: str, transcript_id: Optional[str] = None, **kwargs) -> Any:
        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.exceptions.RequestException as e:
            raise TranscriptFetchError(f"{method} {url} failed: {e}", transcript_id=transcript_id) from e

        if not response.ok:
            raise TranscriptFetchError(
                f"{method} {url} failed: {response.status_code} - {response.text[:500]}",
                transcript_id=transcript_id,
                status_code=response.status_code,
            )

        try:
            return response.json()
        except ValueError as e:
            raise TranscriptFetchError(f"{method} {url} returned a non-JSON body", transcript_id=transcript_id) from e

    def list_transcripts(self, project_id: str, skip: int = 0, take: int = 100) -> List[Dict[str, Any]]:
        """
        List one page of transcript summaries

        Args:
            project_id: Voiceflow project id
            skip: Offset of the page
            take: Page size

        Returns:
            Raw summary items, in API order (may be shorter than take)

        Raises:
            TranscriptFetchError on any failure
        """
        url = f"{self.base_url}/v1/transcript/project/{project_id}"
        data = self._request(
            "POST",
            url,
            params={"take": take, "skip": skip},
            json={},
            headers=self._headers(with_body=True),
        )

        try:
            validate_payload(data, TRANSCRIPT_LIST_SCHEMA)
        except ValidationError as e:
            raise TranscriptFetchError(f"Malformed transcript listing: {e.message}") from e

        items = data.get("transcripts") or []
        logger.debug(f"Listed {len(items)} transcripts (skip={skip}, take={take})")
        return items

    def fetch_transcript(self, transcript_id: str) -> Dict[str, Any]:
        """
        Fetch one full transcript body

        Args:
            transcript_id: External transcript id

        Returns:
            Transcript object including its ordered "logs"

        Raises:
            TranscriptFetchError on any failure
        """
        url = f"{self.base_url}/v1/transcript/{transcript_id}"
        data = self._request("GET", url, transcript_id=transcript_id, headers=self._headers())

        try:
            validate_payload(data, TRANSCRIPT_BODY_SCHEMA)
        except ValidationError as e:
            raise TranscriptFetchError(
                f"Malformed transcript body: {e.message}", transcript_id=transcript_id
            ) from e

        return body_transcript(data)
