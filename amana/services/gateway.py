"""WhatsApp Cloud API adapter: inbound normalization, voice notes, outbound sends."""

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Optional

import httpx

from amana.logging_config import get_logger
from amana.schemas.outbound import OutboundPayload
from amana.schemas.webhook import WhatsAppInboundMessage
from amana.services.result import Result
from amana.services.transcription import (
    CORRUPTED_AUDIO,
    DOWNLOAD_FAILED,
    EMPTY_AUDIO,
    NETWORK,
    Transcriber,
    Transcript,
    TranscriptionError,
)

logger = get_logger("gateway")

GRAPH_BASE_URL = "https://graph.facebook.com"
MIN_MEDIA_BYTES = 100

TEXT = "text"
VOICE = "voice"
UNSUPPORTED = "unsupported"


@dataclass
class InboundMessage:
    """One webhook message reduced to what the dispatcher needs."""

    identity: str
    message_id: str
    kind: str  # text, voice, unsupported
    text: str = ""
    media_id: Optional[str] = None
    mime_type: Optional[str] = None
    original_type: Optional[str] = None
    timestamp: Optional[str] = None


def normalize_inbound(message: WhatsAppInboundMessage) -> InboundMessage:
    base = {
        "identity": message.from_,
        "message_id": message.id,
        "original_type": message.type,
        "timestamp": message.timestamp,
    }

    if message.type == "text" and message.text is not None:
        return InboundMessage(kind=TEXT, text=message.text.body, **base)
    if message.type == "button" and message.button is not None:
        return InboundMessage(kind=TEXT, text=message.button.payload or message.button.text or "", **base)
    if message.type == "interactive" and message.interactive is not None:
        reply = message.interactive.button_reply or message.interactive.list_reply
        if reply is not None:
            return InboundMessage(kind=TEXT, text=reply.id, **base)
    if message.type == "audio" and message.audio is not None:
        return InboundMessage(kind=VOICE, media_id=message.audio.id, mime_type=message.audio.mime_type, **base)

    return InboundMessage(kind=UNSUPPORTED, **base)


class MediaDownloadError(Exception):
    def __init__(self, message: str, family: str = DOWNLOAD_FAILED, retryable: bool = False):
        self.message = message
        self.family = family
        self.retryable = retryable
        super().__init__(message)


class MediaDownloader:
    """Two-step Graph media fetch: resolve the URL by id, then GET the bytes.

    Transient failures (transport errors, timeouts, 5xx) are retried with delay base * 2**attempt.
    """

    def __init__(
        self,
        access_token: Optional[str],
        graph_api_version: str = "v18.0",
        max_attempts: int = 3,
        base_delay_seconds: float = 1.0,
        timeout_seconds: float = 15.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.access_token = access_token
        self.graph_api_version = graph_api_version
        self.max_attempts = max(1, max_attempts)
        self.base_delay_seconds = base_delay_seconds
        self.timeout_seconds = timeout_seconds
        self.sleep = sleep

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.access_token}"}

    @staticmethod
    def _check_status(response: httpx.Response, step: str) -> None:
        if response.status_code >= 500:
            raise MediaDownloadError(f"{step} failed ({response.status_code})", DOWNLOAD_FAILED, retryable=True)
        if response.status_code != 200:
            raise MediaDownloadError(f"{step} failed ({response.status_code}): {response.text[:200]}")

    def _fetch_once(self, media_id: str) -> bytes:
        try:
            with httpx.Client(timeout=self.timeout_seconds) as client:
                meta = client.get(f"{GRAPH_BASE_URL}/{self.graph_api_version}/{media_id}", headers=self._headers())
                self._check_status(meta, "Media URL lookup")
                try:
                    media_url = meta.json().get("url")
                except ValueError as exc:
                    raise MediaDownloadError(f"Media URL lookup returned non-JSON body: {exc}") from exc
                if not media_url:
                    raise MediaDownloadError("Media URL not found in response")

                file_response = client.get(media_url, headers=self._headers())
                self._check_status(file_response, "Media file download")
                return file_response.content
        except httpx.TimeoutException as exc:
            raise MediaDownloadError(f"Media download timeout: {exc}", NETWORK, retryable=True) from exc
        except httpx.TransportError as exc:
            raise MediaDownloadError(f"Media download network error: {exc}", NETWORK, retryable=True) from exc

    def download(self, media_id: str) -> bytes:
        if not self.access_token:
            raise MediaDownloadError("WhatsApp token not configured")

        attempt = 0
        while True:
            try:
                data = self._fetch_once(media_id)
                break
            except MediaDownloadError as exc:
                logger.warning(
                    "Media download error",
                    extra={"context": {"media_id": media_id, "attempt": attempt + 1, "error": exc.message}},
                )
                if not exc.retryable or attempt + 1 >= self.max_attempts:
                    raise
                delay = self.base_delay_seconds * (2**attempt)
                logger.info("Retrying media download", extra={"context": {"media_id": media_id, "delay_s": delay}})
                self.sleep(delay)
                attempt += 1

        if len(data) == 0:
            raise MediaDownloadError("Downloaded file is empty", CORRUPTED_AUDIO)
        if len(data) < MIN_MEDIA_BYTES:
            raise MediaDownloadError(f"Downloaded file too small ({len(data)} bytes) - may be corrupted", CORRUPTED_AUDIO)

        logger.info("Media downloaded", extra={"context": {"media_id": media_id, "bytes": len(data), "attempts": attempt + 1}})
        return data


def _voice_filename(mime_type: Optional[str]) -> str:
    if mime_type and "mpeg" in mime_type:
        return "voice.mp3"
    if mime_type and "mp4" in mime_type:
        return "voice.m4a"
    return "voice.ogg"


class VoicePipeline:
    """Download then transcribe. Failures come back as Result.failure with the voice family as error_code."""

    def __init__(self, downloader: MediaDownloader, transcriber: Transcriber):
        self.downloader = downloader
        self.transcriber = transcriber

    def process(self, media_id: str, mime_type: Optional[str] = None) -> Result[Transcript]:
        try:
            audio = self.downloader.download(media_id)
        except MediaDownloadError as exc:
            return Result.failure(exc.message, code=exc.family, retryable=exc.retryable)

        try:
            transcript = self.transcriber.transcribe(audio, filename=_voice_filename(mime_type), mime_type=mime_type)
        except TranscriptionError as exc:
            return Result.failure(exc.message, code=exc.family)

        if not transcript.text.strip():
            return Result.failure("Empty transcription", code=EMPTY_AUDIO)
        return Result.success(transcript)


class MessageSender(ABC):
    @abstractmethod
    def send(self, identity: str, payload: OutboundPayload) -> bool:
        pass

    @abstractmethod
    def mark_as_read(self, message_id: str) -> bool:
        pass


def build_message_body(identity: str, payload: OutboundPayload) -> dict:
    """Translate an outbound payload into a Graph API /messages body."""
    body: dict = {"messaging_product": "whatsapp", "recipient_type": "individual", "to": identity}

    if payload.type == "text":
        body["type"] = "text"
        body["text"] = {"preview_url": False, "body": payload.text}
    elif payload.type == "buttons":
        body["type"] = "interactive"
        body["interactive"] = {
            "type": "button",
            "body": {"text": payload.text},
            "action": {
                "buttons": [
                    {"type": "reply", "reply": {"id": button.id, "title": button.title[:20]}}
                    for button in payload.buttons
                ]
            },
        }
    elif payload.type == "list":
        body["type"] = "interactive"
        body["interactive"] = {
            "type": "list",
            "body": {"text": payload.text},
            "action": {
                "button": payload.button_text,
                "sections": [section.model_dump(exclude_none=True) for section in payload.sections],
            },
        }
    elif payload.type == "document":
        document = {"link": payload.url}
        if payload.filename:
            document["filename"] = payload.filename
        if payload.caption:
            document["caption"] = payload.caption
        body["type"] = "document"
        body["document"] = document
    elif payload.type == "image":
        image = {"link": payload.url}
        if payload.caption:
            image["caption"] = payload.caption
        body["type"] = "image"
        body["image"] = image

    return body


class WhatsAppSender(MessageSender):
    def __init__(self, access_token: str, phone_number_id: str, graph_api_version: str = "v18.0"):
        self.access_token = access_token
        self.phone_number_id = phone_number_id
        self.url = f"{GRAPH_BASE_URL}/{graph_api_version}/{phone_number_id}/messages"

    def _post(self, body: dict) -> httpx.Response:
        with httpx.Client(timeout=30.0) as client:
            return client.post(
                self.url,
                headers={"Authorization": f"Bearer {self.access_token}", "Content-Type": "application/json"},
                json=body,
            )

    def send(self, identity: str, payload: OutboundPayload) -> bool:
        try:
            response = self._post(build_message_body(identity, payload))
        except httpx.HTTPError as e:
            logger.error(f"Error sending WhatsApp message: {e}", extra={"context": {"identity": identity}})
            return False

        if response.status_code != 200:
            logger.error(
                "WhatsApp send failed",
                extra={"context": {"identity": identity, "status": response.status_code, "body": response.text[:200]}},
            )
            return False
        logger.info("WhatsApp message sent", extra={"context": {"identity": identity, "type": payload.type}})
        return True

    def mark_as_read(self, message_id: str) -> bool:
        try:
            response = self._post({"messaging_product": "whatsapp", "status": "read", "message_id": message_id})
        except httpx.HTTPError as e:
            logger.warning(f"mark_as_read failed: {e}", extra={"context": {"message_id": message_id}})
            return False
        return response.status_code == 200


class DryRunSender(MessageSender):
    """Keeps outbound payloads in memory instead of calling the Graph API."""

    def __init__(self):
        self.sent: list[tuple[str, OutboundPayload]] = []
        self.read: list[str] = []

    def send(self, identity: str, payload: OutboundPayload) -> bool:
        logger.info("Dry-run send", extra={"context": {"identity": identity, "type": payload.type}})
        self.sent.append((identity, payload))
        return True

    def mark_as_read(self, message_id: str) -> bool:
        self.read.append(message_id)
        return True

    def texts_for(self, identity: str) -> list[str]:
        return [payload.text or "" for to, payload in self.sent if to == identity]
