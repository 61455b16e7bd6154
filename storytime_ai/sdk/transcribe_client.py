"""
AWS Transcribe client.

Uploads audio to S3, runs a transcription job, polls it to completion and
always removes both the uploaded object and the job afterwards.
"""

import logging
import time
import uuid
from dataclasses import dataclass
from typing import Any, BinaryIO, Callable, Optional

import boto3
import requests
from botocore.exceptions import BotoCoreError, ClientError

from ..config.loader import TranscribeConfig
from ..core.errors import TranscriptionTimeout

logger = logging.getLogger(__name__)

FAILURE_MESSAGE = "Failed to transcribe audio. Please try again."
POLL_INTERVAL = 0.5
MAX_POLL_ATTEMPTS = 60

MIME_TO_EXTENSION = {
    "audio/webm": "webm",
    "audio/mp4": "mp4",
    "audio/mpeg": "mp3",
    "audio/wav": "wav",
    "audio/ogg": "ogg",
    "audio/x-m4a": "m4a",
}
MIME_TO_MEDIA_FORMAT = dict(MIME_TO_EXTENSION, **{"audio/x-m4a": "mp4"})


@dataclass(frozen=True)
class TranscriptionResult:
    success: bool
    text: Optional[str] = None
    error: Optional[str] = None


class TranscriptionFailed(Exception):
    """AWS reported the transcription job as FAILED."""


class TranscribeClient:
    """Speech to text through AWS Transcribe."""

    def __init__(
        self,
        config: TranscribeConfig,
        s3_client: Any = None,
        transcribe_client: Any = None,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.config = config
        credentials = {
            "region_name": config.region,
            "aws_access_key_id": config.access_key_id,
            "aws_secret_access_key": config.secret_access_key,
        }
        self.s3 = s3_client or boto3.client("s3", **credentials)
        self.transcribe_service = transcribe_client or boto3.client("transcribe", **credentials)
        self._session = session or requests.Session()
        self._sleep = sleep

    def transcribe(self, audio: BinaryIO, mime_type: str) -> TranscriptionResult:
        """Transcribe an audio stream to text.

        Never raises; failures are logged and reported with a user-facing
        message.
        """
        job_name = f"storytime-{uuid.uuid4()}"
        key = f"transcriptions/{job_name}.{MIME_TO_EXTENSION.get(mime_type, 'webm')}"

        try:
            self.s3.put_object(Bucket=self.config.bucket, Key=key, Body=audio, ContentType=mime_type)
            self.transcribe_service.start_transcription_job(
                TranscriptionJobName=job_name,
                LanguageCode=self.config.language_code,
                MediaFormat=MIME_TO_MEDIA_FORMAT.get(mime_type, "webm"),
                Media={"MediaFileUri": f"s3://{self.config.bucket}/{key}"},
                Settings={"ShowSpeakerLabels": False},
            )
            text = self._wait_for_transcription(job_name)
        except (BotoCoreError, ClientError, requests.RequestException,
                TranscriptionFailed, TranscriptionTimeout, ValueError) as e:
            logger.error("transcription failed job_name=%s error=%s", job_name, e)
            return TranscriptionResult(success=False, error=FAILURE_MESSAGE)
        finally:
            self._cleanup(key, job_name)

        logger.info("transcription completed job_name=%s characters=%d", job_name, len(text))
        return TranscriptionResult(success=True, text=text)

    def _wait_for_transcription(self, job_name: str) -> str:
        for _ in range(MAX_POLL_ATTEMPTS):
            job = self.transcribe_service.get_transcription_job(TranscriptionJobName=job_name)["TranscriptionJob"]
            status = job["TranscriptionJobStatus"]

            if status == "COMPLETED":
                return self._fetch_transcript(job["Transcript"]["TranscriptFileUri"])
            if status == "FAILED":
                raise TranscriptionFailed(f"Transcription job failed: {job.get('FailureReason', 'Unknown error')}")

            self._sleep(POLL_INTERVAL)

        raise TranscriptionTimeout(f"Transcription timed out job_name={job_name}")

    def _fetch_transcript(self, uri: str) -> str:
        response = self._session.get(uri, timeout=30)
        response.raise_for_status()
        transcripts = response.json().get("results", {}).get("transcripts") or [{}]
        return transcripts[0].get("transcript", "")

    def _cleanup(self, key: str, job_name: str) -> None:
        try:
            self.s3.delete_object(Bucket=self.config.bucket, Key=key)
        except (BotoCoreError, ClientError) as e:
            logger.warning("failed to delete S3 object key=%s error=%s", key, e)

        try:
            self.transcribe_service.delete_transcription_job(TranscriptionJobName=job_name)
        except (BotoCoreError, ClientError) as e:
            logger.warning("failed to delete transcription job job_name=%s error=%s", job_name, e)
