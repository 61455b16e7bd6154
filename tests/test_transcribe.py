"""
Unit tests for the AWS Transcribe and Stability AI clients.
"""

import io
import os
import tempfile
from unittest.mock import Mock

import pytest
from botocore.exceptions import ClientError

from storytime_ai.config.loader import StabilityConfig, TranscribeConfig
from storytime_ai.core.errors import ProviderError
from storytime_ai.sdk.stability_client import StabilityApiClient
from storytime_ai.sdk.transcribe_client import (
    FAILURE_MESSAGE,
    MAX_POLL_ATTEMPTS,
    TranscribeClient,
)


def _job(status, uri="https://transcripts/job.json", reason=None):
    job = {"TranscriptionJobStatus": status, "Transcript": {"TranscriptFileUri": uri}}
    if reason:
        job["FailureReason"] = reason
    return {"TranscriptionJob": job}


class TestTranscribeClient:
    """Test upload, polling and cleanup."""

    def setup_method(self):
        self.s3 = Mock()
        self.transcribe = Mock()
        self.session = Mock()
        self.sleep = Mock()
        self.client = TranscribeClient(
            TranscribeConfig(region="us-east-1", bucket="stories"),
            s3_client=self.s3,
            transcribe_client=self.transcribe,
            session=self.session,
            sleep=self.sleep,
        )

    def test_successful_transcription(self):
        self.transcribe.get_transcription_job.side_effect = [_job("IN_PROGRESS"), _job("COMPLETED")]
        self.session.get.return_value.json.return_value = {
            "results": {"transcripts": [{"transcript": "Once upon a time"}]}
        }

        result = self.client.transcribe(io.BytesIO(b"audio"), "audio/mpeg")

        assert result.success is True
        assert result.text == "Once upon a time"
        key = self.s3.put_object.call_args.kwargs["Key"]
        assert key.startswith("transcriptions/storytime-")
        assert key.endswith(".mp3")
        start_kwargs = self.transcribe.start_transcription_job.call_args.kwargs
        assert start_kwargs["LanguageCode"] == "en-US"
        assert start_kwargs["MediaFormat"] == "mp3"
        assert start_kwargs["Media"]["MediaFileUri"] == f"s3://stories/{key}"
        self.sleep.assert_called_once_with(0.5)
        self.s3.delete_object.assert_called_once_with(Bucket="stories", Key=key)
        self.transcribe.delete_transcription_job.assert_called_once()

    def test_m4a_uses_mp4_media_format(self):
        self.transcribe.get_transcription_job.return_value = _job("COMPLETED")
        self.session.get.return_value.json.return_value = {"results": {"transcripts": [{"transcript": "hi"}]}}

        self.client.transcribe(io.BytesIO(b"audio"), "audio/x-m4a")

        assert self.s3.put_object.call_args.kwargs["Key"].endswith(".m4a")
        assert self.transcribe.start_transcription_job.call_args.kwargs["MediaFormat"] == "mp4"

    def test_failed_job(self):
        self.transcribe.get_transcription_job.return_value = _job("FAILED", reason="bad audio")

        result = self.client.transcribe(io.BytesIO(b"audio"), "audio/webm")

        assert result.success is False
        assert result.error == FAILURE_MESSAGE
        self.s3.delete_object.assert_called_once()
        self.transcribe.delete_transcription_job.assert_called_once()

    def test_poll_timeout(self):
        self.transcribe.get_transcription_job.return_value = _job("IN_PROGRESS")

        result = self.client.transcribe(io.BytesIO(b"audio"), "audio/webm")

        assert result.success is False
        assert self.transcribe.get_transcription_job.call_count == MAX_POLL_ATTEMPTS
        assert self.sleep.call_count == MAX_POLL_ATTEMPTS
        self.s3.delete_object.assert_called_once()

    def test_upload_failure_still_cleans_up(self):
        self.s3.put_object.side_effect = ClientError({"Error": {"Code": "AccessDenied", "Message": "no"}}, "PutObject")
        self.s3.delete_object.side_effect = ClientError({"Error": {"Code": "NoSuchKey", "Message": "no"}}, "DeleteObject")

        result = self.client.transcribe(io.BytesIO(b"audio"), "audio/webm")

        assert result.success is False
        self.transcribe.delete_transcription_job.assert_called_once()


class TestStabilityApiClient:
    """Test Stable Image Ultra requests."""

    def setup_method(self):
        self.temp_dir = tempfile.mkdtemp()
        self.session = Mock()
        self.client = StabilityApiClient(StabilityConfig(api_key="sk-stab"), session=self.session, clock=lambda: 1700000000)

    def teardown_method(self):
        import shutil
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_generate_image_returns_bytes(self):
        self.session.post.return_value = Mock(ok=True, status_code=200, content=b"jpeg-bytes")

        contents = self.client.generate_image("a castle", aspect_ratio="16:9", base_prompt="Storybook: ", negative="dark, ")

        assert contents == b"jpeg-bytes"
        args, kwargs = self.session.post.call_args
        assert args[0] == "https://api.stability.ai/v2beta/stable-image/generate/ultra"
        assert kwargs["headers"]["Accept"] == "image/*"
        assert kwargs["data"]["prompt"] == "Storybook: a castle "
        assert kwargs["data"]["negative_prompt"].startswith("dark, malformed")
        assert kwargs["data"]["output_format"] == "jpeg"
        assert kwargs["data"]["aspect_ratio"] == "16:9"
        assert "mode" not in kwargs["data"]

    def test_image_to_image_mode(self):
        source = os.path.join(self.temp_dir, "source.png")
        with open(source, "wb") as f:
            f.write(b"png")
        self.session.post.return_value = Mock(ok=True, status_code=200, content=b"jpeg-bytes")

        self.client.generate_image("a castle", existing_image_path=source)

        kwargs = self.session.post.call_args.kwargs
        assert kwargs["data"]["mode"] == "image-to-image"
        assert kwargs["data"]["strength"] == "0.2"
        assert kwargs["files"]["image"] == ("source.png", b"png")

    def test_failure_raises(self):
        self.session.post.return_value = Mock(ok=False, status_code=402, text="insufficient credits")

        with pytest.raises(ProviderError, match="insufficient credits") as exc_info:
            self.client.generate_image("a castle")
        assert exc_info.value.status_code == 402

    def test_save_image(self):
        path = self.client.save_image(b"jpeg-bytes", self.temp_dir)

        assert path == os.path.join(self.temp_dir, "1700000000.png")
        with open(path, "rb") as f:
            assert f.read() == b"jpeg-bytes"
