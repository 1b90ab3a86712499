"""
Voice Transcriber

Converts uploaded audio to 16 kHz mono WAV with ffmpeg and transcribes it
with the hosted speech-to-text model (OpenAI Whisper).
"""

import asyncio
import logging
import os
import tempfile
from typing import Optional

from ..common.errors import PayloadTooLargeError, UpstreamError, ValidationError

logger = logging.getLogger("eaa_assistant.assistants.transcriber")

MAX_AUDIO_BYTES = 25 * 1024 * 1024
SAMPLE_RATE = 16000


class Transcriber:
    """
    Speech-to-text for the voice input.

    Temporary files live in a TemporaryDirectory and are removed on every
    exit path.
    """

    def __init__(
        self,
        client,
        model: str = "whisper-1",
        max_bytes: int = MAX_AUDIO_BYTES,
        timeout: float = 120.0,
        ffmpeg_path: str = "ffmpeg",
    ):
        """
        Args:
            client: AsyncOpenAI client (``audio.transcriptions.create``)
            model: Transcription model name
            max_bytes: Upload size limit
            timeout: Seconds allowed for conversion plus transcription
            ffmpeg_path: ffmpeg executable
        """
        self._client = client
        self._model = model
        self._max_bytes = max_bytes
        self._timeout = timeout
        self._ffmpeg = ffmpeg_path

    @property
    def is_available(self) -> bool:
        return self._client is not None

    async def transcribe(
        self,
        audio: bytes,
        filename: str = "audio.webm",
        language: Optional[str] = None,
    ) -> str:
        """
        Transcribe an uploaded audio file.

        Raises:
            ValidationError: empty upload
            PayloadTooLargeError: upload above the size limit
            UpstreamError: conversion or transcription failed
        """
        if not audio:
            raise ValidationError("Audio file not found in request", code="MISSING_AUDIO")
        if len(audio) > self._max_bytes:
            raise PayloadTooLargeError(
                f"Audio file exceeds {self._max_bytes // (1024 * 1024)} MB", code="AUDIO_TOO_LARGE",
            )
        if not self.is_available:
            raise UpstreamError("transcription", "transcription client is not configured")

        logger.info("Transcribing %s (%d bytes)", filename, len(audio))
        try:
            return await asyncio.wait_for(self._run(audio, filename, language), timeout=self._timeout)
        except asyncio.TimeoutError:
            logger.warning("Transcription timed out after %.1fs", self._timeout)
            raise UpstreamError("transcription", f"timed out after {self._timeout}s")

    async def _run(self, audio: bytes, filename: str, language: Optional[str]) -> str:
        suffix = os.path.splitext(filename)[1] or ".bin"
        with tempfile.TemporaryDirectory(prefix="eaa_whisper_") as tmp:
            source = os.path.join(tmp, "input" + suffix)
            target = os.path.join(tmp, "output.wav")
            with open(source, "wb") as f:
                f.write(audio)

            await self._convert(source, target)

            kwargs = {"model": self._model}
            if language:
                kwargs["language"] = language
            try:
                with open(target, "rb") as f:
                    result = await self._client.audio.transcriptions.create(file=f, **kwargs)
            except Exception as e:
                logger.warning("Transcription call failed: %s", e)
                raise UpstreamError("transcription", str(e)) from e

        text = (getattr(result, "text", "") or "").strip()
        logger.info("Transcription complete (%d chars)", len(text))
        return text

    async def _convert(self, source: str, target: str) -> None:
        try:
            proc = await asyncio.create_subprocess_exec(
                self._ffmpeg, "-y", "-loglevel", "error",
                "-i", source,
                "-ar", str(SAMPLE_RATE), "-ac", "1",
                target,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as e:
            raise UpstreamError("transcription", "ffmpeg is not installed") from e

        try:
            _, stderr = await proc.communicate()
        finally:
            # Timeout or cancellation leaves ffmpeg running
            if proc.returncode is None:
                logger.warning("Killing ffmpeg (pid %s) after cancelled conversion", proc.pid)
                try:
                    proc.kill()
                except ProcessLookupError:
                    pass
                await proc.wait()
        if proc.returncode != 0:
            detail = stderr.decode(errors="replace").strip()[:200]
            logger.warning("ffmpeg conversion failed (%s): %s", proc.returncode, detail)
            raise UpstreamError("transcription", f"audio conversion failed: {detail}")
