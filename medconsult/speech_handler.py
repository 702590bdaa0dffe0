"""
Speech Handler Module
=====================
Voice input and spoken replies for the consultation assistant.

Two capabilities are consumed by the conversation driver:
  - speech input: ``start_capture()`` yields ``RecognitionResult`` items
    (transcript, is_final, confidence)
  - speech output: ``speak(text, language)`` returns True once the text
    has been spoken

``SpeechHandler`` implements both with Azure Speech Services, and
``RecordedAudioInput`` feeds one browser recording through it. ``NullSpeech``
is used when no speech service is configured; the conversation then runs in
text-only mode. Both calls block, so the driver runs them off the event loop.
"""

from __future__ import annotations

import json
import logging
import os
from typing import Iterator, NamedTuple, Optional

from dotenv import load_dotenv

load_dotenv()
logger = logging.getLogger(__name__)

SPEECH_UNAVAILABLE_ADVISORY = (
    "Voice features are unavailable on this device. You can keep typing your messages."
)


class RecognitionResult(NamedTuple):
    """One recognition event from a speech capture."""

    transcript: str
    is_final: bool
    confidence: Optional[float] = None


class NullSpeech:
    """Speech capability that is never available.

    Capture yields nothing and speaking reports failure, so callers can
    treat it exactly like an unconfigured ``SpeechHandler``.
    """

    def is_available(self) -> bool:
        return False

    def start_capture(
        self,
        language: str = "en-US",
        audio_path: Optional[str] = None,
    ) -> Iterator[RecognitionResult]:
        return iter(())

    def speak(self, text: str, language: str = "en-US") -> bool:
        return False


# Container suffixes for the MIME types browsers record
RECORDING_SUFFIXES = {
    "audio/wav": ".wav",
    "audio/x-wav": ".wav",
    "audio/webm": ".webm",
    "audio/ogg": ".ogg",
    "audio/mp4": ".mp4",
}


class RecordedAudioInput:
    """Speech input capability for one recording made in the browser.

    The conversation driver captures from it like from a microphone; the
    recording is recognized by the wrapped ``SpeechHandler``.
    """

    def __init__(self, handler: "SpeechHandler", raw_bytes: bytes, mime_type: str = "audio/wav") -> None:
        self.handler = handler
        self.raw_bytes = raw_bytes
        self.source_suffix = RECORDING_SUFFIXES.get((mime_type or "").split(";")[0].strip(), ".wav")

    def is_available(self) -> bool:
        return self.handler.is_available() and bool(self.raw_bytes)

    def start_capture(
        self,
        language: str = "en-US",
        audio_path: Optional[str] = None,
    ) -> Iterator[RecognitionResult]:
        return self.handler.capture_recording(self.raw_bytes, language, self.source_suffix)


class SpeechHandler:
    """Speech-to-text and text-to-speech via Azure Speech Services.

    Recognition uses the session's language rather than auto-detection,
    because the patient picks the language before the conversation starts.

    Attributes:
        speech_key: Azure Speech API key.
        speech_region: Azure Speech service region.
        speech_config: Configured SpeechConfig instance, or None.
    """

    def __init__(self) -> None:
        """Initialize the Speech Handler with Azure credentials."""
        self.speech_key: str = os.getenv("SPEECH_KEY", "")
        self.speech_region: str = os.getenv("SPEECH_REGION", "centralindia")
        self.speech_config = None
        self._initialized = False
        self._init_config()

    def _init_config(self) -> None:
        """Initialize Azure Speech SDK configuration.

        SpeechConfig holds the subscription key and region and is reused
        across recognition and synthesis calls.
        """
        if not self.speech_key or self.speech_key == "your-key":
            logger.warning(
                "Azure Speech credentials not configured. "
                "Voice input and spoken replies will be unavailable; text input still works."
            )
            return
        try:
            import azure.cognitiveservices.speech as speechsdk

            self.speech_config = speechsdk.SpeechConfig(
                subscription=self.speech_key,
                region=self.speech_region,
            )
            # Detailed output carries NBest confidence scores
            self.speech_config.output_format = speechsdk.OutputFormat.Detailed
            self._initialized = True
            logger.info("Azure Speech config initialized (region=%s).", self.speech_region)
        except ImportError:
            logger.error("azure-cognitiveservices-speech package not installed.")
        except Exception as exc:
            logger.error("Failed to init Speech config: %s", exc)

    def is_available(self) -> bool:
        """True if the speech service is configured and the SDK loaded."""
        return self._initialized

    # ------------------------------------------------------------------
    # Speech input
    # ------------------------------------------------------------------

    def start_capture(
        self,
        language: str = "en-US",
        audio_path: Optional[str] = None,
    ) -> Iterator[RecognitionResult]:
        """Capture one utterance from the microphone or a WAV file.

        Single-shot recognition returns one final result, so this yields at
        most one item. Nothing is yielded when recognition fails.

        Args:
            language: BCP-47 locale to recognize (e.g. 'hi-IN').
            audio_path: Optional WAV file; the default microphone otherwise.

        Yields:
            RecognitionResult items.
        """
        if not self._initialized:
            logger.warning("Speech not initialized.")
            return

        try:
            import azure.cognitiveservices.speech as speechsdk

            self.speech_config.speech_recognition_language = language
            if audio_path:
                audio_config = speechsdk.audio.AudioConfig(filename=audio_path)
            else:
                audio_config = speechsdk.audio.AudioConfig(use_default_microphone=True)

            recognizer = speechsdk.SpeechRecognizer(
                speech_config=self.speech_config,
                audio_config=audio_config,
            )

            logger.info("Listening for speech input (%s)...", language)
            parsed = self._process_result(recognizer.recognize_once())
        except Exception as exc:
            logger.error("Speech recognition error: %s", exc)
            return

        if parsed:
            yield RecognitionResult(parsed["text"], True, parsed["confidence"])

    def capture_recording(
        self,
        raw_bytes: bytes,
        language: str = "en-US",
        source_suffix: str = ".wav",
    ) -> Iterator[RecognitionResult]:
        """Recognize audio recorded in the browser.

        Args:
            raw_bytes: Audio bytes from ``st.audio_input``.
            language: BCP-47 locale to recognize.
            source_suffix: Extension of the recorded format. Anything other
                than '.wav' is converted first.

        Yields:
            RecognitionResult items, as ``start_capture`` does.
        """
        import tempfile

        if not self._initialized:
            logger.warning("Speech not initialized.")
            return

        if source_suffix == ".wav":
            with tempfile.NamedTemporaryFile(suffix=".wav", delete=False) as tmp:
                tmp.write(raw_bytes)
                wav_path = tmp.name
        else:
            wav_path = self.convert_browser_audio_to_wav(raw_bytes, source_suffix)
            if wav_path is None:
                return

        try:
            yield from self.start_capture(language, audio_path=wav_path)
        finally:
            os.unlink(wav_path)

    def convert_browser_audio_to_wav(self, raw_bytes: bytes, source_suffix: str = ".webm") -> Optional[str]:
        """Re-encode a browser recording (WebM/Opus, OGG, MP4) as 16 kHz mono WAV.

        Args:
            raw_bytes: Recorded audio.
            source_suffix: Extension matching the recorded container.

        Returns:
            Path of a temporary WAV file owned by the caller, or None.
        """
        import tempfile

        try:
            with tempfile.NamedTemporaryFile(suffix=source_suffix, delete=False) as recording:
                recording.write(raw_bytes)
                source = recording.name
        except OSError as exc:
            logger.error("Could not buffer browser audio: %s", exc)
            return None

        target = os.path.splitext(source)[0] + ".wav"
        try:
            for convert in (_ffmpeg_to_wav, _pydub_to_wav):
                if convert(source, target):
                    return target
            logger.warning("Browser audio could not be converted to WAV.")
            if os.path.exists(target):
                os.unlink(target)
            return None
        finally:
            os.unlink(source)

    # ------------------------------------------------------------------
    # Speech output
    # ------------------------------------------------------------------

    def speak(self, text: str, language: str = "en-US") -> bool:
        """Speak text through the default speaker.

        Args:
            text: Text to synthesize.
            language: BCP-47 locale for voice selection.

        Returns:
            True if synthesis completed.
        """
        if not self._initialized:
            logger.warning("Speech not initialized.")
            return False

        try:
            import azure.cognitiveservices.speech as speechsdk

            self.speech_config.speech_synthesis_language = language
            synthesizer = speechsdk.SpeechSynthesizer(speech_config=self.speech_config)
            result = synthesizer.speak_text_async(text).get()

            if result.reason == speechsdk.ResultReason.SynthesizingAudioCompleted:
                logger.info("TTS completed for language %s.", language)
                return True
            logger.warning("TTS failed: %s", result.reason)
            return False

        except Exception as exc:
            logger.error("TTS error: %s", exc)
            return False

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _process_result(self, result) -> Optional[dict]:
        """Turn a SpeechRecognitionResult into ``{text, confidence}`` or None."""
        import azure.cognitiveservices.speech as speechsdk

        if result.reason == speechsdk.ResultReason.RecognizedSpeech:
            confidence = None
            try:
                nbest = json.loads(result.json).get("NBest") or [{}]
                confidence = nbest[0].get("Confidence")
            except (TypeError, ValueError, AttributeError):
                pass
            logger.info("Recognized: '%s' (confidence=%s)", result.text, confidence)
            return {"text": result.text, "confidence": confidence}

        if result.reason == speechsdk.ResultReason.NoMatch:
            logger.warning("No speech recognized.")
            return None

        if result.reason == speechsdk.ResultReason.Canceled:
            cancellation = result.cancellation_details
            details = getattr(cancellation, "error_details", "") or ""
            logger.error(
                "Speech recognition canceled (reason=%s details=%s)",
                cancellation.reason,
                details,
            )
            if "authentication" in details.lower():
                logger.error(
                    "Azure Speech authentication failed. "
                    "Check SPEECH_KEY and SPEECH_REGION in your .env file."
                )
        return None


def _ffmpeg_to_wav(source: str, target: str) -> bool:
    import subprocess

    command = [
        "ffmpeg", "-y", "-i", source,
        "-ar", "16000", "-ac", "1", "-sample_fmt", "s16",
        target,
    ]
    try:
        subprocess.run(command, check=True, capture_output=True, timeout=30)
    except (OSError, subprocess.SubprocessError) as exc:
        logger.warning("ffmpeg conversion unavailable (%s).", exc)
        return False
    logger.info("Browser audio converted with ffmpeg: %s", target)
    return True


def _pydub_to_wav(source: str, target: str) -> bool:
    try:
        from pydub import AudioSegment

        segment = AudioSegment.from_file(source)
        segment.set_frame_rate(16000).set_channels(1).set_sample_width(2).export(
            target, format="wav"
        )
    except Exception as exc:
        logger.warning("pydub conversion failed: %s", exc)
        return False
    logger.info("Browser audio converted with pydub: %s", target)
    return True
