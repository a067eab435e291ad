"""
Speech-to-text. wav / mp3 go to the audio-capable completion model as base64
input_audio; browser and phone recordings (webm, m4a, ogg, ...) go to the
transcriptions endpoint, which takes them as uploaded files.
"""
import base64
import logging
import os

from diary import ai, config

logger = logging.getLogger(__name__)

SUPPORTED_FORMATS = ("wav", "mp3")
TRANSCRIPTION_FORMATS = ("webm", "m4a", "mp4", "ogg", "oga", "flac", "mpga")

PROMPT = "请将这段语音逐字转写为文字，只返回转写结果，不要添加任何解释。"


class UnsupportedAudioFormat(ValueError):
    def __init__(self, fmt: str):
        super().__init__(f"Unsupported audio format: {fmt}")
        self.format = fmt


def audio_format(filename: str) -> str:
    """Lower-case extension, with aliases folded; 'wav' when there is none."""
    ext = os.path.splitext(filename or "")[1].lower().lstrip(".")
    if ext == "mpeg":
        return "mp3"
    if ext == "weba":
        return "webm"
    return ext or "wav"


def encode_audio(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def _input_audio(client, data: bytes, fmt: str):
    return client.chat.completions.create(
        model=config.TRANSCRIBE_MODEL,
        modalities=["text"],
        messages=[{
            "role": "user",
            "content": [
                {"type": "text", "text": PROMPT},
                {"type": "input_audio", "input_audio": {"data": encode_audio(data), "format": fmt}},
            ],
        }],
    )


def transcribe_audio(data: bytes, filename: str = "recording.wav") -> str:
    """Return the recognized text.

    Raises UnsupportedAudioFormat before calling out for formats neither path
    accepts, and AIServiceError on failure.
    """
    fmt = audio_format(filename)
    if fmt not in SUPPORTED_FORMATS and fmt not in TRANSCRIPTION_FORMATS:
        raise UnsupportedAudioFormat(fmt)
    client = ai.get_client()
    try:
        if fmt in SUPPORTED_FORMATS:
            r = _input_audio(client, data, fmt)
            text = r.choices[0].message.content if r.choices else ""
        else:
            r = client.audio.transcriptions.create(
                model=config.WHISPER_MODEL,
                file=(f"recording.{fmt}", data),
                language="zh",
            )
            text = r.text
    except Exception as e:
        logger.error("[transcribe] %s: %s", type(e).__name__, e)
        raise ai.AIServiceError(str(e) or type(e).__name__, type(e).__name__) from e
    return (text or "").strip()
