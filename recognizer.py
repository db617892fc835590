"""Transcription backend using DashScope qwen3-asr-flash.

The model accepts complete audio as a base64 WAV and streams back the
growing transcript. The last non-empty text of the stream is the single
hypothesis of the result; an empty stream is a result without matches.
"""

from __future__ import annotations

import base64
import io
import logging
import os
import wave
from dataclasses import dataclass

from errors import RESULT_CLIENT_ERROR, RESULT_NETWORK_ERROR, RESULT_SERVER_ERROR, BackendError

try:
    import dashscope
except Exception:  # pragma: no cover
    dashscope = None  # type: ignore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TranscribeOptions:
    sample_rate: int = 16000
    channels: int = 1
    user_agent: str = ""
    server_url: str = ""
    grammar_url: str = ""
    target_lang: str = ""
    nbest: int = 1


def _pcm_to_wav_base64(
    pcm: bytes,
    sample_rate: int = 16000,
    channels: int = 1,
    sample_width: int = 2,
) -> str:
    """Convert raw PCM bytes to a base64-encoded WAV string."""
    buf = io.BytesIO()
    with wave.open(buf, "wb") as wf:
        wf.setnchannels(channels)
        wf.setsampwidth(sample_width)
        wf.setframerate(sample_rate)
        wf.writeframes(pcm)
    return base64.b64encode(buf.getvalue()).decode("ascii")


class DashscopeTranscriber:
    def __init__(
        self,
        api_key: str = "",
        model: str = "qwen3-asr-flash",
        request_timeout_s: float = 10.0,
    ) -> None:
        self._api_key = api_key
        self._model = model
        self._request_timeout_s = request_timeout_s

    def transcribe(self, pcm: bytes, options: TranscribeOptions) -> list[str]:
        """Return hypotheses best first, or raise BackendError."""
        if dashscope is None:
            raise BackendError(RESULT_CLIENT_ERROR, "dashscope is not installed")
        api_key = self._api_key or os.getenv("DASHSCOPE_API_KEY", "")
        if not api_key:
            raise BackendError(RESULT_CLIENT_ERROR, "No API key configured")
        if not pcm:
            return []
        if options.grammar_url:
            logger.debug("Grammar %s is not supported by %s, ignoring", options.grammar_url, self._model)

        if options.server_url:
            dashscope.base_http_api_url = options.server_url
        asr_options: dict[str, object] = {"enable_itn": False}
        if options.target_lang:
            asr_options["language"] = options.target_lang

        wav_b64 = _pcm_to_wav_base64(pcm, options.sample_rate, options.channels)
        try:
            response = dashscope.MultiModalConversation.call(
                api_key=api_key,
                model=self._model,
                messages=[
                    {"role": "system", "content": [{"text": ""}]},
                    {"role": "user", "content": [{"audio": wav_b64}]},
                ],
                result_format="message",
                asr_options=asr_options,
                stream=True,
                timeout=self._request_timeout_s,
                headers={"User-Agent": options.user_agent},
            )
            latest_text = ""
            for chunk in response:
                self._check_status(chunk)
                text = self._extract_text(chunk)
                if text:
                    latest_text = text
        except BackendError:
            raise
        except Exception as exc:
            raise self._to_backend_error(exc) from exc

        latest_text = latest_text.strip()
        return [latest_text][: max(options.nbest, 1)] if latest_text else []

    def _check_status(self, chunk: object) -> None:
        if not isinstance(chunk, dict):
            return
        status = chunk.get("status_code", 200)
        if isinstance(status, int) and status != 200:
            message = str(chunk.get("message") or chunk.get("code") or status)
            raise BackendError(RESULT_SERVER_ERROR, f"{status}: {message}")

    def _extract_text(self, chunk: object) -> str:
        """Pull text from a dashscope streaming chunk dict."""
        if isinstance(chunk, dict):
            output = chunk.get("output") or {}
            choices = output.get("choices", [])
            if not choices:
                return ""
            message = choices[0].get("message", {})
            content = message.get("content", [])
            if not content:
                return ""
            value = content[0]
            if isinstance(value, dict):
                return str(value.get("text", ""))
        return ""

    def _to_backend_error(self, exc: Exception) -> BackendError:
        """Map an SDK/network exception to a backend result code."""
        message = str(exc)
        low = message.lower()
        if isinstance(exc, (ConnectionError, TimeoutError)) or any(
            word in low for word in ("timeout", "network", "connection", "resolve")
        ):
            code = RESULT_NETWORK_ERROR
        else:
            code = RESULT_SERVER_ERROR
        return BackendError(code, message)
