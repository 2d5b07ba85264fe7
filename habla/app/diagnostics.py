from __future__ import annotations


def summarize_exception(detail: str, *, max_len: int = 220) -> str:
    text = str(detail or "").strip()
    if not text:
        return "Unknown runtime error."
    lines = [ln.strip() for ln in text.splitlines() if ln.strip()]
    if not lines:
        return "Unknown runtime error."
    for ln in reversed(lines):
        if ln.startswith("File "):
            continue
        if ln.startswith("^"):
            continue
        if ln.startswith("Traceback "):
            continue
        out = ln
        break
    else:
        out = lines[-1]
    if len(out) > max_len:
        return out[: max_len - 3].rstrip() + "..."
    return out


_HINTS = {
    "ConfigurationError": "Check --direction (es-en or en-es), the API key (OPENAI_API_KEY) and backend settings.",
    "NotFoundError": "The WAV path does not exist. Check the --wav argument.",
    "FormatError": "Input must be a mono, 16-bit, 16 kHz WAV. Convert with: ffmpeg -i in.wav -ac 1 -ar 16000 out.wav",
    "DeviceError": "Microphone init failed. Run --list-devices and pick one with --device; only one capture runs at a time.",
    "InvalidDurationError": "Recording length must be a positive number of seconds within --max-capture-sec.",
    "BackendError": "Speech recognition failed. Check network access, the API key, or the local Whisper model.",
    "NoSpeechError": "No speech was recognized. Speak closer to the microphone or check the input level.",
    "LoadError": "The GGUF model could not be loaded. Check --gemma-model and free memory.",
    "EngineError": "Translation failed while generating. See logs for the full traceback.",
    "ContextBudgetError": "Raise --gemma-ctx or lower --max-output-tokens.",
    "BusyError": "The engine is busy with other requests. Retry shortly.",
}


def hint_for_failure(error_kind: str) -> str:
    return _HINTS.get(str(error_kind or ""), "Check logs for full traceback.")
