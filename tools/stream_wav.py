# tools/stream_wav.py
# Usage: python tools/stream_wav.py hello.wav
import asyncio
import sys
import wave

from adapters.asr.realtime import RealtimeTranscriber
from audio.pcm import pcm16le_duration_s, pcm16le_peak
from config import AppConfig
from constants import AUDIO_CHANNELS, AUDIO_SAMPLE_RATE_HZ, AUDIO_SAMPLE_WIDTH_BYTES
from orchestrator.events import Event, StreamDisconnected, StreamError, Transcription

CHUNK_BYTES = 3200  # 100ms


async def main(path: str) -> None:
    with wave.open(path, "rb") as wf:
        assert wf.getframerate() == AUDIO_SAMPLE_RATE_HZ
        assert wf.getnchannels() == AUDIO_CHANNELS
        assert wf.getsampwidth() == AUDIO_SAMPLE_WIDTH_BYTES
        pcm = wf.readframes(wf.getnframes())

    print("duration_s:", pcm16le_duration_s(len(pcm)))
    print("peak:", round(pcm16le_peak(pcm), 3))

    done = asyncio.Event()

    async def on_event(event: Event) -> None:
        if isinstance(event, Transcription):
            print("FINAL" if event.is_final else "partial", repr(event.text))
            if event.is_final:
                done.set()
        elif isinstance(event, StreamError):
            print("ERROR", event.reason)
        elif isinstance(event, StreamDisconnected):
            print("disconnected: sent", event.chunks_sent, "skipped", event.chunks_skipped)
            done.set()

    cfg = AppConfig.load_from_env().validated()
    async with RealtimeTranscriber(cfg.transcriber, emit_event=on_event) as transcriber:
        await transcriber.connect()
        for i in range(0, len(pcm), CHUNK_BYTES):
            transcriber.send_audio_chunk(pcm[i:i + CHUNK_BYTES])
            await asyncio.sleep(0.1)  # real time
        await transcriber.stop()
        try:
            await asyncio.wait_for(done.wait(), timeout=10)
        except asyncio.TimeoutError:
            print("no final transcript within 10s")


asyncio.run(main(sys.argv[1] if len(sys.argv) > 1 else "hello.wav"))
