# pylint: disable=missing-module-docstring,missing-function-docstring

import json

import pytest

from audio.frames import AudioChunk
from protocol.transcription import (
    ProtocolDecodeError,
    ServerErrorMessage,
    TextMessageAssembler,
    TranscriptMessage,
    decode_message,
    encode_audio_frame,
    encode_error_message,
    encode_stop_frame,
    encode_transcript_message,
)


# ---------------------------------------------------------------------
# Encode
# ---------------------------------------------------------------------

def test_stop_frame_is_fixed_text_payload():
    assert encode_stop_frame() == '{"action":"stop"}'
    assert json.loads(encode_stop_frame()) == {"action": "stop"}


def test_audio_frame_is_whole_chunk():
    pcm = bytes(range(10))
    assert encode_audio_frame(AudioChunk(pcm_bytes=pcm)) == pcm


def test_server_payloads_decode_with_client_decoder():
    assert decode_message(encode_transcript_message("hello", is_final=True)) == (
        TranscriptMessage(text="hello", is_final=True)
    )
    assert decode_message(encode_error_message("model overloaded")) == (
        ServerErrorMessage(error="model overloaded")
    )


# ---------------------------------------------------------------------
# Decode
# ---------------------------------------------------------------------

def test_decode_defaults_missing_fields():
    assert decode_message("{}") == TranscriptMessage(text="", is_final=False)
    assert decode_message('{"text": null}') == TranscriptMessage(text="", is_final=False)


def test_decode_error_wins_over_text():
    message = decode_message('{"text": "hi", "final": true, "error": "boom"}')
    assert message == ServerErrorMessage(error="boom")


def test_decode_empty_error_is_treated_as_transcript():
    message = decode_message('{"text": "hi", "error": ""}')
    assert message == TranscriptMessage(text="hi", is_final=False)


def test_decode_accepts_utf8_bytes():
    raw = '{"text": "café", "final": false}'.encode("utf-8")
    assert decode_message(raw) == TranscriptMessage(text="café", is_final=False)


@pytest.mark.parametrize(
    "raw",
    [
        "not json",
        "[1, 2]",
        '{"text": 5}',
        '{"text": "x", "final": "yes"}',
    ],
)
def test_decode_rejects_malformed(raw: str):
    with pytest.raises(ProtocolDecodeError):
        decode_message(raw)


# ---------------------------------------------------------------------
# Fragment assembly
# ---------------------------------------------------------------------

def test_assembler_joins_text_fragments():
    assembler = TextMessageAssembler()
    for fragment in ['{"text": "hel', 'lo wor', 'ld", "final": true}']:
        assembler.feed(fragment)

    assert assembler.finish() == TranscriptMessage(text="hello world", is_final=True)


def test_assembler_ignores_binary_messages_and_resets():
    assembler = TextMessageAssembler()
    assembler.feed(b"\x00\x01")
    assembler.feed(b"\x02")
    assert assembler.finish() is None

    assembler.feed('{"text": "next"}')
    assert assembler.finish() == TranscriptMessage(text="next", is_final=False)


def test_assembler_surfaces_decode_errors():
    assembler = TextMessageAssembler()
    assembler.feed("{broken")
    with pytest.raises(ProtocolDecodeError):
        assembler.finish()
