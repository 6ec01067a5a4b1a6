import pytest

from advisor_core.domain.exceptions import MalformedResponseError
from advisor_core.streaming import StreamFrameDecoder, extract_delta


def _deltas(frames):
    return "".join(extract_delta(f.payload) or "" for f in frames if not f.is_sentinel_end)


def _decode_in_chunks(body: bytes, size: int):
    decoder = StreamFrameDecoder()
    frames = []
    for i in range(0, len(body), size):
        frames.extend(decoder.feed(body[i:i + size]))
    frames.extend(decoder.finish())
    return frames


def test_decoder_basic_frames_and_sentinel(sse):
    decoder = StreamFrameDecoder()
    frames = decoder.feed(sse("Hello", " world"))
    assert [f.is_sentinel_end for f in frames] == [False, False, True]
    assert _deltas(frames) == "Hello world"
    assert decoder.finish() == []


def test_decoder_partial_json_across_chunks():
    decoder = StreamFrameDecoder()
    first = decoder.feed(b'data: {"choices":[{"delta":{"content":"Hel')
    assert first == []
    second = decoder.feed(b'lo world"}}]}\n\n')
    assert _deltas(second) == "Hello world"
    assert decoder.pending_bytes == b""
    assert decoder.pending_line is None


@pytest.mark.parametrize("size", [1, 2, 3, 7, 16, 1000])
def test_decoder_chunk_boundary_invariance(sse, size):
    body = sse("Привет, ", "мир ", "🚀", "!")
    frames = _decode_in_chunks(body, size)
    assert _deltas(frames) == "Привет, мир 🚀!"
    assert sum(1 for f in frames if f.is_sentinel_end) == 1


def test_decoder_strips_carriage_return():
    decoder = StreamFrameDecoder()
    frames = decoder.feed(b'data: {"choices":[{"delta":{"content":"a"}}]}\r\n\r\ndata: [DONE]\r\n')
    assert _deltas(frames) == "a"
    assert frames[-1].is_sentinel_end


def test_decoder_ignores_comments_and_unknown_lines():
    decoder = StreamFrameDecoder()
    body = b': keep-alive\nevent: ping\nid: 3\ndata:\n\ndata: {"choices":[{"delta":{"content":"x"}}]}\n'
    frames = decoder.feed(body)
    assert len(frames) == 1
    assert _deltas(frames) == "x"


def test_decoder_emits_comments_when_asked():
    decoder = StreamFrameDecoder(emit_comments=True)
    frames = decoder.feed(b": OPENROUTER PROCESSING\n")
    assert len(frames) == 1
    assert frames[0].is_comment
    assert frames[0].payload is None


def test_decoder_ignores_non_object_payloads():
    decoder = StreamFrameDecoder()
    assert decoder.feed(b"data: [1, 2, 3]\ndata: 42\n") == []


def test_decoder_joins_event_split_by_raw_newline():
    decoder = StreamFrameDecoder()
    frames = decoder.feed(b'data: {"choices":[{"delta":{"content":"a\nb"}}]}\n')
    assert _deltas(frames) == "a\nb"


def test_decoder_abandons_pending_line_superseded_by_new_event():
    decoder = StreamFrameDecoder()
    frames = decoder.feed(b'data: {"choices":[{"delta":\ndata: {"choices":[{"delta":{"content":"ok"}}]}\n')
    assert _deltas(frames) == "ok"
    assert decoder.discarded == ['{"choices":[{"delta":']
    assert decoder.pending_line is None


def test_decoder_abandons_oversized_pending_line():
    decoder = StreamFrameDecoder(max_pending_bytes=64)
    decoder.feed(b'data: {"broken\n')
    decoder.feed(b"x" * 40 + b"\n")
    assert decoder.pending_line is not None
    decoder.feed(b"x" * 40 + b"\n")
    assert decoder.pending_line is None
    assert len(decoder.discarded) == 1


def test_decoder_finish_flushes_unterminated_line():
    decoder = StreamFrameDecoder()
    assert decoder.feed(b'data: {"choices":[{"delta":{"content":"tail"}}]}') == []
    frames = decoder.finish()
    assert _deltas(frames) == "tail"


def test_decoder_finish_reports_trailing_garbage():
    decoder = StreamFrameDecoder()
    decoder.feed(b'data: {"choices":[{"delta":{"content":"a"}}]}\n')
    decoder.feed(b'data: {"choices":[{"delta":{"content":"b"}}]}\ndata: {"choi')
    with pytest.raises(MalformedResponseError) as exc:
        decoder.finish()
    assert exc.value.code == "MALFORMED_TRAILING"
    assert exc.value.extra["trailing"] == '{"choi'
    assert exc.value.extra["frames"] == []


def test_decoder_rejects_unbounded_unterminated_line():
    decoder = StreamFrameDecoder(max_pending_bytes=1024)
    with pytest.raises(MalformedResponseError) as exc:
        decoder.feed(b"data: " + b"x" * 2000)
    assert exc.value.code == "FRAME_TOO_LARGE"
    assert decoder.pending_bytes == b""


def test_decoder_too_large_keeps_frames_decoded_earlier(sse):
    decoder = StreamFrameDecoder(max_pending_bytes=256)
    body = sse("kept", done=False) + b"data: " + b"x" * 400 + b"\n"
    with pytest.raises(MalformedResponseError) as exc:
        decoder.feed(body)
    assert exc.value.code == "FRAME_TOO_LARGE"
    assert _deltas(exc.value.extra["frames"]) == "kept"


@pytest.mark.parametrize("size", [1, 7, 64, 1000])
def test_decoder_size_limit_does_not_depend_on_chunking(sse, size):
    body = sse("kept", done=False) + b"data: " + b"x" * 300 + b"\n"
    decoder = StreamFrameDecoder(max_pending_bytes=256)
    frames = []
    with pytest.raises(MalformedResponseError) as exc:
        for i in range(0, len(body), size):
            frames.extend(decoder.feed(body[i:i + size]))
    frames.extend(exc.value.extra["frames"])
    assert exc.value.code == "FRAME_TOO_LARGE"
    assert _deltas(frames) == "kept"
