import json

from autodial.session import Turn
from autodial.transcript import chunk_transcript_dump, to_plain_text, to_timestamped_dump


def _turns(n, text="hello"):
    return tuple(
        Turn("agent" if i % 2 == 0 else "customer", f"{text} {i}", 1000.0 + i * 2.5, "greeting")
        for i in range(n)
    )


def test_plain_text_labels():
    assert to_plain_text(_turns(2)) == "Agent: hello 0\nCustomer: hello 1"
    assert to_plain_text(()) == ""


def test_timestamped_dump(session):
    session.transcript = _turns(3)
    session.end_reason = "completed"
    dump = to_timestamped_dump(session, "interested")
    assert dump["call_id"] == "CA_test_123"
    assert dump["phone"] == "+15125551234"
    assert dump["outcome"] == "interested"
    assert dump["end_reason"] == "completed"
    assert [e["t"] for e in dump["entries"]] == [0.0, 2.5, 5.0]
    assert dump["entries"][1]["role"] == "customer"


def test_small_dump_is_one_chunk(session):
    session.transcript = _turns(2)
    lines = chunk_transcript_dump(to_timestamped_dump(session, "no_response"))
    assert len(lines) == 1
    assert lines[0].startswith("TRANSCRIPT_DUMP|1/1|")
    assert json.loads(lines[0].split("|", 2)[2])["outcome"] == "no_response"


def test_large_dump_is_chunked_under_limit(session):
    session.transcript = _turns(40, text="x" * 200)
    lines = chunk_transcript_dump(to_timestamped_dump(session, "interested"), max_bytes=1000)
    assert len(lines) > 1
    total = len(lines)
    entries = []
    for i, line in enumerate(lines, start=1):
        _, position, body = line.split("|", 2)
        assert position == f"{i}/{total}"
        assert len(body.encode("utf-8")) <= 1000
        entries.extend(json.loads(body)["entries"])
    assert len(entries) == 40
    assert "call_id" in json.loads(lines[0].split("|", 2)[2])
    assert "call_id" not in json.loads(lines[1].split("|", 2)[2])
