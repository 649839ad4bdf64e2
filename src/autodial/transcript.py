import json


def to_plain_text(transcript) -> str:
    """Render turns as "Agent: ..." / "Customer: ..." lines."""
    lines = []
    for turn in transcript:
        label = "Agent" if turn.speaker == "agent" else "Customer"
        lines.append(f"{label}: {turn.text}")
    return "\n".join(lines)


def to_timestamped_dump(session, outcome: str) -> dict:
    """Build a transcript dump with timestamps relative to call start."""
    base = session.created_at
    if base <= 0 and session.transcript:
        base = session.transcript[0].timestamp
    entries = []
    for turn in session.transcript:
        entries.append({
            "t": round(turn.timestamp - base, 1),
            "role": turn.speaker,
            "state": turn.state,
            "content": turn.text,
        })
    return {
        "call_id": session.call_id,
        "phone": session.customer.phone,
        "final_state": session.state.value,
        "end_reason": session.end_reason,
        "outcome": outcome,
        "entries": entries,
    }


def chunk_transcript_dump(dump: dict, max_bytes: int = 3500) -> list[str]:
    """Split a dump into ``TRANSCRIPT_DUMP|n/m|{json}`` log lines.

    The first chunk carries the header fields; later chunks carry entries
    only. Each chunk stays under ``max_bytes`` unless a single entry is
    larger on its own.
    """
    header = {k: v for k, v in dump.items() if k != "entries"}
    entries = dump.get("entries", [])

    groups: list[list[dict]] = []
    current: list[dict] = []
    size = len(json.dumps({**header, "entries": []}).encode("utf-8"))
    for entry in entries:
        entry_size = len(json.dumps(entry).encode("utf-8")) + 2
        if current and size + entry_size > max_bytes:
            groups.append(current)
            current = []
            size = len(json.dumps({"entries": []}).encode("utf-8"))
        current.append(entry)
        size += entry_size
    groups.append(current)

    total = len(groups)
    lines = []
    for i, group in enumerate(groups):
        body = {**header, "entries": group} if i == 0 else {"entries": group}
        lines.append(f"TRANSCRIPT_DUMP|{i + 1}/{total}|{json.dumps(body)}")
    return lines
