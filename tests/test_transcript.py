from datetime import datetime

from meetscribe.transcript import COMPLETE_MARKER, TranscriptAssembler


def test_entries_are_formatted_with_time_and_speaker():
    assembler = TranscriptAssembler()

    entry = assembler.append("Let's start with attendance.", datetime(2024, 5, 6, 14, 5, 9))

    assert entry.format() == "[14:05:09] Speaker 1: Let's start with attendance."
    assert entry.arrival_index == 0
    assert len(assembler) == 1


def test_full_text_uses_blank_line_separation_in_arrival_order():
    assembler = TranscriptAssembler(speaker_label="Speaker 1")
    assembler.append("second capture finished first", datetime(2024, 5, 6, 9, 0, 3))
    assembler.append("first capture finished later", datetime(2024, 5, 6, 9, 0, 0))

    assert assembler.get_full_text() == (
        "[09:00:03] Speaker 1: second capture finished first\n\n"
        "[09:00:00] Speaker 1: first capture finished later"
    )


def test_mark_complete_appends_marker_once():
    assembler = TranscriptAssembler()
    assembler.append("Wrapping up now.", datetime(2024, 5, 6, 9, 0, 0))

    assembler.mark_complete()
    assembler.mark_complete()

    text = assembler.get_full_text()
    assert text.endswith("\n\n" + COMPLETE_MARKER)
    assert text.count(COMPLETE_MARKER) == 1
    assert assembler.is_complete


def test_empty_transcript_completes_with_marker_only():
    assembler = TranscriptAssembler()
    assert assembler.get_full_text() == ""
    assembler.mark_complete()
    assert assembler.get_full_text() == COMPLETE_MARKER


def test_listener_receives_each_entry():
    seen = []
    assembler = TranscriptAssembler(listener=seen.append)

    assembler.append("Hello there everyone.", datetime(2024, 5, 6, 9, 0, 0))

    assert [entry.text for entry in seen] == ["Hello there everyone."]
    assert seen[0].to_dict()["captured_at"] == "2024-05-06T09:00:00"
