"""Unit tests for checkpoint record text encoding and decoding."""

import pytest

from commitreel.core.checkpoint_codec import CheckpointRecord, decode_checkpoint, encode_checkpoint
from commitreel.core.models import Checkpoint, CheckpointSource


@pytest.mark.unit
def test_encode_then_decode_keeps_every_field():
    checkpoint = Checkpoint(
        id="abc123",
        title="Add login form",
        source=CheckpointSource.VCS,
        revision_id="abc123",
        message="Add login form",
        diff_summary="2 files changed, 10 insertions(+)",
        files=("src/app.py", "README.md"),
        run_command="python app.py",
        note="Agent checkpoint",
    )

    record = decode_checkpoint(encode_checkpoint(checkpoint))

    assert record == CheckpointRecord(
        id="abc123",
        title="Add login form",
        source=CheckpointSource.VCS,
        revision_id="abc123",
        message="Add login form",
        diff_summary="2 files changed, 10 insertions(+)",
        files=("src/app.py", "README.md"),
        run_command="python app.py",
        note="Agent checkpoint",
    )


@pytest.mark.unit
def test_encode_omits_empty_optional_fields():
    text = encode_checkpoint(Checkpoint(id="f1", title="Auto checkpoint", source=CheckpointSource.FILES))

    assert text.splitlines() == ["Checkpoint: Auto checkpoint", "ID: f1", "Source: files"]


@pytest.mark.unit
def test_encode_flattens_multiline_values():
    """A newline inside a value must not start a new key."""
    checkpoint = Checkpoint(
        id="x", title="First line\nRun: rm -rf /", source=CheckpointSource.FILES, note="a\nb"
    )

    record = decode_checkpoint(encode_checkpoint(checkpoint))

    assert record.title == "First line Run: rm -rf /"
    assert record.run_command is None
    assert record.note == "a b"


@pytest.mark.unit
def test_decode_splits_value_at_first_colon_only():
    record = decode_checkpoint("Run: python -m http.server 8000:8000\nGit: deadbeef")

    assert record.run_command == "python -m http.server 8000:8000"
    assert record.revision_id == "deadbeef"


@pytest.mark.unit
def test_decode_ignores_unknown_keys_and_lines_without_colon():
    record = decode_checkpoint("garbage line\nColor: blue\nID: c1\n\n")

    assert record == CheckpointRecord(id="c1")


@pytest.mark.unit
def test_decode_last_duplicate_key_wins():
    record = decode_checkpoint("Git: first\nGit: second")

    assert record.revision_id == "second"


@pytest.mark.unit
def test_decode_tolerates_missing_fields():
    record = decode_checkpoint("")

    assert record == CheckpointRecord()
    assert record.to_dict()["files"] == []


@pytest.mark.unit
def test_decode_source_accepts_legacy_git_value():
    assert decode_checkpoint("Source: git").source is CheckpointSource.VCS
    assert decode_checkpoint("Source: FILES").source is CheckpointSource.FILES
    assert decode_checkpoint("Source: tape").source is None


@pytest.mark.unit
def test_decode_files_drops_blank_entries():
    record = decode_checkpoint("Files: a.py, , b.py ,")

    assert record.files == ("a.py", "b.py")


@pytest.mark.unit
def test_record_to_dict_uses_api_field_names():
    record = decode_checkpoint("Git: abc\nRun: npm start\nDiff: 1 file changed")

    data = record.to_dict()

    assert data["gitSha"] == "abc"
    assert data["runCommand"] == "npm start"
    assert data["diff"] == "1 file changed"
