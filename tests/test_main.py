"""Tests for the penvault command line interface."""
import pytest

from penvault import main as cli
from tests.samples import PDF_BYTES, PNG_BYTES

PASSWORD = "correct-horse"


@pytest.fixture
def run(test_config, monkeypatch, capsys):
    """Run the CLI against the test database; returns (status, stdout, stderr)."""
    # Handlers bound to a captured stream would outlive the test
    monkeypatch.setattr(cli, "configure_logging", lambda **kwargs: None)
    monkeypatch.delenv(cli.PASSWORD_ENV, raising=False)

    def _run(*argv):
        status = cli.main(list(argv))
        captured = capsys.readouterr()
        return status, captured.out, captured.err

    return _run


def _new_note(run, *args):
    status, out, _ = run("new", *args)
    assert status == 0
    return out.strip()


class TestNoteCommands:
    """new / list / show / edit / delete."""

    def test_new_and_list(self, run):
        note_id = _new_note(run, "--title", "Groceries", "--content", "milk #shopping")
        status, out, _ = run("list")
        assert status == 0
        assert note_id in out
        assert "Groceries" in out

    def test_new_from_content_file(self, run, temp_dir):
        source = temp_dir / "body.md"
        source.write_text("from a file #imported", encoding="utf-8")
        note_id = _new_note(run, "--content-file", str(source))
        _, out, _ = run("show", note_id)
        assert "from a file" in out
        assert "tags: imported" in out

    def test_show_renders_wiki_links(self, run):
        note_id = _new_note(run, "--title", "Index", "--content", "See [[Daily Log]]")
        _, plain, _ = run("show", note_id)
        _, rendered, _ = run("show", note_id, "--render")
        assert "[[Daily Log]]" in plain
        assert "[Daily Log](note:daily-log)" in rendered

    def test_show_warns_about_dangling_references(self, run):
        note_id = _new_note(run, "--content", "![x](image:99)")
        status, _, err = run("show", note_id)
        assert status == 0
        assert "image:99 does not resolve" in err

    def test_edit(self, run):
        note_id = _new_note(run, "--title", "Draft")
        assert run("edit", note_id, "--title", "Final")[0] == 0
        _, out, _ = run("show", note_id)
        assert "# Final" in out

    def test_edit_requires_a_change(self, run):
        note_id = _new_note(run)
        status, _, err = run("edit", note_id)
        assert status == 1
        assert "Nothing to change" in err

    def test_unknown_note(self, run):
        for command in (("show", "n_missing"), ("edit", "n_missing", "--title", "x"), ("delete", "n_missing")):
            status, _, err = run(*command)
            assert status == 1
            assert err.startswith("error:")

    def test_database_path_must_not_be_a_directory(self, run, temp_dir):
        status, _, err = run("--database-path", str(temp_dir), "list")
        assert status == 1
        assert "is a directory" in err

    def test_stats(self, run):
        status, out, err = run("--stats", "new", "--title", "Timed")
        assert status == 0
        assert "create_note\t" in err
        assert "create_note" not in out
        assert "create_note\t" not in run("list")[2]

    def test_delete(self, run):
        note_id = _new_note(run)
        assert run("delete", note_id)[0] == 0
        assert note_id not in run("list")[1]


class TestAttachCommand:
    """attach."""

    def test_attach_image_and_file(self, run, temp_dir):
        note_id = _new_note(run, "--title", "Docs")
        image = temp_dir / "cat.png"
        image.write_bytes(PNG_BYTES)
        document = temp_dir / "tax.pdf"
        document.write_bytes(PDF_BYTES)

        status, out, _ = run("attach", note_id, str(image))
        assert status == 0
        assert out.startswith("image:")
        status, out, _ = run("attach", note_id, str(document))
        assert out.startswith("file:")

        _, out, _ = run("show", note_id)
        assert "cat.png\t500 bytes" in out
        assert "tax.pdf" in out

    def test_detach(self, run, temp_dir):
        note_id = _new_note(run)
        image = temp_dir / "cat.png"
        image.write_bytes(PNG_BYTES)
        reference = run("attach", note_id, str(image))[1].strip()

        assert run("detach", reference)[0] == 0
        status, _, err = run("detach", reference)
        assert status == 1
        assert "not found" in err
        status, _, err = run("detach", "picture:1")
        assert status == 1
        assert "Not a blob reference" in err

    def test_attach_to_missing_note(self, run, temp_dir):
        image = temp_dir / "cat.png"
        image.write_bytes(PNG_BYTES)
        status, _, err = run("attach", "n_missing", str(image))
        assert status == 1
        assert "missing note" in err


class TestTransferCommands:
    """export / import / backup / tags / search."""

    def test_plain_export_and_import(self, run, temp_dir):
        _new_note(run, "--title", "Portable", "--content", "#travel")
        status, out, _ = run("export", str(temp_dir))
        exported = out.strip()
        assert status == 0
        assert exported.endswith(".json")

        other_db = temp_dir / "other.db"
        status, out, _ = run("--database-path", str(other_db), "import", exported)
        assert status == 0
        assert "notes_added: 1" in out
        _, out, _ = run("--database-path", str(other_db), "list")
        assert "Portable" in out

    def test_encrypted_export_and_import(self, run, temp_dir, monkeypatch):
        _new_note(run, "--title", "Secret")
        monkeypatch.setenv(cli.PASSWORD_ENV, PASSWORD)
        status, out, _ = run("export", str(temp_dir / "vault.pen.json"), "--encrypt")
        assert status == 0
        assert "Secret" not in (temp_dir / "vault.pen.json").read_text()

        other_db = temp_dir / "other.db"
        status, out, _ = run("--database-path", str(other_db), "import", str(temp_dir / "vault.pen.json"))
        assert status == 0
        assert "notes_added: 1" in out

        monkeypatch.setenv(cli.PASSWORD_ENV, "wrong-password")
        status, _, err = run("--database-path", str(other_db), "import", str(temp_dir / "vault.pen.json"))
        assert status == 1
        assert "Unable to decrypt" in err

    def test_import_missing_file(self, run, temp_dir):
        status, _, err = run("import", str(temp_dir / "nope.json"))
        assert status == 1
        assert "Failed to read import file" in err

    def test_backup_create_and_list(self, run):
        _new_note(run, "--title", "Keep me")
        status, out, _ = run("backup", "create", "--label", "nightly")
        assert status == 0
        assert "_nightly.json" in out
        assert run("backup", "create", "--database")[0] == 0

        _, out, _ = run("backup", "list")
        assert "\texport\t" in out
        assert "\tdatabase\t" in out

    def test_backup_restore(self, run, temp_dir):
        note_id = _new_note(run, "--title", "Restored")
        backup_path = run("backup", "create")[1].strip()
        run("delete", note_id)
        status, out, _ = run("backup", "restore", backup_path)
        assert status == 0
        assert "notes_added: 1" in out

    def test_tags_and_search(self, run):
        _new_note(run, "--title", "A", "--content", "#Work stuff")
        _new_note(run, "--title", "B", "--content", "#home and work")
        _, out, _ = run("tags")
        assert out.split() == ["home", "work"]

        _, out, _ = run("search", "#work")
        assert "\tA" in out and "\tB" not in out
        _, out, _ = run("search", "work")
        assert "\tA" in out and "\tB" in out
