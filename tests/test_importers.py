import pytest
import tempfile
from pathlib import Path

from bridgescore.importers.plaintext import TranscriptImporter
from bridgescore.schemas import CallRecord


class TestTranscriptImporter:
    def setup_method(self):
        self.importer = TranscriptImporter()

    def _write(self, content, suffix='.txt'):
        f = tempfile.NamedTemporaryFile(mode='w', suffix=suffix, delete=False, encoding='utf-8')
        f.write(content)
        f.close()
        return Path(f.name)

    def test_parse_plaintext(self):
        content = """Rep: Thanks for joining. What problem are you trying to solve?
Prospect: Our onboarding takes three weeks.
Rep: Let's schedule a demo on Monday.
"""
        path = self._write(content)

        call = self.importer.parse_file(path)

        assert isinstance(call, CallRecord)
        assert call.call_id == path.stem
        assert call.organization_id is None
        assert call.status == "pending"
        assert call.transcript.startswith("Rep: Thanks for joining.")
        assert call.transcript.endswith("Monday.")

    def test_front_matter_sets_ids(self):
        content = """---
call_id: call-42
organization_id: org-7
user_id: rep-3
---
Rep: What is your budget?
Prospect: Around 50k.
"""
        path = self._write(content, suffix='.md')

        call = self.importer.parse_file(path)

        assert call.call_id == "call-42"
        assert call.organization_id == "org-7"
        assert call.user_id == "rep-3"
        assert call.transcript == "Rep: What is your budget?\nProspect: Around 50k."

    def test_numeric_front_matter_values_become_strings(self):
        path = self._write("---\ncall_id: 1001\norganization_id: 55\n---\nRep: Hi\n")

        call = self.importer.parse_file(path)

        assert call.call_id == "1001"
        assert call.organization_id == "55"

    def test_markdown_headings_dropped(self):
        content = """# Discovery call - Acme

Rep: What challenge brought you here?
## Pricing
Prospect: Cost.
"""
        path = self._write(content, suffix='.md')

        call = self.importer.parse_file(path)

        assert "#" not in call.transcript
        assert "Rep: What challenge brought you here?" in call.transcript
        assert "Prospect: Cost." in call.transcript

    def test_find_files(self, tmp_path):
        (tmp_path / "b.md").write_text("Rep: hi")
        (tmp_path / "a.txt").write_text("Rep: hi")
        (tmp_path / "notes.json").write_text("{}")
        (tmp_path / "sub").mkdir()

        files = self.importer.find_files(tmp_path)

        assert [f.name for f in files] == ["a.txt", "b.md"]

    def test_missing_file(self):
        with pytest.raises(FileNotFoundError):
            self.importer.parse_file(Path("/nonexistent/call.txt"))
