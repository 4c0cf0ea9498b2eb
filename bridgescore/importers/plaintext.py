import re
from pathlib import Path
from typing import List, Optional

import frontmatter

from ..schemas import CallRecord

SUPPORTED_SUFFIXES = ('.txt', '.md')


class TranscriptImporter:
    """Reads call transcripts from .txt/.md files.

    An optional leading YAML front matter block may carry ``call_id``,
    ``organization_id`` and ``user_id``; the call id defaults to the file stem.
    """

    def __init__(self):
        self.heading_pattern = re.compile(r'^#+\s')

    def parse_file(self, file_path: Path) -> CallRecord:
        with open(file_path, 'r', encoding='utf-8') as f:
            content = f.read()

        post = frontmatter.loads(content)
        metadata = post.metadata

        return CallRecord(
            call_id=str(metadata.get('call_id') or file_path.stem),
            organization_id=self._optional_str(metadata.get('organization_id')),
            user_id=self._optional_str(metadata.get('user_id')),
            transcript=self._clean_transcript(post.content),
        )

    def find_files(self, input_dir: Path) -> List[Path]:
        return sorted(
            p for p in input_dir.iterdir()
            if p.is_file() and p.suffix.lower() in SUPPORTED_SUFFIXES
        )

    def _clean_transcript(self, content: str) -> str:
        lines = []
        for line in content.split('\n'):
            # Markdown headings are titles, not dialogue
            if self.heading_pattern.match(line):
                continue
            lines.append(line.rstrip())
        return '\n'.join(lines).strip()

    def _optional_str(self, value) -> Optional[str]:
        if value is None:
            return None
        value = str(value).strip()
        return value or None
