"""
Output Writer - append-only JSON Lines sink plus an end-of-run Markdown report
"""

import json
import logging
import threading
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from models import NOT_SPECIFIED, JobRecord, SearchQuery

logger = logging.getLogger(__name__)


class OutputWriter:
    """
    Sink for normalized jobs.

    append() writes one JSON line per record and never deduplicates; dedup
    happens before records get here. Records are also kept in memory for the
    Markdown report written at the end of the run.
    """

    def __init__(self, jsonl_path: Path, markdown_path: Optional[Path] = None):
        self.jsonl_path = Path(jsonl_path)
        self.markdown_path = Path(markdown_path) if markdown_path else None
        self.records: List[JobRecord] = []
        self._lock = threading.Lock()

    @classmethod
    def from_config(cls, config) -> "OutputWriter":
        markdown = config.get_output_path("markdown") if config.is_markdown_enabled() else None
        return cls(config.get_output_path("jsonl"), markdown)

    def _ensure_output_dir(self, path: Path) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)

    def append(self, record: JobRecord) -> bool:
        line = json.dumps(record.model_dump(), ensure_ascii=False, default=str)
        with self._lock:
            try:
                self._ensure_output_dir(self.jsonl_path)
                with open(self.jsonl_path, "a", encoding="utf-8") as f:
                    f.write(line + "\n")
            except OSError as exc:
                logger.error("Failed to append record to %s: %s", self.jsonl_path, exc)
                return False
            self.records.append(record)
        return True

    def __len__(self) -> int:
        return len(self.records)

    # === Markdown report ===

    @staticmethod
    def _escape_md_cell(value: str) -> str:
        return (value or "").replace("|", "\\|").replace("\n", " ").strip()

    @staticmethod
    def _truncate(text: str, max_len: int) -> str:
        value = (text or "").strip()
        if len(value) <= max_len:
            return value
        return value[: max_len - 3].rstrip() + "..."

    @staticmethod
    def _shown(value: str) -> str:
        return "-" if not value or value == NOT_SPECIFIED else value

    def _details_grid(self) -> List[str]:
        cols = ["#", "Title", "Company", "Location", "Salary", "Job Type", "Posted", "Source"]
        lines = [
            "| " + " | ".join(cols) + " |",
            "| " + " | ".join(["---"] * len(cols)) + " |",
        ]
        for i, job in enumerate(self.records, 1):
            title = self._escape_md_cell(self._truncate(job.title, 80))
            if job.url != NOT_SPECIFIED:
                title = f"[{title}]({job.url})"
            row = [
                str(i),
                title,
                self._escape_md_cell(self._shown(job.company)),
                self._escape_md_cell(self._shown(job.location)),
                self._escape_md_cell(self._shown(job.salary)),
                self._escape_md_cell(self._shown(job.job_type)),
                self._escape_md_cell(self._shown(job.date_posted)),
                self._escape_md_cell(job.source),
            ]
            lines.append("| " + " | ".join(row) + " |")
        lines.append("")
        return lines

    def write_markdown(self, query: SearchQuery, phases_run: Optional[List[str]] = None) -> Optional[Path]:
        """Write the run report; returns its path, or None when disabled."""
        if self.markdown_path is None:
            return None

        timestamp = datetime.now().strftime("%Y-%m-%d %H:%M")
        lines = [
            f"# CareerBuilder Jobs ({timestamp})\n",
            f"**Search:** {query}  ",
            f"**Total Jobs:** {len(self.records)}  ",
        ]
        if phases_run:
            lines.append(f"**Phases:** {' -> '.join(phases_run)}  ")
        lines.append("\n---\n")
        lines.append("## Job Listings\n")

        if not self.records:
            lines.append("*No jobs found.*\n")
        for i, job in enumerate(self.records, 1):
            lines.append(f"### {i}. {job.title}\n")
            lines.append(f"**Company:** {self._shown(job.company)}  ")
            lines.append(f"**Location:** {self._shown(job.location)}  ")
            if job.salary != NOT_SPECIFIED:
                lines.append(f"**Salary:** {job.salary}  ")
            if job.job_type != NOT_SPECIFIED:
                lines.append(f"**Job Type:** {job.job_type}  ")
            if job.date_posted != NOT_SPECIFIED:
                lines.append(f"**Posted:** {job.date_posted}  ")
            if job.url != NOT_SPECIFIED:
                lines.append(f"**Link:** [{job.title}]({job.url})\n")
            if job.description_text != NOT_SPECIFIED:
                snippet = self._truncate(job.description_text.replace("\n", " "), 300)
                lines.append(f"> {snippet}\n")
            lines.append("")

        lines.append("---\n")
        lines.append("## Job Details Grid\n")
        lines.extend(self._details_grid())

        self._ensure_output_dir(self.markdown_path)
        with open(self.markdown_path, "w", encoding="utf-8") as f:
            f.write("\n".join(lines))

        logger.info("Markdown written: %s", self.markdown_path)
        print(f"📝 Markdown saved: {self.markdown_path}")
        return self.markdown_path
