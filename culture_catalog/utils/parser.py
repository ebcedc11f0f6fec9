"""HTML parsing helpers for venue detail pages."""

import re

from bs4 import BeautifulSoup

from ..logger import get_logger

logger = get_logger(__name__)


class HTMLParser:
    """
    Thin wrapper around BeautifulSoup with helpers for labelled fields.

    Detail pages rarely mark up addresses semantically; they show them as
    "주소 : 서울 종로구 ..." lines or as label/value table cells.
    """

    def __init__(self, html: str):
        self.soup = BeautifulSoup(html, "lxml")

    def find_labeled_values(
        self, labels: list[str], exclude: list[str] | None = None
    ) -> list[str]:
        """
        Collect values shown next to any of ``labels``.

        Two layouts are recognised:
        - inline text, "주소 : 서울 종로구 ..." or "· 주소: ..."
        - label/value cells, <th>주소</th><td>...</td> or <dt>/<dd>

        Values containing any ``exclude`` string are dropped, as are bare
        URLs.

        Returns:
            Candidate values in document order, without duplicates.
        """
        exclude = exclude or []
        label_pattern = "|".join(
            r"\s*".join(re.escape(ch) for ch in label) for label in labels
        )
        inline_re = re.compile(rf"(?:{label_pattern})\s*[:：]\s*(.+)", re.IGNORECASE)
        label_re = re.compile(rf"^\s*(?:{label_pattern})\s*[:：]?\s*$", re.IGNORECASE)

        # (context, value) pairs; context is the full line or label + value
        candidates: list[tuple[str, str]] = []

        for line in self.soup.get_text("\n").splitlines():
            match = inline_re.search(line)
            if match:
                candidates.append((line, match.group(1)))

        for cell in self.soup.find_all(["th", "dt", "strong", "span", "label"]):
            label = cell.get_text()
            if not label_re.match(label):
                continue
            sibling = cell.find_next_sibling(["td", "dd", "span", "p", "div"])
            if sibling is not None:
                value = sibling.get_text(" ")
                candidates.append((f"{label} {value}", value))

        values: list[str] = []
        for context, raw in candidates:
            value = self.clean_text(raw)
            if not value or value.startswith(("http://", "https://")):
                continue
            if any(decoy in context for decoy in exclude):
                logger.debug(f"Skipping decoy value: {self.clean_text(context)}")
                continue
            if value not in values:
                values.append(value)
        return values

    @staticmethod
    def clean_text(text: str) -> str:
        if not text:
            return ""
        text = re.sub(r"\s+", " ", text)
        return text.strip()
