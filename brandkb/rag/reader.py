"""Document reader for extracting text and metadata from source files.

Handles:
- PDF text extraction (text layer only, no OCR)
- Markdown with YAML frontmatter
- Plain text
- Heading hierarchy extraction for section breadcrumbs
"""
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Tuple

import structlog
import yaml
from pypdf import PdfReader

from brandkb.errors import MalformedInputError, NotFoundError

logger = structlog.get_logger()


def _plain_value(value: Any) -> Any:
    """Convert YAML values to JSON-safe types (dates become ISO strings)."""
    if isinstance(value, dict):
        return {str(k): _plain_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_plain_value(v) for v in value]
    if hasattr(value, "isoformat"):
        return value.isoformat()
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    return str(value)


@dataclass
class DocumentContent:
    """Extracted document text with structural metadata."""

    path: Path
    text: str
    page_count: int
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class Heading:
    """Represents a markdown heading with hierarchy."""

    level: int  # 1-6 for h1-h6
    text: str
    char_position: int


class DocumentReader:
    """Reads PDF, markdown and plain text documents."""

    # Regex for YAML frontmatter (must be at start of file)
    FRONTMATTER_PATTERN = re.compile(
        r"^---\s*\n(.*?)\n---\s*\n", re.DOTALL | re.MULTILINE
    )

    # Regex for markdown headings
    HEADING_PATTERN = re.compile(r"^(#{1,6})\s+(.+?)$", re.MULTILINE)

    PDF_SUFFIXES = (".pdf",)
    MARKDOWN_SUFFIXES = (".md", ".markdown")
    TEXT_SUFFIXES = (".txt",)

    def supports(self, file_path: Path) -> bool:
        """Check whether the file extension is one this reader handles."""
        suffix = file_path.suffix.lower()
        return suffix in (
            self.PDF_SUFFIXES + self.MARKDOWN_SUFFIXES + self.TEXT_SUFFIXES
        )

    def read(self, file_path: Path) -> DocumentContent:
        """Read a document and extract its text and metadata.

        Args:
            file_path: Path to the document

        Returns:
            DocumentContent with raw text, page count and metadata

        Raises:
            NotFoundError: If the file doesn't exist
            MalformedInputError: If the file can't be decoded or parsed
        """
        file_path = Path(file_path)
        if not file_path.is_file():
            raise NotFoundError(f"Document not found: {file_path}")

        suffix = file_path.suffix.lower()
        if suffix in self.PDF_SUFFIXES:
            document = self._read_pdf(file_path)
        elif suffix in self.MARKDOWN_SUFFIXES:
            document = self._read_markdown(file_path)
        elif suffix in self.TEXT_SUFFIXES:
            document = DocumentContent(
                path=file_path,
                text=self._read_text(file_path),
                page_count=1,
                metadata={"title": file_path.stem},
            )
        else:
            raise MalformedInputError(f"Unsupported document type: {file_path.name}")

        logger.info(
            "document_read",
            path=str(file_path),
            pages=document.page_count,
            content_length=len(document.text),
        )

        return document

    def _read_pdf(self, file_path: Path) -> DocumentContent:
        try:
            reader = PdfReader(str(file_path))
            pages = [page.extract_text() or "" for page in reader.pages]
            info = reader.metadata
        except Exception as e:
            logger.error("pdf_read_failed", path=str(file_path), error=str(e))
            raise MalformedInputError(f"Failed to read PDF {file_path.name}: {e}") from e

        metadata: Dict[str, Any] = {}
        if info:
            for key, attr in (("title", "title"), ("author", "author"), ("subject", "subject")):
                value = getattr(info, attr, None)
                if value:
                    metadata[key] = str(value)
        metadata.setdefault("title", file_path.stem)

        return DocumentContent(
            path=file_path,
            text="\n\n".join(pages),
            page_count=len(pages),
            metadata=metadata,
        )

    def _read_markdown(self, file_path: Path) -> DocumentContent:
        content = self._read_text(file_path)
        frontmatter, body = self._parse_frontmatter(content)

        metadata: Dict[str, Any] = {"title": file_path.stem}
        for key in ["title", "tags", "author", "created", "updated"]:
            if key in frontmatter:
                metadata[key] = _plain_value(frontmatter[key])

        return DocumentContent(
            path=file_path, text=body, page_count=1, metadata=metadata
        )

    def _read_text(self, file_path: Path) -> str:
        try:
            return file_path.read_text(encoding="utf-8")
        except UnicodeDecodeError as e:
            logger.error("document_encoding_error", path=str(file_path), error=str(e))
            raise MalformedInputError(
                f"Document is not valid UTF-8: {file_path.name}"
            ) from e
        except OSError as e:
            logger.error("document_read_failed", path=str(file_path), error=str(e))
            raise MalformedInputError(f"Failed to read {file_path.name}: {e}") from e

    def _parse_frontmatter(self, content: str) -> Tuple[Dict[str, Any], str]:
        """Extract YAML frontmatter from markdown content.

        Args:
            content: Full markdown content

        Returns:
            Tuple of (frontmatter_dict, content_without_frontmatter)
        """
        match = self.FRONTMATTER_PATTERN.match(content)

        if not match:
            return {}, content

        yaml_content = match.group(1)
        try:
            frontmatter = yaml.safe_load(yaml_content)
        except yaml.YAMLError as e:
            logger.warning(
                "frontmatter_parse_error",
                error=str(e),
                yaml_preview=yaml_content[:100],
            )
            frontmatter = None

        if not isinstance(frontmatter, dict):
            frontmatter = {}

        return frontmatter, content[match.end():]

    def extract_headings(self, content: str) -> List[Heading]:
        """Extract all markdown headings with their positions.

        Args:
            content: Markdown content (without frontmatter)

        Returns:
            List of Heading objects
        """
        return [
            Heading(
                level=len(match.group(1)),
                text=match.group(2).strip(),
                char_position=match.start(),
            )
            for match in self.HEADING_PATTERN.finditer(content)
        ]

    @staticmethod
    def get_heading_context(headings: List[Heading], char_position: int) -> str:
        """Get hierarchical heading context for a given character position.

        Returns a breadcrumb-like string of headings leading to this position,
        e.g. ``"Voice > Tone > Social"``.
        """
        context_stack: List[Heading] = []

        for heading in headings:
            if heading.char_position > char_position:
                break
            # Pop headings at same or deeper level
            while context_stack and context_stack[-1].level >= heading.level:
                context_stack.pop()
            context_stack.append(heading)

        return " > ".join(h.text for h in context_stack)
