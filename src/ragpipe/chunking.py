"""Document chunking strategies."""

import re
from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, Field

from .base import BaseChunker
from .document import DocumentChunk

_HORIZONTAL_WS = re.compile(r"[^\S\n]+")
_SPACE_AROUND_NEWLINE = re.compile(r" ?\n ?")
_EXCESS_BLANK_LINES = re.compile(r"\n{3,}")
_PARAGRAPH_BREAK = re.compile(r"\n{2,}")
_SENTENCE_BREAK = re.compile(r"(?<=[.!?])\s+|\n")
_MARKDOWN_HEADER = re.compile(r"^(#{1,6})\s+(.+)$")

CODE_EXTENSIONS = {
    ".cs": "csharp",
    ".py": "python",
    ".js": "javascript",
    ".ts": "typescript",
    ".java": "java",
    ".cpp": "cpp",
    ".cc": "cpp",
    ".c": "c",
    ".go": "go",
    ".rs": "rust",
    ".rb": "ruby",
}


def normalize_text(text: str) -> str:
    """Normalize line breaks and whitespace.

    Line breaks become ``\\n``, runs of spaces and tabs become one space,
    runs of blank lines collapse into a single blank line, and the result
    is stripped.
    """
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    text = _HORIZONTAL_WS.sub(" ", text)
    text = _SPACE_AROUND_NEWLINE.sub("\n", text)
    text = _EXCESS_BLANK_LINES.sub("\n\n", text)
    return text.strip()


def split_sentences(text: str) -> list[str]:
    """Split text after ``.``, ``!`` or ``?`` followed by whitespace, and at line breaks."""
    return [s.strip() for s in _SENTENCE_BREAK.split(text) if s.strip()]


class ParagraphChunker(BaseChunker):
    """Chunk documents on paragraph boundaries, falling back to sentences.

    Paragraphs (separated by blank lines) are packed greedily into chunks
    of at most ``chunk_size`` characters. A paragraph that is too long on
    its own is split into sentences first. Words and sentences are never
    cut, so a single sentence longer than ``chunk_size`` becomes its own
    oversized chunk.

    With ``overlap > 0`` the last segment of each closed chunk is carried
    over as the first segment of the next one.
    """

    name = "paragraph"

    def __init__(
        self,
        chunk_size: int = 500,
        overlap: int = 50,
        extra_metadata: Optional[dict[str, str]] = None,
    ):
        """Initialize the paragraph chunker.

        Args:
            chunk_size: Maximum characters per chunk
            overlap: Any positive value enables segment carry-over between chunks
            extra_metadata: Metadata copied onto every chunk
        """
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        if overlap < 0 or overlap >= chunk_size:
            raise ValueError("Overlap must be between 0 and chunk_size")

        self.chunk_size = chunk_size
        self.overlap = overlap
        self.extra_metadata = extra_metadata or {}

    def chunk(self, source: str, content: str) -> list[DocumentChunk]:
        """Split document content into ordered chunks."""
        text = normalize_text(content)
        if not text:
            return []

        texts = self._pack(self._segments(text))

        # Non-blank input always yields at least one chunk
        if not texts:
            texts = [text]

        return [self._create_chunk(source, body, index) for index, body in enumerate(texts)]

    def _segments(self, text: str) -> list[str]:
        segments = []
        for paragraph in _PARAGRAPH_BREAK.split(text):
            paragraph = paragraph.strip()
            if not paragraph:
                continue
            if len(paragraph) > self.chunk_size:
                segments.extend(split_sentences(paragraph))
            else:
                segments.append(paragraph)
        return segments

    def _pack(self, segments: list[str]) -> list[str]:
        texts: list[str] = []
        current: list[str] = []

        for segment in segments:
            if current and len(" ".join(current + [segment])) > self.chunk_size:
                body = " ".join(current).strip()
                if body:
                    texts.append(body)
                current = [current[-1]] if self.overlap > 0 else []
            current.append(segment)

        if current:
            body = " ".join(current).strip()
            if body:
                texts.append(body)

        return texts

    def _create_chunk(self, source: str, content: str, index: int) -> DocumentChunk:
        """Create a chunk with the standard metadata."""
        return DocumentChunk(
            source=source,
            content=content,
            chunk_index=index,
            metadata={
                **self.extra_metadata,
                "chunk_length": str(len(content)),
                "created_at": datetime.now(timezone.utc).isoformat(),
                "chunker": self.name,
            },
        )


class MarkdownSection(BaseModel):
    """A header-delimited section of a Markdown document."""

    title: str
    level: int
    content: str = ""


class MarkdownChunker(BaseChunker):
    """Chunk Markdown documents section by section.

    Each ATX header starts a new section; text before the first header
    belongs to an "Introduction" section at level 0. Sections are chunked
    with a ``ParagraphChunker`` and indexes run across the whole document.
    """

    def __init__(self, chunk_size: int = 500, overlap: int = 50):
        self._base = ParagraphChunker(chunk_size, overlap)

    def chunk(self, source: str, content: str) -> list[DocumentChunk]:
        chunks = []
        for section in split_markdown_sections(content):
            for chunk in self._base.chunk(source, section.content):
                chunk.chunk_index = len(chunks)
                chunk.metadata.update({
                    "section_title": section.title,
                    "section_level": str(section.level),
                    "content_type": "markdown",
                })
                chunks.append(chunk)
        return chunks


def split_markdown_sections(content: str) -> list[MarkdownSection]:
    """Split Markdown text into sections at each header line."""
    sections = []
    current = MarkdownSection(title="Introduction", level=0)
    lines: list[str] = []

    for line in content.replace("\r\n", "\n").split("\n"):
        match = _MARKDOWN_HEADER.match(line)
        if match:
            if "\n".join(lines).strip():
                current.content = "\n".join(lines)
                sections.append(current)
            current = MarkdownSection(
                title=match.group(2).strip(),
                level=len(match.group(1)),
            )
            lines = [line]
        else:
            lines.append(line)

    if "\n".join(lines).strip():
        current.content = "\n".join(lines)
        sections.append(current)

    return sections


class CodeBlock(BaseModel):
    """A function or method extracted from source code."""

    name: str
    start_line: int
    end_line: int
    content: str


class CodeChunker(BaseChunker):
    """Chunk source code one function per chunk.

    Python functions are delimited by indentation; C# and Java methods by
    brace matching. When no function is found the file is chunked as
    plain text.
    """

    _BRACE_FUNCTION = re.compile(
        r"^[ \t]*(?:(?:public|private|protected|internal|static|async|virtual|override)\s+)*"
        r"[\w<>\[\],]+\s+(\w+)\s*\([^)]*\)\s*\{",
        re.MULTILINE,
    )
    _PYTHON_FUNCTION = re.compile(r"^([ \t]*)(?:async\s+)?def\s+(\w+)\s*\(")
    _CONTROL_KEYWORDS = {"if", "for", "foreach", "while", "switch", "catch", "using", "lock", "return"}

    def __init__(self, language: str, chunk_size: int = 500, overlap: int = 50):
        self.language = language
        self._fallback = ParagraphChunker(
            chunk_size,
            overlap,
            extra_metadata={"content_type": "code", "language": language},
        )

    def chunk(self, source: str, content: str) -> list[DocumentChunk]:
        blocks = self.extract_blocks(content)
        if not blocks:
            return self._fallback.chunk(source, content)

        now = datetime.now(timezone.utc).isoformat()
        return [
            DocumentChunk(
                source=source,
                content=block.content,
                chunk_index=index,
                metadata={
                    "chunk_length": str(len(block.content)),
                    "created_at": now,
                    "chunker": "code",
                    "content_type": "code",
                    "language": self.language,
                    "function_name": block.name,
                    "start_line": str(block.start_line),
                    "end_line": str(block.end_line),
                },
            )
            for index, block in enumerate(blocks)
        ]

    def extract_blocks(self, content: str) -> list[CodeBlock]:
        lines = content.replace("\r\n", "\n").split("\n")
        if self.language in ("python", "py"):
            return self._python_blocks(lines)
        if self.language in ("csharp", "cs", "java"):
            return self._brace_blocks(lines)
        return []

    def _python_blocks(self, lines: list[str]) -> list[CodeBlock]:
        blocks = []
        for start, line in enumerate(lines):
            match = self._PYTHON_FUNCTION.match(line)
            if not match:
                continue
            indent = len(match.group(1))
            end = start
            for i in range(start + 1, len(lines)):
                if not lines[i].strip():
                    continue
                if len(lines[i]) - len(lines[i].lstrip()) <= indent:
                    break
                end = i
            blocks.append(CodeBlock(
                name=match.group(2),
                start_line=start,
                end_line=end,
                content="\n".join(lines[start:end + 1]),
            ))
        return blocks

    def _brace_blocks(self, lines: list[str]) -> list[CodeBlock]:
        text = "\n".join(lines)
        blocks = []
        for match in self._BRACE_FUNCTION.finditer(text):
            if match.group(1) in self._CONTROL_KEYWORDS:
                continue
            start = text.count("\n", 0, match.start())
            end = self._find_block_end(lines, start)
            blocks.append(CodeBlock(
                name=match.group(1),
                start_line=start,
                end_line=end,
                content="\n".join(lines[start:end + 1]),
            ))
        return blocks

    @staticmethod
    def _find_block_end(lines: list[str], start: int) -> int:
        depth = 0
        started = False
        for i in range(start, len(lines)):
            for char in lines[i]:
                if char == "{":
                    depth += 1
                    started = True
                elif char == "}":
                    depth -= 1
            if started and depth == 0:
                return i
        return min(start + 50, len(lines) - 1)


class DocumentMetadata(BaseModel):
    """Descriptive statistics about a document file."""

    file_extension: str
    content_type: str = ""
    programming_language: Optional[str] = None
    character_count: int = 0
    word_count: int = 0
    line_count: int = 0
    headers: list[str] = Field(default_factory=list)


def extract_metadata(content: str, file_extension: str) -> DocumentMetadata:
    """Describe a document from its content and file extension."""
    extension = file_extension.lower()
    metadata = DocumentMetadata(
        file_extension=extension,
        character_count=len(content),
        word_count=len(content.split()),
        line_count=len(content.split("\n")),
    )

    if extension in (".md", ".markdown"):
        metadata.content_type = "markdown"
        metadata.headers = [
            m.group(2).strip()
            for m in (_MARKDOWN_HEADER.match(line) for line in content.splitlines())
            if m
        ]
    elif extension in CODE_EXTENSIONS:
        metadata.content_type = "code"
        metadata.programming_language = CODE_EXTENSIONS[extension]
    elif extension in (".csv", ".json"):
        metadata.content_type = "structured_data"
    elif extension == ".txt":
        metadata.content_type = "text"

    return metadata


def chunker_for_extension(
    file_extension: str,
    chunk_size: int = 500,
    overlap: int = 50,
) -> BaseChunker:
    """Pick a chunker suited to a file type."""
    extension = file_extension.lower()
    if extension in (".md", ".markdown"):
        return MarkdownChunker(chunk_size, overlap)
    if extension in CODE_EXTENSIONS:
        return CodeChunker(CODE_EXTENSIONS[extension], chunk_size, overlap)
    if extension in (".csv", ".json"):
        return ParagraphChunker(
            chunk_size,
            overlap,
            extra_metadata={"content_type": "structured_data", "format": extension.lstrip(".")},
        )
    return ParagraphChunker(chunk_size, overlap)
