from __future__ import annotations

import math
import os
import re
import tempfile
from pathlib import Path
from typing import List
from urllib.parse import urlparse

from langchain_community.document_loaders import PyPDFLoader, WebBaseLoader

from session_rag.exception.custom_exception import InvalidInput, UnsupportedFormat
from session_rag.logger import GLOBAL_LOGGER as log
from session_rag.schemas import USER_TEXT_SOURCE, ExtractedSource, ExtractedUnit

# extension -> content type
SUPPORTED_EXTENSIONS = {
    ".pdf": "pdf",
    ".md": "markdown",
    ".markdown": "markdown",
    ".txt": "text",
}

_WORD_RE = re.compile(r"\b\w+\b")


def count_words(text: str) -> int:
    return len(text.split())


def human_size(num_bytes: int) -> str:
    return f"{num_bytes / 1024:.1f} KB"


def file_extension(filename: str) -> str:
    return Path(filename or "").suffix.lower()


def check_supported(filename: str) -> str:
    """Return the content type for a filename or raise UnsupportedFormat."""
    extension = file_extension(filename)
    if extension not in SUPPORTED_EXTENSIONS:
        raise UnsupportedFormat(extension.lstrip(".") or extension)
    return SUPPORTED_EXTENSIONS[extension]


def _load_pdf_pages(data: bytes) -> List[str]:
    # PyPDFLoader needs a path, so spool the upload to a temp file
    fd, tmp_path = tempfile.mkstemp(suffix=".pdf")
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        loader = PyPDFLoader(tmp_path)
        return [doc.page_content for doc in loader.load()]
    finally:
        Path(tmp_path).unlink(missing_ok=True)


def extract_file(filename: str, data: bytes) -> ExtractedSource:
    """
    Dispatch an uploaded file to its extractor by extension.
    PDFs are split per page; markdown and text become a single unit.
    """
    content_type = check_supported(filename)
    log.info("Processing file", file=filename, content_type=content_type)

    if content_type == "pdf":
        try:
            pages = _load_pdf_pages(data)
        except Exception as e:
            log.error("PDF parse failed", file=filename, error=str(e))
            raise InvalidInput(f"Could not read PDF {filename}: {e}", e) from e

        total_pages = len(pages)
        units = [
            ExtractedUnit(text=text, page=i + 1, total_pages=total_pages)
            for i, text in enumerate(pages)
        ]
        words = sum(count_words(t) for t in pages)
        if words == 0:
            raise InvalidInput(f"No extractable text in {filename}")

        log.info("PDF extracted", pages=total_pages, words=words)
        return ExtractedSource(
            name=filename,
            kind="file",
            content_type="pdf",
            size=human_size(len(data)),
            units=units,
            word_count=words,
            page_count=total_pages,
        )

    text = data.decode("utf-8", errors="replace")
    if not text.strip():
        raise InvalidInput("Empty text file")

    words = count_words(text)
    log.info("Text file extracted", content_type=content_type, words=words)
    return ExtractedSource(
        name=filename,
        kind="file",
        content_type=content_type,
        size=human_size(len(data)),
        units=[ExtractedUnit(text=text)],
        word_count=words,
    )


def validate_url(url: str) -> str:
    url = (url or "").strip()
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise InvalidInput("Invalid URL format")
    return url


def extract_url(url: str) -> ExtractedSource:
    """
    Fetch a web page and return one unit per loaded section.
    """
    url = validate_url(url)
    log.info("Fetching content", url=url)

    try:
        docs = WebBaseLoader(url).load()
    except Exception as e:
        log.error("Web fetch failed", url=url, error=str(e))
        raise InvalidInput(f"Could not fetch {url}: {e}", e) from e

    units = [
        ExtractedUnit(text=doc.page_content, section_index=i + 1)
        for i, doc in enumerate(docs)
    ]
    words = sum(len(_WORD_RE.findall(doc.page_content)) for doc in docs)
    if words == 0:
        raise InvalidInput(f"No extractable text at {url}")

    log.info("Web page extracted", url=url, sections=len(units), words=words)
    return ExtractedSource(
        name=url,
        kind="url",
        content_type="web",
        size="URL",
        units=units,
        word_count=words,
    )


def extract_text(text: str) -> ExtractedSource:
    text = (text or "").strip()
    if not text:
        raise InvalidInput("Empty text input")

    return ExtractedSource(
        name=USER_TEXT_SOURCE,
        kind="text",
        content_type="text",
        size=f"{math.ceil(len(text) / 1024)} KB",
        units=[ExtractedUnit(text=text)],
        word_count=count_words(text),
    )
