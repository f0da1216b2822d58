"""Document parsing for knowledge base uploads."""

import io
import os
import zipfile
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from agent_platform.config import get_settings
from agent_platform.exceptions import ParsingError, ValidationError
from agent_platform.utils.logging import get_logger

logger = get_logger("parser_service")
settings = get_settings()

_FILE_TYPES = {
    ".doc": "word",
    ".docx": "word",
    ".md": "markdown",
    ".markdown": "markdown",
    ".txt": "text",
}


class ParsedDocument(BaseModel):
    """Text extracted from an uploaded file."""

    text: str
    metadata: Dict[str, Any] = Field(default_factory=dict)


def get_extension(file_name: str) -> str:
    return os.path.splitext(file_name or "")[1].lower()


def get_file_type(file_name: str) -> str:
    """Map a file name to `word`, `markdown`, `text` or `unknown`."""
    return _FILE_TYPES.get(get_extension(file_name), "unknown")


def is_supported_file_type(file_name: str) -> bool:
    ext = get_extension(file_name)
    return ext in _FILE_TYPES and ext in settings.upload.allowed_extensions


class ParserService:
    """
    Service for extracting text from uploaded documents.

    Supports:
    - Word (`.docx`, `.doc`) - python-docx
    - Markdown (`.md`, `.markdown`) - UTF-8 text
    - Plain text (`.txt`) - UTF-8 text
    """

    def parse(self, file_name: str, data: bytes) -> ParsedDocument:
        """
        Parse a document based on its extension.

        Raises:
            ValidationError: If the extension is not supported
            ParsingError: If the file cannot be read
        """
        ext = get_extension(file_name)
        if not is_supported_file_type(file_name):
            raise ValidationError(
                f"Unsupported file type: {ext or 'none'}. "
                f"Supported types: {', '.join(settings.upload.allowed_extensions)}",
                details={"file_name": file_name},
            )

        file_type = get_file_type(file_name)
        logger.info(f"Parsing document: type={file_type}, filename={file_name}")

        if file_type == "word":
            text = self._parse_word(data, file_name)
        else:
            text = self._parse_text(data, file_name)

        return ParsedDocument(
            text=text,
            metadata={
                "fileName": file_name,
                "fileType": file_type,
                "fileSize": len(data),
                "parsedAt": datetime.now(timezone.utc).isoformat(),
            },
        )

    def _parse_text(self, data: bytes, file_name: str) -> str:
        try:
            return data.decode("utf-8-sig")
        except UnicodeDecodeError as e:
            raise ParsingError(
                f"File is not valid UTF-8 text: {file_name}", file_type=get_extension(file_name)
            ) from e

    def _parse_word(self, data: bytes, file_name: str) -> str:
        from docx import Document as DocxDocument
        from docx.opc.exceptions import PackageNotFoundError

        try:
            document = DocxDocument(io.BytesIO(data))
        except (PackageNotFoundError, zipfile.BadZipFile, ValueError, KeyError) as e:
            # Legacy binary .doc files are not OOXML packages
            raise ParsingError(
                f"Failed to parse Word document: {file_name}",
                file_type=get_extension(file_name),
                details={"error": str(e)},
            ) from e

        return "\n\n".join(paragraph.text for paragraph in document.paragraphs)


_parser_service: Optional[ParserService] = None


def get_parser_service() -> ParserService:
    global _parser_service
    if _parser_service is None:
        _parser_service = ParserService()
    return _parser_service
