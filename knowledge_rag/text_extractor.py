"""
Text extraction for uploaded documents

Plain formats are decoded directly; PDF and Word files go through
LlamaIndex's SimpleDirectoryReader, which picks the matching file reader
from the extension.
"""
import csv
import io
import json
import tempfile
from pathlib import Path
from loguru import logger

from llama_index.core import SimpleDirectoryReader

from knowledge_rag.exceptions import ExtractionError, UnsupportedFormatError


CONTENT_TYPE_EXTENSIONS = {
    "application/pdf": ".pdf",
    "text/plain": ".txt",
    "text/markdown": ".md",
    "application/msword": ".docx",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document": ".docx",
    "text/csv": ".csv",
    "application/json": ".json",
}
READER_EXTENSIONS = {".pdf", ".docx"}


class DocumentTextExtractor:
    """Turn uploaded bytes into plain text"""
    
    def extract(self, data: bytes, content_type: str, filename: str) -> str:
        """
        Extract text from a document
        
        Args:
            data: Raw document bytes
            content_type: MIME type reported at upload
            filename: Original file name, used when the MIME type is unknown
            
        Returns:
            Extracted text
            
        Raises:
            UnsupportedFormatError: Format cannot be determined or decoded
            ExtractionError: A known format failed to parse
        """
        extension = CONTENT_TYPE_EXTENSIONS.get((content_type or "").split(";")[0].strip().lower())
        if extension is None:
            extension = Path(filename or "").suffix.lower()
        if extension == ".doc":
            # Word uploads of either kind go through the docx reader
            extension = ".docx"
        
        try:
            if extension in (".txt", ".md"):
                return data.decode("utf-8")
            if extension == ".json":
                return self._extract_json(data)
            if extension == ".csv":
                return self._extract_csv(data)
            if extension in READER_EXTENSIONS:
                return self._extract_with_reader(data, extension)
        except ExtractionError:
            raise
        except Exception as e:
            logger.error(f"Error extracting text from {filename or content_type}: {str(e)}")
            raise ExtractionError(f"Error extracting text: {e}") from e
        
        try:
            return data.decode("utf-8")
        except UnicodeDecodeError as e:
            raise UnsupportedFormatError(
                f"Unsupported document format: {content_type or 'unknown'} ({filename or 'unnamed'})"
            ) from e
    
    def _extract_json(self, data: bytes) -> str:
        payload = json.loads(data.decode("utf-8"))
        if isinstance(payload, dict) and isinstance(payload.get("content"), str):
            return payload["content"]
        return json.dumps(payload, indent=2, ensure_ascii=False)
    
    def _extract_csv(self, data: bytes) -> str:
        reader = csv.reader(io.StringIO(data.decode("utf-8-sig")))
        return "\n".join(", ".join(row) for row in reader)
    
    def _extract_with_reader(self, data: bytes, extension: str) -> str:
        with tempfile.TemporaryDirectory() as tmp_dir:
            path = Path(tmp_dir) / f"document{extension}"
            path.write_bytes(data)
            documents = SimpleDirectoryReader(input_files=[str(path)]).load_data()
        
        text = "\n\n".join(doc.get_content() for doc in documents)
        logger.debug(f"Extracted {len(text)} characters from {len(documents)} {extension} sections")
        return text
