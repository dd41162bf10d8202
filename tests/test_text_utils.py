import fitz
import pytest

from isha.src.core.errors import EmptyInputError, UnsupportedFileTypeError, ValidationError
from isha.src.core.models import SourceType
from isha.src.utils.text_utils import clean_text, detect_source_type, extract_text, get_supported_file_types


@pytest.mark.parametrize("name, expected", [
    ("report.pdf", SourceType.PDF),
    ("README.MD", SourceType.MARKDOWN),
    ("notes.markdown", SourceType.MARKDOWN),
    ("todo.txt", SourceType.TEXT),
    ("md", SourceType.MARKDOWN),
])
def test_detect_source_type(name, expected):
    assert detect_source_type(name) is expected


@pytest.mark.parametrize("name", ["setup.exe", "archive.tar.gz", "noextension"])
def test_detect_source_type_rejects_unknown(name):
    with pytest.raises(UnsupportedFileTypeError):
        detect_source_type(name)


def test_clean_text_normalises_whitespace():
    raw = "Title\r\n\r\n\r\n\r\nFirst   line\t\twith  gaps  \r\nSecond\u200bline\ufeff"

    assert clean_text(raw) == "Title\n\nFirst line with gaps\nSecondline"


def test_extract_text_decodes_utf8():
    assert extract_text("Café  au lait\n".encode("utf-8"), SourceType.TEXT) == "Café au lait"


def test_extract_text_rejects_blank_file():
    with pytest.raises(EmptyInputError):
        extract_text(b"  \n\t ", "markdown")


def test_extract_text_reads_pdf_text_layer():
    doc = fitz.open()
    page = doc.new_page()
    page.insert_text((72, 72), "Hello from a PDF page")
    data = doc.tobytes()
    doc.close()

    assert "Hello from a PDF page" in extract_text(data, SourceType.PDF)


def test_extract_text_rejects_corrupt_pdf():
    with pytest.raises(ValidationError, match="Could not read PDF"):
        extract_text(b"this is not a pdf", SourceType.PDF)


def test_supported_file_types_lists_every_extension():
    extensions = {entry["extension"] for entry in get_supported_file_types()}
    assert extensions == {".pdf", ".md", ".markdown", ".txt", ".text"}
