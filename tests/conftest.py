from __future__ import annotations

import io
import sys
import zipfile
from pathlib import Path

import pytest


ROOT = Path(__file__).resolve().parents[1]
PYTHON_SRC = ROOT / "python"

if str(PYTHON_SRC) not in sys.path:
    sys.path.insert(0, str(PYTHON_SRC))
else:
    sys.path.remove(str(PYTHON_SRC))
    sys.path.insert(0, str(PYTHON_SRC))


CONTAINER_XML = (
    '<?xml version="1.0" encoding="UTF-8"?>\n'
    '<container version="1.0" xmlns="urn:oasis:names:tc:opendocument:xmlns:container">\n'
    "  <rootfiles>\n"
    '    <rootfile full-path="{opf}" media-type="application/oebps-package+xml"/>\n'
    "  </rootfiles>\n"
    "</container>\n"
)

DEFAULT_METADATA = (
    "<dc:title>Sample Book</dc:title>\n"
    '    <dc:identifier id="uid">urn:uuid:0000</dc:identifier>'
)

OPF_TEMPLATE = (
    '<?xml version="1.0" encoding="UTF-8"?>\n'
    '<package xmlns="http://www.idpf.org/2007/opf" version="3.0" unique-identifier="uid">\n'
    '  <metadata xmlns:dc="http://purl.org/dc/elements/1.1/">\n'
    "    {metadata}\n"
    "  </metadata>\n"
    "  <manifest/>\n"
    "  <spine/>\n"
    "</package>\n"
)


def xhtml(body: str, *, lang: str | None = "en", head: str = "") -> str:
    lang_attr = f' lang="{lang}" xml:lang="{lang}"' if lang else ""
    return (
        '<?xml version="1.0" encoding="UTF-8"?>\n'
        '<html xmlns="http://www.w3.org/1999/xhtml" xmlns:epub="http://www.idpf.org/2007/ops"'
        f"{lang_attr}>\n"
        f"<head><title>t</title>{head}</head>\n"
        f"<body>\n{body}\n</body>\n"
        "</html>\n"
    )


def build_epub(
    files: dict[str, str | bytes] | None = None,
    *,
    opf_metadata: str | None = None,
    opf_path: str = "OEBPS/content.opf",
) -> bytes:
    """Build a minimal zip package in memory: mimetype, container, OPF, plus ``files``."""
    if files is None:
        files = {"OEBPS/chapter1.xhtml": xhtml("<section><h1>One</h1><p>Text</p></section>")}
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w") as zf:
        zf.writestr(zipfile.ZipInfo("mimetype", (1980, 1, 1, 0, 0, 0)), "application/epub+zip")
        zf.writestr("META-INF/container.xml", CONTAINER_XML.format(opf=opf_path))
        metadata = DEFAULT_METADATA if opf_metadata is None else opf_metadata
        zf.writestr(opf_path, OPF_TEMPLATE.format(metadata=metadata))
        for name, data in files.items():
            zf.writestr(name, data)
    return buf.getvalue()


@pytest.fixture
def make_epub():
    return build_epub


@pytest.fixture
def page():
    return xhtml
