"""Pytest configuration and fixtures"""
import copy
import shutil
import tempfile
from pathlib import Path

import pytest

from scope_builder.database import init_database
from scope_builder.models import ScopeState


@pytest.fixture
def temp_db():
    """Create a temporary database for testing"""
    temp_dir = tempfile.mkdtemp()
    db_path = Path(temp_dir) / "test_sessions.duckdb"
    conn = init_database(str(db_path))
    try:
        yield conn
    finally:
        conn.close()
        shutil.rmtree(temp_dir)


SAMPLE_TRADES = {
    "trades": [
        {
            "id": "trade-roof",
            "name": "Roofing",
            "checked": True,
            "supplements": [],
            "lineItems": [
                {
                    "id": "item-1",
                    "quantity": "1 EA",
                    "description": "Tear off existing shingles",
                    "rcv": 2500.00,
                    "acv": 2000.00,
                    "checked": True,
                    "notes": ""
                },
                {
                    "id": "item-2",
                    "quantity": "45 SQ",
                    "description": "Install GAF Timberline HDZ shingles",
                    "rcv": 8500.00,
                    "acv": 7000.00,
                    "checked": True,
                    "notes": ""
                }
            ]
        },
        {
            "id": "trade-gutters",
            "name": "Gutters",
            "checked": True,
            "supplements": [],
            "lineItems": [
                {
                    "id": "item-3",
                    "quantity": "120 LF",
                    "description": "Replace 5\" K-style gutters",
                    "rcv": 1200.00,
                    "checked": True,
                    "notes": ""
                }
            ]
        }
    ]
}


@pytest.fixture
def sample_trades_payload():
    """Extraction response with a roofing and a gutters trade"""
    return copy.deepcopy(SAMPLE_TRADES)


@pytest.fixture
def sample_state(sample_trades_payload):
    """Loaded session with signature and claim details filled in"""
    return ScopeState.model_validate({
        **sample_trades_payload,
        "deductible": 1000,
        "signature": {
            "contractorName": "Acme Exteriors",
            "homeownerName": "Pat Doe",
            "homeownerEmail": "pat@example.com",
            "signatureDate": "2024-05-01"
        },
        "claimNumber": "CLM-1",
        "claimAdjuster": {"name": "Sam Adjuster", "email": "sam@insurer.example"}
    })


@pytest.fixture
def sample_pdf_bytes():
    """Create a minimal PDF for testing"""
    # Minimal valid PDF structure
    pdf_content = b"""%PDF-1.4
1 0 obj
<< /Type /Catalog /Pages 2 0 R >>
endobj
2 0 obj
<< /Type /Pages /Kids [3 0 R] /Count 1 >>
endobj
3 0 obj
<< /Type /Page /Parent 2 0 R /MediaBox [0 0 612 792] >>
endobj
xref
0 4
0000000000 65535 f
0000000009 00000 n
0000000058 00000 n
0000000115 00000 n
trailer
<< /Size 4 /Root 1 0 R >>
startxref
179
%%EOF"""
    return pdf_content


@pytest.fixture
def sample_image_bytes():
    """Create a minimal PNG image for testing"""
    # Minimal valid PNG (1x1 transparent pixel)
    png_content = (
        b'\x89PNG\r\n\x1a\n'
        b'\x00\x00\x00\rIHDR\x00\x00\x00\x01\x00\x00\x00\x01\x08\x06\x00\x00\x00'
        b'\x1f\x15\xc4\x89\x00\x00\x00\nIDATx\x9cc\x00\x01\x00\x00\x05\x00\x01'
        b'\r\n-\xdb\x00\x00\x00\x00IEND\xaeB`\x82'
    )
    return png_content
