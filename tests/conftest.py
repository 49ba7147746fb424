"""Shared fixtures: sample FatturaPA invoices under tests/fixtures."""

from pathlib import Path

import pytest

FIXTURES_DIR = Path(__file__).parent / "fixtures"


def _read(name: str) -> bytes:
    return (FIXTURES_DIR / name).read_bytes()


@pytest.fixture
def edenred_xml() -> bytes:
    """Edenred UTA invoice (p: prefix): two fuel lines and one AdBlue line."""
    return _read("edenred.xml")


@pytest.fixture
def esso_xml() -> bytes:
    """WEX/Esso invoice (ns0: prefix) with card-plate descriptions."""
    return _read("esso.xml")


@pytest.fixture
def q8_xml() -> bytes:
    """Q8 invoice with a single line carrying DataInizioPeriodo."""
    return _read("q8.xml")


@pytest.fixture
def malformed_xml() -> bytes:
    return _read("malformed.xml")
