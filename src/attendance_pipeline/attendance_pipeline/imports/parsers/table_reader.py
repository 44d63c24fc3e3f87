"""Read CSV and Excel uploads into a grid of strings."""

from __future__ import annotations

import csv
import io
import os

import pandas as pd

from ...core.exceptions import ValidationError
from .base import Table

SUPPORTED_EXTENSIONS = (".csv", ".xlsx", ".xls")

_EXCEL_ENGINES = {".xlsx": "openpyxl", ".xls": "xlrd"}

_DELIMITERS = ",;\t"


def extension_of(filename: str) -> str:
    return os.path.splitext((filename or "").strip().lower())[1]


def _clean(value) -> str:
    text = "" if value is None else str(value)
    # pandas renders whole-number cells read as text without a suffix, but
    # numeric ids typed into Excel can still come through as "195.0".
    if text.endswith(".0") and text[:-2].isdigit():
        text = text[:-2]
    return text.strip()


def _read_csv(content: bytes) -> Table:
    try:
        text = content.decode("utf-8-sig")
    except UnicodeDecodeError:
        text = content.decode("latin-1")

    # Blank lines break the sniffer's consistency check on short files.
    lines = [ln for ln in text.splitlines() if ln.strip()][:50]
    try:
        delimiter = csv.Sniffer().sniff("\n".join(lines), delimiters=_DELIMITERS).delimiter
    except csv.Error:
        header = lines[0] if lines else ""
        delimiter = max(_DELIMITERS, key=header.count)
    return [[_clean(c) for c in row] for row in csv.reader(io.StringIO(text), delimiter=delimiter)]


def _read_excel(content: bytes, ext: str) -> Table:
    try:
        df = pd.read_excel(io.BytesIO(content), header=None, dtype=str, engine=_EXCEL_ENGINES[ext])
    except Exception as e:
        raise ValidationError(f"Cannot read Excel file: {e}") from e
    df = df.fillna("")
    return [[_clean(c) for c in row] for row in df.values.tolist()]


def read_table(filename: str, content: bytes) -> Table:
    ext = extension_of(filename)
    if ext not in SUPPORTED_EXTENSIONS:
        raise ValidationError(f"Unsupported file type '{ext or filename}'; expected one of {', '.join(SUPPORTED_EXTENSIONS)}")
    if not content:
        raise ValidationError("Uploaded file is empty")

    table = _read_csv(content) if ext == ".csv" else _read_excel(content, ext)
    if not any(any(c for c in row) for row in table):
        raise ValidationError("Uploaded file has no data")
    return table
