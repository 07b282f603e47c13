"""
core/csvexport.py -- Spreadsheet-safe CSV rendering.

Exports are opened in Excel / LibreOffice by lab staff, so two rules apply:

  Formula injection (CWE-1236): a cell starting with =, +, - or @ is read as
  a formula. Such cells are prefixed with a tab, which makes the spreadsheet
  treat the value as text. Audit data contains user-controlled strings
  (emails, user agents), so every cell goes through sanitize_csv_cell().

  Encoding: the output starts with a UTF-8 byte order mark and uses ';' as
  the separator, which is what Excel expects in pt-BR locales. Without the
  BOM, accented role names (TÉCNICO) come out garbled.

Layer rule: core/ is the kernel. No imports from api/, auth/, or standards/.
"""

import csv
import io
from collections.abc import Iterable, Sequence

_FORMULA_PREFIXES = ("=", "+", "-", "@")

BOM = "\ufeff"


def sanitize_csv_cell(value: object) -> str:
    """Return value as a string that a spreadsheet will not evaluate."""
    if value is None:
        return ""
    text = str(value)
    if text.startswith(_FORMULA_PREFIXES):
        return "\t" + text
    return text


def to_csv(headers: Sequence[str], rows: Iterable[Sequence[object]], delimiter: str = ";") -> str:
    """Render headers + rows as BOM-prefixed CSV text with sanitized cells."""
    buf = io.StringIO()
    writer = csv.writer(buf, delimiter=delimiter)
    writer.writerow(headers)
    for row in rows:
        writer.writerow([sanitize_csv_cell(cell) for cell in row])
    return BOM + buf.getvalue()
