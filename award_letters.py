#!/usr/bin/env python3
"""Generate one award letter PDF per recipient from a delimited table.

Each row of the input table is merged into a plain-text template containing
the placeholders ``{FIRST-NAME}``, ``{LAST-NAME}``, ``{CONCEPT}`` and
``{AMOUNT}``. The result is written as ``"<LastName>, <FirstName>.pdf"``.
Rows that fail validation are reported and skipped; the batch always runs to
the end unless the input itself cannot be read.
"""
from __future__ import annotations

import argparse
import csv
import os
import sys
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Sequence, Tuple

from fpdf import FPDF
from fpdf.enums import XPos, YPos
from fpdf.errors import FPDFException


DEFAULT_CSV = Path("award-winning-list.csv")
DEFAULT_TEMPLATE = Path("model-award-letter.txt")
DEFAULT_DELIMITER = ";"

FIRST_NAME = "FIRST-NAME"
LAST_NAME = "LAST-NAME"
CONCEPT = "CONCEPT"
AMOUNT = "AMOUNT"
REQUIRED_COLUMNS: Tuple[str, ...] = (FIRST_NAME, LAST_NAME, CONCEPT, AMOUNT)

MISSING_FIELD = "missing-field"
EMPTY_NAME = "empty-name"
MALFORMED_ROW = "malformed-row"

# Layout, in points on a US letter page (612 x 792).
FONT_FAMILY = "Helvetica"
FONT_SIZE = 12
LINE_HEIGHT = FONT_SIZE * 1.2
TEXT_WIDTH = 500
PAGE_MARGIN_X = 56
PAGE_MARGIN_Y = 72

_CENTS = Decimal("0.01")


class TemplateError(OSError):
    """Raised when the letter template cannot be read."""


class SourceError(OSError):
    """Raised when the input table cannot be opened or read."""


class LetterWriteError(OSError):
    """Raised when a single letter could not be written to disk."""

    def __init__(self, recipient: str, message: str) -> None:
        super().__init__(f"{recipient}: {message}")
        self.recipient = recipient
        self.message = message


class ValidationError(ValueError):
    """Raised when a row cannot be turned into a recipient."""

    def __init__(self, reason: str, detail: str) -> None:
        super().__init__(f"{reason} ({detail})")
        self.reason = reason
        self.detail = detail


@dataclass(frozen=True)
class SourceRow:
    """One data row from the input table, or the parse error it produced."""

    line: int
    fields: Optional[Dict[str, Optional[str]]] = None
    error: Optional[str] = None


@dataclass(frozen=True)
class Recipient:
    """A validated row, ready to be merged into the template."""

    first_name: str
    last_name: str
    concept: str
    amount: Decimal

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    @property
    def formatted_amount(self) -> str:
        return f"{self.amount:.2f}"


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description=(
            "Generate one award letter PDF per row of a delimited table by "
            "substituting the row into a text template."
        )
    )
    parser.add_argument(
        "--csv",
        type=Path,
        default=DEFAULT_CSV,
        help=f"Path to the recipient table (default: {DEFAULT_CSV}).",
    )
    parser.add_argument(
        "--template",
        type=Path,
        default=DEFAULT_TEMPLATE,
        help=(
            "Path to the letter template containing {FIRST-NAME}, {LAST-NAME}, "
            f"{{CONCEPT}} and {{AMOUNT}} (default: {DEFAULT_TEMPLATE})."
        ),
    )
    parser.add_argument(
        "--output-dir",
        type=Path,
        default=Path("."),
        help="Directory where the letters are written (default: current directory).",
    )
    parser.add_argument(
        "--delimiter",
        default=DEFAULT_DELIMITER,
        help=f"Field delimiter of the recipient table (default: '{DEFAULT_DELIMITER}').",
    )
    args = parser.parse_args(argv)
    if len(args.delimiter) != 1:
        parser.error("--delimiter must be a single character")
    return args


def load_template(template_path: Path) -> str:
    try:
        return template_path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise TemplateError(f"cannot read template {template_path}: {exc}") from exc


def read_records(csv_path: Path, delimiter: str = DEFAULT_DELIMITER) -> Iterator[SourceRow]:
    """Yield the data rows of ``csv_path`` one at a time.

    Rows whose field count does not match the header are yielded with
    ``error`` set so the caller can skip them. Failing to open or decode the
    file raises :class:`SourceError`.
    """
    try:
        handle = csv_path.open(newline="", encoding="utf-8-sig")
    except OSError as exc:
        raise SourceError(f"cannot open input {csv_path}: {exc}") from exc

    with handle:
        reader = csv.DictReader(handle, delimiter=delimiter)
        while True:
            try:
                row = next(reader)
            except StopIteration:
                return
            except csv.Error as exc:
                yield SourceRow(line=reader.line_num, error=f"{MALFORMED_ROW} ({exc})")
                continue
            except UnicodeDecodeError as exc:
                raise SourceError(f"cannot decode input {csv_path}: {exc}") from exc

            # DictReader files surplus values under the None key and pads
            # short rows with None.
            if None in row:
                yield SourceRow(line=reader.line_num, error=f"{MALFORMED_ROW} (too many fields)")
            elif any(value is None for value in row.values()):
                yield SourceRow(line=reader.line_num, error=f"{MALFORMED_ROW} (too few fields)")
            else:
                yield SourceRow(line=reader.line_num, fields=row)


def format_amount(raw_value: str) -> Decimal:
    """Parse an amount and round it half-up to two decimal places."""

    value = raw_value.strip()
    try:
        amount = Decimal(value)
        if not amount.is_finite():
            raise InvalidOperation(value)
        amount = amount.quantize(_CENTS, rounding=ROUND_HALF_UP)
        # Amounts that round to zero never render as "-0.00".
        return amount.copy_abs() if amount.is_zero() else amount
    except InvalidOperation as exc:
        raise ValidationError(MISSING_FIELD, f"invalid {AMOUNT} '{value}'") from exc


def validate_record(fields: Dict[str, Optional[str]]) -> Recipient:
    missing = [column for column in REQUIRED_COLUMNS if fields.get(column) is None]
    if missing:
        raise ValidationError(MISSING_FIELD, "missing " + ", ".join(missing))

    first_name = fields[FIRST_NAME].strip()
    last_name = fields[LAST_NAME].strip()
    if not first_name or not last_name:
        empty = [name for name, value in ((FIRST_NAME, first_name), (LAST_NAME, last_name)) if not value]
        raise ValidationError(EMPTY_NAME, "empty " + ", ".join(empty))

    return Recipient(
        first_name=first_name,
        last_name=last_name,
        concept=fields[CONCEPT].strip(),
        amount=format_amount(fields[AMOUNT]),
    )


def render_letter(template: str, recipient: Recipient) -> str:
    # Only the first occurrence of each placeholder is replaced.
    replacements = (
        ("{LAST-NAME}", recipient.last_name),
        ("{FIRST-NAME}", recipient.first_name),
        ("{CONCEPT}", recipient.concept),
        ("{AMOUNT}", recipient.formatted_amount),
    )
    letter = template
    for token, value in replacements:
        letter = letter.replace(token, value, 1)
    return letter


def output_filename(recipient: Recipient) -> str:
    return f"{recipient.last_name}, {recipient.first_name}.pdf"


def build_document(letter: str, compress: bool = True) -> FPDF:
    pdf = FPDF(orientation="portrait", unit="pt", format="letter")
    pdf.set_compression(compress)
    # WinAnsi covers the dashes, curly quotes and euro sign common in letters.
    pdf.core_fonts_encoding = "windows-1252"
    pdf.set_margins(PAGE_MARGIN_X, PAGE_MARGIN_Y, PAGE_MARGIN_X)
    pdf.set_auto_page_break(auto=True, margin=PAGE_MARGIN_Y)
    pdf.add_page()
    pdf.set_font(FONT_FAMILY, size=FONT_SIZE)

    for line in letter.splitlines():
        if not line.strip():
            pdf.ln(LINE_HEIGHT)
            continue
        pdf.multi_cell(
            TEXT_WIDTH,
            LINE_HEIGHT,
            line,
            align="J",
            new_x=XPos.LMARGIN,
            new_y=YPos.NEXT,
        )
    return pdf


def write_letter(
    letter: str, destination: Path, recipient_name: str, compress: bool = True
) -> None:
    """Render ``letter`` and write it to ``destination``.

    The document is written to a temporary sibling file first and moved into
    place, so a failure never leaves a truncated PDF at ``destination``.
    """
    try:
        data = build_document(letter, compress=compress).output()
    except FPDFException as exc:
        raise LetterWriteError(recipient_name, str(exc)) from exc

    partial = destination.with_name(destination.name + ".part")
    try:
        with partial.open("wb") as handle:
            handle.write(data)
        os.replace(partial, destination)
    except OSError as exc:
        partial.unlink(missing_ok=True)
        raise LetterWriteError(recipient_name, str(exc)) from exc


@dataclass
class RunReport:
    """Outcome of one run, printed as records are processed."""

    generated: Dict[Path, str] = field(default_factory=dict)
    skipped: List[Tuple[int, str]] = field(default_factory=list)
    failed: List[Tuple[int, str]] = field(default_factory=list)
    aborted: Optional[str] = None

    def record_generated(self, path: Path, recipient: Recipient) -> None:
        previous = self.generated.get(path)
        if previous is not None:
            print(
                f"Warning: {path.name} for {recipient.full_name} overwrites the letter for {previous}",
                file=sys.stderr,
            )
        self.generated[path] = recipient.full_name
        print(f"Generated letter for {recipient.full_name}")

    def record_skipped(self, line: int, reason: str) -> None:
        self.skipped.append((line, reason))
        print(f"Skipping row {line}: {reason}", file=sys.stderr)

    def record_failed(self, line: int, exc: LetterWriteError) -> None:
        self.failed.append((line, str(exc)))
        print(f"Error writing letter for {exc.recipient}: {exc.message}", file=sys.stderr)

    def abort(self, exc: Exception) -> None:
        self.aborted = str(exc)

    def summary_line(self) -> str:
        count = len(self.generated)
        if self.aborted is not None:
            return f"Aborted after generating {count} letters: {self.aborted}"
        if not self.skipped and not self.failed:
            return f"All {count} letters generated successfully!"
        return (
            f"Generated {count} letters "
            f"(skipped {len(self.skipped)} rows, {len(self.failed)} failed)."
        )

    @property
    def exit_code(self) -> int:
        return 1 if self.aborted is not None else 0


def generate_letters(
    csv_path: Path,
    template: str,
    output_dir: Path,
    delimiter: str = DEFAULT_DELIMITER,
    compress: bool = True,
) -> RunReport:
    report = RunReport()
    try:
        for row in read_records(csv_path, delimiter):
            if row.error is not None:
                report.record_skipped(row.line, row.error)
                continue

            try:
                recipient = validate_record(row.fields)
            except ValidationError as exc:
                report.record_skipped(row.line, str(exc))
                continue

            letter = render_letter(template, recipient)
            output_path = output_dir / output_filename(recipient)
            try:
                write_letter(letter, output_path, recipient.full_name, compress=compress)
            except LetterWriteError as exc:
                report.record_failed(row.line, exc)
                continue
            report.record_generated(output_path, recipient)
    except SourceError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        report.abort(exc)

    print(report.summary_line())
    return report


def main(argv: Sequence[str] | None = None) -> int:
    args = parse_args(argv)

    try:
        template = load_template(args.template)
        args.output_dir.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    report = generate_letters(args.csv, template, args.output_dir, args.delimiter)
    return report.exit_code


if __name__ == "__main__":
    sys.exit(main())
