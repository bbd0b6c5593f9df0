from __future__ import annotations

import csv
import logging
from dataclasses import dataclass
from decimal import Decimal
from io import BytesIO, StringIO
from typing import Callable

from PIL import Image, ImageDraw, ImageFont
from django.conf import settings
from django.utils import timezone

from .exceptions import ExportError
from .records import ZERO, local_date, quantize

logger = logging.getLogger(__name__)

SCOPE_ALL_TIME = 'all-time'

PAGE_WIDTH = 1650
PAGE_HEIGHT = 1275
PAGE_RESOLUTION = 150.0
MARGIN = 40
LINE_HEIGHT = 18
CELL_PADDING = 8
HEADER_FILL = (229, 222, 240)
TITLE_COLOR = (75, 44, 108)


def format_money(value) -> str:
    return f'{quantize(value):.2f}'


def format_date(moment) -> str:
    day = local_date(moment)
    if day is None:
        return ''
    return day.strftime('%m/%d/%Y')


@dataclass(frozen=True)
class Column:
    key: str
    label: str
    value: Callable


STUDENT_COLUMNS = (
    Column('name', 'Name', lambda row: row.display_name),
    Column('email', 'Email', lambda row: row.email),
    Column('lead_source', 'Lead Source', lambda row: row.lead_source or ''),
    Column('status', 'Status', lambda row: 'Active' if row.is_active else 'Inactive'),
    Column('lessons_purchased', 'Lessons Purchased', lambda row: str(row.total_lessons_purchased)),
    Column('lessons_taken', 'Lessons Taken', lambda row: str(row.lesson_count)),
    Column('credits', 'Credits', lambda row: str(row.lesson_credits)),
    Column('total_revenue', 'Total Revenue', lambda row: format_money(row.total_revenue)),
    Column('avg_revenue_per_lesson', 'Avg / Lesson', lambda row: format_money(row.avg_revenue_per_lesson)),
    Column('first_lesson_date', 'First Lesson', lambda row: format_date(row.first_lesson_date)),
    Column('last_lesson_date', 'Last Lesson', lambda row: format_date(row.last_lesson_date)),
)
COLUMNS_BY_KEY = {column.key: column for column in STUDENT_COLUMNS}
DEFAULT_COLUMNS = tuple(column.key for column in STUDENT_COLUMNS)

EXPENSE_COLUMNS = (
    Column('name', 'Name', lambda expense: expense.name),
    Column('amount', 'Amount', lambda expense: format_money(expense.amount)),
    Column('date', 'Date', lambda expense: format_date(expense.incurred_at)),
    Column('category', 'Category', lambda expense: expense.category or ''),
    Column('notes', 'Notes', lambda expense: expense.notes),
)


def resolve_columns(columns=None) -> tuple:
    if columns is None:
        columns = DEFAULT_COLUMNS
    resolved = []
    for column in columns:
        if isinstance(column, Column):
            resolved.append(column)
            continue
        try:
            resolved.append(COLUMNS_BY_KEY[column])
        except KeyError:
            raise ExportError(f'Unknown export column "{column}".') from None
    if not resolved:
        raise ExportError('At least one export column is required.')
    return tuple(resolved)


def _table(rows, columns):
    return [[str(column.value(row)) for column in columns] for row in rows]


def _write_csv(headers, table) -> str:
    output = StringIO()
    writer = csv.writer(output, quoting=csv.QUOTE_ALL, lineterminator='\n')
    writer.writerow(headers)
    writer.writerows(table)
    return output.getvalue()


def to_csv(rows, columns=None) -> str:
    """Render rows as CSV text, every field quoted. Raises ``ExportError`` on failure."""
    columns = resolve_columns(columns)
    try:
        return _write_csv([column.label for column in columns], _table(rows, columns))
    except (csv.Error, AttributeError, TypeError, ValueError, ArithmeticError) as exc:
        raise ExportError(f'CSV export failed: {exc}') from exc


def to_csv_bytes(rows, columns=None) -> bytes:
    text = to_csv(rows, columns)
    try:
        return text.encode('utf-8')
    except UnicodeError as exc:
        raise ExportError(f'CSV export could not be encoded: {exc}') from exc


def expenses_to_csv(expenses) -> str:
    try:
        return _write_csv([column.label for column in EXPENSE_COLUMNS], _table(expenses, EXPENSE_COLUMNS))
    except (csv.Error, AttributeError, TypeError, ValueError, ArithmeticError) as exc:
        raise ExportError(f'CSV export failed: {exc}') from exc


@dataclass(frozen=True)
class ReportSummary:
    total_revenue: Decimal
    total_students: int
    active_students: int
    total_lessons_sold: int


def summarize(rows) -> ReportSummary:
    """Summary block for exactly the rows being exported."""
    rows = list(rows)
    return ReportSummary(
        total_revenue=sum((row.total_revenue for row in rows), ZERO),
        total_students=len(rows),
        active_students=sum(1 for row in rows if row.is_active),
        total_lessons_sold=sum(row.total_lessons_purchased for row in rows),
    )


def export_filename(prefix, year=None, extension='csv', today=None, include_scope=True) -> str:
    """``{prefix}-{scope}-{YYYY-MM-DD}.{ext}``; the scope segment is dropped when ``include_scope`` is false."""
    today = today or timezone.localdate()
    parts = [prefix]
    if include_scope:
        parts.append(str(year) if year else SCOPE_ALL_TIME)
    parts.append(today.strftime('%Y-%m-%d'))
    return f"{'-'.join(parts)}.{extension.lstrip('.')}"


def _wrap(text, font, width):
    lines = []
    for paragraph in text.splitlines() or ['']:
        current = ''
        for char in paragraph:
            candidate = current + char
            if current and font.getlength(candidate) > width:
                lines.append(current)
                current = char
            else:
                current = candidate
        lines.append(current)
    return lines


def _row_height(line_count):
    return max(1, line_count) * LINE_HEIGHT + CELL_PADDING * 2


def _split_row(cells, max_lines):
    """Break a wrapped row into pieces of at most ``max_lines`` lines each."""
    line_count = max(len(lines) for lines in cells)
    if line_count <= max_lines:
        return [(cells, _row_height(line_count))]
    pieces = []
    for start in range(0, line_count, max_lines):
        chunk = [lines[start:start + max_lines] for lines in cells]
        pieces.append((chunk, _row_height(max(len(lines) for lines in chunk))))
    return pieces


def _paginate(wrapped_rows, first_capacity, capacity, rows_per_page):
    pages = []
    current = []
    used = 0
    available = first_capacity
    for cells, height in wrapped_rows:
        if current and (used + height > available or len(current) >= rows_per_page):
            pages.append(current)
            current = []
            used = 0
            available = capacity
        current.append((cells, height))
        used += height
    pages.append(current)
    return pages


class _PdfReport:
    def __init__(self, title, headers, table, summary, generated_at, rows_per_page):
        self.title = title
        self.headers = headers
        self.table = table
        self.summary = summary
        self.generated_at = generated_at
        self.rows_per_page = max(1, rows_per_page)
        self.font = ImageFont.load_default()
        self.col_width = (PAGE_WIDTH - 2 * MARGIN) // len(headers)

    def _wrap_cells(self, cells):
        wrapped = [_wrap(cell, self.font, self.col_width - 2 * CELL_PADDING) for cell in cells]
        return wrapped, _row_height(max(len(lines) for lines in wrapped))

    def _summary_lines(self):
        return [
            f'Total Revenue: ${format_money(self.summary.total_revenue)}',
            f'Total Students: {self.summary.total_students}',
            f'Active Students: {self.summary.active_students}',
            f'Total Lessons Sold: {self.summary.total_lessons_sold}',
        ]

    def _first_page_top(self):
        # title, generated-on, blank, four summary lines, blank
        return MARGIN + LINE_HEIGHT * 9

    def _page_top(self):
        return MARGIN + LINE_HEIGHT * 2

    def capacities(self, header_height):
        footer_height = LINE_HEIGHT * 2
        first_capacity = PAGE_HEIGHT - self._first_page_top() - header_height - footer_height - MARGIN
        capacity = PAGE_HEIGHT - self._page_top() - header_height - footer_height - MARGIN
        return first_capacity, capacity

    def layout(self):
        """Header cells, header height and the wrapped rows of each page.

        Rows too tall for a page continue on the next one, so no cell text is
        lost off the bottom edge.
        """
        header_cells, header_height = self._wrap_cells(self.headers)
        first_capacity, capacity = self.capacities(header_height)
        max_lines = (min(first_capacity, capacity) - 2 * CELL_PADDING) // LINE_HEIGHT
        if max_lines < 1:
            raise ExportError('PDF table header leaves no room for rows.')
        body = []
        for cells in self.table:
            wrapped, _ = self._wrap_cells(cells)
            body.extend(_split_row(wrapped, max_lines))
        return header_cells, header_height, _paginate(body, first_capacity, capacity, self.rows_per_page)

    def render(self) -> bytes:
        header_cells, header_height, pages = self.layout()

        images = []
        for number, page_rows in enumerate(pages, start=1):
            image = Image.new('RGB', (PAGE_WIDTH, PAGE_HEIGHT), 'white')
            draw = ImageDraw.Draw(image)
            if number == 1:
                y = self._draw_title_block(draw)
            else:
                draw.text((MARGIN, MARGIN), f'{self.title} (continued)', fill=TITLE_COLOR, font=self.font)
                y = self._page_top()

            y = self._draw_row(draw, y, header_cells, header_height, fill=HEADER_FILL)
            if not page_rows and number == 1:
                draw.text((MARGIN, y + CELL_PADDING), 'No students match the current filters.', fill='black', font=self.font)
            for cells, height in page_rows:
                y = self._draw_row(draw, y, cells, height)

            footer = f'Page {number} of {len(pages)}'
            draw.text(
                (PAGE_WIDTH - MARGIN - self.font.getlength(footer), PAGE_HEIGHT - MARGIN - LINE_HEIGHT),
                footer,
                fill='gray',
                font=self.font,
            )
            images.append(image)

        output = BytesIO()
        images[0].save(
            output,
            format='PDF',
            save_all=True,
            append_images=images[1:],
            resolution=PAGE_RESOLUTION,
            title=self.title,
        )
        return output.getvalue()

    def _draw_title_block(self, draw):
        y = MARGIN
        draw.text((MARGIN, y), self.title, fill=TITLE_COLOR, font=self.font)
        y += LINE_HEIGHT
        generated = timezone.localtime(self.generated_at) if timezone.is_aware(self.generated_at) else self.generated_at
        draw.text((MARGIN, y), f"Generated on {generated.strftime('%m/%d/%Y %I:%M %p')}", fill='gray', font=self.font)
        y += LINE_HEIGHT * 2
        for line in self._summary_lines():
            draw.text((MARGIN, y), line, fill='black', font=self.font)
            y += LINE_HEIGHT
        draw.line((MARGIN, y + LINE_HEIGHT // 2, PAGE_WIDTH - MARGIN, y + LINE_HEIGHT // 2), fill=TITLE_COLOR)
        return self._first_page_top()

    def _draw_row(self, draw, y, cells, height, fill=None):
        for index, lines in enumerate(cells):
            x1 = MARGIN + index * self.col_width
            x2 = x1 + self.col_width
            draw.rectangle((x1, y, x2, y + height), outline='black', fill=fill)
            for offset, line in enumerate(lines):
                draw.text((x1 + CELL_PADDING, y + CELL_PADDING + offset * LINE_HEIGHT), line, fill='black', font=self.font)
        return y + height


def to_pdf(rows, summary=None, title='Student Revenue Report', generated_at=None, columns=None) -> bytes:
    """Render rows as a paginated PDF table.

    The summary block defaults to ``summarize(rows)`` so it always describes
    the rows in the table. Raises ``ExportError`` on failure.
    """
    rows = list(rows)
    columns = resolve_columns(columns)
    brand = getattr(settings, 'REPORTS_BRAND_NAME', '')
    full_title = f'{brand} - {title}' if brand else title
    try:
        report = _PdfReport(
            title=full_title,
            headers=[column.label for column in columns],
            table=_table(rows, columns),
            summary=summary or summarize(rows),
            generated_at=generated_at or timezone.now(),
            rows_per_page=getattr(settings, 'REPORTS_PDF_ROWS_PER_PAGE', 25),
        )
        content = report.render()
    except (OSError, AttributeError, TypeError, ValueError, ArithmeticError) as exc:
        raise ExportError(f'PDF export failed: {exc}') from exc
    logger.debug('Rendered PDF report with %d rows (%d bytes).', len(rows), len(content))
    return content
