"""
Documents built from stored report cards: the PDF report card and the class
broadsheet workbook. Both read the JSON computed at generation time and never
recalculate grades.
"""
import logging
from io import BytesIO

from django.conf import settings
from django.core.files.base import ContentFile
from django.db import connection, transaction
from django.template.loader import render_to_string
from django.utils import timezone

from . import config
from .exceptions import NotFound
from .models import ReportCard
from .services import get_report_card, get_or_not_found

logger = logging.getLogger(__name__)


def _write_pdf(html_string):
    """Render HTML to PDF bytes with WeasyPrint."""
    try:
        from weasyprint import HTML
    except ImportError:
        logger.error("WeasyPrint not installed. Install with: pip install weasyprint")
        raise

    pdf_buffer = BytesIO()
    HTML(string=html_string, base_url=str(settings.BASE_DIR)).write_pdf(pdf_buffer)
    return pdf_buffer.getvalue()


def _school():
    tenant = getattr(connection, 'tenant', None)
    if tenant is None or not hasattr(tenant, 'display_name'):
        return None
    return tenant


def report_card_context(card):
    summary = card.summary or {}
    return {
        'report_card': card,
        'student': card.student,
        'term': card.term,
        'school': _school(),
        'subject_results': card.subject_results,
        'summary': summary,
        'has_mean_grade': 'mean_grade' in summary,
        'generated_on': timezone.now(),
    }


def generate_pdf(report_card_id):
    """
    PDF bytes for a report card.

    The rendered file is kept on the card and served again until the card
    is regenerated.
    """
    card = get_report_card(report_card_id)

    if card.has_document:
        try:
            with card.pdf_file.open('rb') as f:
                return f.read()
        except OSError:
            logger.warning(f"Stored PDF for {card.report_number} is missing, rendering again")

    html_string = render_to_string(config.PDF_TEMPLATE, report_card_context(card))
    pdf = _write_pdf(html_string)

    with transaction.atomic():
        current = ReportCard.objects.select_for_update().filter(pk=card.pk).first()
        if current is None or current.updated_at != card.updated_at:
            # Regenerated while rendering; keep the document cleared.
            logger.info(f"Report card {card.report_number} changed during rendering, PDF not stored")
            return pdf

        current.pdf_file.save(f"{current.report_number or current.pk}.pdf", ContentFile(pdf), save=False)
        current.pdf_generated_at = timezone.now()
        current.save(update_fields=['pdf_file', 'pdf_generated_at', 'updated_at'])

    logger.info(f"Rendered PDF for report card {card.report_number}")
    return pdf


def export_class_broadsheet(class_id, term_id):
    """
    Excel broadsheet of a class's report cards for a term.

    One row per card ordered by class rank, one column per subject (grade),
    then the overall percentage, grade, mean grade and position.
    """
    from openpyxl import Workbook
    from openpyxl.styles import Font, Alignment, Border, Side, PatternFill
    from openpyxl.utils import get_column_letter

    from academics.models import Class
    from core.models import Term

    school_class = get_or_not_found(Class.objects.all(), class_id, 'Class')
    term = get_or_not_found(Term.objects.select_related('academic_year'), term_id, 'Term')

    cards = list(
        ReportCard.objects.filter(school_class=school_class, term=term)
        .select_related('student')
    )
    if not cards:
        raise NotFound(f'No report cards for {school_class} in {term}')

    def position(card):
        rank = (card.summary or {}).get('class_rank')
        return (rank is None, rank or 0, card.student.last_name, card.student.first_name)

    cards.sort(key=position)

    subjects = {}
    for card in cards:
        for result in card.subject_results:
            subjects.setdefault(result['subject_id'], result.get('subject_code') or result['subject_name'])
    subject_ids = sorted(subjects, key=lambda s: subjects[s])

    wb = Workbook()
    ws = wb.active
    ws.title = "Broadsheet"

    # Styles
    header_font = Font(bold=True, size=14)
    table_header_font = Font(bold=True, size=10, color="FFFFFF")
    table_header_fill = PatternFill(
        start_color=config.EXCEL_HEADER_COLOR,
        end_color=config.EXCEL_HEADER_COLOR,
        fill_type="solid"
    )
    border = Border(
        left=Side(style='thin'),
        right=Side(style='thin'),
        top=Side(style='thin'),
        bottom=Side(style='thin')
    )

    headers = ['Pos', 'Admission No.', 'Student Name']
    headers += [subjects[s] for s in subject_ids]
    headers += ['Total', 'Average %', 'Grade', 'Points', 'Mean Grade', 'Status']
    last_column = get_column_letter(len(headers))

    school = _school()
    ws.merge_cells(f'A1:{last_column}1')
    ws['A1'] = school.display_name if school else str(school_class)
    ws['A1'].font = header_font
    ws['A1'].alignment = Alignment(horizontal='center')

    ws.merge_cells(f'A2:{last_column}2')
    ws['A2'] = f"{school_class} Broadsheet: {term}"
    ws['A2'].alignment = Alignment(horizontal='center')

    ws.append([])
    ws.append(headers)
    header_row = 4

    for col_num in range(1, len(headers) + 1):
        cell = ws.cell(row=header_row, column=col_num)
        cell.font = table_header_font
        cell.fill = table_header_fill
        cell.alignment = Alignment(horizontal='center')
        cell.border = border

    for idx, card in enumerate(cards, 1):
        summary = card.summary or {}
        grades = {r['subject_id']: r['final_grade'] for r in card.subject_results}
        row_data = [
            summary.get('class_rank_suffix', '-'),
            card.student.admission_number,
            card.student.full_name,
        ]
        row_data += [grades.get(s, '') for s in subject_ids]
        row_data += [
            summary.get('total_marks_obtained'),
            summary.get('overall_percentage'),
            summary.get('overall_grade', ''),
            summary.get('total_points'),
            summary.get('mean_grade', ''),
            card.get_status_display(),
        ]
        ws.append(row_data)

        for col_num in range(1, len(row_data) + 1):
            ws.cell(row=header_row + idx, column=col_num).border = border

    ws.column_dimensions['A'].width = 8
    ws.column_dimensions['B'].width = 15
    ws.column_dimensions['C'].width = 30
    for col_num in range(4, len(headers) + 1):
        ws.column_dimensions[get_column_letter(col_num)].width = 12

    output = BytesIO()
    wb.save(output)
    logger.info(f"Exported broadsheet for {school_class} {term} ({len(cards)} cards)")
    return output.getvalue()
