"""
정산 보고서 Word 문서 생성 (python-docx)
"""
import io
from datetime import datetime
from docx import Document
from docx.shared import Pt, RGBColor
from docx.enum.text import WD_ALIGN_PARAGRAPH
from docx.oxml.ns import qn
from docx.oxml import OxmlElement
from . import reports, utils

FONT_NAME = '맑은 고딕'

def set_cell_shading(cell, color):
    """셀 배경색 설정"""
    shading_elm = OxmlElement('w:shd')
    shading_elm.set(qn('w:fill'), color)
    cell._tc.get_or_add_tcPr().append(shading_elm)

def set_table_border(table):
    """표 테두리 설정"""
    tbl = table._tbl
    tblPr = tbl.tblPr
    tblBorders = OxmlElement('w:tblBorders')
    for border_name in ['top', 'left', 'bottom', 'right', 'insideH', 'insideV']:
        border = OxmlElement(f'w:{border_name}')
        border.set(qn('w:val'), 'single')
        border.set(qn('w:sz'), '4')
        border.set(qn('w:space'), '0')
        border.set(qn('w:color'), '000000')
        tblBorders.append(border)
    tblPr.append(tblBorders)

def _header_row(table, headers, color='4472C4'):
    row = table.rows[0]
    for i, header in enumerate(headers):
        cell = row.cells[i]
        cell.text = header
        set_cell_shading(cell, color)
        run = cell.paragraphs[0].runs[0]
        run.bold = True
        run.font.color.rgb = RGBColor(255, 255, 255)

def build_report_document(report_id):
    """
    보고서 요약 + 기사별 정산 항목을 담은 Document 생성
    :return: Document 또는 None (보고서 없음)
    """
    data = reports.get_settlement_report_with_couriers(report_id)
    if not data:
        return None
    report = data['report']

    doc = Document()
    style = doc.styles['Normal']
    style.font.name = FONT_NAME
    style._element.rPr.rFonts.set(qn('w:eastAsia'), FONT_NAME)
    style.font.size = Pt(10)

    title = doc.add_heading(report.title, 0)
    title.alignment = WD_ALIGN_PARAGRAPH.CENTER

    period = doc.add_paragraph()
    period.alignment = WD_ALIGN_PARAGRAPH.CENTER
    run = period.add_run(f"정산 기간: {report.start_date} ~ {report.end_date}")
    run.font.color.rgb = RGBColor(100, 100, 100)

    # ====== 요약 ======
    doc.add_heading('1. 기사별 요약', level=1)
    summary = doc.add_table(rows=1, cols=3)
    set_table_border(summary)
    _header_row(summary, ['기사', '정산 건수', '정산 금액'])
    for courier_report in data['couriers']:
        cells = summary.add_row().cells
        cells[0].text = courier_report.courier.name
        cells[1].text = str(len(courier_report.items))
        cells[2].text = utils.format_won(courier_report.total_amount)

    cells = summary.add_row().cells
    cells[0].text = '합계'
    cells[1].text = str(sum(len(c.items) for c in data['couriers']))
    cells[2].text = utils.format_won(data['total_amount'])
    for cell in cells:
        set_cell_shading(cell, 'E8E8E8')
        cell.paragraphs[0].runs[0].bold = True

    # ====== 기사별 상세 ======
    doc.add_heading('2. 기사별 상세', level=1)
    for courier_report in data['couriers']:
        doc.add_heading(f"{courier_report.courier.name} ({utils.format_won(courier_report.total_amount)})", level=2)
        if not courier_report.items:
            doc.add_paragraph('정산 항목 없음')
            continue
        table = doc.add_table(rows=1, cols=3)
        set_table_border(table)
        _header_row(table, ['정산일', '유형', '금액'], color='70AD47')
        for item in courier_report.items:
            cells = table.add_row().cells
            cells[0].text = str(item.settlement.settlement_date)
            cells[1].text = item.type_label
            cells[2].text = utils.format_won(item.amount)
        doc.add_paragraph()

    footer = doc.add_paragraph()
    footer.alignment = WD_ALIGN_PARAGRAPH.RIGHT
    footer.add_run(f"생성일시: {datetime.now():%Y-%m-%d %H:%M}").font.size = Pt(8)
    return doc

def export_report_docx(report_id):
    """Word 파일을 메모리에 저장해 BytesIO 로 반환 (보고서 없으면 None)"""
    doc = build_report_document(report_id)
    if doc is None:
        return None
    buffer = io.BytesIO()
    doc.save(buffer)
    buffer.seek(0)
    return buffer
