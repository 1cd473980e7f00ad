"""
정산 보고서 / 정산서 서비스

보고서(SettlementReport) -> 기사별 정산(CourierSettlementReport) -> 정산 항목(ReportSettlementItem)
기사별 total_amount 는 항목 추가/삭제 때마다 항목 금액 합계로 다시 계산한다.
"""
import logging
from datetime import datetime
from flask import current_app
from sqlalchemy.exc import IntegrityError
from . import db, models, utils
from .settlements import settlement_amount

logger = logging.getLogger(__name__)

# --- 보고서 (Reports) ---

def get_settlement_reports():
    return db.session.execute(
        db.select(models.SettlementReport).order_by(models.SettlementReport.created_at.desc(),
                                                    models.SettlementReport.id.desc())
    ).scalars().all()

def get_settlement_reports_list():
    """
    보고서 목록 + 요약 (기사 수, 총액)
    :return: [{'report', 'courier_count', 'total_amount'}]
    """
    return [{
        'report': report,
        'courier_count': len(report.couriers),
        'total_amount': sum(c.total_amount or 0 for c in report.couriers),
    } for report in get_settlement_reports()]

def get_settlement_report(report_id):
    return db.session.get(models.SettlementReport, report_id)

def get_settlement_report_with_couriers(report_id):
    """보고서 + 기사별 정산 (기사 이름순)"""
    report = get_settlement_report(report_id)
    if not report:
        return None
    couriers = sorted(report.couriers, key=lambda c: c.courier.name if c.courier else '')
    return {
        'report': report,
        'couriers': couriers,
        'total_amount': sum(c.total_amount or 0 for c in couriers),
    }

def get_courier_report(report_id, courier_id):
    return db.session.execute(
        db.select(models.CourierSettlementReport).filter_by(report_id=report_id, courier_id=courier_id)
    ).scalar_one_or_none()

def get_courier_report_details(report_id, courier_id):
    """
    기사별 보고서 상세
    :return: {'report', 'courier', 'items': [{'item', 'settlement', 'details'}], 'total_amount'}
    """
    report = get_settlement_report(report_id)
    courier_report = get_courier_report(report_id, courier_id)
    if not report or not courier_report:
        return None

    items = [{
        'item': item,
        'settlement': item.settlement,
        'details': item.settlement.details,
    } for item in courier_report.items]

    return {
        'report': report,
        'courier': courier_report,
        'items': items,
        'total_amount': courier_report.total_amount or 0,
    }

def _validate_period(start_date, end_date):
    start_date = utils.parse_date(start_date, '시작일')
    end_date = utils.parse_date(end_date, '종료일')
    if start_date > end_date:
        raise ValueError("시작일은 종료일보다 늦을 수 없습니다 (Start date must not be after end date)")
    return start_date, end_date

def create_settlement_report(title, start_date, end_date, created_by=None, commit=True):
    if not (title or '').strip():
        raise ValueError("보고서 제목을 입력해 주세요 (Title is required)")
    start_date, end_date = _validate_period(start_date, end_date)

    report = models.SettlementReport(
        title=title.strip(),
        start_date=start_date,
        end_date=end_date,
        created_by=created_by
    )
    db.session.add(report)
    if commit:
        db.session.commit()
    return report

def update_settlement_report(report_id, title=None, start_date=None, end_date=None):
    report = get_settlement_report(report_id)
    if not report:
        raise ValueError("보고서를 찾을 수 없습니다 (Report not found)")

    if title is not None and not title.strip():
        raise ValueError("보고서 제목을 입력해 주세요 (Title is required)")
    new_start, new_end = _validate_period(start_date or report.start_date, end_date or report.end_date)
    for courier_report in report.couriers:
        for item in courier_report.items:
            if not (new_start <= item.settlement.settlement_date <= new_end):
                raise ValueError("포함된 정산이 새 기간 밖에 있습니다 (Report period would exclude included settlements)")

    if title is not None:
        report.title = title.strip()
    report.start_date, report.end_date = new_start, new_end
    report.updated_at = datetime.now()
    db.session.commit()
    return report

def delete_settlement_report(report_id):
    report = get_settlement_report(report_id)
    if not report:
        return False
    db.session.delete(report)
    db.session.commit()
    return True

def add_courier_to_report(report_id, courier_id, commit=True):
    report = get_settlement_report(report_id)
    if not report:
        raise ValueError("보고서를 찾을 수 없습니다 (Report not found)")
    courier = db.session.get(models.User, courier_id)
    if not courier or courier.role != models.UserRole.COURIER:
        raise ValueError("기사를 찾을 수 없습니다 (Courier not found)")
    if get_courier_report(report_id, courier_id):
        raise ValueError("이미 보고서에 포함된 기사입니다 (Courier already in report)")

    courier_report = models.CourierSettlementReport(report=report, courier=courier, total_amount=0)
    db.session.add(courier_report)
    if commit:
        db.session.commit()
    return courier_report

def remove_courier_from_report(report_id, courier_id):
    courier_report = get_courier_report(report_id, courier_id)
    if not courier_report:
        return False
    db.session.delete(courier_report)
    db.session.commit()
    return True

def update_courier_report_total_amount(courier_report):
    """기사별 합계 = 항목 금액 합계"""
    courier_report.total_amount = sum(item.amount or 0 for item in courier_report.items)
    courier_report.updated_at = datetime.now()
    return courier_report.total_amount

def add_settlement_item_to_report(courier_report_id, settlement_id, commit=True):
    """
    정산 항목 추가. 금액은 추가 시점의 정산 금액
    정산은 해당 기사의 것이어야 하고 보고서 기간 안에 있어야 한다
    """
    courier_report = db.session.get(models.CourierSettlementReport, courier_report_id)
    if not courier_report:
        raise ValueError("기사별 보고서를 찾을 수 없습니다 (Courier report not found)")
    settlement = db.session.get(models.Settlement, settlement_id)
    if not settlement:
        raise ValueError("정산을 찾을 수 없습니다 (Settlement not found)")
    if settlement.courier_id != courier_report.courier_id:
        raise ValueError("다른 기사의 정산은 추가할 수 없습니다 (Settlement belongs to another courier)")

    report = courier_report.report
    if not (report.start_date <= settlement.settlement_date <= report.end_date):
        raise ValueError("보고서 기간 밖의 정산입니다 (Settlement is outside the report period)")
    if any(item.settlement is settlement or item.settlement_id == settlement.id for item in courier_report.items):
        raise ValueError("이미 추가된 정산입니다 (Settlement already in report)")

    item = models.ReportSettlementItem(
        settlement=settlement,
        settlement_type=settlement.settlement_type,
        amount=settlement_amount(settlement)
    )
    courier_report.items.append(item)
    update_courier_report_total_amount(courier_report)

    if commit:
        try:
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            raise ValueError("이미 추가된 정산입니다 (Settlement already in report)")
    return item

def remove_settlement_item_from_report(item_id):
    item = db.session.get(models.ReportSettlementItem, item_id)
    if not item:
        return False
    courier_report = item.courier_report
    courier_report.items.remove(item)
    update_courier_report_total_amount(courier_report)
    db.session.commit()
    return True

def get_available_settlements_for_report(start_date, end_date, courier_id=None, exclude_ids=()):
    """기간 내 정산 중 아직 보고서에 넣지 않은 것"""
    query = db.select(models.Settlement).filter(
        models.Settlement.settlement_date >= start_date,
        models.Settlement.settlement_date <= end_date
    )
    if courier_id:
        query = query.filter_by(courier_id=courier_id)
    if exclude_ids:
        query = query.filter(models.Settlement.id.notin_(list(exclude_ids)))
    return db.session.execute(
        query.order_by(models.Settlement.settlement_date.asc(), models.Settlement.id.asc())
    ).scalars().all()

def get_courier_settlements_by_date_range(courier_id, start_date, end_date):
    return get_available_settlements_for_report(start_date, end_date, courier_id=courier_id)

def build_settlement_report(title, start_date, end_date, courier_ids, created_by=None):
    """
    보고서 일괄 생성
    1. 보고서 생성  2. 선택한 기사 추가  3. 기사별 기간 내 정산 전부 추가 (합계 저장)
    """
    if not courier_ids:
        raise ValueError("최소 한 명 이상의 기사를 선택해야 합니다 (Select at least one courier)")

    try:
        report = create_settlement_report(title, start_date, end_date, created_by, commit=False)
        db.session.flush()
        for courier_id in dict.fromkeys(courier_ids):
            courier_report = add_courier_to_report(report.id, courier_id, commit=False)
            db.session.flush()
            for settlement in get_courier_settlements_by_date_range(courier_id, report.start_date, report.end_date):
                add_settlement_item_to_report(courier_report.id, settlement.id, commit=False)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info("Built settlement report %s (%d couriers, total %s)",
                report.id, len(report.couriers), report.total_amount)
    return report

# --- 정산서 (Statements) ---

def _courier_total(courier_id, start_date, end_date):
    settlements = get_courier_settlements_by_date_range(courier_id, start_date, end_date)
    return sum(settlement_amount(s) for s in settlements)

def adjustments_net(adjustments):
    """조정 합계: 수입 +, 비용/세금 -, 기타는 부호 그대로"""
    net = 0.0
    for adjustment in adjustments:
        if adjustment.type == models.AdjustmentType.INCOME:
            net += abs(adjustment.amount)
        elif adjustment.type in (models.AdjustmentType.EXPENSE, models.AdjustmentType.TAX):
            net -= abs(adjustment.amount)
        else:
            net += adjustment.amount
    return net

def recalculate_statement(statement):
    """
    수수료 = 총액 x 수수료율, 부가세 = (총액 - 수수료) x VAT_RATE,
    최종 지급액 = 총액 - 수수료 + 부가세 + 조정 합계
    """
    vat_rate = current_app.config['VAT_RATE']
    statement.commission_amount = round(statement.total_amount * statement.commission_rate)
    statement.vat_amount = round((statement.total_amount - statement.commission_amount) * vat_rate)
    statement.final_amount = (statement.total_amount - statement.commission_amount
                              + statement.vat_amount + adjustments_net(statement.adjustments))
    return statement

def get_settlement_statements(courier_id=None):
    query = db.select(models.SettlementStatement)
    if courier_id:
        query = query.filter_by(courier_id=courier_id)
    return db.session.execute(
        query.order_by(models.SettlementStatement.end_date.desc(), models.SettlementStatement.id.desc())
    ).scalars().all()

def get_settlement_statement(statement_id):
    return db.session.get(models.SettlementStatement, statement_id)

def create_settlement_statement(courier_id, start_date, end_date, commission_rate=None):
    courier = db.session.get(models.User, courier_id)
    if not courier or courier.role != models.UserRole.COURIER:
        raise ValueError("기사를 찾을 수 없습니다 (Courier not found)")
    start_date, end_date = _validate_period(start_date, end_date)
    if commission_rate is None:
        commission_rate = current_app.config['DEFAULT_COMMISSION_RATE']
    if not 0 <= commission_rate <= 1:
        raise ValueError("수수료율은 0 ~ 1 사이여야 합니다 (Commission rate must be between 0 and 1)")

    statement = models.SettlementStatement(
        courier=courier,
        start_date=start_date,
        end_date=end_date,
        total_amount=_courier_total(courier_id, start_date, end_date),
        commission_rate=commission_rate,
        payment_status=models.PaymentStatus.PENDING
    )
    recalculate_statement(statement)
    db.session.add(statement)
    db.session.commit()
    return statement

def create_settlement_adjustment(statement_id, description, amount, adjustment_type=models.AdjustmentType.OTHER):
    statement = get_settlement_statement(statement_id)
    if not statement:
        raise ValueError("정산서를 찾을 수 없습니다 (Statement not found)")
    if statement.payment_status != models.PaymentStatus.PENDING:
        raise ValueError("지급 대기 상태의 정산서만 조정할 수 있습니다 (Only pending statements can be adjusted)")
    if not (description or '').strip():
        raise ValueError("조정 내용을 입력해 주세요 (Description is required)")
    if not isinstance(adjustment_type, models.AdjustmentType):
        adjustment_type = models.AdjustmentType(adjustment_type)

    adjustment = models.SettlementAdjustment(
        description=description.strip(),
        amount=float(amount),
        type=adjustment_type
    )
    statement.adjustments.append(adjustment)
    recalculate_statement(statement)
    db.session.commit()
    return adjustment

def mark_statement_paid(statement_id):
    statement = get_settlement_statement(statement_id)
    if not statement:
        raise ValueError("정산서를 찾을 수 없습니다 (Statement not found)")
    if statement.payment_status == models.PaymentStatus.CANCELLED:
        raise ValueError("취소된 정산서는 지급할 수 없습니다 (Cancelled statements cannot be paid)")
    statement.payment_status = models.PaymentStatus.PAID
    statement.payment_date = datetime.now()
    db.session.commit()
    return statement

def cancel_statement(statement_id):
    statement = get_settlement_statement(statement_id)
    if not statement:
        raise ValueError("정산서를 찾을 수 없습니다 (Statement not found)")
    if statement.payment_status == models.PaymentStatus.PAID:
        raise ValueError("지급 완료된 정산서는 취소할 수 없습니다 (Paid statements cannot be cancelled)")
    statement.payment_status = models.PaymentStatus.CANCELLED
    db.session.commit()
    return statement

def courier_payout_summary(courier_id, start_date, end_date):
    """
    기사 지급 요약: 유형별 소계, 총액, 공제액 (WITHHOLDING_RATE), 최종 지급액
    """
    start_date, end_date = _validate_period(start_date, end_date)
    settlements = get_courier_settlements_by_date_range(courier_id, start_date, end_date)

    subtotals = {t: 0.0 for t in models.SettlementType}
    for settlement in settlements:
        subtotals[settlement.settlement_type] += settlement_amount(settlement)

    total = sum(subtotals.values())
    deduction = round(total * current_app.config['WITHHOLDING_RATE'])
    return {
        'start_date': start_date,
        'end_date': end_date,
        'settlements': settlements,
        'subtotals': subtotals,
        'total_amount': total,
        'deduction': deduction,
        'final_amount': total - deduction,
    }
