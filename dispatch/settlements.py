"""
정산 데이터 서비스

정산(Settlement)은 헤더 한 건과 유형별 상세 데이터로 구성된다.
- 컬리(kurly): KurlySettlement 여러 건, 금액 기준은 settlement_amount
- 쿠팡(coupang): CoupangSettlement 여러 건, 금액 기준은 total_amount
- 일반(general): GeneralSettlement 표 한 개, 금액 기준은 '금액' 열
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from flask import current_app
from . import db, models, utils

logger = logging.getLogger(__name__)

KURLY_TEXT_FIELDS = ('company_name', 'support_type', 'center', 'region', 'shift', 'sequence', 'note')
KURLY_NUMBER_FIELDS = ('amount', 'settlement_amount', 'supply_price', 'unit_price')

COUPANG_TEXT_FIELDS = ('day_or_night', 'delivery_area', 'courier_name', 'invoice_status', 'payment_type',
                       'note', 'transaction_partner', 'camp', 'route_id', 'pdd')


@dataclass
class BatchImportResult:
    """일괄 등록 결과 (행 번호는 1부터)"""
    success_count: int = 0
    error_count: int = 0
    errors: list = field(default_factory=list)
    settlements: list = field(default_factory=list)

    def add_error(self, row, message):
        self.error_count += 1
        self.errors.append({'row': row, 'message': message})


def _parse_type(settlement_type):
    if isinstance(settlement_type, models.SettlementType):
        return settlement_type
    try:
        return models.SettlementType(settlement_type)
    except ValueError:
        raise ValueError(f"알 수 없는 정산 유형입니다: {settlement_type}")

# --- 금액 계산 ---

def calculate_coupang_amounts(delivery_count, unit_price, vat_rate=None):
    """
    쿠팡 공급가 / 부가세 / 합계 계산
    공급가 = 건수 x 단가, 부가세 = 공급가의 VAT_RATE (반올림), 합계 = 공급가 + 부가세
    """
    if vat_rate is None:
        vat_rate = current_app.config['VAT_RATE']
    supply = delivery_count * unit_price
    vat = round(supply * vat_rate)
    return supply, vat, supply + vat

def general_amount_column(columns):
    """일반 정산 표에서 금액 열 이름 찾기 (없으면 None)"""
    amount_columns = current_app.config['GENERAL_AMOUNT_COLUMNS']
    for column in columns or []:
        if column in amount_columns:
            return column
    return None

def general_settlement_amount(columns, rows):
    column = general_amount_column(columns)
    if column is None:
        return 0.0
    return sum(utils.parse_amount(row.get(column)) for row in rows or [])

def settlement_amount(settlement):
    """
    정산 한 건의 금액: 유형별 금액 필드를 골라 모든 상세 행을 합산
    """
    if settlement.settlement_type == models.SettlementType.KURLY:
        return sum(item.settlement_amount or 0 for item in settlement.kurly_items)
    if settlement.settlement_type == models.SettlementType.COUPANG:
        return sum(item.total_amount or 0 for item in settlement.coupang_items)
    if settlement.general is None:
        return 0.0
    return general_settlement_amount(settlement.general.columns, settlement.general.rows)

# --- 조회 ---

def get_settlements(start_date=None, end_date=None, courier_id=None, settlement_type=None):
    query = db.select(models.Settlement)
    if start_date:
        query = query.filter(models.Settlement.settlement_date >= start_date)
    if end_date:
        query = query.filter(models.Settlement.settlement_date <= end_date)
    if courier_id:
        query = query.filter_by(courier_id=courier_id)
    if settlement_type:
        query = query.filter_by(settlement_type=_parse_type(settlement_type))
    return db.session.execute(
        query.order_by(models.Settlement.settlement_date.desc(), models.Settlement.id.desc())
    ).scalars().all()

def get_settlement(settlement_id):
    return db.session.get(models.Settlement, settlement_id)

def get_settlement_with_details(settlement_id):
    """
    정산 헤더 + 상세 + 금액
    :return: {'settlement', 'details', 'amount'} 또는 None
    """
    settlement = get_settlement(settlement_id)
    if not settlement:
        return None
    return {
        'settlement': settlement,
        'details': settlement.details,
        'amount': settlement_amount(settlement),
    }

# --- 생성 / 수정 / 삭제 ---

def create_settlement(settlement_date, settlement_type, courier_id, created_by=None, commit=True):
    courier = db.session.get(models.User, courier_id)
    if not courier or courier.role != models.UserRole.COURIER:
        raise ValueError("기사를 찾을 수 없습니다 (Courier not found)")

    settlement = models.Settlement(
        settlement_date=utils.parse_date(settlement_date, '정산일'),
        settlement_type=_parse_type(settlement_type),
        courier=courier,
        created_by=created_by
    )
    db.session.add(settlement)
    if commit:
        db.session.commit()
    return settlement

def _build_kurly_item(data):
    item = models.KurlySettlement()
    _apply_kurly_fields(item, data)
    return item

def _apply_kurly_fields(item, data):
    for name in KURLY_TEXT_FIELDS:
        if name in data:
            value = data[name]
            setattr(item, name, value.strip() if isinstance(value, str) else value)
    for name in KURLY_NUMBER_FIELDS:
        if name in data:
            default = None if name == 'unit_price' else 0.0
            setattr(item, name, utils.to_float(data[name], default))
    if 'delivery_count' in data:
        item.delivery_count = utils.to_int(data['delivery_count'], None)
    if item.company_name is None:
        item.company_name = ''
    for name in ('amount', 'settlement_amount', 'supply_price'):
        if getattr(item, name) is None:
            setattr(item, name, 0.0)
        if getattr(item, name) < 0:
            raise ValueError("금액은 0 이상이어야 합니다 (Amounts must not be negative)")

def _build_coupang_item(data, previous=None):
    item = models.CoupangSettlement()
    _apply_coupang_fields(item, data, previous)
    return item

def _apply_coupang_fields(item, data, previous=None):
    """
    쿠팡 상세 필드 반영. 공급가 / 부가세 / 합계가 비어 있으면 건수 x 단가로 계산
    previous: 수정 전 행. 건수나 단가가 바뀌었으면 입력된 공급가 / 부가세 / 합계를 무시하고 다시 계산
    """
    for name in COUPANG_TEXT_FIELDS:
        if name in data:
            value = data[name]
            setattr(item, name, value.strip() if isinstance(value, str) else value)
    if item.day_or_night not in (None, 'day', 'night'):
        raise ValueError("주간/야간 값이 올바르지 않습니다 (day_or_night must be day or night)")

    if 'delivery_count' in data:
        item.delivery_count = utils.to_int(data['delivery_count'])
    if 'unit_price' in data:
        item.unit_price = utils.to_float(data['unit_price'])
    if 'return_count' in data:
        item.return_count = utils.to_int(data['return_count'], None)

    delivery_count = item.delivery_count or 0
    unit_price = item.unit_price or 0.0
    if delivery_count < 0 or unit_price < 0:
        raise ValueError("배송 건수와 단가는 0 이상이어야 합니다 (Count and unit price must not be negative)")

    if previous is not None and (delivery_count != (previous.delivery_count or 0)
                                 or unit_price != (previous.unit_price or 0.0)):
        data = {k: v for k, v in data.items() if k not in ('supply_price', 'vat', 'total_amount')}

    supply, vat, total = calculate_coupang_amounts(delivery_count, unit_price)
    item.supply_price = utils.to_float(data.get('supply_price'), supply)
    item.vat = utils.to_float(data.get('vat'), vat)
    item.total_amount = utils.to_float(data.get('total_amount'), item.supply_price + item.vat)
    item.profit = utils.to_float(data.get('profit'), item.profit or 0.0)

def _normalize_general(columns, rows):
    columns = [c.strip() for c in columns or [] if c and c.strip()]
    if not columns:
        raise ValueError("열을 하나 이상 입력해 주세요 (At least one column is required)")
    if len(set(columns)) != len(columns):
        raise ValueError("열 이름이 중복되었습니다 (Duplicate column names)")

    normalized = []
    for row in rows or []:
        cleaned = {c: (row.get(c) if row.get(c) is not None else '') for c in columns}
        if any(str(v).strip() for v in cleaned.values()):
            normalized.append(cleaned)
    return columns, normalized

def create_kurly_settlement(settlement_id, data):
    settlement = get_settlement(settlement_id)
    if not settlement or settlement.settlement_type != models.SettlementType.KURLY:
        raise ValueError("컬리 정산을 찾을 수 없습니다 (Kurly settlement not found)")
    item = _build_kurly_item(data)
    settlement.kurly_items.append(item)
    db.session.commit()
    return item

def create_coupang_settlement(settlement_id, data):
    settlement = get_settlement(settlement_id)
    if not settlement or settlement.settlement_type != models.SettlementType.COUPANG:
        raise ValueError("쿠팡 정산을 찾을 수 없습니다 (Coupang settlement not found)")
    data = dict(data)
    data.setdefault('courier_name', settlement.courier.name)
    item = _build_coupang_item(data)
    settlement.coupang_items.append(item)
    db.session.commit()
    return item

def create_general_settlement(settlement_id, columns, rows):
    settlement = get_settlement(settlement_id)
    if not settlement or settlement.settlement_type != models.SettlementType.GENERAL:
        raise ValueError("일반 정산을 찾을 수 없습니다 (General settlement not found)")
    columns, rows = _normalize_general(columns, rows)
    if settlement.general is None:
        settlement.general = models.GeneralSettlement(columns=columns, rows=rows)
    else:
        settlement.general.columns = columns
        settlement.general.rows = rows
    db.session.commit()
    return settlement.general

def create_settlement_with_details(settlement_type, settlement_date, courier_id, details, created_by=None):
    """
    헤더와 상세 데이터를 한 트랜잭션으로 생성
    :param details: 컬리/쿠팡은 상세 행 dict 목록, 일반은 {'columns': [...], 'rows': [...]}
    """
    settlement = create_settlement(settlement_date, settlement_type, courier_id, created_by, commit=False)
    try:
        _replace_details(settlement, details)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    logger.info("Created %s settlement %s for courier %s",
                settlement.settlement_type.value, settlement.id, courier_id)
    return settlement

def _replace_details(settlement, details):
    if settlement.settlement_type == models.SettlementType.KURLY:
        items = [_build_kurly_item(d) for d in details]
        if not items:
            raise ValueError("정산 항목을 하나 이상 입력해 주세요 (At least one row is required)")
        settlement.kurly_items = items
    elif settlement.settlement_type == models.SettlementType.COUPANG:
        previous = list(settlement.coupang_items)
        rows = []
        for index, d in enumerate(details):
            d = dict(d)
            if not d.get('courier_name') and settlement.courier is not None:
                d['courier_name'] = settlement.courier.name
            rows.append(_build_coupang_item(d, previous[index] if index < len(previous) else None))
        if not rows:
            raise ValueError("정산 항목을 하나 이상 입력해 주세요 (At least one row is required)")
        settlement.coupang_items = rows
    else:
        columns, rows = _normalize_general(details.get('columns'), details.get('rows'))
        if settlement.general is None:
            settlement.general = models.GeneralSettlement(columns=columns, rows=rows)
        else:
            settlement.general.columns = columns
            settlement.general.rows = rows

def _refresh_report_items(settlement):
    """보고서에 포함된 정산이면 항목 금액과 기사별 합계를 다시 계산"""
    if not settlement.report_items:
        return
    amount = settlement_amount(settlement)
    for item in settlement.report_items:
        item.amount = amount
        courier_report = item.courier_report
        courier_report.total_amount = sum(i.amount for i in courier_report.items)
        courier_report.updated_at = datetime.now()

def update_settlement_details(settlement_id, details, settlement_date=None):
    """
    상세 데이터 전체 교체. 보고서에 포함된 정산이면 보고서 금액도 함께 갱신
    """
    settlement = get_settlement(settlement_id)
    if not settlement:
        raise ValueError("정산을 찾을 수 없습니다 (Settlement not found)")
    try:
        if settlement_date:
            new_date = utils.parse_date(settlement_date, '정산일')
            for item in settlement.report_items:
                report = item.courier_report.report
                if not (report.start_date <= new_date <= report.end_date):
                    raise ValueError("보고서 기간 밖의 날짜로 변경할 수 없습니다 (Date is outside the period of its report)")
            settlement.settlement_date = new_date
        _replace_details(settlement, details)
        settlement.updated_at = datetime.now()
        _refresh_report_items(settlement)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    return settlement

def delete_settlement(settlement_id):
    settlement = get_settlement(settlement_id)
    if not settlement:
        raise ValueError("정산을 찾을 수 없습니다 (Settlement not found)")
    if settlement.report_items:
        raise ValueError("보고서에 포함된 정산은 삭제할 수 없습니다 (Settlement is included in a report)")
    db.session.delete(settlement)
    db.session.commit()
    return True

# --- 일괄 등록 (Batch entry) ---

def default_batch_rows(settlement_type, settlement_date):
    """일괄 입력 폼 기본 행. 쿠팡은 기사별 한 행 (기본 단가)"""
    settlement_type = _parse_type(settlement_type)
    if settlement_type == models.SettlementType.COUPANG:
        unit_price = current_app.config['COUPANG_DEFAULT_UNIT_PRICE']
        return [{
            'courier_id': courier.id,
            'courier_name': courier.name,
            'settlement_date': settlement_date,
            'day_or_night': 'day',
            'delivery_area': '',
            'delivery_count': 0,
            'unit_price': unit_price,
        } for courier in db.session.execute(
            db.select(models.User).filter_by(role=models.UserRole.COURIER).order_by(models.User.name)
        ).scalars().all()]
    return [{
        'courier_id': None,
        'company_name': '',
        'settlement_date': settlement_date,
        'support_type': '',
        'amount': 0,
        'settlement_amount': 0,
        'supply_price': 0,
    }]

def _derive_batch_fields(settlement_type, detail):
    """
    일괄 입력 행의 비어 있거나 0 인 파생 필드 채우기
    - 컬리: 정산 금액 = 지원 금액(만원) x KURLY_AMOUNT_UNIT, 공급가 = 정산 금액 / (1 + VAT_RATE)
    - 쿠팡: 수익 = 공급가 x COUPANG_PROFIT_RATE
    """
    detail = dict(detail)
    config = current_app.config
    if settlement_type == models.SettlementType.KURLY:
        amount = utils.to_float(detail.get('amount'), 0.0)
        if amount and not utils.to_float(detail.get('settlement_amount'), 0.0):
            detail['settlement_amount'] = amount * config['KURLY_AMOUNT_UNIT']
        total = utils.to_float(detail.get('settlement_amount'), 0.0)
        if total and not utils.to_float(detail.get('supply_price'), 0.0):
            detail['supply_price'] = round(total / (1 + config['VAT_RATE']))
    elif not utils.to_float(detail.get('profit'), 0.0):
        supply, _, _ = calculate_coupang_amounts(utils.to_int(detail.get('delivery_count'), 0),
                                                 utils.to_float(detail.get('unit_price'), 0.0))
        supply = utils.to_float(detail.get('supply_price'), supply) or supply
        detail['profit'] = round(supply * config['COUPANG_PROFIT_RATE'])
    return detail

def create_batch_settlements(settlement_type, settlement_date, rows, created_by=None):
    """
    여러 행을 한 번에 등록. 행마다 독립적으로 검증하고 저장하며,
    실패한 행은 BatchImportResult.errors 에 (행 번호, 사유) 로 기록
    쿠팡 배치에서 배송 건수가 0 인 행은 건너뜀. 비어 있는 파생 필드는 _derive_batch_fields 로 계산
    """
    settlement_type = _parse_type(settlement_type)
    if settlement_type == models.SettlementType.GENERAL:
        raise ValueError("일반 정산은 일괄 등록을 지원하지 않습니다 (General settlements cannot be batch imported)")

    result = BatchImportResult()
    for index, row in enumerate(rows, start=1):
        try:
            if settlement_type == models.SettlementType.COUPANG and not utils.to_int(row.get('delivery_count'), 0):
                continue
            courier_id = utils.to_int(row.get('courier_id'), None)
            if courier_id is None:
                raise ValueError("기사를 선택해 주세요 (Courier is required)")
            detail = _derive_batch_fields(
                settlement_type, {k: v for k, v in row.items() if k not in ('courier_id', 'settlement_date')})
            settlement = create_settlement_with_details(
                settlement_type, row.get('settlement_date') or settlement_date, courier_id, [detail], created_by)
        except ValueError as e:
            db.session.rollback()
            result.add_error(index, str(e))
            continue
        result.success_count += 1
        result.settlements.append(settlement)

    logger.info("Batch %s import: %d ok, %d failed",
                settlement_type.value, result.success_count, result.error_count)
    return result

# --- 기사 본인 정산 (Courier self-service) ---

def _get_own_settlement(settlement_id, courier_id):
    settlement = get_settlement(settlement_id)
    if not settlement:
        raise ValueError("정산을 찾을 수 없습니다 (Settlement not found)")
    if settlement.courier_id != courier_id:
        raise PermissionError("자신의 정산만 수정할 수 있습니다 (You can only modify your own settlements)")
    return settlement

def get_my_settlements(courier_id, start_date=None, end_date=None, settlement_type=None):
    return get_settlements(start_date, end_date, courier_id=courier_id, settlement_type=settlement_type)

def create_my_settlement(courier_id, settlement_type, settlement_date, details):
    return create_settlement_with_details(settlement_type, settlement_date, courier_id, details, created_by=courier_id)

def update_my_settlement(settlement_id, courier_id, details, settlement_date=None):
    settlement = _get_own_settlement(settlement_id, courier_id)
    if settlement.report_items:
        raise ValueError("보고서에 포함된 정산은 수정할 수 없습니다 (Settlement is included in a report)")
    return update_settlement_details(settlement.id, details, settlement_date)

def delete_my_settlement(settlement_id, courier_id):
    settlement = _get_own_settlement(settlement_id, courier_id)
    return delete_settlement(settlement.id)

def group_settlements_by_month(settlements):
    """
    월별 그룹 + 합계 (최근 월 먼저)
    :return: [{'month': 'YYYY-MM', 'settlements': [...], 'total': float}]
    """
    groups = {}
    for settlement in settlements:
        key = settlement.settlement_date.strftime('%Y-%m')
        group = groups.setdefault(key, {'month': key, 'settlements': [], 'total': 0.0})
        group['settlements'].append(settlement)
        group['total'] += settlement_amount(settlement)
    return [groups[k] for k in sorted(groups, reverse=True)]
