"""
공통 유틸리티: 전화번호 정규화, 금액 표시, 폼 입력 파싱
"""
import math
import re
from datetime import datetime, date


def format_phone_number(phone_number):
    """
    전화번호를 국제 표준 형식으로 변환
    예: '010-1234-5678' -> '+821012345678', '02-1234-5678' -> '+82212345678'
    """
    cleaned = re.sub(r'\D', '', phone_number or '')

    # 이미 국제 형식
    if (phone_number or '').strip().startswith('+'):
        return '+' + cleaned

    # 휴대폰 번호 (010...)
    if cleaned.startswith('010'):
        return '+82' + cleaned[1:]

    # 지역번호 (02, 031, 051 ...)
    if len(cleaned) >= 9 and cleaned[:2] in ('02', '03', '04', '05', '06'):
        return '+82' + cleaned[1:]

    # 알 수 없는 형식은 한국 번호로 간주
    return '+82' + cleaned


def is_valid_phone_number(phone_number):
    """전화번호 유효성 검사 (국가 코드 + 최소 자릿수)"""
    formatted = format_phone_number(phone_number)

    if not formatted.startswith('+') or len(formatted) < 10:
        return False

    if formatted.startswith('+82'):
        # 휴대폰: +8210XXXXXXXX (13자리)
        if formatted[3:5] == '10':
            return len(formatted) == 13
        # 지역번호
        return 11 <= len(formatted) <= 13

    return True


def format_phone_number_for_display(phone_number):
    """화면 표시용 전화번호 ('+821012345678' -> '010-1234-5678')"""
    if not phone_number:
        return ''

    if phone_number.startswith('+82'):
        local = phone_number[3:]
        if local.startswith('10') and len(local) == 10:
            return f"0{local[:2]}-{local[2:6]}-{local[6:]}"
        if local.startswith('2'):
            return f"0{local[:1]}-{local[1:5]}-{local[5:]}"
        return f"0{local}"

    return phone_number


def format_won(amount):
    """금액을 원화 형식으로 표시 (1234567 -> '1,234,567원')"""
    if amount is None:
        return '-'
    return f"{amount:,.0f}원"


def parse_amount(value):
    """
    표 셀 값을 숫자로 변환. 천 단위 구분 기호와 '원' 표기를 허용하고,
    비어 있거나 숫자가 아니면 0 을 반환한다.
    """
    if value is None:
        return 0.0
    if isinstance(value, (int, float)):
        return float(value) if math.isfinite(value) else 0.0
    text = str(value).replace(',', '').replace('원', '').strip()
    try:
        number = float(text)
    except ValueError:
        return 0.0
    return number if math.isfinite(number) else 0.0


def parse_date(value, field_name='날짜'):
    """'YYYY-MM-DD' 문자열을 date 로 변환"""
    if isinstance(value, date):
        return value
    if not value:
        raise ValueError(f"{field_name}를 입력해 주세요 ({field_name} is required)")
    try:
        return datetime.strptime(value.strip(), '%Y-%m-%d').date()
    except ValueError:
        raise ValueError(f"{field_name} 형식이 올바르지 않습니다: {value}")


def parse_time(value):
    """'HH:MM' 문자열을 time 으로 변환 (빈 값은 None)"""
    if not value:
        return None
    try:
        return datetime.strptime(value.strip(), '%H:%M').time()
    except ValueError:
        raise ValueError(f"시간 형식이 올바르지 않습니다: {value}")


def to_float(value, default=0.0):
    if value is None or value == '':
        return default
    number = float(str(value).replace(',', ''))
    if not math.isfinite(number):
        raise ValueError(f"숫자 값이 올바르지 않습니다: {value}")
    return number


def to_int(value, default=0):
    if value is None or value == '':
        return default
    return int(to_float(value))


def month_range(today=None):
    """이번 달 1일 ~ 말일"""
    today = today or date.today()
    start = today.replace(day=1)
    if today.month == 12:
        next_month = date(today.year + 1, 1, 1)
    else:
        next_month = date(today.year, today.month + 1, 1)
    end = date.fromordinal(next_month.toordinal() - 1)
    return start, end
