import logging
from datetime import datetime, date
from . import db, models, utils
from sqlalchemy.exc import IntegrityError

logger = logging.getLogger(__name__)

# --- 사용자 / 인증 (Users & auth) ---

def register_user(name, phone, password, email=None, role=models.UserRole.COURIER):
    """
    회원 가입
    :param phone: 사용자가 입력한 전화번호 (형식 무관, 국제 형식으로 저장)
    :param role: UserRole
    """
    if not name or not password:
        raise ValueError("이름과 비밀번호는 필수입니다 (Name and password are required)")
    if not utils.is_valid_phone_number(phone):
        raise ValueError("유효하지 않은 전화번호입니다 (Invalid phone number)")

    formatted_phone = utils.format_phone_number(phone)
    email = (email or '').strip() or None

    user = models.User(name=name.strip(), phone=formatted_phone, email=email, role=role)
    user.set_password(password)
    db.session.add(user)
    if role == models.UserRole.COURIER:
        db.session.add(models.NotificationSetting(user=user))

    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ValueError("이미 등록된 전화번호 또는 이메일입니다 (Phone or email already registered)")
    logger.info("Registered %s user %s", role.value, formatted_phone)
    return user

def authenticate(identifier, password):
    """전화번호 또는 이메일로 로그인"""
    identifier = (identifier or '').strip()
    if not identifier:
        return None

    if '@' in identifier:
        user = db.session.execute(
            db.select(models.User).filter_by(email=identifier)
        ).scalar_one_or_none()
    else:
        user = db.session.execute(
            db.select(models.User).filter_by(phone=utils.format_phone_number(identifier))
        ).scalar_one_or_none()

    if user and user.check_password(password):
        return user
    return None

def get_user_by_id(user_id):
    return db.session.get(models.User, user_id)

# --- 기사 (Couriers) ---

def get_couriers():
    return db.session.execute(
        db.select(models.User).filter_by(role=models.UserRole.COURIER).order_by(models.User.name)
    ).scalars().all()

def get_courier_by_id(courier_id):
    user = db.session.get(models.User, courier_id)
    if not user or user.role != models.UserRole.COURIER:
        return None
    return user

def update_courier(courier_id, name=None, phone=None, email=None):
    courier = get_courier_by_id(courier_id)
    if not courier:
        raise ValueError("기사를 찾을 수 없습니다 (Courier not found)")

    if name:
        courier.name = name.strip()
    if phone:
        if not utils.is_valid_phone_number(phone):
            raise ValueError("유효하지 않은 전화번호입니다 (Invalid phone number)")
        courier.phone = utils.format_phone_number(phone)
    if email is not None:
        courier.email = email.strip() or None

    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ValueError("이미 등록된 전화번호 또는 이메일입니다 (Phone or email already registered)")
    return courier

def get_notification_settings(user_id):
    """알림 설정 조회 (없으면 기본값으로 생성)"""
    setting = db.session.execute(
        db.select(models.NotificationSetting).filter_by(user_id=user_id)
    ).scalar_one_or_none()
    if not setting:
        setting = models.NotificationSetting(
            user_id=user_id, email_enabled=True, sms_enabled=False, kakao_enabled=False)
        db.session.add(setting)
        db.session.commit()
    return setting

def update_notification_settings(user_id, email_enabled=None, sms_enabled=None, kakao_enabled=None):
    setting = get_notification_settings(user_id)
    if email_enabled is not None:
        setting.email_enabled = email_enabled
    if sms_enabled is not None:
        setting.sms_enabled = sms_enabled
    if kakao_enabled is not None:
        setting.kakao_enabled = kakao_enabled
    db.session.commit()
    return setting

# --- 물류센터 (Logistics centers) ---

CENTER_FIELDS = ('name', 'description', 'address', 'map_url', 'manager_name', 'manager_contact')

def get_logistics_centers():
    return db.session.execute(
        db.select(models.LogisticsCenter).order_by(models.LogisticsCenter.name)
    ).scalars().all()

def get_logistics_center(center_id):
    return db.session.get(models.LogisticsCenter, center_id)

def create_logistics_center(data, created_by=None):
    if not (data.get('name') or '').strip() or not (data.get('address') or '').strip():
        raise ValueError("센터 이름과 주소는 필수입니다 (Name and address are required)")

    center = models.LogisticsCenter(created_by=created_by)
    for field in CENTER_FIELDS:
        value = data.get(field)
        setattr(center, field, value.strip() if isinstance(value, str) else value)

    db.session.add(center)
    db.session.commit()
    return center

def update_logistics_center(center_id, data):
    center = get_logistics_center(center_id)
    if not center:
        raise ValueError("물류센터를 찾을 수 없습니다 (Logistics center not found)")

    for field in CENTER_FIELDS:
        if field in data:
            value = data[field]
            setattr(center, field, value.strip() if isinstance(value, str) else value)

    if not center.name or not center.address:
        db.session.rollback()
        raise ValueError("센터 이름과 주소는 필수입니다 (Name and address are required)")

    db.session.commit()
    return center

def delete_logistics_center(center_id):
    center = get_logistics_center(center_id)
    if not center:
        raise ValueError("물류센터를 찾을 수 없습니다 (Logistics center not found)")
    if center.assignments:
        raise ValueError("배치 기록이 있는 물류센터는 삭제할 수 없습니다 (Center has assignments)")

    db.session.execute(
        db.update(models.Vote).where(models.Vote.preferred_center_id == center_id).values(preferred_center_id=None)
    )
    db.session.delete(center)
    db.session.commit()
    return True

# --- 근무 투표 (Availability votes) ---

def _date_range_filter(query, column, from_date, to_date):
    if from_date:
        query = query.filter(column >= from_date)
    if to_date:
        query = query.filter(column <= to_date)
    return query

def save_vote(courier_id, work_date, is_available, notes=None, preferred_center_id=None):
    """같은 날짜의 투표가 있으면 수정, 없으면 새로 생성"""
    vote = db.session.execute(
        db.select(models.Vote).filter_by(courier_id=courier_id, work_date=work_date)
    ).scalar_one_or_none()

    if vote:
        vote.is_available = is_available
        vote.notes = notes
        vote.preferred_center_id = preferred_center_id
        vote.updated_at = datetime.now()
    else:
        vote = models.Vote(
            courier_id=courier_id,
            work_date=work_date,
            is_available=is_available,
            notes=notes,
            preferred_center_id=preferred_center_id
        )
        db.session.add(vote)

    db.session.commit()
    return vote

def get_user_votes(courier_id, from_date=None, to_date=None):
    query = db.select(models.Vote).filter_by(courier_id=courier_id)
    query = _date_range_filter(query, models.Vote.work_date, from_date, to_date)
    return db.session.execute(query.order_by(models.Vote.work_date.asc())).scalars().all()

def get_votes_by_date(work_date):
    return db.session.execute(
        db.select(models.Vote).filter_by(work_date=work_date)
    ).scalars().all()

def get_all_votes(from_date=None, to_date=None):
    query = _date_range_filter(db.select(models.Vote), models.Vote.work_date, from_date, to_date)
    return db.session.execute(
        query.order_by(models.Vote.work_date.asc(), models.Vote.courier_id.asc())
    ).scalars().all()

def delete_vote(vote_id):
    vote = db.session.get(models.Vote, vote_id)
    if not vote:
        return False
    db.session.delete(vote)
    db.session.commit()
    return True

def get_couriers_with_vote_status(work_date):
    """
    특정 날짜 기준 기사별 투표 상태 / 배치 여부
    :return: [{'courier': User, 'vote_status': 'available'|'unavailable'|'not_voted', 'is_assigned': bool}]
    """
    votes = {v.courier_id: v for v in get_votes_by_date(work_date)}
    assigned_ids = set(db.session.execute(
        db.select(models.Assignment.courier_id).filter_by(work_date=work_date)
    ).scalars().all())

    result = []
    for courier in get_couriers():
        vote = votes.get(courier.id)
        if vote is None:
            status = 'not_voted'
        elif vote.is_available:
            status = 'available'
        else:
            status = 'unavailable'
        result.append({
            'courier': courier,
            'vote_status': status,
            'is_assigned': courier.id in assigned_ids,
        })
    return result

# --- 배치 (Assignments) ---

def get_all_assignments(from_date=None, to_date=None):
    query = _date_range_filter(db.select(models.Assignment), models.Assignment.work_date, from_date, to_date)
    return db.session.execute(
        query.order_by(models.Assignment.work_date.asc(), models.Assignment.id.asc())
    ).scalars().all()

def get_assignments_by_date(work_date):
    return db.session.execute(
        db.select(models.Assignment).filter_by(work_date=work_date).order_by(models.Assignment.id)
    ).scalars().all()

def get_courier_assignments(courier_id, from_date=None, to_date=None):
    query = db.select(models.Assignment).filter_by(courier_id=courier_id)
    query = _date_range_filter(query, models.Assignment.work_date, from_date, to_date)
    return db.session.execute(query.order_by(models.Assignment.work_date.asc())).scalars().all()

def get_center_assignments(center_id, from_date=None, to_date=None):
    query = db.select(models.Assignment).filter_by(logistics_center_id=center_id)
    query = _date_range_filter(query, models.Assignment.work_date, from_date, to_date)
    return db.session.execute(query.order_by(models.Assignment.work_date.asc())).scalars().all()

def get_assignment(assignment_id):
    return db.session.get(models.Assignment, assignment_id)

def _check_assignment_refs(courier_id, center_id):
    if not get_courier_by_id(courier_id):
        raise ValueError("기사를 찾을 수 없습니다 (Courier not found)")
    if not get_logistics_center(center_id):
        raise ValueError("물류센터를 찾을 수 없습니다 (Logistics center not found)")

def create_assignment(data, created_by=None):
    """
    단일 배치 생성
    :param data: courier_id, logistics_center_id, work_date, start_time, end_time, notes
    """
    _check_assignment_refs(data['courier_id'], data['logistics_center_id'])

    assignment = models.Assignment(
        courier_id=data['courier_id'],
        logistics_center_id=data['logistics_center_id'],
        work_date=data['work_date'],
        start_time=data.get('start_time'),
        end_time=data.get('end_time'),
        notes=data.get('notes'),
        created_by=created_by
    )
    db.session.add(assignment)
    db.session.commit()

    send_assignment_notification(
        assignment.courier_id, assignment.work_date, assignment.center.name,
        assignment.start_time, assignment.end_time, assignment.notes)
    return assignment

def create_multiple_assignments(center_id, work_date, courier_ids, start_time=None, end_time=None,
                                notes=None, created_by=None):
    """
    여러 기사를 한 번에 배치 (해당 날짜에 이미 배치된 기사는 건너뜀)
    :return: 생성된 Assignment 목록
    """
    center = get_logistics_center(center_id)
    if not center:
        raise ValueError("물류센터를 찾을 수 없습니다 (Logistics center not found)")
    if not courier_ids:
        raise ValueError("최소 한 명 이상의 기사를 선택해야 합니다 (Select at least one courier)")

    already_assigned = set(db.session.execute(
        db.select(models.Assignment.courier_id).filter_by(work_date=work_date)
    ).scalars().all())

    created = []
    for courier_id in courier_ids:
        if courier_id in already_assigned or not get_courier_by_id(courier_id):
            continue
        assignment = models.Assignment(
            courier_id=courier_id,
            logistics_center_id=center_id,
            work_date=work_date,
            start_time=start_time,
            end_time=end_time,
            notes=notes,
            created_by=created_by
        )
        db.session.add(assignment)
        created.append(assignment)
        already_assigned.add(courier_id)

    db.session.commit()

    for assignment in created:
        send_assignment_notification(
            assignment.courier_id, work_date, center.name, start_time, end_time, notes)
    return created

def update_assignment(assignment_id, data):
    """
    배치 수정
    :return: (assignment, 변경 내용 문자열)
    """
    assignment = get_assignment(assignment_id)
    if not assignment:
        raise ValueError("배치를 찾을 수 없습니다 (Assignment not found)")

    changes = []
    if 'logistics_center_id' in data and data['logistics_center_id'] != assignment.logistics_center_id:
        new_center = get_logistics_center(data['logistics_center_id'])
        if not new_center:
            raise ValueError("물류센터를 찾을 수 없습니다 (Logistics center not found)")
        changes.append(f"센터: {assignment.center.name} → {new_center.name}")
        assignment.logistics_center_id = new_center.id
        assignment.center = new_center
    if 'work_date' in data and data['work_date'] != assignment.work_date:
        changes.append(f"날짜: {assignment.work_date} → {data['work_date']}")
        assignment.work_date = data['work_date']

    old_time = assignment.time_label
    if 'start_time' in data:
        assignment.start_time = data['start_time']
    if 'end_time' in data:
        assignment.end_time = data['end_time']
    if assignment.time_label != old_time:
        changes.append(f"시간: {old_time} → {assignment.time_label}")

    if 'notes' in data and (data['notes'] or None) != assignment.notes:
        changes.append("메모 변경")
        assignment.notes = data['notes'] or None

    db.session.commit()

    change_text = ', '.join(changes)
    if changes:
        send_update_notification(assignment.courier_id, assignment.work_date, assignment.center.name, change_text)
    return assignment, change_text

def delete_assignment(assignment_id):
    assignment = get_assignment(assignment_id)
    if not assignment:
        return False

    courier_id, work_date, center_name = assignment.courier_id, assignment.work_date, assignment.center.name
    db.session.delete(assignment)
    db.session.commit()

    send_cancellation_notification(courier_id, work_date, center_name)
    return True

def delete_assignments_by_date(work_date):
    assignments = get_assignments_by_date(work_date)
    cancelled = [(a.courier_id, a.center.name) for a in assignments]
    for assignment in assignments:
        db.session.delete(assignment)
    db.session.commit()

    for courier_id, center_name in cancelled:
        send_cancellation_notification(courier_id, work_date, center_name)
    return len(cancelled)

# --- 알림 (Notifications) ---

def _send_email(user, title, message):
    # 외부 이메일 서비스 미연동: 발송 내용만 기록
    logger.info("[EMAIL] to=%s title=%s message=%s", user.email or user.phone, title, message)

def _send_sms(user, message):
    logger.info("[SMS] to=%s message=%s", user.phone, message)

def _send_kakao(user, title, message):
    logger.info("[KAKAO] to=%s title=%s message=%s", user.phone, title, message)

def send_notification(user_id, title, message, notification_type=models.NotificationType.GENERAL):
    """
    알림 기록 저장 후, 사용자 설정에서 켜진 채널로 발송
    """
    user = get_user_by_id(user_id)
    if not user:
        raise ValueError("사용자를 찾을 수 없습니다 (User not found)")
    settings = get_notification_settings(user_id)

    notification = models.Notification(
        user_id=user_id,
        title=title,
        message=message,
        type=notification_type
    )
    db.session.add(notification)

    if settings.email_enabled:
        _send_email(user, title, message)
        notification.email_sent = True
    if settings.sms_enabled:
        _send_sms(user, message)
        notification.sms_sent = True
    if settings.kakao_enabled:
        _send_kakao(user, title, message)
        notification.kakao_sent = True

    db.session.commit()
    return notification

def send_assignment_notification(user_id, work_date, center_name, start_time=None, end_time=None, notes=None):
    if start_time and end_time:
        time_info = f"{start_time:%H:%M}~{end_time:%H:%M}"
    else:
        time_info = "종일"
    message = f"{work_date} {time_info} {center_name} 물류센터에 배치되었습니다."
    if notes:
        message += f"\n{notes}"
    return send_notification(user_id, "물류센터 배치 확정", message, models.NotificationType.ASSIGNMENT)

def send_cancellation_notification(user_id, work_date, center_name):
    message = f"{work_date} {center_name} 물류센터 배치가 취소되었습니다."
    return send_notification(user_id, "물류센터 배치 취소", message, models.NotificationType.CANCELLATION)

def send_update_notification(user_id, work_date, center_name, changes):
    message = f"{work_date} {center_name} 물류센터 배치 정보가 변경되었습니다.\n변경사항: {changes}"
    return send_notification(user_id, "물류센터 배치 정보 변경", message, models.NotificationType.UPDATE)

def get_user_notifications(user_id, limit=20, offset=0):
    return db.session.execute(
        db.select(models.Notification)
        .filter_by(user_id=user_id)
        .order_by(models.Notification.created_at.desc(), models.Notification.id.desc())
        .limit(limit)
        .offset(offset)
    ).scalars().all()

def count_unread_notifications(user_id):
    return db.session.execute(
        db.select(db.func.count(models.Notification.id)).filter_by(user_id=user_id, read=False)
    ).scalar_one()

def mark_notification_as_read(notification_id, user_id=None):
    notification = db.session.get(models.Notification, notification_id)
    if not notification or (user_id is not None and notification.user_id != user_id):
        return None
    notification.read = True
    db.session.commit()
    return notification

# --- 통계 (Statistics) ---

def get_assignment_statistics(from_date, to_date, top=5):
    """
    기간 내 배치 통계
    :return: {'total': int, 'top_couriers': [...], 'top_centers': [...]}
             각 항목은 {'id', 'name', 'count'}
    """
    assignments = get_all_assignments(from_date, to_date)

    courier_counts = {}
    center_counts = {}
    for assignment in assignments:
        courier = courier_counts.setdefault(assignment.courier_id, {
            'id': assignment.courier_id,
            'name': assignment.courier.name if assignment.courier else '알 수 없음',
            'count': 0
        })
        courier['count'] += 1

        center = center_counts.setdefault(assignment.logistics_center_id, {
            'id': assignment.logistics_center_id,
            'name': assignment.center.name if assignment.center else '알 수 없음',
            'count': 0
        })
        center['count'] += 1

    def rank(counts):
        return sorted(counts.values(), key=lambda c: (-c['count'], c['name']))[:top]

    return {
        'total': len(assignments),
        'top_couriers': rank(courier_counts),
        'top_centers': rank(center_counts),
    }

def get_admin_dashboard_summary(today=None):
    today = today or date.today()
    votes = get_votes_by_date(today)
    return {
        'today': today,
        'assignment_count': len(get_assignments_by_date(today)),
        'available_count': sum(1 for v in votes if v.is_available),
        'unavailable_count': sum(1 for v in votes if not v.is_available),
        'courier_count': len(get_couriers()),
        'center_count': len(get_logistics_centers()),
    }

# --- 작업 로그 (Audit log) ---

def log_audit(user_id, action, target_id=None, details=None):
    """
    시스템 작업 로그 기록
    :param user_id: 작업자 ID
    :param action: 작업 내용 (예: 배치 생성, 정산 삭제)
    :param target_id: 대상 ID
    :param details: 추가 설명
    """
    log_entry = models.AuditLog(
        user_id=user_id,
        action=action,
        target_id=str(target_id) if target_id else None,
        details=details[:255] if details else None
    )
    db.session.add(log_entry)
    db.session.commit()
    return log_entry

def get_audit_logs(limit=100):
    return db.session.execute(
        db.select(models.AuditLog).order_by(models.AuditLog.timestamp.desc(), models.AuditLog.id.desc()).limit(limit)
    ).scalars().all()
