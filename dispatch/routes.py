from flask import Blueprint, render_template, request, redirect, url_for, flash, session, send_file, abort, current_app
from sqlalchemy.exc import IntegrityError
from . import db, models, services, settlements, reports, exports, utils
from functools import wraps
from datetime import date, timedelta

main = Blueprint('main', __name__)

# 상세 입력 폼 열 (필드명, 표시 이름)
KURLY_FORM_FIELDS = [
    ('company_name', '업체명'), ('support_type', '지원 유형'), ('center', '센터'), ('region', '지역'),
    ('shift', '근무조'), ('sequence', '회차'), ('delivery_count', '건수'), ('unit_price', '단가'),
    ('amount', '지원 금액'), ('supply_price', '공급가'), ('settlement_amount', '정산 금액'), ('note', '비고'),
]

COUPANG_FORM_FIELDS = [
    ('day_or_night', '주/야간'), ('delivery_area', '배송 지역'), ('courier_name', '기사명'), ('camp', '캠프'),
    ('route_id', '라우트'), ('delivery_count', '배송 건수'), ('return_count', '반품 건수'), ('unit_price', '단가'),
    ('supply_price', '공급가'), ('vat', '부가세'), ('total_amount', '합계'), ('profit', '수익'),
    ('transaction_partner', '거래처'), ('invoice_status', '계산서'), ('payment_type', '지급 방식'),
    ('pdd', 'PDD'), ('note', '비고'),
]

def login_required(f):
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if 'user_id' not in session:
            return redirect(url_for('main.login'))
        return f(*args, **kwargs)
    return decorated_function

def role_required(*roles):
    """역할 확인 (로그인 필요). 권한이 없으면 403"""
    def decorator(f):
        @wraps(f)
        @login_required
        def decorated_function(*args, **kwargs):
            if session.get('user_role') not in roles:
                return "Unauthorized", 403
            return f(*args, **kwargs)
        return decorated_function
    return decorator

def _date_arg(name, default):
    """쿼리 문자열 날짜 (형식 오류면 기본값 사용)"""
    value = request.args.get(name)
    if not value:
        return default
    try:
        return utils.parse_date(value)
    except ValueError:
        flash(f'날짜 형식이 올바르지 않습니다: {value}', 'error')
        return default

def _int_list(values):
    return [int(v) for v in values if v and v.isdigit()]

def _form_fields(settlement_type):
    if settlement_type == models.SettlementType.COUPANG:
        return COUPANG_FORM_FIELDS
    return KURLY_FORM_FIELDS

def _rows_from_form(fields):
    """같은 이름으로 반복되는 입력칸을 행 dict 목록으로 변환 (빈 행 제외)"""
    columns = {name: request.form.getlist(name) for name, _ in fields}
    count = max((len(v) for v in columns.values()), default=0)
    rows = []
    for i in range(count):
        row = {name: (values[i] if i < len(values) else '') for name, values in columns.items()}
        if any(str(v).strip() for v in row.values()):
            rows.append(row)
    return rows

def _general_from_form():
    """
    일반 정산 표 입력: 열 이름은 '|' 구분 한 줄, 행은 한 줄에 하나 ('|' 구분)
    """
    columns = [c.strip() for c in request.form.get('columns', '').split('|')]
    rows = []
    for line in request.form.get('rows', '').splitlines():
        if not line.strip():
            continue
        cells = [c.strip() for c in line.split('|')]
        rows.append({column: (cells[i] if i < len(cells) else '') for i, column in enumerate(columns)})
    return {'columns': columns, 'rows': rows}

def _details_from_form(settlement_type):
    if settlement_type == models.SettlementType.GENERAL:
        return _general_from_form()
    return _rows_from_form(_form_fields(settlement_type))

def _parse_settlement_type(value):
    try:
        return models.SettlementType(value)
    except ValueError:
        raise ValueError(f'알 수 없는 정산 유형입니다: {value}')

# --- 공통 / 인증 ---

@main.route('/')
def index():
    if 'user_id' in session:
        return redirect(url_for('main.dashboard'))
    return render_template('index.html')

@main.route('/signup', methods=['GET', 'POST'])
def signup():
    if request.method == 'POST':
        password = request.form.get('password', '')
        if password != request.form.get('password_confirm', ''):
            flash('비밀번호가 일치하지 않습니다 (Passwords do not match)', 'error')
            return render_template('signup.html')

        try:
            user = services.register_user(
                request.form.get('name'),
                request.form.get('phone'),
                password,
                email=request.form.get('email')
            )
            services.log_audit(user.id, '회원 가입', user.id, f'신규 기사 가입: {user.name}')
            flash('가입이 완료되었습니다. 로그인해 주세요 (Registration successful, please login)', 'success')
            return redirect(url_for('main.login'))
        except ValueError as e:
            db.session.rollback()
            flash(str(e), 'error')

    return render_template('signup.html')

@main.route('/login', methods=['GET', 'POST'])
def login():
    if request.method == 'POST':
        user = services.authenticate(request.form.get('identifier'), request.form.get('password', ''))

        if user:
            session['user_id'] = user.id
            session['user_name'] = user.name
            session['user_role'] = user.role.value

            services.log_audit(user.id, '로그인', user.id, f'로그인: {user.name}')

            flash('로그인되었습니다 (Login successful)', 'success')
            return redirect(url_for('main.dashboard'))
        else:
            flash('전화번호/이메일 또는 비밀번호가 올바르지 않습니다 (Invalid credentials)', 'error')

    return render_template('login.html')

@main.route('/logout')
def logout():
    session.clear()
    return redirect(url_for('main.index'))

@main.route('/dashboard')
@login_required
def dashboard():
    user_id = session['user_id']
    role = session['user_role']
    today = date.today()

    if role == 'admin':
        summary = services.get_admin_dashboard_summary(today)
        recent_reports = reports.get_settlement_reports_list()[:5]
        return render_template('dashboard_admin.html', summary=summary, recent_reports=recent_reports,
                               assignments=services.get_assignments_by_date(today))
    elif role == 'courier':
        assignments = services.get_courier_assignments(user_id, today, today + timedelta(days=14))
        votes = services.get_user_votes(user_id, today, today + timedelta(days=14))
        notifications = services.get_user_notifications(user_id, limit=5)
        return render_template('dashboard_courier.html', assignments=assignments, votes=votes,
                               notifications=notifications,
                               unread_count=services.count_unread_notifications(user_id))

    return "Unknown Role"

# --- 기사 관리 ---

@main.route('/couriers')
@role_required('admin')
def couriers():
    return render_template('couriers.html', couriers=services.get_couriers())

@main.route('/couriers/<int:courier_id>/settings', methods=['GET', 'POST'])
@role_required('admin')
def courier_settings(courier_id):
    courier = services.get_courier_by_id(courier_id)
    if not courier:
        flash('기사를 찾을 수 없습니다 (Courier not found)', 'error')
        return redirect(url_for('main.couriers'))

    if request.method == 'POST':
        try:
            services.update_courier(
                courier_id,
                name=request.form.get('name'),
                phone=request.form.get('phone'),
                email=request.form.get('email', '')
            )
            services.update_notification_settings(
                courier_id,
                email_enabled='email_enabled' in request.form,
                sms_enabled='sms_enabled' in request.form,
                kakao_enabled='kakao_enabled' in request.form
            )
            services.log_audit(session['user_id'], '기사 정보 수정', courier_id, f'기사 정보 수정: {courier.name}')
            flash('기사 정보가 저장되었습니다', 'success')
            return redirect(url_for('main.couriers'))
        except ValueError as e:
            db.session.rollback()
            flash(str(e), 'error')

    return render_template('courier_settings.html', courier=courier,
                           settings=services.get_notification_settings(courier_id))

# --- 물류센터 ---

def _center_form():
    return {field: request.form.get(field, '') for field in services.CENTER_FIELDS}

@main.route('/centers')
@role_required('admin')
def centers():
    return render_template('centers.html', centers=services.get_logistics_centers())

@main.route('/centers/new', methods=['GET', 'POST'])
@role_required('admin')
def center_new():
    if request.method == 'POST':
        try:
            center = services.create_logistics_center(_center_form(), session['user_id'])
            services.log_audit(session['user_id'], '물류센터 등록', center.id, f'물류센터 등록: {center.name}')
            flash('물류센터가 등록되었습니다', 'success')
            return redirect(url_for('main.centers'))
        except ValueError as e:
            db.session.rollback()
            flash(str(e), 'error')
        except IntegrityError:
            db.session.rollback()
            flash('이미 존재하는 물류센터입니다 (Duplicate center)', 'error')

    return render_template('center_form.html', center=None)

@main.route('/centers/<int:center_id>/edit', methods=['GET', 'POST'])
@role_required('admin')
def center_edit(center_id):
    center = services.get_logistics_center(center_id)
    if not center:
        flash('물류센터를 찾을 수 없습니다 (Logistics center not found)', 'error')
        return redirect(url_for('main.centers'))

    if request.method == 'POST':
        try:
            services.update_logistics_center(center_id, _center_form())
            services.log_audit(session['user_id'], '물류센터 수정', center_id, f'물류센터 수정: {center.name}')
            flash('물류센터 정보가 수정되었습니다', 'success')
            return redirect(url_for('main.centers'))
        except ValueError as e:
            db.session.rollback()
            flash(str(e), 'error')

    return render_template('center_form.html', center=center)

@main.route('/centers/<int:center_id>/delete', methods=['POST'])
@role_required('admin')
def center_delete(center_id):
    try:
        services.delete_logistics_center(center_id)
        services.log_audit(session['user_id'], '물류센터 삭제', center_id)
        flash('물류센터가 삭제되었습니다', 'success')
    except ValueError as e:
        db.session.rollback()
        flash(str(e), 'error')
    return redirect(url_for('main.centers'))

# --- 근무 투표 ---

@main.route('/votes', methods=['GET', 'POST'])
@login_required
def votes():
    today = date.today()

    if session['user_role'] == 'courier':
        courier_id = session['user_id']
        if request.method == 'POST':
            try:
                work_date = utils.parse_date(request.form.get('work_date'), '날짜')
                if work_date < today:
                    raise ValueError('지난 날짜에는 투표할 수 없습니다 (Cannot vote for past dates)')
                center_id = request.form.get('preferred_center_id')
                vote = services.save_vote(
                    courier_id,
                    work_date,
                    request.form.get('is_available') == '1',
                    notes=request.form.get('notes') or None,
                    preferred_center_id=int(center_id) if center_id else None
                )
                services.log_audit(courier_id, '근무 투표', vote.id,
                                   f'{work_date} {"가능" if vote.is_available else "불가"}')
                flash(f'{work_date} 근무 투표가 저장되었습니다', 'success')
            except ValueError as e:
                db.session.rollback()
                flash(str(e), 'error')
            return redirect(url_for('main.votes'))

        end = today + timedelta(days=30)
        my_votes = {v.work_date: v for v in services.get_user_votes(courier_id, today, end)}
        days = [today + timedelta(days=i) for i in range(31)]
        return render_template('votes_courier.html', days=days, votes=my_votes,
                               centers=services.get_logistics_centers())

    if session['user_role'] != 'admin':
        return "Unauthorized", 403

    from_date = _date_arg('from_date', today)
    to_date = _date_arg('to_date', today + timedelta(days=14))
    return render_template('votes_admin.html', votes=services.get_all_votes(from_date, to_date),
                           from_date=from_date, to_date=to_date)

@main.route('/votes/<int:vote_id>/delete', methods=['POST'])
@login_required
def vote_delete(vote_id):
    vote = db.session.get(models.Vote, vote_id)
    if not vote:
        abort(404)
    if session['user_role'] != 'admin' and vote.courier_id != session['user_id']:
        return "Unauthorized", 403
    services.delete_vote(vote_id)
    services.log_audit(session['user_id'], '투표 삭제', vote_id)
    flash('투표가 삭제되었습니다', 'success')
    return redirect(url_for('main.votes'))

# --- 배치 ---

@main.route('/assignments')
@login_required
def assignments():
    today = date.today()
    from_date = _date_arg('from_date', today)
    to_date = _date_arg('to_date', today + timedelta(days=30))

    if session['user_role'] == 'admin':
        rows = services.get_all_assignments(from_date, to_date)
    else:
        rows = services.get_courier_assignments(session['user_id'], from_date, to_date)
    return render_template('assignments.html', assignments=rows, from_date=from_date, to_date=to_date)

@main.route('/assignments/new', methods=['GET', 'POST'])
@role_required('admin')
def assignment_new():
    if request.method == 'POST':
        try:
            work_date = utils.parse_date(request.form.get('work_date'), '날짜')
            center_id = request.form.get('center_id')
            if not center_id:
                raise ValueError('물류센터를 선택해 주세요 (Logistics center is required)')
            created = services.create_multiple_assignments(
                int(center_id),
                work_date,
                _int_list(request.form.getlist('courier_ids')),
                start_time=utils.parse_time(request.form.get('start_time')),
                end_time=utils.parse_time(request.form.get('end_time')),
                notes=request.form.get('notes') or None,
                created_by=session['user_id']
            )
            if created:
                services.log_audit(session['user_id'], '배치 생성', center_id,
                                   f'{work_date} 배치 {len(created)}건 생성')
                flash(f'{len(created)}명의 기사가 배치되었습니다', 'success')
            else:
                flash('선택한 기사는 모두 이미 배치되어 있습니다 (All selected couriers are already assigned)', 'info')
            return redirect(url_for('main.assignments', from_date=work_date.isoformat()))
        except ValueError as e:
            db.session.rollback()
            flash(str(e), 'error')

    work_date = _date_arg('date', date.today())
    return render_template('assignment_new.html', work_date=work_date,
                           centers=services.get_logistics_centers(),
                           couriers=services.get_couriers_with_vote_status(work_date))

@main.route('/assignments/<int:assignment_id>/edit', methods=['GET', 'POST'])
@role_required('admin')
def assignment_edit(assignment_id):
    assignment = services.get_assignment(assignment_id)
    if not assignment:
        flash('배치를 찾을 수 없습니다 (Assignment not found)', 'error')
        return redirect(url_for('main.assignments'))

    if request.method == 'POST':
        try:
            data = {
                'logistics_center_id': int(request.form.get('center_id')),
                'work_date': utils.parse_date(request.form.get('work_date'), '날짜'),
                'start_time': utils.parse_time(request.form.get('start_time')),
                'end_time': utils.parse_time(request.form.get('end_time')),
                'notes': request.form.get('notes'),
            }
            _, changes = services.update_assignment(assignment_id, data)
            services.log_audit(session['user_id'], '배치 수정', assignment_id, changes or '변경 없음')
            flash('배치가 수정되었습니다' if changes else '변경된 내용이 없습니다', 'success' if changes else 'info')
            return redirect(url_for('main.assignments'))
        except (TypeError, ValueError) as e:
            db.session.rollback()
            flash(str(e), 'error')

    return render_template('assignment_edit.html', assignment=assignment,
                           centers=services.get_logistics_centers())

@main.route('/assignments/<int:assignment_id>/delete', methods=['POST'])
@role_required('admin')
def assignment_delete(assignment_id):
    if services.delete_assignment(assignment_id):
        services.log_audit(session['user_id'], '배치 취소', assignment_id)
        flash('배치가 취소되었습니다', 'success')
    else:
        flash('배치를 찾을 수 없습니다 (Assignment not found)', 'error')
    return redirect(url_for('main.assignments'))

# --- 알림 ---

@main.route('/notifications')
@login_required
def notifications():
    page = request.args.get('page', 1, type=int)
    per_page = 20
    rows = services.get_user_notifications(session['user_id'], limit=per_page, offset=(max(page, 1) - 1) * per_page)
    return render_template('notifications.html', notifications=rows, page=page,
                           unread_count=services.count_unread_notifications(session['user_id']))

@main.route('/notifications/<int:notification_id>/read', methods=['POST'])
@login_required
def notification_read(notification_id):
    if not services.mark_notification_as_read(notification_id, session['user_id']):
        abort(404)
    services.log_audit(session['user_id'], '알림 읽음', notification_id)
    return redirect(url_for('main.notifications'))

# --- 정산 (관리자) ---

@main.route('/settlements')
@role_required('admin')
def settlement_list():
    start, end = utils.month_range()
    start_date = _date_arg('start_date', start)
    end_date = _date_arg('end_date', end)
    courier_id = request.args.get('courier_id', type=int)
    settlement_type = request.args.get('type') or None

    try:
        rows = settlements.get_settlements(start_date, end_date, courier_id, settlement_type)
    except ValueError as e:
        flash(str(e), 'error')
        rows = settlements.get_settlements(start_date, end_date, courier_id)

    return render_template('settlements/list.html',
                           settlements=[{'settlement': s, 'amount': settlements.settlement_amount(s)} for s in rows],
                           couriers=services.get_couriers(), start_date=start_date, end_date=end_date,
                           courier_id=courier_id, settlement_type=settlement_type,
                           types=models.SETTLEMENT_TYPE_LABELS)

@main.route('/settlements/new', methods=['GET', 'POST'])
@role_required('admin')
def settlement_new():
    settlement_type = request.values.get('type', models.SettlementType.KURLY.value)
    try:
        settlement_type = _parse_settlement_type(settlement_type)
    except ValueError as e:
        flash(str(e), 'error')
        return redirect(url_for('main.settlement_list'))

    if request.method == 'POST':
        try:
            courier_id = utils.to_int(request.form.get('courier_id'), None)
            settlement = settlements.create_settlement_with_details(
                settlement_type,
                request.form.get('settlement_date'),
                courier_id,
                _details_from_form(settlement_type),
                created_by=session['user_id']
            )
            services.log_audit(session['user_id'], '정산 등록', settlement.id,
                               f'{settlement.type_label} 정산 등록: {settlement.courier.name}')
            flash('정산이 등록되었습니다', 'success')
            return redirect(url_for('main.settlement_detail', settlement_id=settlement.id))
        except ValueError as e:
            db.session.rollback()
            flash(str(e), 'error')

    return render_template('settlements/form.html', settlement=None, settlement_type=settlement_type,
                           fields=_form_fields(settlement_type), couriers=services.get_couriers(),
                           today=date.today(), action=url_for('main.settlement_new', type=settlement_type.value))

@main.route('/settlements/<int:settlement_id>')
@role_required('admin')
def settlement_detail(settlement_id):
    data = settlements.get_settlement_with_details(settlement_id)
    if not data:
        flash('정산을 찾을 수 없습니다 (Settlement not found)', 'error')
        return redirect(url_for('main.settlement_list'))
    return render_template('settlements/detail.html', fields=_form_fields(data['settlement'].settlement_type),
                           back_url=url_for('main.settlement_list'), **data)

@main.route('/settlements/<int:settlement_id>/edit', methods=['GET', 'POST'])
@role_required('admin')
def settlement_edit(settlement_id):
    settlement = settlements.get_settlement(settlement_id)
    if not settlement:
        flash('정산을 찾을 수 없습니다 (Settlement not found)', 'error')
        return redirect(url_for('main.settlement_list'))

    if request.method == 'POST':
        try:
            settlements.update_settlement_details(
                settlement_id, _details_from_form(settlement.settlement_type), request.form.get('settlement_date'))
            services.log_audit(session['user_id'], '정산 수정', settlement_id)
            flash('정산이 수정되었습니다', 'success')
            return redirect(url_for('main.settlement_detail', settlement_id=settlement_id))
        except ValueError as e:
            db.session.rollback()
            flash(str(e), 'error')
            settlement = settlements.get_settlement(settlement_id)

    return render_template('settlements/form.html', settlement=settlement,
                           settlement_type=settlement.settlement_type,
                           fields=_form_fields(settlement.settlement_type), couriers=services.get_couriers(),
                           today=date.today(), action=url_for('main.settlement_edit', settlement_id=settlement_id))

@main.route('/settlements/<int:settlement_id>/delete', methods=['POST'])
@role_required('admin')
def settlement_delete(settlement_id):
    try:
        settlements.delete_settlement(settlement_id)
        services.log_audit(session['user_id'], '정산 삭제', settlement_id)
        flash('정산이 삭제되었습니다', 'success')
    except ValueError as e:
        db.session.rollback()
        flash(str(e), 'error')
    return redirect(url_for('main.settlement_list'))

@main.route('/settlements/batch', methods=['GET', 'POST'])
@role_required('admin')
def settlement_batch():
    try:
        settlement_type = _parse_settlement_type(request.values.get('type', models.SettlementType.COUPANG.value))
        settlement_date = utils.parse_date(request.values.get('settlement_date') or date.today(), '정산일')
        if settlement_type == models.SettlementType.GENERAL:
            raise ValueError('일반 정산은 일괄 등록을 지원하지 않습니다 (General settlements cannot be batch imported)')
    except ValueError as e:
        flash(str(e), 'error')
        return redirect(url_for('main.settlement_list'))

    fields = _form_fields(settlement_type)

    if request.method == 'POST':
        rows = _rows_from_form([('courier_id', '기사'), ('settlement_date', '정산일')] + fields)
        result = settlements.create_batch_settlements(settlement_type, settlement_date, rows, session['user_id'])
        if result.success_count:
            services.log_audit(session['user_id'], '정산 일괄 등록', None,
                               f'{settlement_type.value} 정산 {result.success_count}건 등록, 실패 {result.error_count}건')
            flash(f'{result.success_count}건의 정산이 등록되었습니다', 'success')
        for error in result.errors:
            flash(f"{error['row']}행: {error['message']}", 'error')
        if not result.error_count:
            return redirect(url_for('main.settlement_list', start_date=settlement_date.isoformat(),
                                    end_date=settlement_date.isoformat()))
        return render_template('settlements/batch.html', settlement_type=settlement_type,
                               settlement_date=settlement_date, fields=fields, rows=rows,
                               couriers=services.get_couriers(), result=result)

    return render_template('settlements/batch.html', settlement_type=settlement_type,
                           settlement_date=settlement_date, fields=fields,
                           rows=settlements.default_batch_rows(settlement_type, settlement_date),
                           couriers=services.get_couriers(), result=None)

# --- 기사 본인 정산 ---

@main.route('/my-settlements')
@role_required('courier')
def my_settlements():
    courier_id = session['user_id']
    rows = settlements.get_my_settlements(courier_id)
    return render_template('settlements/my_list.html', groups=settlements.group_settlements_by_month(rows),
                           amount=settlements.settlement_amount, types=models.SETTLEMENT_TYPE_LABELS)

@main.route('/my-settlements/new', methods=['GET', 'POST'])
@role_required('courier')
def my_settlement_new():
    try:
        settlement_type = _parse_settlement_type(request.values.get('type', models.SettlementType.KURLY.value))
    except ValueError as e:
        flash(str(e), 'error')
        return redirect(url_for('main.my_settlements'))

    if request.method == 'POST':
        try:
            settlement = settlements.create_my_settlement(
                session['user_id'], settlement_type, request.form.get('settlement_date'),
                _details_from_form(settlement_type))
            services.log_audit(session['user_id'], '정산 등록', settlement.id, f'{settlement.type_label} 본인 정산 등록')
            flash('정산이 등록되었습니다', 'success')
            return redirect(url_for('main.my_settlements'))
        except ValueError as e:
            db.session.rollback()
            flash(str(e), 'error')

    return render_template('settlements/form.html', settlement=None, settlement_type=settlement_type,
                           fields=_form_fields(settlement_type), couriers=None, today=date.today(),
                           action=url_for('main.my_settlement_new', type=settlement_type.value))

@main.route('/my-settlements/<int:settlement_id>')
@role_required('courier')
def my_settlement_detail(settlement_id):
    data = settlements.get_settlement_with_details(settlement_id)
    if not data:
        abort(404)
    if data['settlement'].courier_id != session['user_id']:
        return "Unauthorized", 403
    return render_template('settlements/detail.html', fields=_form_fields(data['settlement'].settlement_type),
                           back_url=url_for('main.my_settlements'), **data)

@main.route('/my-settlements/<int:settlement_id>/edit', methods=['GET', 'POST'])
@role_required('courier')
def my_settlement_edit(settlement_id):
    settlement = settlements.get_settlement(settlement_id)
    if not settlement:
        abort(404)
    if settlement.courier_id != session['user_id']:
        return "Unauthorized", 403

    if request.method == 'POST':
        try:
            settlements.update_my_settlement(settlement_id, session['user_id'],
                                             _details_from_form(settlement.settlement_type),
                                             request.form.get('settlement_date'))
            services.log_audit(session['user_id'], '정산 수정', settlement_id, '본인 정산 수정')
            flash('정산이 수정되었습니다', 'success')
            return redirect(url_for('main.my_settlements'))
        except ValueError as e:
            db.session.rollback()
            flash(str(e), 'error')
            settlement = settlements.get_settlement(settlement_id)

    return render_template('settlements/form.html', settlement=settlement,
                           settlement_type=settlement.settlement_type,
                           fields=_form_fields(settlement.settlement_type), couriers=None, today=date.today(),
                           action=url_for('main.my_settlement_edit', settlement_id=settlement_id))

@main.route('/my-settlements/<int:settlement_id>/delete', methods=['POST'])
@role_required('courier')
def my_settlement_delete(settlement_id):
    try:
        settlements.delete_my_settlement(settlement_id, session['user_id'])
        services.log_audit(session['user_id'], '정산 삭제', settlement_id, '본인 정산 삭제')
        flash('정산이 삭제되었습니다', 'success')
    except PermissionError:
        db.session.rollback()
        return "Unauthorized", 403
    except ValueError as e:
        db.session.rollback()
        flash(str(e), 'error')
    return redirect(url_for('main.my_settlements'))

# --- 정산 보고서 ---

def _get_report_or_redirect(report_id):
    report = reports.get_settlement_report(report_id)
    if not report:
        flash('보고서를 찾을 수 없습니다 (Report not found)', 'error')
    return report

@main.route('/settlements/reports')
@role_required('admin')
def report_list():
    return render_template('reports/list.html', reports=reports.get_settlement_reports_list())

@main.route('/settlements/reports/new', methods=['GET', 'POST'])
@role_required('admin')
def report_new():
    today = date.today()
    start, end = utils.month_range(today)
    form = {
        'title': f'{today.year}년 {today.month:02d}월 정산 보고서',
        'start_date': start,
        'end_date': end,
        'courier_ids': [],
    }

    if request.method == 'POST':
        form.update(request.form.to_dict())
        form['courier_ids'] = _int_list(request.form.getlist('courier_ids'))
        try:
            report = reports.build_settlement_report(
                request.form.get('title'), request.form.get('start_date'), request.form.get('end_date'),
                form['courier_ids'], created_by=session['user_id'])
            services.log_audit(session['user_id'], '보고서 생성', report.id,
                               f'{report.title}: 기사 {len(report.couriers)}명, 합계 {report.total_amount:,.0f}원')
            flash('정산 보고서가 생성되었습니다', 'success')
            return redirect(url_for('main.report_detail', report_id=report.id))
        except ValueError as e:
            db.session.rollback()
            flash(str(e), 'error')

    return render_template('reports/new.html', form=form, couriers=services.get_couriers())

@main.route('/settlements/reports/<int:report_id>')
@role_required('admin')
def report_detail(report_id):
    data = reports.get_settlement_report_with_couriers(report_id)
    if not data:
        flash('보고서를 찾을 수 없습니다 (Report not found)', 'error')
        return redirect(url_for('main.report_list'))
    included = {c.courier_id for c in data['couriers']}
    available = [c for c in services.get_couriers() if c.id not in included]
    return render_template('reports/detail.html', available_couriers=available, **data)

@main.route('/settlements/reports/<int:report_id>/edit', methods=['GET', 'POST'])
@role_required('admin')
def report_edit(report_id):
    report = _get_report_or_redirect(report_id)
    if not report:
        return redirect(url_for('main.report_list'))

    if request.method == 'POST':
        try:
            reports.update_settlement_report(report_id, request.form.get('title'),
                                             request.form.get('start_date'), request.form.get('end_date'))
            services.log_audit(session['user_id'], '보고서 수정', report_id)
            flash('보고서가 수정되었습니다', 'success')
            return redirect(url_for('main.report_detail', report_id=report_id))
        except ValueError as e:
            db.session.rollback()
            flash(str(e), 'error')

    return render_template('reports/edit.html', report=report)

@main.route('/settlements/reports/<int:report_id>/delete', methods=['POST'])
@role_required('admin')
def report_delete(report_id):
    if reports.delete_settlement_report(report_id):
        services.log_audit(session['user_id'], '보고서 삭제', report_id)
        flash('보고서가 삭제되었습니다', 'success')
    else:
        flash('보고서를 찾을 수 없습니다 (Report not found)', 'error')
    return redirect(url_for('main.report_list'))

@main.route('/settlements/reports/<int:report_id>/couriers', methods=['POST'])
@role_required('admin')
def report_add_courier(report_id):
    courier_id = utils.to_int(request.form.get('courier_id'), None)
    try:
        courier_report = reports.add_courier_to_report(report_id, courier_id)
        services.log_audit(session['user_id'], '보고서 기사 추가', report_id, f'기사 {courier_report.courier.name}')
        flash('기사가 보고서에 추가되었습니다', 'success')
    except ValueError as e:
        db.session.rollback()
        flash(str(e), 'error')
    except IntegrityError:
        db.session.rollback()
        flash('이미 보고서에 포함된 기사입니다 (Courier already in report)', 'error')
    return redirect(url_for('main.report_detail', report_id=report_id))

@main.route('/settlements/reports/<int:report_id>/couriers/<int:courier_id>')
@role_required('admin')
def report_courier_detail(report_id, courier_id):
    data = reports.get_courier_report_details(report_id, courier_id)
    if not data:
        flash('기사별 보고서를 찾을 수 없습니다 (Courier report not found)', 'error')
        return redirect(url_for('main.report_detail', report_id=report_id))

    report = data['report']
    available = reports.get_available_settlements_for_report(
        report.start_date, report.end_date, courier_id,
        exclude_ids=[row['settlement'].id for row in data['items']])
    return render_template('reports/courier.html', available=available, amount=settlements.settlement_amount,
                           **data)

@main.route('/settlements/reports/<int:report_id>/couriers/<int:courier_id>/remove', methods=['POST'])
@role_required('admin')
def report_remove_courier(report_id, courier_id):
    if reports.remove_courier_from_report(report_id, courier_id):
        services.log_audit(session['user_id'], '보고서 기사 제외', report_id, f'기사 ID {courier_id}')
        flash('기사가 보고서에서 제외되었습니다', 'success')
    else:
        flash('기사별 보고서를 찾을 수 없습니다 (Courier report not found)', 'error')
    return redirect(url_for('main.report_detail', report_id=report_id))

@main.route('/settlements/reports/<int:report_id>/couriers/<int:courier_id>/items', methods=['POST'])
@role_required('admin')
def report_add_item(report_id, courier_id):
    courier_report = reports.get_courier_report(report_id, courier_id)
    if not courier_report:
        abort(404)
    settlement_ids = _int_list(request.form.getlist('settlement_ids'))
    try:
        if not settlement_ids:
            raise ValueError('추가할 정산을 선택해 주세요 (Select at least one settlement)')
        for settlement_id in settlement_ids:
            reports.add_settlement_item_to_report(courier_report.id, settlement_id, commit=False)
        db.session.commit()
        services.log_audit(session['user_id'], '보고서 항목 추가', report_id,
                           f'기사 {courier_id}: 정산 {len(settlement_ids)}건 추가')
        flash('정산 항목이 추가되었습니다', 'success')
    except ValueError as e:
        db.session.rollback()
        flash(str(e), 'error')
    except IntegrityError:
        db.session.rollback()
        flash('이미 추가된 정산입니다 (Settlement already in report)', 'error')
    return redirect(url_for('main.report_courier_detail', report_id=report_id, courier_id=courier_id))

@main.route('/settlements/reports/<int:report_id>/items/<int:item_id>/remove', methods=['POST'])
@role_required('admin')
def report_remove_item(report_id, item_id):
    item = db.session.get(models.ReportSettlementItem, item_id)
    if not item or item.courier_report.report_id != report_id:
        abort(404)
    courier_id = item.courier_report.courier_id
    reports.remove_settlement_item_from_report(item_id)
    services.log_audit(session['user_id'], '보고서 항목 제외', report_id, f'기사 {courier_id}: 항목 {item_id} 제외')
    flash('정산 항목이 제외되었습니다', 'success')
    return redirect(url_for('main.report_courier_detail', report_id=report_id, courier_id=courier_id))

@main.route('/settlements/reports/<int:report_id>/print')
@role_required('admin')
def report_print(report_id):
    data = reports.get_settlement_report_with_couriers(report_id)
    if not data:
        abort(404)
    return render_template('reports/print.html', **data)

@main.route('/settlements/reports/<int:report_id>/export')
@role_required('admin')
def report_export(report_id):
    buffer = exports.export_report_docx(report_id)
    if buffer is None:
        abort(404)
    services.log_audit(session['user_id'], '보고서 내보내기', report_id)
    return send_file(
        buffer,
        mimetype='application/vnd.openxmlformats-officedocument.wordprocessingml.document',
        as_attachment=True,
        download_name=f'settlement_report_{report_id}.docx'
    )

# --- 정산서 / 지급 ---

@main.route('/statements')
@role_required('admin')
def statement_list():
    courier_id = request.args.get('courier_id', type=int)
    return render_template('statements/list.html', statements=reports.get_settlement_statements(courier_id),
                           couriers=services.get_couriers(), courier_id=courier_id)

@main.route('/statements/new', methods=['GET', 'POST'])
@role_required('admin')
def statement_new():
    start, end = utils.month_range()
    if request.method == 'POST':
        try:
            rate = request.form.get('commission_rate')
            statement = reports.create_settlement_statement(
                utils.to_int(request.form.get('courier_id'), None),
                request.form.get('start_date'),
                request.form.get('end_date'),
                commission_rate=utils.to_float(rate, None)
            )
            services.log_audit(session['user_id'], '정산서 생성', statement.id,
                               f'{statement.courier.name}: 최종 {statement.final_amount:,.0f}원')
            flash('정산서가 생성되었습니다', 'success')
            return redirect(url_for('main.statement_detail', statement_id=statement.id))
        except ValueError as e:
            db.session.rollback()
            flash(str(e), 'error')

    return render_template('statements/new.html', couriers=services.get_couriers(), start_date=start,
                           end_date=end, default_rate=current_app.config['DEFAULT_COMMISSION_RATE'])

@main.route('/statements/<int:statement_id>')
@role_required('admin')
def statement_detail(statement_id):
    statement = reports.get_settlement_statement(statement_id)
    if not statement:
        flash('정산서를 찾을 수 없습니다 (Statement not found)', 'error')
        return redirect(url_for('main.statement_list'))
    return render_template('statements/detail.html', statement=statement,
                           adjustment_types=models.ADJUSTMENT_TYPE_LABELS)

@main.route('/statements/<int:statement_id>/adjustments', methods=['POST'])
@role_required('admin')
def statement_add_adjustment(statement_id):
    try:
        reports.create_settlement_adjustment(
            statement_id,
            request.form.get('description'),
            utils.to_float(request.form.get('amount')),
            request.form.get('type', models.AdjustmentType.OTHER.value)
        )
        services.log_audit(session['user_id'], '정산서 조정', statement_id, request.form.get('description'))
        flash('조정 항목이 추가되었습니다', 'success')
    except ValueError as e:
        db.session.rollback()
        flash(str(e), 'error')
    return redirect(url_for('main.statement_detail', statement_id=statement_id))

@main.route('/statements/<int:statement_id>/pay', methods=['POST'])
@role_required('admin')
def statement_pay(statement_id):
    try:
        statement = reports.mark_statement_paid(statement_id)
        services.log_audit(session['user_id'], '정산서 지급', statement_id, f'{statement.final_amount:,.0f}원 지급')
        flash('지급 완료 처리되었습니다', 'success')
    except ValueError as e:
        db.session.rollback()
        flash(str(e), 'error')
    return redirect(url_for('main.statement_detail', statement_id=statement_id))

@main.route('/statements/<int:statement_id>/cancel', methods=['POST'])
@role_required('admin')
def statement_cancel(statement_id):
    try:
        reports.cancel_statement(statement_id)
        services.log_audit(session['user_id'], '정산서 취소', statement_id)
        flash('정산서가 취소되었습니다', 'success')
    except ValueError as e:
        db.session.rollback()
        flash(str(e), 'error')
    return redirect(url_for('main.statement_detail', statement_id=statement_id))

@main.route('/settlements/payout')
@role_required('admin')
def payout():
    start, end = utils.month_range()
    start_date = _date_arg('start_date', start)
    end_date = _date_arg('end_date', end)
    courier_id = request.args.get('courier_id', type=int)

    summary = None
    courier = None
    if courier_id:
        courier = services.get_courier_by_id(courier_id)
        if not courier:
            flash('기사를 찾을 수 없습니다 (Courier not found)', 'error')
        else:
            try:
                summary = reports.courier_payout_summary(courier_id, start_date, end_date)
            except ValueError as e:
                flash(str(e), 'error')

    return render_template('statements/payout.html', couriers=services.get_couriers(), courier=courier,
                           courier_id=courier_id, start_date=start_date, end_date=end_date, summary=summary,
                           types=models.SETTLEMENT_TYPE_LABELS)

# --- 통계 / 작업 로그 ---

@main.route('/statistics')
@role_required('admin')
def statistics():
    today = date.today()
    from_date = _date_arg('from_date', today.replace(day=1))
    to_date = _date_arg('to_date', today)
    stats = services.get_assignment_statistics(from_date, to_date)
    return render_template('statistics.html', stats=stats, from_date=from_date, to_date=to_date)

@main.route('/admin/audit')
@role_required('admin')
def audit_logs():
    return render_template('audit.html', logs=services.get_audit_logs())
