import pytest
from dispatch import create_app, db, models, services, settlements, reports
from datetime import date, timedelta

@pytest.fixture
def app():
    app = create_app({
        "TESTING": True,
        "SQLALCHEMY_DATABASE_URI": "sqlite:///:memory:"
    })

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()

@pytest.fixture
def client(app):
    return app.test_client()

@pytest.fixture
def users(app):
    admin = services.register_user("관리자", "010-9999-0000", "adminpw", role=models.UserRole.ADMIN)
    a = services.register_user("김기사", "010-1111-2222", "pwd")
    b = services.register_user("박기사", "010-3333-4444", "pwd")
    center = services.create_logistics_center({'name': '평택센터', 'address': '경기도 평택시'})
    return {'admin': admin, 'a': a, 'b': b, 'center': center}

def login(client, user):
    with client.session_transaction() as sess:
        sess['user_id'] = user.id
        sess['user_name'] = user.name
        sess['user_role'] = user.role.value

def test_login_and_logout(client, users):
    response = client.post('/login', data={'identifier': '010-1111-2222', 'password': 'pwd'})
    assert response.status_code == 302
    assert response.headers['Location'].endswith('/dashboard')
    with client.session_transaction() as sess:
        assert sess['user_role'] == 'courier'
        assert sess['user_name'] == '김기사'

    client.get('/logout')
    with client.session_transaction() as sess:
        assert 'user_id' not in sess

def test_login_with_wrong_password(client, users):
    response = client.post('/login', data={'identifier': '01011112222', 'password': 'nope'})
    assert response.status_code == 200
    assert 'Invalid credentials' in response.get_data(as_text=True)

def test_signup(client, app):
    response = client.post('/signup', data={
        'name': '이기사', 'phone': '010-5555-6666', 'email': '',
        'password': 'pw', 'password_confirm': 'pw'
    })
    assert response.status_code == 302
    assert len(services.get_couriers()) == 1

    # 중복 전화번호
    response = client.post('/signup', data={
        'name': '이기사2', 'phone': '01055556666', 'password': 'pw', 'password_confirm': 'pw'
    })
    assert response.status_code == 200
    assert 'Phone or email already registered' in response.get_data(as_text=True)

    response = client.post('/signup', data={
        'name': '최기사', 'phone': '010-7777-8888', 'password': 'pw', 'password_confirm': 'other'
    })
    assert len(services.get_couriers()) == 1

def test_login_required(client, users):
    response = client.get('/dashboard')
    assert response.status_code == 302
    assert '/login' in response.headers['Location']

    response = client.get('/settlements')
    assert response.status_code == 302

def test_admin_pages_forbidden_for_courier(client, users):
    login(client, users['a'])
    for url in ['/couriers', '/centers', '/settlements', '/settlements/reports', '/statements',
                '/settlements/payout', '/statistics', '/admin/audit', '/assignments/new']:
        assert client.get(url).status_code == 403, url

def test_courier_pages_forbidden_for_admin(client, users):
    login(client, users['admin'])
    assert client.get('/my-settlements').status_code == 403

def test_admin_pages_render(client, users):
    settlements.create_settlement_with_details('kurly', date.today(), users['a'].id, [{'settlement_amount': 1000}])
    login(client, users['admin'])
    urls = [
        '/dashboard', '/couriers', f"/couriers/{users['a'].id}/settings", '/centers', '/centers/new',
        f"/centers/{users['center'].id}/edit", '/votes', '/assignments', '/assignments/new',
        '/settlements', '/settlements/new?type=kurly', '/settlements/new?type=coupang',
        '/settlements/new?type=general', '/settlements/batch?type=coupang', '/settlements/batch?type=kurly',
        '/settlements/reports', '/settlements/reports/new', '/statements', '/statements/new',
        f"/settlements/payout?courier_id={users['a'].id}", '/statistics', '/admin/audit', '/notifications',
    ]
    for url in urls:
        assert client.get(url).status_code == 200, url

def test_courier_pages_render(client, users):
    services.create_assignment({
        'courier_id': users['a'].id, 'logistics_center_id': users['center'].id, 'work_date': date.today()
    })
    settlements.create_my_settlement(users['a'].id, 'general', date.today(),
                                     {'columns': ['항목', '금액'], 'rows': [{'항목': '유류비', '금액': '3,000'}]})
    login(client, users['a'])
    for url in ['/dashboard', '/votes', '/assignments', '/my-settlements', '/my-settlements/new?type=coupang',
                '/notifications']:
        assert client.get(url).status_code == 200, url

    page = client.get('/my-settlements').get_data(as_text=True)
    assert '3,000원' in page

def test_center_crud_via_form(client, users):
    login(client, users['admin'])
    response = client.post('/centers/new', data={'name': '김포센터', 'address': '경기도 김포시'})
    assert response.status_code == 302
    center = [c for c in services.get_logistics_centers() if c.name == '김포센터'][0]

    client.post(f'/centers/{center.id}/edit', data={'name': '김포센터', 'address': '경기도 김포시 고촌읍'})
    assert services.get_logistics_center(center.id).address == '경기도 김포시 고촌읍'

    client.post(f'/centers/{center.id}/delete')
    assert services.get_logistics_center(center.id) is None

def test_courier_vote(client, users):
    login(client, users['a'])
    tomorrow = date.today() + timedelta(days=1)
    response = client.post('/votes', data={
        'work_date': tomorrow.isoformat(), 'is_available': '1', 'preferred_center_id': str(users['center'].id)
    })
    assert response.status_code == 302

    votes = services.get_user_votes(users['a'].id)
    assert len(votes) == 1
    assert votes[0].is_available is True
    assert votes[0].preferred_center_id == users['center'].id

    # 지난 날짜는 거부
    client.post('/votes', data={'work_date': (date.today() - timedelta(days=1)).isoformat(), 'is_available': '0'})
    assert len(services.get_user_votes(users['a'].id)) == 1

def test_create_assignments_via_form(client, users):
    login(client, users['admin'])
    response = client.post('/assignments/new', data={
        'center_id': str(users['center'].id),
        'work_date': '2024-05-10',
        'start_time': '09:00',
        'end_time': '18:00',
        'courier_ids': [str(users['a'].id), str(users['b'].id)],
    })
    assert response.status_code == 302
    assert len(services.get_assignments_by_date(date(2024, 5, 10))) == 2
    assert services.count_unread_notifications(users['a'].id) == 1

    assignment = services.get_courier_assignments(users['a'].id)[0]
    client.post(f'/assignments/{assignment.id}/delete')
    assert len(services.get_assignments_by_date(date(2024, 5, 10))) == 1

def test_create_coupang_settlement_via_form(client, users):
    login(client, users['admin'])
    response = client.post('/settlements/new?type=coupang', data={
        'courier_id': str(users['a'].id),
        'settlement_date': '2024-05-20',
        'day_or_night': 'day',
        'delivery_count': '100',
        'unit_price': '1200',
    })
    assert response.status_code == 302

    settlement = settlements.get_settlements()[0]
    assert settlement.coupang_items[0].courier_name == '김기사'
    assert settlements.settlement_amount(settlement) == 132000

    page = client.get(f'/settlements/{settlement.id}').get_data(as_text=True)
    assert '132,000원' in page

def test_create_general_settlement_via_form(client, users):
    login(client, users['admin'])
    client.post('/settlements/new?type=general', data={
        'courier_id': str(users['b'].id),
        'settlement_date': '2024-05-15',
        'columns': '항목 | 금액',
        'rows': '추가 배송 | 10,000\n주차비 | 5,000\n',
    })

    settlement = settlements.get_settlements()[0]
    assert settlement.general.rows[1] == {'항목': '주차비', '금액': '5,000'}
    assert settlements.settlement_amount(settlement) == 15000

def test_batch_settlements_via_form(client, users):
    login(client, users['admin'])
    response = client.post('/settlements/batch?type=coupang&settlement_date=2024-05-10', data={
        'courier_id': [str(users['a'].id), str(users['b'].id)],
        'settlement_date': ['', ''],
        'day_or_night': ['day', 'day'],
        'delivery_count': ['10', '0'],
        'unit_price': ['1200', '1200'],
    })
    assert response.status_code == 302

    created = settlements.get_settlements()
    assert len(created) == 1
    assert created[0].courier_id == users['a'].id
    assert created[0].settlement_date == date(2024, 5, 10)

def test_batch_settlements_shows_row_errors(client, users):
    login(client, users['admin'])
    response = client.post('/settlements/batch?type=kurly&settlement_date=2024-05-10', data={
        'courier_id': ['', str(users['a'].id)],
        'company_name': ['컬리', '컬리'],
        'settlement_amount': ['1000', '2000'],
    })
    assert response.status_code == 200
    assert '1행' in response.get_data(as_text=True)
    assert len(settlements.get_settlements()) == 1

def test_my_settlements_ownership(client, users):
    other = settlements.create_my_settlement(users['b'].id, 'kurly', '2024-05-10', [{'settlement_amount': 1000}])
    login(client, users['a'])

    assert client.post(f'/my-settlements/{other.id}/delete').status_code == 403
    assert client.get(f'/my-settlements/{other.id}/edit').status_code == 403
    assert client.get(f'/my-settlements/{other.id}').status_code == 403
    assert settlements.get_settlement(other.id) is not None

def test_courier_creates_own_settlement(client, users):
    login(client, users['a'])
    response = client.post('/my-settlements/new?type=kurly', data={
        'settlement_date': '2024-05-10',
        'company_name': ['컬리', ''],
        'settlement_amount': ['50,000', ''],
    })
    assert response.status_code == 302

    mine = settlements.get_my_settlements(users['a'].id)
    assert len(mine) == 1
    assert settlements.settlement_amount(mine[0]) == 50000

def test_report_new_defaults_to_current_month(client, users):
    login(client, users['admin'])
    today = date.today()
    page = client.get('/settlements/reports/new').get_data(as_text=True)
    assert f'{today.year}년 {today.month:02d}월 정산 보고서' in page
    assert today.replace(day=1).isoformat() in page

def test_report_pipeline_via_routes(client, users):
    settlements.create_settlement_with_details('kurly', '2024-05-10', users['a'].id, [{'settlement_amount': 80000}])
    settlements.create_settlement_with_details('kurly', '2024-05-11', users['b'].id, [{'settlement_amount': 20000}])
    login(client, users['admin'])

    response = client.post('/settlements/reports/new', data={
        'title': '2024년 05월 정산 보고서',
        'start_date': '2024-05-01',
        'end_date': '2024-05-31',
        'courier_ids': [str(users['a'].id), str(users['b'].id)],
    })
    assert response.status_code == 302
    report = reports.get_settlement_reports()[0]
    assert report.total_amount == 100000

    assert client.get(f'/settlements/reports/{report.id}').status_code == 200
    assert client.get(f"/settlements/reports/{report.id}/couriers/{users['a'].id}").status_code == 200
    assert '100,000원' in client.get(f'/settlements/reports/{report.id}/print').get_data(as_text=True)

    response = client.get(f'/settlements/reports/{report.id}/export')
    assert response.status_code == 200
    assert response.mimetype == 'application/vnd.openxmlformats-officedocument.wordprocessingml.document'
    assert response.data[:2] == b'PK'

    item = reports.get_courier_report(report.id, users['b'].id).items[0]
    client.post(f'/settlements/reports/{report.id}/items/{item.id}/remove')
    assert reports.get_settlement_report(report.id).total_amount == 80000

    client.post(f"/settlements/reports/{report.id}/couriers/{users['b'].id}/remove")
    assert len(reports.get_settlement_report(report.id).couriers) == 1

    assert client.get('/settlements/reports/9999/export').status_code == 404

def test_report_new_requires_couriers(client, users):
    login(client, users['admin'])
    response = client.post('/settlements/reports/new', data={
        'title': '빈 보고서', 'start_date': '2024-05-01', 'end_date': '2024-05-31'
    })
    assert response.status_code == 200
    assert 'Select at least one courier' in response.get_data(as_text=True)
    assert reports.get_settlement_reports() == []

def test_statement_flow_via_routes(client, users):
    settlements.create_settlement_with_details('kurly', '2024-05-10', users['a'].id, [{'settlement_amount': 100000}])
    login(client, users['admin'])

    response = client.post('/statements/new', data={
        'courier_id': str(users['a'].id),
        'start_date': '2024-05-01',
        'end_date': '2024-05-31',
        'commission_rate': '0.1',
    })
    assert response.status_code == 302
    statement = reports.get_settlement_statements()[0]
    assert statement.final_amount == 99000

    client.post(f'/statements/{statement.id}/adjustments', data={
        'description': '유류비', 'amount': '9,000', 'type': 'expense'
    })
    assert reports.get_settlement_statement(statement.id).final_amount == 90000
    assert client.get(f'/statements/{statement.id}').status_code == 200

    client.post(f'/statements/{statement.id}/pay')
    assert reports.get_settlement_statement(statement.id).payment_status == models.PaymentStatus.PAID


def test_mutations_are_audited(client, users):
    login(client, users['admin'])
    client.post('/centers/new', data={'name': '김포센터', 'address': '경기도 김포시'})

    # 기사: 투표, 본인 정산 수정, 알림 읽음
    mine = settlements.create_my_settlement(users['a'].id, 'kurly', '2024-05-10', [{'settlement_amount': 100}])
    services.send_notification(users['a'].id, '공지', '내일 근무 안내')
    notification = services.get_user_notifications(users['a'].id)[0]
    login(client, users['a'])
    client.post('/votes', data={'work_date': (date.today() + timedelta(days=1)).isoformat(), 'is_available': '1'})
    client.post(f'/my-settlements/{mine.id}/edit', data={
        'settlement_date': '2024-05-10', 'company_name': '컬리', 'settlement_amount': '200'})
    client.post(f'/notifications/{notification.id}/read')
    assert settlements.settlement_amount(settlements.get_settlement(mine.id)) == 200

    vote = services.get_user_votes(users['a'].id)[0]
    client.post(f'/votes/{vote.id}/delete')

    # 관리자: 보고서 항목 추가 / 제외
    login(client, users['admin'])
    report = reports.create_settlement_report('5월', '2024-05-01', '2024-05-31')
    reports.add_courier_to_report(report.id, users['a'].id)
    client.post(f"/settlements/reports/{report.id}/couriers/{users['a'].id}/items",
                data={'settlement_ids': [str(mine.id)]})
    item = reports.get_courier_report(report.id, users['a'].id).items[0]
    client.post(f'/settlements/reports/{report.id}/items/{item.id}/remove')

    actions = [log.action for log in services.get_audit_logs()]
    for action in ['물류센터 등록', '근무 투표', '정산 수정', '알림 읽음', '투표 삭제', '보고서 항목 추가', '보고서 항목 제외']:
        assert action in actions, action

def test_report_add_items_is_all_or_nothing(client, users):
    ok = settlements.create_settlement_with_details('kurly', '2024-05-10', users['a'].id, [{'settlement_amount': 1000}])
    outside = settlements.create_settlement_with_details('kurly', '2024-06-10', users['a'].id, [{'settlement_amount': 500}])
    report = reports.create_settlement_report('5월', '2024-05-01', '2024-05-31')
    reports.add_courier_to_report(report.id, users['a'].id)
    login(client, users['admin'])

    response = client.post(f"/settlements/reports/{report.id}/couriers/{users['a'].id}/items",
                           data={'settlement_ids': [str(ok.id), str(outside.id)]})
    assert response.status_code == 302
    courier_report = reports.get_courier_report(report.id, users['a'].id)
    assert courier_report.items == []
    assert courier_report.total_amount == 0

    client.post(f"/settlements/reports/{report.id}/couriers/{users['a'].id}/items",
                data={'settlement_ids': [str(ok.id), str(ok.id)]})
    assert len(reports.get_courier_report(report.id, users['a'].id).items) == 0

    client.post(f"/settlements/reports/{report.id}/couriers/{users['a'].id}/items",
                data={'settlement_ids': [str(ok.id)]})
    courier_report = reports.get_courier_report(report.id, users['a'].id)
    assert [i.settlement_id for i in courier_report.items] == [ok.id]
    assert courier_report.total_amount == 1000

def test_coupang_edit_form_recomputes_totals(client, users):
    settlement = settlements.create_settlement_with_details('coupang', '2024-05-10', users['a'].id, [
        {'day_or_night': 'day', 'delivery_count': 10, 'unit_price': 1200},
    ])
    login(client, users['admin'])

    page = client.get(f'/settlements/{settlement.id}/edit').get_data(as_text=True)
    assert '13200' in page

    # 건수만 바꾸고 기존 공급가 / 부가세 / 합계를 그대로 제출
    client.post(f'/settlements/{settlement.id}/edit', data={
        'settlement_date': '2024-05-10', 'day_or_night': 'day', 'delivery_count': '20', 'unit_price': '1200',
        'supply_price': '12000', 'vat': '1200', 'total_amount': '13200',
    })
    assert settlements.settlement_amount(settlements.get_settlement(settlement.id)) == 26400
