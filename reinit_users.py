from datetime import date, timedelta

from dispatch import create_app, db, models, services, settlements, utils

app = create_app()

with app.app_context():
    print("=== 전체 초기화 (Full System Reset) ===")

    # 1. 모든 테이블 삭제 후 재생성
    print("데이터베이스 스키마 삭제 중...")
    db.drop_all()
    print("데이터베이스 스키마 재생성 중...")
    db.create_all()
    print("데이터베이스 초기화 완료.")

    # 2. 기본 계정 생성
    print("기본 계정 생성 중...")
    admin = services.register_user('관리자', '010-0000-0000', '123456',
                                   email='admin@example.com', role=models.UserRole.ADMIN)
    couriers = [
        services.register_user('김기사', '010-1111-2222', '123456', email='kim@example.com'),
        services.register_user('박기사', '010-3333-4444', '123456', email='park@example.com'),
        services.register_user('이기사', '010-5555-6666', '123456'),
    ]

    # 3. 물류센터
    print("물류센터 생성 중...")
    centers = [
        services.create_logistics_center({'name': '평택센터', 'address': '경기도 평택시 포승읍'}, admin.id),
        services.create_logistics_center({'name': '김포센터', 'address': '경기도 김포시 고촌읍'}, admin.id),
    ]

    # 4. 이번 주 투표 / 배치
    today = date.today()
    for offset in range(1, 4):
        work_date = today + timedelta(days=offset)
        for courier in couriers:
            services.save_vote(courier.id, work_date, True, preferred_center_id=centers[offset % 2].id)
    services.create_multiple_assignments(centers[0].id, today + timedelta(days=1),
                                         [c.id for c in couriers[:2]],
                                         start_time=utils.parse_time('09:00'), end_time=utils.parse_time('18:00'),
                                         created_by=admin.id)

    # 5. 샘플 정산 (이번 달)
    print("샘플 정산 생성 중...")
    start, _ = utils.month_range(today)
    settlements.create_settlement_with_details('kurly', start, couriers[0].id, [
        {'company_name': '컬리', 'support_type': '주간', 'delivery_count': 120, 'settlement_amount': 180000},
    ], admin.id)
    settlements.create_settlement_with_details('coupang', start, couriers[1].id, [
        {'day_or_night': 'day', 'camp': '평택1', 'delivery_count': 150, 'unit_price': 1200},
    ], admin.id)
    settlements.create_settlement_with_details('general', start, couriers[2].id, {
        'columns': ['항목', '금액'],
        'rows': [{'항목': '추가 배송', '금액': '30,000'}, {'항목': '주차비', '금액': '5,000'}],
    }, admin.id)

    accounts = [admin] + couriers
    print("\n=== 초기화 및 계정 생성 결과 ===")
    print("모든 계정 비밀번호: 123456")
    print("--------------------------------------------------")
    print(f"{'역할 (Role)':<15} | {'전화번호 (Phone)':<15} | {'이름 (Name)'}")
    print("--------------------------------------------------")
    for u in accounts:
        print(f"{u.role.value:<15} | {utils.format_phone_number_for_display(u.phone):<15} | {u.name}")
    print("--------------------------------------------------")
