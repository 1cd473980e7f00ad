import pytest
from dispatch import create_app, db, models, services, settlements, reports, exports
from datetime import date
from docx.oxml.ns import qn

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
def data(app):
    """
    5월: 김기사 컬리 80,000 + 쿠팡 132,000 / 박기사 일반 15,000
    6월: 김기사 컬리 10,000 (5월 보고서 기간 밖)
    """
    a = services.register_user("김기사", "010-1111-2222", "pwd")
    b = services.register_user("박기사", "010-3333-4444", "pwd")
    kurly = settlements.create_settlement_with_details('kurly', '2024-05-10', a.id, [
        {'company_name': '컬리', 'settlement_amount': 50000},
        {'company_name': '컬리', 'settlement_amount': 30000},
    ])
    coupang = settlements.create_settlement_with_details('coupang', '2024-05-20', a.id, [
        {'day_or_night': 'day', 'delivery_count': 100, 'unit_price': 1200},
    ])
    general = settlements.create_settlement_with_details('general', '2024-05-15', b.id, {
        'columns': ['항목', '금액'],
        'rows': [{'항목': '추가 배송', '금액': '10,000'}, {'항목': '주차비', '금액': '5,000'}],
    })
    june = settlements.create_settlement_with_details('kurly', '2024-06-03', a.id, [
        {'company_name': '컬리', 'settlement_amount': 10000},
    ])
    return {'a': a, 'b': b, 'kurly': kurly, 'coupang': coupang, 'general': general, 'june': june}

def test_build_settlement_report(app, data):
    with app.app_context():
        report = reports.build_settlement_report(
            "2024년 05월 정산 보고서", '2024-05-01', '2024-05-31', [data['a'].id, data['b'].id])

        by_courier = {c.courier_id: c for c in report.couriers}
        assert by_courier[data['a'].id].total_amount == 212000
        assert len(by_courier[data['a'].id].items) == 2
        assert by_courier[data['b'].id].total_amount == 15000
        assert report.total_amount == 227000

        item_types = {i.settlement_type for i in by_courier[data['a'].id].items}
        assert item_types == {models.SettlementType.KURLY, models.SettlementType.COUPANG}

def test_build_report_validation(app, data):
    with app.app_context():
        with pytest.raises(ValueError):
            reports.build_settlement_report("보고서", '2024-05-01', '2024-05-31', [])
        with pytest.raises(ValueError):
            reports.build_settlement_report("보고서", '2024-05-31', '2024-05-01', [data['a'].id])
        with pytest.raises(ValueError):
            reports.build_settlement_report("", '2024-05-01', '2024-05-31', [data['a'].id])
        # 존재하지 않는 기사가 있으면 보고서 전체를 만들지 않음
        with pytest.raises(ValueError):
            reports.build_settlement_report("보고서", '2024-05-01', '2024-05-31', [data['a'].id, 9999])
        assert reports.get_settlement_reports() == []

def test_reports_list_summary(app, data):
    with app.app_context():
        reports.build_settlement_report("5월", '2024-05-01', '2024-05-31', [data['a'].id, data['b'].id])
        reports.build_settlement_report("6월", '2024-06-01', '2024-06-30', [data['a'].id])

        rows = {row['report'].title: row for row in reports.get_settlement_reports_list()}
        assert rows['5월']['courier_count'] == 2
        assert rows['5월']['total_amount'] == 227000
        assert rows['6월']['courier_count'] == 1
        assert rows['6월']['total_amount'] == 10000

def test_report_with_couriers_sorted_by_name(app, data):
    with app.app_context():
        report = reports.build_settlement_report("5월", '2024-05-01', '2024-05-31', [data['b'].id, data['a'].id])
        view = reports.get_settlement_report_with_couriers(report.id)

        assert [c.courier.name for c in view['couriers']] == ['김기사', '박기사']
        assert view['total_amount'] == 227000
        assert reports.get_settlement_report_with_couriers(9999) is None

def test_courier_report_details(app, data):
    with app.app_context():
        report = reports.build_settlement_report("5월", '2024-05-01', '2024-05-31', [data['b'].id])
        details = reports.get_courier_report_details(report.id, data['b'].id)

        assert details['total_amount'] == 15000
        assert len(details['items']) == 1
        assert details['items'][0]['settlement'].id == data['general'].id
        assert details['items'][0]['details'].columns == ['항목', '금액']
        assert reports.get_courier_report_details(report.id, data['a'].id) is None

def test_total_is_recomputed_on_item_changes(app, data):
    with app.app_context():
        report = reports.create_settlement_report("수동 보고서", '2024-05-01', '2024-05-31')
        courier_report = reports.add_courier_to_report(report.id, data['a'].id)
        assert courier_report.total_amount == 0

        item = reports.add_settlement_item_to_report(courier_report.id, data['kurly'].id)
        item_id = item.id
        assert item.amount == 80000
        assert courier_report.total_amount == 80000

        reports.add_settlement_item_to_report(courier_report.id, data['coupang'].id)
        assert courier_report.total_amount == 212000

        assert reports.remove_settlement_item_from_report(item_id)
        assert courier_report.total_amount == 132000
        assert courier_report.total_amount == sum(i.amount for i in courier_report.items)
        assert reports.remove_settlement_item_from_report(item_id) is False

def test_add_item_checks_owner_period_and_duplicates(app, data):
    with app.app_context():
        report = reports.create_settlement_report("수동 보고서", '2024-05-01', '2024-05-31')
        courier_report = reports.add_courier_to_report(report.id, data['a'].id)

        with pytest.raises(ValueError):
            reports.add_settlement_item_to_report(courier_report.id, data['general'].id)
        with pytest.raises(ValueError):
            reports.add_settlement_item_to_report(courier_report.id, data['june'].id)
        with pytest.raises(ValueError):
            reports.add_settlement_item_to_report(courier_report.id, 9999)

        reports.add_settlement_item_to_report(courier_report.id, data['kurly'].id)
        with pytest.raises(ValueError):
            reports.add_settlement_item_to_report(courier_report.id, data['kurly'].id)
        assert courier_report.total_amount == 80000

def test_add_courier_twice_is_rejected(app, data):
    with app.app_context():
        report = reports.create_settlement_report("수동 보고서", '2024-05-01', '2024-05-31')
        reports.add_courier_to_report(report.id, data['a'].id)

        with pytest.raises(ValueError):
            reports.add_courier_to_report(report.id, data['a'].id)
        with pytest.raises(ValueError):
            reports.add_courier_to_report(9999, data['a'].id)

        assert reports.remove_courier_from_report(report.id, data['a'].id)
        assert reports.remove_courier_from_report(report.id, data['a'].id) is False

def test_available_settlements_for_report(app, data):
    with app.app_context():
        start, end = date(2024, 5, 1), date(2024, 5, 31)
        available = reports.get_available_settlements_for_report(start, end)
        assert {s.id for s in available} == {data['kurly'].id, data['coupang'].id, data['general'].id}

        mine = reports.get_available_settlements_for_report(start, end, data['a'].id, exclude_ids=[data['kurly'].id])
        assert [s.id for s in mine] == [data['coupang'].id]

        assert len(reports.get_courier_settlements_by_date_range(data['a'].id, start, date(2024, 6, 30))) == 3

def test_update_and_delete_report(app, data):
    with app.app_context():
        report = reports.build_settlement_report("5월", '2024-05-01', '2024-05-31', [data['a'].id])

        reports.update_settlement_report(report.id, title="5월 (수정)", end_date='2024-05-25')
        assert report.title == "5월 (수정)"
        assert report.end_date == date(2024, 5, 25)
        with pytest.raises(ValueError):
            reports.update_settlement_report(report.id, start_date='2024-05-30')

        assert reports.delete_settlement_report(report.id)
        assert db.session.execute(db.select(db.func.count(models.ReportSettlementItem.id))).scalar_one() == 0
        assert db.session.execute(db.select(db.func.count(models.CourierSettlementReport.id))).scalar_one() == 0
        # 정산 자체는 남아 있음
        assert settlements.get_settlement(data['kurly'].id) is not None

def test_report_items_stay_inside_period(app, data):
    with app.app_context():
        report = reports.build_settlement_report("5월", '2024-05-01', '2024-05-31', [data['a'].id])

        # 포함된 정산을 기간 밖으로 옮길 수 없음
        with pytest.raises(ValueError):
            settlements.update_settlement_details(data['kurly'].id, [{'company_name': '컬리', 'settlement_amount': 5000}],
                                                  settlement_date='2024-07-01')
        assert settlements.get_settlement(data['kurly'].id).settlement_date == date(2024, 5, 10)
        assert reports.get_courier_report(report.id, data['a'].id).total_amount == 212000

        # 기간 안에서의 이동은 허용
        settlements.update_settlement_details(data['kurly'].id, [{'company_name': '컬리', 'settlement_amount': 80000}],
                                              settlement_date='2024-05-12')

        # 포함된 정산을 빼는 기간 축소는 거부
        with pytest.raises(ValueError):
            reports.update_settlement_report(report.id, start_date='2024-05-01', end_date='2024-05-05')
        report = reports.get_settlement_report(report.id)
        assert report.end_date == date(2024, 5, 31)
        assert all(report.start_date <= item.settlement.settlement_date <= report.end_date
                   for c in report.couriers for item in c.items)

def test_settlement_in_report_cannot_be_deleted(app, data):
    with app.app_context():
        reports.build_settlement_report("5월", '2024-05-01', '2024-05-31', [data['a'].id])

        with pytest.raises(ValueError):
            settlements.delete_settlement(data['kurly'].id)
        with pytest.raises(ValueError):
            settlements.update_my_settlement(data['kurly'].id, data['a'].id, [{'settlement_amount': 1}])

def test_updating_settlement_refreshes_report_amount(app, data):
    with app.app_context():
        report = reports.build_settlement_report("5월", '2024-05-01', '2024-05-31', [data['a'].id])

        settlements.update_settlement_details(data['kurly'].id, [{'company_name': '컬리', 'settlement_amount': 60000}])

        courier_report = reports.get_courier_report(report.id, data['a'].id)
        assert courier_report.total_amount == 192000
        assert sorted(i.amount for i in courier_report.items) == [60000, 132000]

def test_statement_calculation(app, data):
    with app.app_context():
        statement = reports.create_settlement_statement(data['a'].id, '2024-05-01', '2024-05-31', commission_rate=0.1)

        assert statement.total_amount == 212000
        assert statement.commission_amount == 21200
        assert statement.vat_amount == 19080
        assert statement.final_amount == 209880
        assert statement.payment_status == models.PaymentStatus.PENDING

def test_statement_default_commission_rate(app, data):
    with app.app_context():
        statement = reports.create_settlement_statement(data['b'].id, '2024-05-01', '2024-05-31')

        assert statement.commission_rate == 0.0
        assert statement.commission_amount == 0
        assert statement.vat_amount == 1500
        assert statement.final_amount == 16500

        with pytest.raises(ValueError):
            reports.create_settlement_statement(data['b'].id, '2024-05-01', '2024-05-31', commission_rate=1.5)

def test_statement_adjustments(app, data):
    with app.app_context():
        statement = reports.create_settlement_statement(data['a'].id, '2024-05-01', '2024-05-31', commission_rate=0.1)

        reports.create_settlement_adjustment(statement.id, "명절 보너스", 10000, models.AdjustmentType.INCOME)
        assert statement.final_amount == 219880
        # 비용/세금은 부호와 관계없이 차감
        reports.create_settlement_adjustment(statement.id, "유류비", -5000, 'expense')
        reports.create_settlement_adjustment(statement.id, "원천세", 3000, models.AdjustmentType.TAX)
        assert statement.final_amount == 211880
        # 기타는 부호 그대로
        reports.create_settlement_adjustment(statement.id, "정정", -1880, models.AdjustmentType.OTHER)
        assert statement.final_amount == 210000
        assert len(statement.adjustments) == 4

        with pytest.raises(ValueError):
            reports.create_settlement_adjustment(statement.id, "", 100)

def test_statement_payment_status(app, data):
    with app.app_context():
        paid = reports.create_settlement_statement(data['a'].id, '2024-05-01', '2024-05-31')
        reports.mark_statement_paid(paid.id)
        assert paid.payment_status == models.PaymentStatus.PAID
        assert paid.payment_date is not None
        with pytest.raises(ValueError):
            reports.cancel_statement(paid.id)
        with pytest.raises(ValueError):
            reports.create_settlement_adjustment(paid.id, "늦은 조정", 1000)

        cancelled = reports.create_settlement_statement(data['b'].id, '2024-05-01', '2024-05-31')
        reports.cancel_statement(cancelled.id)
        with pytest.raises(ValueError):
            reports.mark_statement_paid(cancelled.id)
        assert cancelled.payment_status == models.PaymentStatus.CANCELLED

        assert len(reports.get_settlement_statements()) == 2
        assert len(reports.get_settlement_statements(data['a'].id)) == 1

def test_courier_payout_summary(app, data):
    with app.app_context():
        summary = reports.courier_payout_summary(data['a'].id, '2024-05-01', '2024-05-31')

        assert summary['subtotals'][models.SettlementType.KURLY] == 80000
        assert summary['subtotals'][models.SettlementType.COUPANG] == 132000
        assert summary['subtotals'][models.SettlementType.GENERAL] == 0
        assert summary['total_amount'] == 212000
        assert summary['deduction'] == 16960
        assert summary['final_amount'] == 195040
        assert len(summary['settlements']) == 2

def test_export_report_docx(app, data):
    with app.app_context():
        report = reports.build_settlement_report("5월", '2024-05-01', '2024-05-31', [data['a'].id, data['b'].id])

        doc = exports.build_report_document(report.id)
        text = "\n".join(p.text for p in doc.paragraphs)
        assert "5월" in text
        assert "2024-05-01 ~ 2024-05-31" in text
        summary_table = doc.tables[0]
        assert summary_table.rows[-1].cells[2].text == "227,000원"
        assert summary_table._tbl.tblPr.find(qn('w:tblBorders')) is not None

        buffer = exports.export_report_docx(report.id)
        assert buffer.read(2) == b"PK"
        assert exports.export_report_docx(9999) is None
