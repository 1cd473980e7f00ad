from datetime import datetime, date, time
from typing import List, Optional
from sqlalchemy import String, Float, Integer, Date, DateTime, Time, ForeignKey, Enum, Boolean, Text, JSON, UniqueConstraint
from sqlalchemy.orm import relationship, Mapped, mapped_column
from werkzeug.security import generate_password_hash, check_password_hash
import enum
from .extensions import Base

# --- Enums (열거형: 고정 선택지, 데이터 일관성 보장) ---

class UserRole(enum.Enum):
    """사용자 역할"""
    ADMIN = "admin"        # 관리자
    COURIER = "courier"    # 배송 기사

class SettlementType(enum.Enum):
    """정산 유형 (플랫폼별로 상세 테이블이 다름)"""
    KURLY = "kurly"        # 컬리: 건별 고정 금액
    COUPANG = "coupang"    # 쿠팡: 배송 물량 x 단가
    GENERAL = "general"    # 일반: 자유 형식 표

class NotificationType(enum.Enum):
    """알림 종류"""
    ASSIGNMENT = "assignment"        # 배치 확정
    CANCELLATION = "cancellation"    # 배치 취소
    UPDATE = "update"                # 배치 변경
    VOTE = "vote"                    # 근무 투표
    GENERAL = "general"              # 일반

class PaymentStatus(enum.Enum):
    """정산서 지급 상태"""
    PENDING = "pending"      # 지급 대기
    PAID = "paid"            # 지급 완료
    CANCELLED = "cancelled"  # 취소

class AdjustmentType(enum.Enum):
    """정산서 조정 항목 유형"""
    EXPENSE = "expense"  # 비용 (차감)
    INCOME = "income"    # 수입 (가산)
    TAX = "tax"          # 세금 (차감)
    OTHER = "other"      # 기타 (부호 그대로 반영)

# --- 표시용 라벨 ---
ROLE_LABELS = {
    UserRole.ADMIN: "관리자",
    UserRole.COURIER: "기사",
}

SETTLEMENT_TYPE_LABELS = {
    SettlementType.KURLY: "컬리",
    SettlementType.COUPANG: "쿠팡",
    SettlementType.GENERAL: "일반",
}

PAYMENT_STATUS_LABELS = {
    PaymentStatus.PENDING: "지급 대기",
    PaymentStatus.PAID: "지급 완료",
    PaymentStatus.CANCELLED: "취소",
}

ADJUSTMENT_TYPE_LABELS = {
    AdjustmentType.EXPENSE: "비용",
    AdjustmentType.INCOME: "수입",
    AdjustmentType.TAX: "세금",
    AdjustmentType.OTHER: "기타",
}

# --- Models (데이터베이스 테이블) ---

class User(Base):
    """사용자 (관리자 / 기사)"""
    __tablename__ = 'users'

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    phone: Mapped[str] = mapped_column(String(20), unique=True, nullable=False) # 국제 형식 (+8210...)
    email: Mapped[Optional[str]] = mapped_column(String(120), unique=True, nullable=True)
    password_hash: Mapped[str] = mapped_column(String(256), nullable=False)
    role: Mapped[UserRole] = mapped_column(Enum(UserRole), default=UserRole.COURIER)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now)

    notification_setting: Mapped[Optional["NotificationSetting"]] = relationship(
        "NotificationSetting", back_populates="user", uselist=False, cascade="all, delete-orphan")
    votes: Mapped[List["Vote"]] = relationship("Vote", back_populates="courier", cascade="all, delete-orphan")

    def set_password(self, password):
        """비밀번호 해시 저장"""
        self.password_hash = generate_password_hash(password)

    def check_password(self, password):
        """비밀번호 확인"""
        return check_password_hash(self.password_hash, password)

    @property
    def is_admin(self):
        return self.role == UserRole.ADMIN

    @property
    def role_label(self):
        return ROLE_LABELS.get(self.role, self.role.value)

class NotificationSetting(Base):
    """기사별 알림 수신 설정"""
    __tablename__ = 'notification_settings'

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey('users.id'), unique=True, nullable=False)
    email_enabled: Mapped[bool] = mapped_column(Boolean, default=True)
    sms_enabled: Mapped[bool] = mapped_column(Boolean, default=False)
    kakao_enabled: Mapped[bool] = mapped_column(Boolean, default=False)

    user: Mapped["User"] = relationship("User", back_populates="notification_setting")

class LogisticsCenter(Base):
    """물류센터"""
    __tablename__ = 'logistics_centers'

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    address: Mapped[str] = mapped_column(String(200), nullable=False)
    map_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    manager_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    manager_contact: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    created_by: Mapped[Optional[int]] = mapped_column(ForeignKey('users.id'), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now)

    assignments: Mapped[List["Assignment"]] = relationship("Assignment", back_populates="center")

class Vote(Base):
    """근무 가능 여부 투표 (기사 1명당 하루 1건)"""
    __tablename__ = 'votes'
    __table_args__ = (UniqueConstraint('courier_id', 'date', name='uq_vote_courier_date'),)

    id: Mapped[int] = mapped_column(primary_key=True)
    courier_id: Mapped[int] = mapped_column(ForeignKey('users.id'), nullable=False)
    work_date: Mapped[date] = mapped_column('date', Date, nullable=False)
    is_available: Mapped[bool] = mapped_column(Boolean, nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    preferred_center_id: Mapped[Optional[int]] = mapped_column(ForeignKey('logistics_centers.id'), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    courier: Mapped["User"] = relationship("User", back_populates="votes")
    preferred_center: Mapped[Optional["LogisticsCenter"]] = relationship("LogisticsCenter")

class Assignment(Base):
    """물류센터 배치 (특정 날짜에 기사를 센터에 배정)"""
    __tablename__ = 'assignments'

    id: Mapped[int] = mapped_column(primary_key=True)
    courier_id: Mapped[int] = mapped_column(ForeignKey('users.id'), nullable=False)
    logistics_center_id: Mapped[int] = mapped_column(ForeignKey('logistics_centers.id'), nullable=False)
    work_date: Mapped[date] = mapped_column('date', Date, nullable=False)
    start_time: Mapped[Optional[time]] = mapped_column(Time, nullable=True)
    end_time: Mapped[Optional[time]] = mapped_column(Time, nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    created_by: Mapped[Optional[int]] = mapped_column(ForeignKey('users.id'), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now)

    courier: Mapped["User"] = relationship("User", foreign_keys=[courier_id])
    center: Mapped["LogisticsCenter"] = relationship("LogisticsCenter", back_populates="assignments")

    @property
    def time_label(self):
        """근무 시간 표시 (시간 미지정 시 '종일')"""
        if self.start_time and self.end_time:
            return f"{self.start_time:%H:%M}~{self.end_time:%H:%M}"
        return "종일"

class Notification(Base):
    """알림 발송 기록"""
    __tablename__ = 'notifications'

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey('users.id'), nullable=False)
    title: Mapped[str] = mapped_column(String(100), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    type: Mapped[NotificationType] = mapped_column(Enum(NotificationType), default=NotificationType.GENERAL)
    sms_sent: Mapped[bool] = mapped_column(Boolean, default=False)
    email_sent: Mapped[bool] = mapped_column(Boolean, default=False)
    kakao_sent: Mapped[bool] = mapped_column(Boolean, default=False)
    read: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now)

    user: Mapped["User"] = relationship("User")

# --- 정산 (Settlements) ---

class Settlement(Base):
    """정산 헤더. 유형별 상세 데이터는 각 상세 테이블에 저장"""
    __tablename__ = 'settlements'

    id: Mapped[int] = mapped_column(primary_key=True)
    courier_id: Mapped[int] = mapped_column(ForeignKey('users.id'), nullable=False)
    settlement_date: Mapped[date] = mapped_column(Date, nullable=False)
    settlement_type: Mapped[SettlementType] = mapped_column(Enum(SettlementType), nullable=False)
    created_by: Mapped[Optional[int]] = mapped_column(ForeignKey('users.id'), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    courier: Mapped["User"] = relationship("User", foreign_keys=[courier_id])
    kurly_items: Mapped[List["KurlySettlement"]] = relationship(
        "KurlySettlement", back_populates="settlement", cascade="all, delete-orphan")
    coupang_items: Mapped[List["CoupangSettlement"]] = relationship(
        "CoupangSettlement", back_populates="settlement", cascade="all, delete-orphan")
    general: Mapped[Optional["GeneralSettlement"]] = relationship(
        "GeneralSettlement", back_populates="settlement", uselist=False, cascade="all, delete-orphan")
    report_items: Mapped[List["ReportSettlementItem"]] = relationship("ReportSettlementItem", back_populates="settlement")

    @property
    def type_label(self):
        return SETTLEMENT_TYPE_LABELS.get(self.settlement_type, self.settlement_type.value)

    @property
    def details(self):
        """유형에 맞는 상세 데이터 반환"""
        if self.settlement_type == SettlementType.KURLY:
            return self.kurly_items
        if self.settlement_type == SettlementType.COUPANG:
            return self.coupang_items
        return self.general

class KurlySettlement(Base):
    """컬리 정산 상세 (건별 정산 금액)"""
    __tablename__ = 'kurly_settlements'

    id: Mapped[int] = mapped_column(primary_key=True)
    settlement_id: Mapped[int] = mapped_column(ForeignKey('settlements.id'), nullable=False)
    company_name: Mapped[str] = mapped_column(String(100), default='')
    support_type: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    amount: Mapped[float] = mapped_column(Float, default=0.0)             # 지원 금액
    settlement_amount: Mapped[float] = mapped_column(Float, default=0.0)  # 정산 금액 (합계 기준)
    supply_price: Mapped[float] = mapped_column(Float, default=0.0)       # 공급가
    delivery_count: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    unit_price: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    center: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    region: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    shift: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    sequence: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    note: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    settlement: Mapped["Settlement"] = relationship("Settlement", back_populates="kurly_items")

class CoupangSettlement(Base):
    """쿠팡 정산 상세 (배송 건수 x 단가)"""
    __tablename__ = 'coupang_settlements'

    id: Mapped[int] = mapped_column(primary_key=True)
    settlement_id: Mapped[int] = mapped_column(ForeignKey('settlements.id'), nullable=False)
    day_or_night: Mapped[str] = mapped_column(String(10), default='day')  # 주간/야간
    delivery_area: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    courier_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    delivery_count: Mapped[int] = mapped_column(Integer, default=0)
    unit_price: Mapped[float] = mapped_column(Float, default=0.0)
    supply_price: Mapped[float] = mapped_column(Float, default=0.0)
    vat: Mapped[float] = mapped_column(Float, default=0.0)
    total_amount: Mapped[float] = mapped_column(Float, default=0.0)  # 합계 기준
    profit: Mapped[float] = mapped_column(Float, default=0.0)
    invoice_status: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    payment_type: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    note: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    transaction_partner: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    return_count: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    camp: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    route_id: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    pdd: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    settlement: Mapped["Settlement"] = relationship("Settlement", back_populates="coupang_items")

class GeneralSettlement(Base):
    """일반 정산 (자유 형식 표: 열 이름 목록 + 행 목록)"""
    __tablename__ = 'general_settlements'

    id: Mapped[int] = mapped_column(primary_key=True)
    settlement_id: Mapped[int] = mapped_column(ForeignKey('settlements.id'), unique=True, nullable=False)
    columns: Mapped[list] = mapped_column(JSON, default=list)
    rows: Mapped[list] = mapped_column(JSON, default=list)

    settlement: Mapped["Settlement"] = relationship("Settlement", back_populates="general")

# --- 정산 보고서 (Settlement reports) ---

class SettlementReport(Base):
    """기간별 정산 보고서"""
    __tablename__ = 'settlement_reports'

    id: Mapped[int] = mapped_column(primary_key=True)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    created_by: Mapped[Optional[int]] = mapped_column(ForeignKey('users.id'), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now)

    couriers: Mapped[List["CourierSettlementReport"]] = relationship(
        "CourierSettlementReport", back_populates="report", cascade="all, delete-orphan")

    @property
    def total_amount(self):
        return sum(c.total_amount for c in self.couriers)

class CourierSettlementReport(Base):
    """보고서 내 기사별 정산 (total_amount = 항목 금액 합계)"""
    __tablename__ = 'courier_settlement_reports'
    __table_args__ = (UniqueConstraint('report_id', 'courier_id', name='uq_report_courier'),)

    id: Mapped[int] = mapped_column(primary_key=True)
    report_id: Mapped[int] = mapped_column(ForeignKey('settlement_reports.id'), nullable=False)
    courier_id: Mapped[int] = mapped_column(ForeignKey('users.id'), nullable=False)
    total_amount: Mapped[float] = mapped_column(Float, default=0.0)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now)

    report: Mapped["SettlementReport"] = relationship("SettlementReport", back_populates="couriers")
    courier: Mapped["User"] = relationship("User")
    items: Mapped[List["ReportSettlementItem"]] = relationship(
        "ReportSettlementItem", back_populates="courier_report", cascade="all, delete-orphan",
        order_by="ReportSettlementItem.id")

class ReportSettlementItem(Base):
    """보고서에 포함된 정산 항목 (추가 시점의 금액을 저장)"""
    __tablename__ = 'report_settlement_items'
    __table_args__ = (UniqueConstraint('courier_report_id', 'settlement_id', name='uq_report_item_settlement'),)

    id: Mapped[int] = mapped_column(primary_key=True)
    courier_report_id: Mapped[int] = mapped_column(ForeignKey('courier_settlement_reports.id'), nullable=False)
    settlement_id: Mapped[int] = mapped_column(ForeignKey('settlements.id'), nullable=False)
    settlement_type: Mapped[SettlementType] = mapped_column(Enum(SettlementType), nullable=False)
    amount: Mapped[float] = mapped_column(Float, default=0.0)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now)

    courier_report: Mapped["CourierSettlementReport"] = relationship("CourierSettlementReport", back_populates="items")
    settlement: Mapped["Settlement"] = relationship("Settlement", back_populates="report_items")

    @property
    def type_label(self):
        return SETTLEMENT_TYPE_LABELS.get(self.settlement_type, self.settlement_type.value)

# --- 정산서 (Statements) ---

class SettlementStatement(Base):
    """기사별 정산서 (수수료 / 부가세 / 조정 반영)"""
    __tablename__ = 'settlement_statements'

    id: Mapped[int] = mapped_column(primary_key=True)
    courier_id: Mapped[int] = mapped_column(ForeignKey('users.id'), nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    total_amount: Mapped[float] = mapped_column(Float, default=0.0)
    commission_rate: Mapped[float] = mapped_column(Float, default=0.0)
    commission_amount: Mapped[float] = mapped_column(Float, default=0.0)
    vat_amount: Mapped[float] = mapped_column(Float, default=0.0)
    final_amount: Mapped[float] = mapped_column(Float, default=0.0)
    payment_status: Mapped[PaymentStatus] = mapped_column(Enum(PaymentStatus), default=PaymentStatus.PENDING)
    payment_date: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now)

    courier: Mapped["User"] = relationship("User")
    adjustments: Mapped[List["SettlementAdjustment"]] = relationship(
        "SettlementAdjustment", back_populates="statement", cascade="all, delete-orphan")

    @property
    def status_label(self):
        return PAYMENT_STATUS_LABELS.get(self.payment_status, self.payment_status.value)

class SettlementAdjustment(Base):
    """정산서 조정 항목"""
    __tablename__ = 'settlement_adjustments'

    id: Mapped[int] = mapped_column(primary_key=True)
    statement_id: Mapped[int] = mapped_column(ForeignKey('settlement_statements.id'), nullable=False)
    description: Mapped[str] = mapped_column(String(255), nullable=False)
    amount: Mapped[float] = mapped_column(Float, nullable=False)
    type: Mapped[AdjustmentType] = mapped_column(Enum(AdjustmentType), default=AdjustmentType.OTHER)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now)

    statement: Mapped["SettlementStatement"] = relationship("SettlementStatement", back_populates="adjustments")

    @property
    def type_label(self):
        return ADJUSTMENT_TYPE_LABELS.get(self.type, self.type.value)

class AuditLog(Base):
    """시스템 작업 로그 (중요한 변경 작업 기록)"""
    __tablename__ = 'audit_logs'

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey('users.id'), nullable=False)  # 작업자 ID
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    target_id: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    details: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime, default=datetime.now)

    user: Mapped["User"] = relationship("User")
