"""测试配置和 fixtures"""
from decimal import Decimal
from unittest.mock import Mock

import pytest
from redlock import Redlock
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import app.models  # noqa: F401
from app.core.events import EventRecord, Severity
from app.db.base import Base
from app.models.product import Product


def _use_explicit_begin(engine, begin_sql):
    """pysqlite 默认的隐式事务不支持 SAVEPOINT，改为由 SQLAlchemy 自己发 BEGIN"""

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql(begin_sql)


class RecordingScheduler:
    """记录投递的延迟任务，不真正执行"""

    def __init__(self):
        self.calls = []

    def schedule(self, action, args, at_time=None):
        self.calls.append((action, list(args), at_time))

    def actions(self):
        return [call[0] for call in self.calls]


class RecordingEventSink:
    """记录服务层发出的事件"""

    def __init__(self):
        self.records = []

    def emit(self, name, severity=Severity.INFO, **fields):
        self.records.append(EventRecord(name=name, severity=severity, fields=fields))

    def names(self):
        return [record.name for record in self.records]

    def find(self, name):
        return [record for record in self.records if record.name == name]


@pytest.fixture
def db_engine():
    """内存 SQLite，所有会话共享同一个连接"""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    _use_explicit_begin(engine, "BEGIN")
    Base.metadata.create_all(engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(engine)
        engine.dispose()


@pytest.fixture
def file_engine(tmp_path):
    """文件 SQLite，BEGIN IMMEDIATE 让并发写事务串行化，用于多线程测试"""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'checkout.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
        pool_size=20,
        max_overflow=0,
    )
    _use_explicit_begin(engine, "BEGIN IMMEDIATE")
    Base.metadata.create_all(engine)
    try:
        yield engine
    finally:
        engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(bind=db_engine, autoflush=False, expire_on_commit=False)


@pytest.fixture
def db_session(session_factory):
    """创建测试数据库会话"""
    db = session_factory()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def scheduler():
    return RecordingScheduler()


@pytest.fixture
def events():
    return RecordingEventSink()


@pytest.fixture
def make_product(db_session):
    """创建商品的工厂"""

    def _make(stock_total=10, price=Decimal("10.00"), **kwargs):
        product = Product(
            name=kwargs.pop("name", "测试商品"),
            price=price,
            stock_total=stock_total,
            stock_reserved=kwargs.pop("stock_reserved", 0),
            stock_sold=kwargs.pop("stock_sold", 0),
            **kwargs,
        )
        db_session.add(product)
        db_session.commit()
        return product

    return _make


@pytest.fixture
def mock_redlock():
    """创建模拟 Redlock 分布式锁"""
    redlock_mock = Mock(spec=Redlock)
    lock_mock = Mock()
    redlock_mock.lock.return_value = lock_mock
    redlock_mock.unlock.return_value = True
    redlock_mock.servers = [Mock(ping=Mock(return_value=True))]
    return redlock_mock
