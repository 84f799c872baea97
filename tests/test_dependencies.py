"""依赖注入单元测试"""
from unittest.mock import Mock, patch

from sqlalchemy.orm import Session

from app.core.dependencies import (
    get_db,
    get_events,
    get_hold_manager,
    get_order_lifecycle,
    get_scheduler,
    get_webhook_reconciler,
)
from app.core.events import LoggingEventSink, RedisStreamEventSink
from app.core.scheduler import CeleryTaskScheduler
from app.services.hold_manager import HoldManager
from app.services.order_lifecycle import OrderLifecycle
from app.services.webhook_reconciler import WebhookReconciler


class TestDependencies:
    """依赖注入测试类"""

    def test_get_db(self):
        """测试数据库会话依赖"""
        with patch('app.core.dependencies.SessionLocal') as mock_session_local:
            db_mock = Mock(spec=Session)
            mock_session_local.return_value = db_mock

            # 获取生成器
            gen = get_db()
            db = next(gen)

            assert db == db_mock
            mock_session_local.assert_called_once()

            # 测试清理
            gen.close()
            db_mock.close.assert_called_once()

    def test_get_events_default_logging(self):
        """测试默认使用日志事件输出"""
        with patch('app.core.events.settings') as mock_settings:
            mock_settings.EVENT_SINK = "logging"
            assert isinstance(get_events(), LoggingEventSink)

    def test_get_events_redis_stream(self):
        """测试配置为 redis 时使用 Stream 输出"""
        with patch('app.core.events.settings') as mock_settings:
            mock_settings.EVENT_SINK = "redis"
            mock_settings.EVENT_STREAM_KEY = "checkout:events"
            mock_settings.EVENT_STREAM_MAXLEN = 1000
            sink = get_events()
            assert isinstance(sink, RedisStreamEventSink)
            assert sink.stream_key == "checkout:events"

    def test_get_scheduler(self):
        """测试调度器依赖"""
        scheduler = get_scheduler()
        assert isinstance(scheduler, CeleryTaskScheduler)

    def test_get_hold_manager(self):
        """测试预占服务依赖"""
        db_mock = Mock(spec=Session)
        scheduler_mock = Mock()
        events_mock = Mock()

        service = get_hold_manager(db_mock, scheduler_mock, events_mock)

        assert isinstance(service, HoldManager)
        assert service.db == db_mock
        assert service.scheduler == scheduler_mock
        assert service.events == events_mock

    def test_get_order_lifecycle(self):
        """测试订单服务依赖"""
        db_mock = Mock(spec=Session)
        events_mock = Mock()

        service = get_order_lifecycle(db_mock, events_mock)

        assert isinstance(service, OrderLifecycle)
        assert service.events == events_mock

    def test_get_webhook_reconciler(self):
        """测试支付回调服务依赖"""
        db_mock = Mock(spec=Session)
        scheduler_mock = Mock()
        events_mock = Mock()

        service = get_webhook_reconciler(db_mock, scheduler_mock, events_mock)

        assert isinstance(service, WebhookReconciler)
        assert service.scheduler == scheduler_mock
        assert service.lifecycle.events == events_mock


class TestEventSinks:
    """事件输出测试类"""

    def test_logging_sink_writes_json(self, caplog):
        """测试日志输出为单行 JSON"""
        sink = LoggingEventSink()
        with caplog.at_level("INFO", logger="checkout.events"):
            sink.emit("hold_created", hold_id=1, qty=2)

        assert '"event": "hold_created"' in caplog.text
        assert '"hold_id": 1' in caplog.text

    def test_redis_sink_xadd(self):
        """测试写入 Redis Stream"""
        redis_mock = Mock()
        sink = RedisStreamEventSink(redis_mock, stream_key="events", maxlen=10)

        sink.emit("order_created", order_id=3)

        args, kwargs = redis_mock.xadd.call_args
        assert args[0] == "events"
        assert args[1]["event"] == "order_created"
        assert kwargs == {"maxlen": 10, "approximate": True}

    def test_redis_sink_falls_back_to_logging(self, caplog):
        """测试 Redis 不可用时退回日志"""
        redis_mock = Mock()
        redis_mock.xadd.side_effect = ConnectionError("redis down")
        sink = RedisStreamEventSink(redis_mock, stream_key="events", maxlen=10)

        with caplog.at_level("INFO", logger="checkout.events"):
            sink.emit("order_created", order_id=3)

        assert "Event stream unavailable" in caplog.text
        assert '"event": "order_created"' in caplog.text
