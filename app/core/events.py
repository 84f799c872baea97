"""结构化事件输出

服务层不直接拼日志字符串，而是把命名事件作为数据交给注入的 EventSink，
由 sink 决定格式化与投递方式。
"""

import enum
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Protocol

from app.core.config import settings

events_logger = logging.getLogger("checkout.events")


class Severity(str, enum.Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


_LOG_LEVELS = {
    Severity.INFO: logging.INFO,
    Severity.WARNING: logging.WARNING,
    Severity.ERROR: logging.ERROR,
}


@dataclass(frozen=True)
class EventRecord:
    name: str
    severity: Severity = Severity.INFO
    fields: Dict[str, Any] = field(default_factory=dict)
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def as_dict(self) -> Dict[str, Any]:
        return {
            "event": self.name,
            "severity": self.severity.value,
            "occurred_at": self.occurred_at.isoformat(),
            **self.fields,
        }


class EventSink(Protocol):
    def emit(self, name: str, severity: Severity = Severity.INFO, **fields: Any) -> None:
        ...


class LoggingEventSink:
    """每个事件输出一行 JSON 到 checkout.events 日志"""

    def __init__(self, logger: logging.Logger = events_logger):
        self.logger = logger

    def emit(self, name: str, severity: Severity = Severity.INFO, **fields: Any) -> None:
        record = EventRecord(name=name, severity=severity, fields=fields)
        self.logger.log(
            _LOG_LEVELS[severity],
            json.dumps(record.as_dict(), default=str, ensure_ascii=False),
        )


class RedisStreamEventSink:
    """把事件写入 Redis Stream，供下游采集"""

    def __init__(self, redis, stream_key: str = None, maxlen: int = None):
        self.redis = redis
        self.stream_key = stream_key or settings.EVENT_STREAM_KEY
        self.maxlen = maxlen or settings.EVENT_STREAM_MAXLEN
        self.fallback = LoggingEventSink()

    def emit(self, name: str, severity: Severity = Severity.INFO, **fields: Any) -> None:
        record = EventRecord(name=name, severity=severity, fields=fields)
        try:
            self.redis.xadd(
                self.stream_key,
                {"event": name, "data": json.dumps(record.as_dict(), default=str)},
                maxlen=self.maxlen,
                approximate=True,
            )
        except Exception as e:
            # 投递失败不影响已提交的业务事务，退回本地日志
            events_logger.warning(f"Event stream unavailable: {e}")
            self.fallback.emit(name, severity, **fields)


def get_event_sink() -> EventSink:
    """根据配置创建事件 sink"""
    if settings.EVENT_SINK == "redis":
        from app.core.redis import redis_client

        return RedisStreamEventSink(redis_client)
    return LoggingEventSink()
