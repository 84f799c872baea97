"""事务执行器（带瞬时错误重试）"""

import logging
import time
from typing import Callable, Optional, TypeVar

from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import Session

from app.core.config import settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

# 40001 序列化失败 / 40P01 死锁 / 55P03 获取锁失败（lock_timeout, NOWAIT）
TRANSIENT_SQLSTATES = {"40001", "40P01", "55P03"}


def is_transient(exc: DBAPIError) -> bool:
    """判断数据库异常是否可以安全重试"""
    if exc.connection_invalidated:
        return True

    orig = exc.orig
    sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if sqlstate in TRANSIENT_SQLSTATES:
        return True

    # SQLite 写锁竞争
    return "database is locked" in str(orig).lower()


def run_in_transaction(
    db: Session,
    work: Callable[[], T],
    attempts: Optional[int] = None,
    backoff: Optional[float] = None,
) -> T:
    """在事务中执行 work，成功提交，失败回滚

    瞬时错误（死锁、序列化冲突、锁超时）整体重跑 work，最多 attempts 次，
    超过次数后抛出最后一次的异常。其余异常回滚后立即抛出。

    Args:
        db: 数据库会话
        work: 事务体，必须可以安全重跑（每次都重新加锁读取）
        attempts: 最大尝试次数，默认 settings.TRANSACTION_ATTEMPTS
        backoff: 线性退避基数（秒）

    Returns:
        work 的返回值
    """
    attempts = max(1, settings.TRANSACTION_ATTEMPTS if attempts is None else attempts)
    backoff = settings.TRANSACTION_RETRY_BACKOFF_SECONDS if backoff is None else backoff

    for attempt in range(1, attempts + 1):
        try:
            result = work()
            db.commit()
            return result
        except DBAPIError as e:
            db.rollback()
            if not is_transient(e):
                raise
            if attempt >= attempts:
                logger.error(f"事务重试耗尽: attempts={attempts}, error={e.orig}")
                raise
            logger.warning(f"事务冲突，准备重试: attempt={attempt}/{attempts}, error={e.orig}")
            time.sleep(backoff * attempt)
        except Exception:
            db.rollback()
            raise
