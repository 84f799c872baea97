"""Redis 客户端配置模块"""

import logging
from contextlib import contextmanager

from redis import Redis
from redis.exceptions import RedisError
from redlock import Redlock

from app.core.config import settings

logger = logging.getLogger(__name__)

REDIS_URL = settings.redis_url

# 基础 Redis 客户端
redis_client = Redis.from_url(REDIS_URL, decode_responses=True)


# Redlock 配置（支持单实例和多实例）
def create_redlock():
    """根据配置动态创建 Redlock 实例"""
    redis_hosts = settings.REDIS_HOSTS or settings.REDIS_HOST

    if "," in redis_hosts:  # 多实例模式
        hosts = redis_hosts.split(",")
        servers = [
            {"host": host.strip(), "port": settings.REDIS_PORT, "db": settings.REDIS_DB}
            for host in hosts
        ]
    else:  # 单实例模式
        servers = [
            {"host": redis_hosts, "port": settings.REDIS_PORT, "db": settings.REDIS_DB}
        ]

    return Redlock(servers)


redlock = create_redlock()


def redlock_reachable(rlock) -> bool:
    """是否至少有一个 Redlock 节点可以连通"""
    for server in getattr(rlock, "servers", []):
        try:
            if server.ping():
                return True
        except RedisError:
            continue
    return False


@contextmanager
def single_flight(rlock, job_name: str, ttl_ms: int = 60000):
    """批处理任务的单飞锁

    同一时刻只允许一个 worker 执行同名批处理任务。拿不到锁时 yield False，
    调用方应直接跳过本轮。Redis 不可用时 yield True，由数据库行锁兜底。
    """
    if rlock is None:
        yield True
        return

    lock_key = f"lock:checkout:{job_name}"
    try:
        lock = rlock.lock(lock_key, ttl_ms)
    except Exception as e:
        logger.warning(f"Redlock unavailable for {lock_key}, running without it: {e}")
        yield True
        return

    if not lock:
        # redlock-py 内部吞掉连接错误并返回 False，需要区分"锁被占用"和"Redis 不可达"
        if not redlock_reachable(rlock):
            logger.warning(f"Redlock servers unreachable for {lock_key}, running without it")
            yield True
            return
        logger.info(f"{job_name} 已在其他 worker 执行，跳过本轮")
        yield False
        return

    try:
        yield True
    finally:
        rlock.unlock(lock)


__all__ = [
    "redis_client",
    "redlock",
    "single_flight",
    "REDIS_URL",
]
