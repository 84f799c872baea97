"""过期预占 / 等待订单回调的本地兜底执行脚本"""

import argparse
import logging

from sqlalchemy import func, select

from app.core.config import settings
from app.core.events import get_event_sink
from app.db.session import SessionLocal
from app.db.types import utcnow
from app.models.hold import Hold
from app.models.webhook_event import WebhookEvent
from app.repositories.filters import hold_is_due, webhook_is_retryable
from app.services.hold_manager import HoldManager
from app.services.webhook_reconciler import WebhookReconciler

# 配置日志
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def count_pending_work(db):
    """统计待处理的到期预占和等待订单的回调数量"""
    due_holds = db.execute(
        select(func.count()).select_from(Hold).where(hold_is_due(utcnow()))
    ).scalar_one()
    waiting_webhooks = db.execute(
        select(func.count()).select_from(WebhookEvent).where(webhook_is_retryable())
    ).scalar_one()
    return due_holds, waiting_webhooks


def run_sweep(batch_size: int = 100, dry_run: bool = False, session_factory=SessionLocal):
    """执行一轮兜底扫描

    Args:
        batch_size: 批处理大小
        dry_run: 是否为试运行模式（只统计不处理）

    Returns:
        (过期预占数, applied 回调数)
    """
    db = session_factory()
    try:
        if dry_run:
            due_holds, waiting_webhooks = count_pending_work(db)
            logger.info(
                f"试运行模式：到期预占 {due_holds} 条，等待订单的回调 {waiting_webhooks} 条"
            )
            return due_holds, waiting_webhooks

        events = get_event_sink()
        expired = HoldManager(db, events=events).expire_due_holds(batch_size)
        applied = WebhookReconciler(db, events=events).batch_retry_waiting(batch_size)
        logger.info(f"扫描完成：过期预占 {expired} 条，回调 applied {applied} 条")
        return expired, applied
    except Exception as e:
        logger.error(f"扫描执行失败: {e}")
        db.rollback()
        raise
    finally:
        db.close()


def main():
    """主函数"""
    parser = argparse.ArgumentParser(description='过期预占与等待回调兜底工具')
    parser.add_argument(
        '--batch-size',
        type=int,
        default=settings.HOLD_SWEEP_BATCH_SIZE,
        help=f'批处理大小 (默认: {settings.HOLD_SWEEP_BATCH_SIZE})'
    )
    parser.add_argument(
        '--dry-run',
        action='store_true',
        help='试运行模式，只统计不处理'
    )
    parser.add_argument(
        '--verbose',
        action='store_true',
        help='详细输出模式'
    )

    args = parser.parse_args()

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    try:
        holds, webhooks = run_sweep(args.batch_size, args.dry_run)
        if args.dry_run:
            print(f"📊 试运行结果：到期预占 {holds} 条，等待订单的回调 {webhooks} 条")
        else:
            print(f"✅ 扫描完成：过期预占 {holds} 条，回调 applied {webhooks} 条")
    except Exception as e:
        print(f"❌ 执行失败: {e}")
        return 1

    return 0


if __name__ == "__main__":
    exit(main())
