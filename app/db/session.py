from sqlalchemy import create_engine
from sqlalchemy.engine import make_url
from sqlalchemy.orm import sessionmaker

from app.core.config import settings


def create_checkout_engine(url: str = None):
    """创建数据库引擎，DATABASE_URL 可指向 SQLite 做本地调试"""
    url = make_url(url or settings.database_url)
    if url.get_backend_name() == "sqlite":
        return create_engine(url, connect_args={"check_same_thread": False})

    return create_engine(
        url,
        pool_size=10,
        max_overflow=20,
        pool_pre_ping=True,
        pool_recycle=1800,
    )


engine = create_checkout_engine()

# 提交后不过期对象，服务层返回的实体在提交后仍可直接读取
SessionLocal = sessionmaker(
    bind=engine,
    autoflush=False,
    autocommit=False,
    expire_on_commit=False,
)
