from .base import Base
from .session import engine


def init_db(bind=None):
    # 注册全部模型后再建表
    import app.models  # noqa: F401

    Base.metadata.create_all(bind=bind or engine)


__all__ = ["Base", "engine", "init_db"]
