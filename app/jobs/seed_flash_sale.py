"""初始化表结构并写入秒杀演示商品"""

import argparse
import logging
from decimal import Decimal

from sqlalchemy import select

from app.db import init_db
from app.db.session import SessionLocal, engine
from app.models.product import Product

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

FLASH_SALE_SKU = "FLASH-SALE-2024"


def seed(stock_total: int = 100, price: Decimal = Decimal("99.99"), session_factory=SessionLocal, bind=None) -> Product:
    """建表并写入演示商品，SKU 已存在时直接返回"""
    init_db(bind or engine)

    db = session_factory()
    try:
        product = db.execute(
            select(Product).where(Product.sku == FLASH_SALE_SKU)
        ).scalar_one_or_none()
        if product is not None:
            logger.info(f"演示商品已存在: product_id={product.id}")
            return product

        product = Product(
            sku=FLASH_SALE_SKU,
            name="Flash Sale Product",
            description="Special limited stock product for flash sale",
            price=price,
            stock_total=stock_total,
            stock_reserved=0,
            stock_sold=0,
        )
        db.add(product)
        db.commit()
        logger.info(f"演示商品写入成功: product_id={product.id}, stock_total={stock_total}")
        return product
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def main():
    parser = argparse.ArgumentParser(description='秒杀演示数据初始化')
    parser.add_argument('--stock', type=int, default=100, help='总库存 (默认: 100)')
    parser.add_argument('--price', type=Decimal, default=Decimal("99.99"), help='单价 (默认: 99.99)')
    args = parser.parse_args()

    product = seed(args.stock, args.price)
    print(f"✅ 演示商品: id={product.id}, sku={product.sku}")
    return 0


if __name__ == "__main__":
    exit(main())
