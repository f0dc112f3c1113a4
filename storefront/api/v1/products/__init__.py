"""Products API."""
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.database import get_db
from storefront.services.product_service import ProductService

router = APIRouter()


class ProductResponse(BaseModel):
    """Ответ с информацией о продукте."""

    id: int
    name: str
    description: str | None = None
    price: float
    stock: int
    image_url: str | None = None
    is_active: bool


@router.get("", response_model=List[ProductResponse])
async def list_products(
    search: str | None = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
):
    """Каталог активных товаров."""
    return await ProductService(db).list_active(search=search, page=page, limit=limit)


@router.get("/{product_id}", response_model=ProductResponse)
async def get_product(
    product_id: int,
    db: AsyncSession = Depends(get_db),
):
    product = await ProductService(db).get_dict(product_id)
    if product is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Товар не найден",
        )
    return product
