from typing import List

from fastapi import APIRouter, Depends

from .catalog import ProductCatalog
from .deps import get_catalog, get_current_user
from .schemas import ProductIn, ProductOut

router = APIRouter(prefix="/products", tags=["products"], dependencies=[Depends(get_current_user)])

@router.post("", response_model=ProductOut, status_code=201)
def create(payload: ProductIn, catalog: ProductCatalog = Depends(get_catalog)):
    return catalog.create(payload.name, payload.price)

@router.get("", response_model=List[ProductOut])
def find_all(catalog: ProductCatalog = Depends(get_catalog)):
    return catalog.find_all()
