from __future__ import annotations

from fastapi import APIRouter, Depends

from printdesk.api.v1.endpoints import commissions, exports, flow, preflight, shops, storefront, uploads
from printdesk.core.security import require_basic_auth


api_router = APIRouter(dependencies=[Depends(require_basic_auth)])

api_router.include_router(shops.router, prefix="/shops", tags=["shops"])
api_router.include_router(uploads.router, prefix="/uploads", tags=["uploads"])
api_router.include_router(preflight.router, prefix="/preflight", tags=["preflight"])

api_router.include_router(commissions.router, prefix="/commissions", tags=["commissions"])

api_router.include_router(flow.router, prefix="/flow", tags=["flow"])
api_router.include_router(exports.router, prefix="/exports", tags=["exports"])

# Called from the shop's storefront; no operator credentials.
storefront_router = APIRouter()
storefront_router.include_router(storefront.router, tags=["storefront"])
