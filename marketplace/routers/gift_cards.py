from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Request, status

from shared.utils import SuccessResponse, PageResponse, BusinessRuleException
from shared.security_config import limiter

from marketplace.container import Services
from marketplace.dependencies import get_services, get_current_user, require_admin
from marketplace.schemas import (
    GiftCardCreate, GiftCardRedeem, GiftCardResponse, GiftCardBalance, GiftCardCode
)

router = APIRouter(prefix="/api/gift-cards", tags=["gift-cards"])


@router.post("", response_model=SuccessResponse[GiftCardResponse], status_code=status.HTTP_201_CREATED)
async def create_gift_card(card: GiftCardCreate, admin: dict = Depends(require_admin),
                           services: Services = Depends(get_services)):
    created = await services.gift_cards.create_gift_card(card, admin["sub"])
    return SuccessResponse(data=created, message="Gift card created successfully")


@router.get("", response_model=SuccessResponse[PageResponse[GiftCardResponse]])
async def list_gift_cards(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    status: Optional[str] = Query(None, pattern="^(active|used|expired|cancelled)$"),
    search: Optional[str] = None,
    admin: dict = Depends(require_admin),
    services: Services = Depends(get_services)
):
    return SuccessResponse(data=await services.gift_cards.list_gift_cards(page, limit, status, search))


@router.get("/stats", response_model=SuccessResponse[dict])
async def gift_card_stats(admin: dict = Depends(require_admin), services: Services = Depends(get_services)):
    return SuccessResponse(data=await services.gift_cards.gift_card_stats())


@router.get("/mine", response_model=SuccessResponse[List[GiftCardResponse]])
async def my_gift_cards(user: dict = Depends(get_current_user), services: Services = Depends(get_services)):
    account = await services.users.get_user(user["sub"])
    return SuccessResponse(data=await services.gift_cards.cards_for_user(user["sub"], account.get("email")))


@router.post("/validate", response_model=SuccessResponse[GiftCardBalance])
@limiter.limit("20/minute")
async def validate_gift_card(body: GiftCardCode, request: Request, user: dict = Depends(get_current_user),
                             services: Services = Depends(get_services)):
    result = await services.gift_cards.validate(body.code)
    if not result["valid"]:
        raise BusinessRuleException(result["message"])
    return SuccessResponse(data=result["gift_card"], message=result["message"])


@router.post("/redeem", response_model=SuccessResponse[dict])
@limiter.limit("10/minute")
async def redeem_gift_card(body: GiftCardRedeem, request: Request, user: dict = Depends(get_current_user),
                           services: Services = Depends(get_services)):
    result = await services.gift_cards.redeem(body.code, user["sub"], body.order_id, body.amount)
    return SuccessResponse(data={
        "code": result["gift_card"]["code"],
        "amount_used": result["amount_used"],
        "remaining_balance": result["remaining_balance"],
        "status": result["gift_card"]["status"],
    }, message="Gift card redeemed")


@router.get("/{card_id}", response_model=SuccessResponse[GiftCardResponse])
async def get_gift_card(card_id: str, admin: dict = Depends(require_admin),
                        services: Services = Depends(get_services)):
    return SuccessResponse(data=await services.gift_cards.get_gift_card(card_id))


@router.post("/{card_id}/deactivate", response_model=SuccessResponse[GiftCardResponse])
async def deactivate_gift_card(card_id: str, admin: dict = Depends(require_admin),
                               services: Services = Depends(get_services)):
    return SuccessResponse(data=await services.gift_cards.deactivate(card_id), message="Gift card deactivated")
