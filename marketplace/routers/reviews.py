from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, status

from shared.utils import SuccessResponse, PageResponse
from shared.security_config import limiter

from marketplace.container import Services
from marketplace.dependencies import (
    get_services, get_current_user, get_optional_user, require_admin, is_admin
)
from marketplace.schemas import (
    ReviewCreate, ReviewUpdate, ReviewFlag, ReviewModeration, ReviewVote, ReviewResponse, ReviewStats
)

router = APIRouter(prefix="/api/reviews", tags=["reviews"])


@router.post("", response_model=SuccessResponse[ReviewResponse], status_code=status.HTTP_201_CREATED)
@limiter.limit("10/minute")
async def create_review(review: ReviewCreate, request: Request, user: dict = Depends(get_current_user),
                        services: Services = Depends(get_services)):
    created = await services.reviews.create_review(user["sub"], review)
    return SuccessResponse(data=created, message="Review submitted for moderation")


@router.get("/product/{product_id}", response_model=SuccessResponse[PageResponse[ReviewResponse]])
async def product_reviews(
    product_id: str,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=50),
    rating: Optional[int] = Query(None, ge=1, le=5),
    sort_by: str = Query("created_at", pattern="^(created_at|rating|helpful_votes)$"),
    sort_order: str = Query("desc", pattern="^(asc|desc)$"),
    services: Services = Depends(get_services)
):
    result = await services.reviews.product_reviews(product_id, page, limit, sort_by, sort_order, rating)
    return SuccessResponse(data=result)


@router.get("/product/{product_id}/stats", response_model=SuccessResponse[ReviewStats])
async def product_review_stats(product_id: str, services: Services = Depends(get_services)):
    return SuccessResponse(data=await services.reviews.review_stats(product_id, public_only=True))


@router.get("/mine", response_model=SuccessResponse[PageResponse[ReviewResponse]])
async def my_reviews(page: int = Query(1, ge=1), limit: int = Query(10, ge=1, le=50),
                     user: dict = Depends(get_current_user), services: Services = Depends(get_services)):
    return SuccessResponse(data=await services.reviews.user_reviews(user["sub"], page, limit))


@router.get("", response_model=SuccessResponse[PageResponse[ReviewResponse]])
async def list_reviews(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    state: Optional[str] = Query(None, pattern="^(pending|approved|rejected|flagged)$"),
    search: Optional[str] = None,
    admin: dict = Depends(require_admin),
    services: Services = Depends(get_services)
):
    return SuccessResponse(data=await services.reviews.list_reviews(page, limit, state, search))


@router.get("/stats", response_model=SuccessResponse[ReviewStats])
async def review_stats(admin: dict = Depends(require_admin), services: Services = Depends(get_services)):
    return SuccessResponse(data=await services.reviews.review_stats())


@router.get("/{review_id}", response_model=SuccessResponse[ReviewResponse])
async def get_review(review_id: str, user: Optional[dict] = Depends(get_optional_user),
                     services: Services = Depends(get_services)):
    review = await services.reviews.get_visible_review(
        review_id, user["sub"] if user else None, is_admin(user)
    )
    return SuccessResponse(data=review)


@router.put("/{review_id}", response_model=SuccessResponse[ReviewResponse])
async def update_review(review_id: str, review: ReviewUpdate, user: dict = Depends(get_current_user),
                        services: Services = Depends(get_services)):
    updated = await services.reviews.update_review(review_id, user["sub"], review)
    return SuccessResponse(data=updated, message="Review updated")


@router.delete("/{review_id}", response_model=SuccessResponse[dict])
async def delete_review(review_id: str, user: dict = Depends(get_current_user),
                        services: Services = Depends(get_services)):
    await services.reviews.delete_review(review_id, user["sub"], is_admin(user))
    return SuccessResponse(message="Review deleted")


@router.post("/{review_id}/approve", response_model=SuccessResponse[ReviewResponse])
async def approve_review(review_id: str, body: Optional[ReviewModeration] = None,
                         admin: dict = Depends(require_admin), services: Services = Depends(get_services)):
    review = await services.reviews.approve(review_id, admin["sub"], body.notes if body else None)
    return SuccessResponse(data=review, message="Review approved")


@router.post("/{review_id}/reject", response_model=SuccessResponse[ReviewResponse])
async def reject_review(review_id: str, body: Optional[ReviewModeration] = None,
                        admin: dict = Depends(require_admin), services: Services = Depends(get_services)):
    review = await services.reviews.reject(review_id, admin["sub"], body.notes if body else None)
    return SuccessResponse(data=review, message="Review rejected")


@router.post("/{review_id}/flag", response_model=SuccessResponse[ReviewResponse])
async def flag_review(review_id: str, body: ReviewFlag, user: dict = Depends(get_current_user),
                      services: Services = Depends(get_services)):
    review = await services.reviews.flag(review_id, user["sub"], body.reason)
    return SuccessResponse(data=review, message="Review flagged")


@router.post("/{review_id}/unflag", response_model=SuccessResponse[ReviewResponse])
async def unflag_review(review_id: str, admin: dict = Depends(require_admin),
                        services: Services = Depends(get_services)):
    return SuccessResponse(data=await services.reviews.unflag(review_id), message="Review unflagged")


@router.post("/{review_id}/vote", response_model=SuccessResponse[ReviewResponse])
async def vote_review(review_id: str, body: ReviewVote, user: dict = Depends(get_current_user),
                      services: Services = Depends(get_services)):
    review = await services.reviews.vote(review_id, user["sub"], body.helpful)
    return SuccessResponse(data=review, message="Vote recorded")
