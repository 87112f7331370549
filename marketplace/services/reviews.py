import logging
from datetime import datetime
from typing import Optional

from shared.utils import (
    NotFoundException, BusinessRuleException, ForbiddenException, to_decimal, round_money
)

from marketplace.listing import matches_search, filter_documents, sort_documents, paginate
from marketplace.models import ReviewDB
from marketplace.services.catalog import CatalogService
from marketplace.store import Datastore, DuplicateError

logger = logging.getLogger("marketplace.reviews")


def review_key(user_id: str, product_id: str, order_id: str) -> str:
    return f"{user_id}:{product_id}:{order_id}"


def is_public(review: dict) -> bool:
    return bool(review.get("is_approved")) and not review.get("is_flagged")


class ReviewService:
    def __init__(self, db: Datastore, catalog: CatalogService):
        self.reviews = db.collection("reviews")
        self.orders = db.collection("orders")
        self.catalog = catalog

    async def create_indexes(self):
        await self.reviews.create_index("review_key", unique=True)
        await self.reviews.create_index("product_id")
        await self.reviews.create_index("user_id")

    async def create_review(self, user_id: str, data) -> dict:
        order = await self.orders.get_by_id(data.order_id)
        if not order or order["user_id"] != user_id:
            raise NotFoundException("Order not found")
        if not any(i["product_id"] == data.product_id for i in order.get("items") or []):
            raise BusinessRuleException("This order does not contain the product")
        if order.get("status") != "delivered":
            raise BusinessRuleException("Only delivered orders can be reviewed")

        key = review_key(user_id, data.product_id, data.order_id)
        if await self.reviews.find_one_by("review_key", key):
            raise BusinessRuleException("You have already reviewed this product for this order")
        review = ReviewDB(user_id=user_id, review_key=key, **data.dict())
        try:
            created = await self.reviews.create(review.dict(exclude={"id"}))
        except DuplicateError:
            raise BusinessRuleException("You have already reviewed this product for this order")
        logger.info(f"Review {created['id']} submitted", extra={"user_id": user_id, "product_id": data.product_id})
        return created

    async def get_review(self, review_id: str) -> dict:
        review = await self.reviews.get_by_id(review_id)
        if not review:
            raise NotFoundException("Review not found")
        return review

    async def get_visible_review(self, review_id: str, viewer_id: Optional[str] = None,
                                 is_admin: bool = False) -> dict:
        review = await self.get_review(review_id)
        if is_public(review) or is_admin or (viewer_id and review["user_id"] == viewer_id):
            return review
        raise NotFoundException("Review not found")

    async def update_review(self, review_id: str, user_id: str, data) -> dict:
        review = await self.get_review(review_id)
        if review["user_id"] != user_id:
            raise ForbiddenException("Not authorized to edit this review")
        patch = {k: v for k, v in data.dict().items() if v is not None}
        if not patch:
            return review
        # Edited content goes back through moderation
        patch.update({"is_approved": False, "is_moderated": False})
        updated = await self.reviews.update(review_id, patch)
        if review.get("is_approved"):
            await self.refresh_rating(review["product_id"])
        return updated

    async def delete_review(self, review_id: str, user_id: str, is_admin: bool = False):
        review = await self.get_review(review_id)
        if not is_admin and review["user_id"] != user_id:
            raise ForbiddenException("Not authorized to delete this review")
        await self.reviews.delete(review_id)
        await self.refresh_rating(review["product_id"])

    async def refresh_rating(self, product_id: str):
        approved = [r for r in await self.reviews.list_by_equality("product_id", product_id) if is_public(r)]
        average = 0.0
        if approved:
            average = float(round_money(sum(to_decimal(r["rating"]) for r in approved) / len(approved)))
        try:
            await self.catalog.set_rating(product_id, average, len(approved))
        except NotFoundException:
            logger.warning(f"Rating not updated, product {product_id} is gone")

    async def _moderate(self, review_id: str, moderator_id: str, approved: bool, notes: Optional[str]) -> dict:
        await self.get_review(review_id)
        patch = {
            "is_approved": approved,
            "is_moderated": True,
            "moderated_by": moderator_id,
            "moderated_at": datetime.utcnow(),
        }
        if notes is not None:
            patch["moderation_notes"] = notes
        updated = await self.reviews.update(review_id, patch)
        await self.refresh_rating(updated["product_id"])
        return updated

    async def approve(self, review_id: str, moderator_id: str, notes: Optional[str] = None) -> dict:
        return await self._moderate(review_id, moderator_id, True, notes)

    async def reject(self, review_id: str, moderator_id: str, notes: Optional[str] = None) -> dict:
        return await self._moderate(review_id, moderator_id, False, notes)

    async def flag(self, review_id: str, user_id: str, reason: str) -> dict:
        def apply(review):
            flags = review.get("flagged_by") or []
            if any(f.get("user_id") == user_id for f in flags):
                raise BusinessRuleException("You have already flagged this review")
            flags.append({"user_id": user_id, "reason": reason, "date": datetime.utcnow()})
            return {"is_flagged": True, "flag_reason": reason, "flagged_by": flags}

        updated = await self.reviews.mutate(review_id, apply, not_found="Review not found")
        if updated.get("is_approved"):
            await self.refresh_rating(updated["product_id"])
        return updated

    async def unflag(self, review_id: str) -> dict:
        await self.get_review(review_id)
        # Clearing the flaggers lets the same users report the review again later
        updated = await self.reviews.update(review_id, {"is_flagged": False, "flag_reason": None, "flagged_by": []})
        await self.refresh_rating(updated["product_id"])
        return updated

    async def vote(self, review_id: str, user_id: str, helpful: bool = True) -> dict:
        def apply(review):
            voters = review.get("voters") or []
            if user_id in voters:
                raise BusinessRuleException("You have already voted on this review")
            if review["user_id"] == user_id:
                raise BusinessRuleException("You cannot vote on your own review")
            return {
                "helpful_votes": (review.get("helpful_votes") or 0) + (1 if helpful else 0),
                "total_votes": (review.get("total_votes") or 0) + 1,
                "voters": voters + [user_id],
            }

        return await self.reviews.mutate(review_id, apply, not_found="Review not found")

    async def product_reviews(self, product_id: str, page: int = 1, limit: int = 10,
                              sort_by: str = "created_at", sort_order: str = "desc",
                              rating: Optional[int] = None) -> dict:
        docs = [r for r in await self.reviews.list_by_equality("product_id", product_id) if is_public(r)]
        if rating:
            docs = [r for r in docs if r.get("rating") == rating]
        return paginate(sort_documents(docs, sort_by, sort_order), page, limit)

    async def user_reviews(self, user_id: str, page: int = 1, limit: int = 10) -> dict:
        docs = await self.reviews.list_by_equality("user_id", user_id)
        return paginate(sort_documents(docs, "created_at", "desc"), page, limit)

    async def list_reviews(self, page: int = 1, limit: int = 20, state: Optional[str] = None,
                           search: Optional[str] = None) -> dict:
        docs = await self.reviews.list_all()
        states = {
            "pending": lambda r: not r.get("is_moderated"),
            "approved": lambda r: r.get("is_approved"),
            "rejected": lambda r: r.get("is_moderated") and not r.get("is_approved"),
            "flagged": lambda r: r.get("is_flagged"),
        }
        predicates = [lambda r: matches_search(r, search, ("title", "comment"))]
        if state in states:
            predicates.append(states[state])
        return paginate(sort_documents(filter_documents(docs, *predicates), "created_at", "desc"), page, limit)

    async def review_stats(self, product_id: Optional[str] = None, public_only: bool = False) -> dict:
        if product_id:
            docs = await self.reviews.list_by_equality("product_id", product_id)
        else:
            docs = await self.reviews.list_all()
        if public_only:
            docs = [r for r in docs if is_public(r)]
        distribution = {str(n): 0 for n in range(1, 6)}
        for r in docs:
            if str(r.get("rating")) in distribution:
                distribution[str(r["rating"])] += 1
        average = 0.0
        if docs:
            average = float(round_money(sum(to_decimal(r.get("rating")) for r in docs) / len(docs)))
        return {
            "total": len(docs),
            "approved": sum(1 for r in docs if r.get("is_approved")),
            "pending": sum(1 for r in docs if not r.get("is_moderated")),
            "flagged": sum(1 for r in docs if r.get("is_flagged")),
            "average_rating": average,
            "rating_distribution": distribution,
        }
