import logging
from datetime import datetime, timedelta
from typing import List, Optional

from shared.utils import (
    settings, get_password_hash, verify_password, create_access_token, create_refresh_token,
    verify_refresh_token, NotFoundException, UnauthorizedException, BusinessRuleException
)

from marketplace.listing import matches_search, filter_documents, sort_documents, paginate
from marketplace.models import UserDB, AddressDB
from marketplace.store import Datastore, DuplicateError, new_id

logger = logging.getLogger("marketplace.users")


class UserService:
    def __init__(self, db: Datastore):
        self.users = db.collection("users")
        self.revoked_tokens = db.collection("revoked_tokens")

    async def create_indexes(self):
        await self.users.create_index("email", unique=True)
        await self.revoked_tokens.create_index("jti", unique=True)

    async def register(self, data, role: Optional[str] = None) -> dict:
        email = data.email.lower()
        if await self.users.find_one_by("email", email):
            raise BusinessRuleException("Email already registered")
        user = UserDB(
            email=email,
            password_hash=get_password_hash(data.password),
            role=role or data.role,
            full_name=data.full_name,
            phone=data.phone
        )
        try:
            created = await self.users.create(user.dict(exclude={"id"}))
        except DuplicateError:
            raise BusinessRuleException("Email already registered")
        logger.info(f"User {created['id']} registered", extra={"user_id": created["id"]})
        return created

    def _issue_tokens(self, user_id: str, role: str) -> dict:
        claims = {"sub": user_id, "role": role}
        return {
            "access_token": create_access_token(
                data=claims, expires_delta=timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
            ),
            "refresh_token": create_refresh_token(data=claims),
            "token_type": "bearer",
        }

    async def login(self, email: str, password: str) -> dict:
        user = await self.users.find_one_by("email", email.lower())
        if not user or not verify_password(password, user["password_hash"]):
            raise UnauthorizedException("Incorrect email or password")
        if not user.get("is_active", True):
            raise UnauthorizedException("Account is disabled")
        return self._issue_tokens(user["id"], user["role"])

    async def refresh(self, refresh_token: str) -> dict:
        payload = verify_refresh_token(refresh_token)
        if await self.is_revoked(payload.get("jti")):
            raise UnauthorizedException("Refresh token has been revoked")
        user = await self.users.get_by_id(payload["sub"])
        if not user or not user.get("is_active", True):
            raise UnauthorizedException("Account is disabled")
        # Rotate: the presented refresh token is single-use
        await self._revoke(payload)
        return self._issue_tokens(user["id"], user["role"])

    async def logout(self, access_payload: dict, refresh_token: Optional[str] = None):
        await self._revoke(access_payload)
        if refresh_token:
            await self._revoke(verify_refresh_token(refresh_token))

    async def _revoke(self, payload: dict):
        jti = payload.get("jti")
        if not jti:
            return
        try:
            await self.revoked_tokens.create({"jti": jti, "exp": datetime.utcfromtimestamp(payload["exp"])})
        except DuplicateError:
            pass

    async def is_revoked(self, jti: Optional[str]) -> bool:
        if not jti:
            return False
        return await self.revoked_tokens.find_one_by("jti", jti) is not None

    async def authenticate(self, payload: dict) -> dict:
        """Validate decoded access claims against the stored account.

        The role is taken from the account so demotions apply before the token expires.
        """
        if await self.is_revoked(payload.get("jti")):
            raise UnauthorizedException("Token has been revoked")
        user = await self.users.get_by_id(payload.get("sub") or "")
        if not user or not user.get("is_active", True):
            raise UnauthorizedException("Account is disabled")
        return {**payload, "role": user["role"]}

    async def get_user(self, user_id: str) -> dict:
        user = await self.users.get_by_id(user_id)
        if not user:
            raise NotFoundException("User not found")
        return user

    async def list_users(self, page: int = 1, limit: int = 20, role: Optional[str] = None,
                         search: Optional[str] = None) -> dict:
        if role:
            docs = await self.users.list_by_equality("role", role)
        else:
            docs = await self.users.list_all()
        docs = filter_documents(docs, lambda d: matches_search(d, search, ("email", "full_name")))
        return paginate(sort_documents(docs, "created_at", "desc"), page, limit)

    async def set_status(self, user_id: str, is_active: Optional[bool] = None, role: Optional[str] = None) -> dict:
        await self.get_user(user_id)
        patch = {}
        if is_active is not None:
            patch["is_active"] = is_active
        if role is not None:
            patch["role"] = role
        return await self.users.update(user_id, patch)

    # --- Profile and address book ---

    async def update_profile(self, user_id: str, data) -> dict:
        await self.get_user(user_id)
        patch = {k: v for k, v in data.dict().items() if v is not None}
        if not patch:
            return await self.get_user(user_id)
        return await self.users.update(user_id, patch)

    async def list_addresses(self, user_id: str) -> List[dict]:
        return (await self.get_user(user_id)).get("addresses") or []

    async def add_address(self, user_id: str, data) -> List[dict]:
        address = AddressDB(id=new_id(), **data.dict()).dict()

        def apply(user):
            addresses = user.get("addresses") or []
            # The first address becomes the default
            if not addresses or address["is_default"]:
                return {"addresses": _with_default(addresses, None) + [{**address, "is_default": True}]}
            return {"addresses": addresses + [address]}

        updated = await self.users.mutate(user_id, apply, not_found="User not found")
        return updated["addresses"]

    async def update_address(self, user_id: str, address_id: str, data) -> List[dict]:
        changes = {k: v for k, v in data.dict().items() if v is not None}

        def apply(user):
            addresses = user.get("addresses") or []
            _find_address(addresses, address_id).update(changes)
            if changes.get("is_default"):
                addresses = _with_default(addresses, address_id)
            return {"addresses": addresses}

        updated = await self.users.mutate(user_id, apply, not_found="User not found")
        return updated["addresses"]

    async def delete_address(self, user_id: str, address_id: str) -> List[dict]:
        def apply(user):
            addresses = user.get("addresses") or []
            removed = _find_address(addresses, address_id)
            kept = [a for a in addresses if a["id"] != address_id]
            if removed.get("is_default") and kept:
                kept = _with_default(kept, kept[0]["id"])
            return {"addresses": kept}

        updated = await self.users.mutate(user_id, apply, not_found="User not found")
        return updated["addresses"]

    async def set_default_address(self, user_id: str, address_id: str) -> List[dict]:
        def apply(user):
            addresses = user.get("addresses") or []
            _find_address(addresses, address_id)
            return {"addresses": _with_default(addresses, address_id)}

        updated = await self.users.mutate(user_id, apply, not_found="User not found")
        return updated["addresses"]


def _find_address(addresses: List[dict], address_id: str) -> dict:
    for address in addresses:
        if address["id"] == address_id:
            return address
    raise NotFoundException("Address not found")


def _with_default(addresses: List[dict], address_id: Optional[str]) -> List[dict]:
    return [{**a, "is_default": a["id"] == address_id} for a in addresses]


def default_address(user: Optional[dict], kind: str = "shipping") -> Optional[dict]:
    """The address checkout falls back to: the default one if usable for ``kind``, else the first usable one."""
    usable = [a for a in (user or {}).get("addresses") or [] if a.get("type") in (kind, "both")]
    for address in usable:
        if address.get("is_default"):
            return address
    return usable[0] if usable else None
