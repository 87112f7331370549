from typing import List

from fastapi import APIRouter, Depends, status

from shared.utils import SuccessResponse

from marketplace.container import Services
from marketplace.dependencies import get_services, get_current_user
from marketplace.schemas import ProfileUpdate, ProfileResponse, AddressCreate, AddressUpdate, AddressResponse

router = APIRouter(prefix="/api/users", tags=["users"])


@router.get("/profile", response_model=SuccessResponse[ProfileResponse])
async def get_profile(user: dict = Depends(get_current_user), services: Services = Depends(get_services)):
    return SuccessResponse(data=await services.users.get_user(user["sub"]))


@router.put("/profile", response_model=SuccessResponse[ProfileResponse])
async def update_profile(body: ProfileUpdate, user: dict = Depends(get_current_user),
                         services: Services = Depends(get_services)):
    updated = await services.users.update_profile(user["sub"], body)
    return SuccessResponse(data=updated, message="Profile updated")


@router.get("/addresses", response_model=SuccessResponse[List[AddressResponse]])
async def list_addresses(user: dict = Depends(get_current_user), services: Services = Depends(get_services)):
    return SuccessResponse(data=await services.users.list_addresses(user["sub"]))


@router.post("/addresses", response_model=SuccessResponse[List[AddressResponse]],
             status_code=status.HTTP_201_CREATED)
async def add_address(body: AddressCreate, user: dict = Depends(get_current_user),
                      services: Services = Depends(get_services)):
    addresses = await services.users.add_address(user["sub"], body)
    return SuccessResponse(data=addresses, message="Address added")


@router.put("/addresses/{address_id}", response_model=SuccessResponse[List[AddressResponse]])
async def update_address(address_id: str, body: AddressUpdate, user: dict = Depends(get_current_user),
                         services: Services = Depends(get_services)):
    addresses = await services.users.update_address(user["sub"], address_id, body)
    return SuccessResponse(data=addresses, message="Address updated")


@router.delete("/addresses/{address_id}", response_model=SuccessResponse[List[AddressResponse]])
async def delete_address(address_id: str, user: dict = Depends(get_current_user),
                         services: Services = Depends(get_services)):
    addresses = await services.users.delete_address(user["sub"], address_id)
    return SuccessResponse(data=addresses, message="Address deleted")


@router.patch("/addresses/{address_id}/default", response_model=SuccessResponse[List[AddressResponse]])
async def set_default_address(address_id: str, user: dict = Depends(get_current_user),
                              services: Services = Depends(get_services)):
    addresses = await services.users.set_default_address(user["sub"], address_id)
    return SuccessResponse(data=addresses, message="Default address updated")
