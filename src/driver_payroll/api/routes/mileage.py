"""Mileage lookup endpoint."""

from typing import Annotated

from fastapi import APIRouter, Query

from driver_payroll.api.dependencies import Resolver
from driver_payroll.api.schemas import MileageResponse

router = APIRouter(prefix="/mileage", tags=["mileage"])


@router.get("", response_model=MileageResponse)
async def resolve_mileage(
    resolver: Resolver,
    from_zip: Annotated[str, Query(min_length=1)],
    to_zip: Annotated[str, Query(min_length=1)],
) -> MileageResponse:
    """Road-distance estimate between two zip codes.

    Always answers; when geocoding fails the method is ESTIMATED.
    """
    result = await resolver.resolve(from_zip, to_zip)
    return MileageResponse(
        from_zip=result.from_zip,
        to_zip=result.to_zip,
        miles=result.miles,
        method=result.method.value,
    )
