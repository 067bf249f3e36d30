from fastapi import APIRouter, Depends

from cardwise.dependencies import get_selector
from cardwise.services.providers.selector import ProviderSelector

router = APIRouter()


@router.get("")
async def provider_info(selector: ProviderSelector = Depends(get_selector)):
    """Configured default and which providers currently have credentials."""
    return selector.describe()
