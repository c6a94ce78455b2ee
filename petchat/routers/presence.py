from fastapi import APIRouter, Depends

from petchat.services.gateway import MessagingGateway
from petchat.utils.dependencies import get_current_user, get_gateway


router = APIRouter(prefix="/presence", tags=["chat"])


@router.get("/{user_id}")
async def presence(user_id: str, current_user: dict = Depends(get_current_user), gateway: MessagingGateway = Depends(get_gateway)):
    """
    Online status for this process: a user is online while at least one of
    their connections is registered.
    """
    return {"user_id": user_id, "online": gateway.is_online(user_id)}
