from typing import Optional
from fastapi import Depends, Header, Request

from cart_service.services.cart_engine import CartEngine, CartOwner
from cart_service.services.merge_engine import MergeEngine


async def get_cart_engine(request: Request) -> CartEngine:
    """Dependency to get the cart engine built at startup."""
    return request.app.state.cart_engine


async def get_merge_engine(engine: CartEngine = Depends(get_cart_engine)) -> MergeEngine:
    """Dependency to get the merge engine."""
    return MergeEngine(engine)


async def get_cart_owner(
    x_user_id: Optional[str] = Header(default=None),
    x_session_id: Optional[str] = Header(default=None)
) -> CartOwner:
    """
    Dependency to identify who the request acts for.

    Tokens are validated upstream; the gateway forwards the authenticated
    user id and the anonymous session id as headers.

    Raises:
        MissingIdentity: If neither header is present
    """
    return CartOwner(user_id=x_user_id or None, session_id=x_session_id or None)
