from typing import List

from fastapi import APIRouter, Depends

from .deps import get_current_user, get_lifecycle
from .lifecycle import SubscriptionLifecycle
from .models import User
from .schemas import SubscriptionIn, SubscriptionOut, SubscriptionPatch

router = APIRouter(prefix="/subscriptions", tags=["subscriptions"], dependencies=[Depends(get_current_user)])

@router.post("", response_model=SubscriptionOut, status_code=201)
def create(payload: SubscriptionIn, user: User = Depends(get_current_user), lifecycle: SubscriptionLifecycle = Depends(get_lifecycle)):
    return lifecycle.create(user.id, payload.product_id, payload.plan_type, payload.auto_renew, payload.price)

@router.get("", response_model=List[SubscriptionOut])
def find_all(lifecycle: SubscriptionLifecycle = Depends(get_lifecycle)):
    return lifecycle.find_all()

@router.get("/mine", response_model=List[SubscriptionOut])
def find_mine(user: User = Depends(get_current_user), lifecycle: SubscriptionLifecycle = Depends(get_lifecycle)):
    return lifecycle.find_by_principal(user.id)

@router.get("/{subscription_id}", response_model=SubscriptionOut)
def find_one(subscription_id: int, lifecycle: SubscriptionLifecycle = Depends(get_lifecycle)):
    return lifecycle.find_by_id(subscription_id)

@router.patch("/{subscription_id}", response_model=SubscriptionOut)
def update(subscription_id: int, payload: SubscriptionPatch, lifecycle: SubscriptionLifecycle = Depends(get_lifecycle)):
    return lifecycle.update(subscription_id, payload.model_dump(exclude_unset=True))

@router.post("/{subscription_id}/pause", response_model=SubscriptionOut)
def pause(subscription_id: int, lifecycle: SubscriptionLifecycle = Depends(get_lifecycle)):
    return lifecycle.pause(subscription_id)

@router.post("/{subscription_id}/resume", response_model=SubscriptionOut)
def resume(subscription_id: int, lifecycle: SubscriptionLifecycle = Depends(get_lifecycle)):
    return lifecycle.resume(subscription_id)

@router.post("/{subscription_id}/cancel", response_model=SubscriptionOut)
def cancel(subscription_id: int, lifecycle: SubscriptionLifecycle = Depends(get_lifecycle)):
    return lifecycle.cancel(subscription_id)

@router.delete("/{subscription_id}", status_code=204)
def remove(subscription_id: int, lifecycle: SubscriptionLifecycle = Depends(get_lifecycle)):
    lifecycle.remove(subscription_id)
