# src/services/activity_logger.py
# Готовые события аудит-лога для доменного кода (auth, мерчанты, карты, покупки,
# погашения, система). Все методы - обёртки над ActivityLogService.log_activity:
# ничего не бросают и возвращают EnqueueResult.

from __future__ import annotations

from typing import Any, Dict, Optional

from src.models.activity_log import ActivityCategory as C
from src.models.activity_log import ActivitySeverity as S
from src.models.activity_log import ActorType
from src.queues.job_queue import EnqueueResult
from src.services.activity_log import ActivityLogService


def _actor_for_role(role: str) -> ActorType:
    try:
        return ActorType(str(role).lower())
    except ValueError:
        return ActorType.user


def _qr_partial(qr_code: str) -> str:
    return f"{qr_code[:8]}..."


class ActivityLogger:
    def __init__(self, service: ActivityLogService) -> None:
        self.service = service

    async def log(self, actor_type, action, category, description, **kwargs) -> EnqueueResult:
        return await self.service.log_activity(actor_type, action, category, description, **kwargs)

    # ============ AUTH ============
    async def login(self, user_id: str, role: str, request: Any = None) -> EnqueueResult:
        return await self.log(
            _actor_for_role(role), "login", C.AUTH, "User logged in",
            actor_id=user_id, resource_type="user", resource_id=user_id, request=request,
        )

    async def logout(self, user_id: str, role: str, request: Any = None) -> EnqueueResult:
        return await self.log(
            _actor_for_role(role), "logout", C.AUTH, "User logged out",
            actor_id=user_id, resource_type="user", resource_id=user_id, request=request,
        )

    async def login_failed(self, email: str, reason: str, request: Any = None) -> EnqueueResult:
        return await self.log(
            ActorType.system, "login_failed", C.AUTH, f"Login failed for {email}: {reason}",
            metadata={"email": email, "reason": reason}, severity=S.WARNING, request=request,
        )

    async def register(self, user_id: str, email: str, role: str, request: Any = None) -> EnqueueResult:
        return await self.log(
            _actor_for_role(role), "register", C.AUTH, f"New {str(role).lower()} registered: {email}",
            actor_id=user_id, resource_type="user", resource_id=user_id, request=request,
        )

    async def password_reset_requested(self, email: str, request: Any = None) -> EnqueueResult:
        return await self.log(
            ActorType.system, "password_reset_requested", C.AUTH, f"Password reset requested for {email}",
            metadata={"email": email}, request=request,
        )

    async def password_changed(self, user_id: str, request: Any = None) -> EnqueueResult:
        return await self.log(
            ActorType.user, "password_changed", C.AUTH, "Password changed",
            actor_id=user_id, resource_type="user", resource_id=user_id, request=request,
        )

    async def email_verified(self, user_id: str, email: str, request: Any = None) -> EnqueueResult:
        return await self.log(
            ActorType.user, "email_verified", C.AUTH, f"Email verified: {email}",
            actor_id=user_id, resource_type="user", resource_id=user_id, request=request,
        )

    # ============ USERS ============
    async def user_created(self, user_id: str, email: str, created_by_id: str, request: Any = None) -> EnqueueResult:
        return await self.log(
            ActorType.admin, "created", C.USER, f"User created: {email}",
            actor_id=created_by_id, resource_type="user", resource_id=user_id, request=request,
        )

    async def user_updated(
        self, user_id: str, updated_by_id: str, changes: Dict[str, Any], request: Any = None
    ) -> EnqueueResult:
        return await self.log(
            ActorType.admin, "updated", C.USER, "User profile updated",
            actor_id=updated_by_id, resource_type="user", resource_id=user_id,
            metadata={"changes": changes}, request=request,
        )

    async def user_deactivated(self, user_id: str, deactivated_by_id: str, request: Any = None) -> EnqueueResult:
        return await self.log(
            ActorType.admin, "deactivated", C.USER, "User account deactivated",
            actor_id=deactivated_by_id, resource_type="user", resource_id=user_id,
            severity=S.WARNING, request=request,
        )

    # ============ MERCHANTS ============
    async def merchant_profile_created(
        self, merchant_profile_id: str, user_id: str, business_name: str, request: Any = None
    ) -> EnqueueResult:
        return await self.log(
            ActorType.merchant, "profile_created", C.MERCHANT, f"Merchant profile created: {business_name}",
            actor_id=user_id, resource_type="merchant_profile", resource_id=merchant_profile_id,
            merchant_id=merchant_profile_id, request=request,
        )

    async def merchant_profile_updated(
        self,
        merchant_profile_id: str,
        user_id: str,
        business_name: str,
        changes: Dict[str, Any],
        request: Any = None,
    ) -> EnqueueResult:
        return await self.log(
            ActorType.merchant, "profile_updated", C.MERCHANT, f"Merchant profile updated: {business_name}",
            actor_id=user_id, resource_type="merchant_profile", resource_id=merchant_profile_id,
            metadata={"changes": changes}, merchant_id=merchant_profile_id, request=request,
        )

    async def merchant_submitted_for_verification(
        self, merchant_profile_id: str, user_id: str, business_name: str, request: Any = None
    ) -> EnqueueResult:
        return await self.log(
            ActorType.merchant, "submitted_for_verification", C.MERCHANT,
            f"Merchant submitted for verification: {business_name}",
            actor_id=user_id, resource_type="merchant_profile", resource_id=merchant_profile_id,
            merchant_id=merchant_profile_id, request=request,
        )

    async def merchant_verified(
        self, merchant_profile_id: str, business_name: str, verified_by_id: str, request: Any = None
    ) -> EnqueueResult:
        return await self.log(
            ActorType.admin, "verified", C.MERCHANT, f"Merchant verified: {business_name}",
            actor_id=verified_by_id, resource_type="merchant_profile", resource_id=merchant_profile_id,
            merchant_id=merchant_profile_id, request=request,
        )

    async def merchant_rejected(
        self,
        merchant_profile_id: str,
        business_name: str,
        rejected_by_id: str,
        reason: str,
        request: Any = None,
    ) -> EnqueueResult:
        return await self.log(
            ActorType.admin, "rejected", C.MERCHANT, f"Merchant rejected: {business_name}",
            actor_id=rejected_by_id, resource_type="merchant_profile", resource_id=merchant_profile_id,
            metadata={"reason": reason}, merchant_id=merchant_profile_id, severity=S.WARNING,
            request=request,
        )

    # ============ GIFT CARDS ============
    async def gift_card_created(
        self, gift_card_id: str, merchant_id: str, title: str, price: Any, request: Any = None
    ) -> EnqueueResult:
        return await self.log(
            ActorType.merchant, "created", C.GIFT_CARD, f'Gift card created: "{title}" - ₹{price}',
            actor_id=merchant_id, resource_type="gift_card", resource_id=gift_card_id,
            metadata={"title": title, "price": price}, merchant_id=merchant_id, request=request,
        )

    async def gift_card_updated(
        self, gift_card_id: str, merchant_id: str, title: str, changes: Dict[str, Any], request: Any = None
    ) -> EnqueueResult:
        return await self.log(
            ActorType.merchant, "updated", C.GIFT_CARD, f'Gift card updated: "{title}"',
            actor_id=merchant_id, resource_type="gift_card", resource_id=gift_card_id,
            metadata={"changes": changes}, merchant_id=merchant_id, request=request,
        )

    async def gift_card_deactivated(
        self, gift_card_id: str, merchant_id: str, title: str, request: Any = None
    ) -> EnqueueResult:
        return await self.log(
            ActorType.merchant, "deactivated", C.GIFT_CARD, f'Gift card deactivated: "{title}"',
            actor_id=merchant_id, resource_type="gift_card", resource_id=gift_card_id,
            merchant_id=merchant_id, request=request,
        )

    # ============ PURCHASES ============
    async def purchase_created(
        self,
        purchase_id: str,
        gift_card_title: str,
        customer_email: str,
        amount: Any,
        merchant_id: str,
        request: Any = None,
    ) -> EnqueueResult:
        return await self.log(
            ActorType.user, "created", C.PURCHASE,
            f'Gift card purchased: "{gift_card_title}" - ₹{amount} by {customer_email}',
            resource_type="purchased_gift_card", resource_id=purchase_id,
            metadata={"customerEmail": customer_email, "amount": amount, "giftCardTitle": gift_card_title},
            merchant_id=merchant_id, request=request,
        )

    async def payment_completed(
        self, purchase_id: str, transaction_id: str, amount: Any, merchant_id: str
    ) -> EnqueueResult:
        return await self.log(
            ActorType.system, "payment_completed", C.PURCHASE,
            f"Payment completed - ₹{amount} (Transaction: {transaction_id})",
            resource_type="purchased_gift_card", resource_id=purchase_id,
            metadata={"transactionId": transaction_id, "amount": amount}, merchant_id=merchant_id,
        )

    async def payment_failed(self, purchase_id: str, reason: str, merchant_id: str) -> EnqueueResult:
        return await self.log(
            ActorType.system, "payment_failed", C.PURCHASE, f"Payment failed: {reason}",
            resource_type="purchased_gift_card", resource_id=purchase_id,
            metadata={"reason": reason}, merchant_id=merchant_id, severity=S.ERROR,
        )

    async def purchase_cancelled(
        self, purchase_id: str, reason: str, cancelled_by_id: str, merchant_id: str, request: Any = None
    ) -> EnqueueResult:
        return await self.log(
            ActorType.admin, "cancelled", C.PURCHASE, f"Purchase cancelled: {reason}",
            actor_id=cancelled_by_id, resource_type="purchased_gift_card", resource_id=purchase_id,
            metadata={"reason": reason}, merchant_id=merchant_id, severity=S.WARNING, request=request,
        )

    async def purchase_refunded(
        self, purchase_id: str, amount: Any, refunded_by_id: str, merchant_id: str, request: Any = None
    ) -> EnqueueResult:
        return await self.log(
            ActorType.admin, "refunded", C.PURCHASE, f"Purchase refunded - ₹{amount}",
            actor_id=refunded_by_id, resource_type="purchased_gift_card", resource_id=purchase_id,
            metadata={"amount": amount}, merchant_id=merchant_id, request=request,
        )

    # ============ REDEMPTIONS ============
    async def redemption_success(
        self,
        redemption_id: str,
        purchase_id: str,
        amount: Any,
        balance_after: Any,
        redeemed_by_id: str,
        merchant_id: str,
        request: Any = None,
    ) -> EnqueueResult:
        return await self.log(
            ActorType.merchant, "redeemed", C.REDEMPTION,
            f"₹{amount} redeemed, remaining balance: ₹{balance_after}",
            actor_id=redeemed_by_id, resource_type="redemption", resource_id=redemption_id,
            metadata={"amount": amount, "balanceAfter": balance_after, "purchaseId": purchase_id},
            merchant_id=merchant_id, request=request,
        )

    async def redemption_fully_redeemed(self, purchase_id: str, total_redeemed: Any, merchant_id: str) -> EnqueueResult:
        return await self.log(
            ActorType.system, "fully_redeemed", C.REDEMPTION,
            f"Gift card fully redeemed - Total: ₹{total_redeemed}",
            resource_type="purchased_gift_card", resource_id=purchase_id,
            metadata={"totalRedeemed": total_redeemed}, merchant_id=merchant_id,
        )

    async def verification_success(
        self, purchase_id: str, qr_code_partial: str, verified_by_id: str, merchant_id: str, request: Any = None
    ) -> EnqueueResult:
        return await self.log(
            ActorType.merchant, "verification_success", C.REDEMPTION, "QR code verified successfully",
            actor_id=verified_by_id, resource_type="purchased_gift_card", resource_id=purchase_id,
            metadata={"qrCodePartial": qr_code_partial}, merchant_id=merchant_id, request=request,
        )

    async def verification_failed(
        self,
        qr_code: str,
        reason: str,
        attempted_by_id: Optional[str] = None,
        merchant_id: Optional[str] = None,
        request: Any = None,
    ) -> EnqueueResult:
        # полный QR-код в лог не пишем
        return await self.log(
            ActorType.merchant if attempted_by_id else ActorType.system,
            "verification_failed", C.REDEMPTION, f"QR verification failed: {reason}",
            actor_id=attempted_by_id,
            metadata={"qrCodePartial": _qr_partial(qr_code), "reason": reason},
            merchant_id=merchant_id, severity=S.WARNING, request=request,
        )

    # ============ SYSTEM ============
    async def system_error(self, error: str, context: Optional[Dict[str, Any]] = None) -> EnqueueResult:
        return await self.log(
            ActorType.system, "error", C.SYSTEM, f"System error: {error}",
            metadata=context, severity=S.ERROR,
        )

    async def scheduled_task_completed(self, task_name: str, result: Optional[Dict[str, Any]] = None) -> EnqueueResult:
        return await self.log(
            ActorType.system, "scheduled_task_completed", C.SYSTEM, f"Scheduled task completed: {task_name}",
            metadata=result,
        )

    async def scheduled_task_failed(self, task_name: str, error: str) -> EnqueueResult:
        return await self.log(
            ActorType.system, "scheduled_task_failed", C.SYSTEM, f"Scheduled task failed: {task_name}",
            metadata={"error": error}, severity=S.ERROR,
        )
