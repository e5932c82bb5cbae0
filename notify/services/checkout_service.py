"""
Checkout against the Asaas payment gateway.

Creates the gateway customer and charge for a pending transaction, and polls
the gateway when the user asks whether a PIX payment went through. A poll that
finds the charge paid goes through the same ``confirm_payment`` entry point as
the webhook, so whichever arrives second is a no-op.
"""

from datetime import datetime, timedelta
from typing import Any, Dict, Optional
from zoneinfo import ZoneInfo

from ..models.entities import NOTIFICATION, TRANSACTION, BillingType, NotificationStatus, TransactionStatus
from ..utils.helpers import only_digits
from ..utils.logging_config import get_logger, log_business_event
from .entity_store import EntityStore
from .exceptions import InvalidTransition, NotFoundError, ProviderNotConfigured
from .reconciliation import PaymentConfirmation, WebhookReconciler
from .status_normalizer import is_paid_status

MANUAL_CHECK_METHOD = "PIX_MANUAL_CHECK"


class CheckoutService:
    def __init__(
        self,
        store: EntityStore,
        gateway,
        reconciler: WebhookReconciler,
        due_days: int = 3,
        timezone: str = "America/Sao_Paulo",
    ):
        self.store = store
        self.gateway = gateway
        self.reconciler = reconciler
        self.due_days = due_days
        self.tz = ZoneInfo(timezone)
        self.logger = get_logger("services.checkout")

    def _require_gateway(self):
        if self.gateway is None or not self.gateway.configured:
            raise ProviderNotConfigured("asaas")

    def ensure_customer(self, name: str, email: Optional[str], document: str) -> str:
        """Gateway customer id for a CPF/CNPJ, creating the customer on first use."""
        existing = self.gateway.find_customer(document)
        if existing:
            return existing["id"]
        created = self.gateway.create_customer(name, email, document)
        self.logger.info(
            "Gateway customer created",
            extra={"event": "gateway_customer_created", "customer_id": created.get("id")},
        )
        return created["id"]

    def start_checkout(
        self,
        transaction_id: str,
        billing_type: str,
        payer: Dict[str, Any],
        credit_card: Optional[Dict[str, Any]] = None,
        remote_ip: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Create the gateway charge for a pending transaction.

        Args:
            transaction_id: Pending transaction created by the delivery request
            billing_type: PIX, CREDIT_CARD or BOLETO
            payer: name, email and document (CPF/CNPJ) of the paying sender
            credit_card: card and holder data, required for CREDIT_CARD

        Returns:
            The charge id and status, plus the PIX QR code or boleto link when applicable
        """
        self._require_gateway()
        billing = BillingType(billing_type)

        transaction = self.store.get(TRANSACTION, transaction_id)
        if transaction is None:
            raise NotFoundError(TRANSACTION, transaction_id)
        if TransactionStatus.parse(transaction.get("status")) != TransactionStatus.PENDING:
            raise InvalidTransition("Only pending transactions can be checked out")

        notification_id = transaction.get("notification_id")
        customer_id = self.ensure_customer(payer.get("name") or "", payer.get("email"), only_digits(payer["document"]))

        due_date = datetime.now(self.tz).date() + timedelta(days=self.due_days)
        payload: Dict[str, Any] = {
            "customer": customer_id,
            "billingType": billing.value,
            "value": transaction.get("amount"),
            "dueDate": due_date.isoformat(),
            "description": transaction.get("description"),
            "externalReference": notification_id,
        }
        if billing == BillingType.CREDIT_CARD:
            if not credit_card:
                raise InvalidTransition("Credit card data is required for CREDIT_CARD payments")
            payload["creditCard"] = credit_card.get("card") or {}
            payload["creditCardHolderInfo"] = credit_card.get("holder") or {}
            if remote_ip:
                payload["remoteIp"] = remote_ip

        charge = self.gateway.create_charge(payload)
        payment_id = charge["id"]

        self.store.update(
            TRANSACTION,
            transaction_id,
            lambda doc: {"payment_id": payment_id, "billing_type": billing.value},
        )
        if notification_id:
            self.store.update(
                NOTIFICATION,
                notification_id,
                lambda doc: {"payment_id": payment_id, "payment_method": billing.value},
            )

        log_business_event(
            "checkout_started",
            TRANSACTION,
            transaction_id,
            payment_id=payment_id,
            billing_type=billing.value,
            notification_id=notification_id,
        )

        response: Dict[str, Any] = {
            "transaction_id": transaction_id,
            "payment_id": payment_id,
            "status": charge.get("status"),
            "billing_type": billing.value,
            "invoice_url": charge.get("invoiceUrl"),
        }
        if billing == BillingType.PIX:
            qr = self.gateway.get_pix_qr_code(payment_id)
            response["pix"] = {
                "encoded_image": qr.get("encodedImage"),
                "payload": qr.get("payload"),
                "expiration_date": qr.get("expirationDate"),
            }
        elif billing == BillingType.BOLETO:
            response["bank_slip_url"] = charge.get("bankSlipUrl")

        # Card charges can be approved synchronously
        if notification_id and is_paid_status(charge.get("status")):
            result = self.reconciler.confirm_payment(
                PaymentConfirmation(
                    notification_id=notification_id,
                    payment_id=payment_id,
                    payment_date=charge.get("paymentDate") or charge.get("confirmedDate"),
                    payment_method=billing.value,
                    source="checkout",
                )
            )
            response["confirmation"] = result.to_dict()
        return response

    def check_payment_status(self, payment_id: str) -> Dict[str, Any]:
        """Poll the gateway for a charge and reconcile it if paid."""
        self._require_gateway()
        charge = self.gateway.get_charge(payment_id)
        status = charge.get("status")
        paid = is_paid_status(status)
        response: Dict[str, Any] = {"payment_id": payment_id, "status": status, "paid": paid}
        if not paid:
            return response

        notification_id = WebhookReconciler.resolve_payment_reference(charge)
        if not notification_id:
            matches = self.store.query(TRANSACTION, payment_id=payment_id)
            notification_id = matches[0].get("notification_id") if matches else None
        if not notification_id:
            self.logger.warning(
                "Paid charge has no notification reference",
                extra={"event": "payment_check_unreferenced", "payment_id": payment_id},
            )
            return response

        result = self.reconciler.confirm_payment(
            PaymentConfirmation(
                notification_id=notification_id,
                payment_id=payment_id,
                payment_date=charge.get("paymentDate") or charge.get("confirmedDate"),
                payment_method=MANUAL_CHECK_METHOD,
                source="poll",
            )
        )
        response["notification_id"] = notification_id
        response["confirmation"] = result.to_dict()
        notification = self.store.get(NOTIFICATION, notification_id)
        if notification is not None:
            response["notification_status"] = NotificationStatus.parse(notification.get("status")).value
        return response
