import json
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

import httpx

from amana.logging_config import get_logger
from amana.services.llm import LLMProvider, LLMProviderError
from amana.services.matching import normalize_for_matching

logger = get_logger("intent_service")


class Intent(str, Enum):
    # Invoices
    CREATE_INVOICE = "create_invoice"
    PREVIEW_INVOICE = "preview_invoice"
    SEND_INVOICE = "send_invoice"
    EDIT_INVOICE = "edit_invoice"
    LIST_INVOICES = "list_invoices"
    VIEW_INVOICE = "view_invoice"
    UPDATE_INVOICE_STATUS = "update_invoice_status"
    RECORD_PAYMENT = "record_payment"
    OVERDUE_INVOICES = "overdue_invoices"

    # Clients
    ADD_CLIENT = "add_client"
    VIEW_CLIENT = "view_client"
    LIST_CLIENTS = "list_clients"
    UPDATE_CLIENT = "update_client"

    # Wallet
    VIEW_BALANCE = "view_balance"
    LIST_TRANSACTIONS = "list_transactions"
    SEND_MONEY = "send_money"
    TRANSFER_TO_DRIVER = "transfer_to_driver"

    # Routes & shipments
    LIST_ROUTES = "list_routes"
    VIEW_ROUTE = "view_route"
    CREATE_ROUTE = "create_route"
    UPDATE_ROUTE_STATUS = "update_route_status"
    ASSIGN_ROUTE = "assign_route"
    TRACK_SHIPMENT = "track_shipment"
    ADD_ROUTE_EXPENSE = "add_route_expense"
    GET_ROUTE_EXPENSES = "get_route_expenses"

    # Drivers
    ADD_DRIVER = "add_driver"
    LIST_DRIVERS = "list_drivers"
    VIEW_DRIVER = "view_driver"
    DRIVER_STATUS = "driver_status"
    DRIVER_LOCATION = "driver_location"

    # Vehicles
    ADD_VEHICLE = "add_vehicle"
    LIST_VEHICLES = "list_vehicles"
    VIEW_VEHICLE = "view_vehicle"
    VEHICLE_STATUS = "vehicle_status"
    VEHICLE_LOCATION = "vehicle_location"

    # Payroll
    LIST_PAYROLL = "list_payroll"
    VIEW_PAYSLIP = "view_payslip"
    DRIVER_SALARY = "driver_salary"

    # Reports
    VIEW_REPORT = "view_report"
    REVENUE_SUMMARY = "revenue_summary"
    EXPENSE_SUMMARY = "expense_summary"

    # Utility
    HELP = "help"
    CANCEL = "cancel"
    CONFIRM = "confirm"
    UNKNOWN = "unknown"


INTENT_DOMAINS: dict[str, frozenset[Intent]] = {
    "invoice": frozenset(
        {
            Intent.CREATE_INVOICE,
            Intent.PREVIEW_INVOICE,
            Intent.SEND_INVOICE,
            Intent.EDIT_INVOICE,
            Intent.LIST_INVOICES,
            Intent.VIEW_INVOICE,
            Intent.UPDATE_INVOICE_STATUS,
            Intent.RECORD_PAYMENT,
            Intent.OVERDUE_INVOICES,
        }
    ),
    "client": frozenset({Intent.ADD_CLIENT, Intent.VIEW_CLIENT, Intent.LIST_CLIENTS, Intent.UPDATE_CLIENT}),
    "wallet": frozenset({Intent.VIEW_BALANCE, Intent.LIST_TRANSACTIONS, Intent.SEND_MONEY, Intent.TRANSFER_TO_DRIVER}),
    "route": frozenset(
        {
            Intent.LIST_ROUTES,
            Intent.VIEW_ROUTE,
            Intent.CREATE_ROUTE,
            Intent.UPDATE_ROUTE_STATUS,
            Intent.ASSIGN_ROUTE,
            Intent.TRACK_SHIPMENT,
            Intent.ADD_ROUTE_EXPENSE,
            Intent.GET_ROUTE_EXPENSES,
        }
    ),
    "driver": frozenset(
        {Intent.ADD_DRIVER, Intent.LIST_DRIVERS, Intent.VIEW_DRIVER, Intent.DRIVER_STATUS, Intent.DRIVER_LOCATION}
    ),
    "vehicle": frozenset(
        {Intent.ADD_VEHICLE, Intent.LIST_VEHICLES, Intent.VIEW_VEHICLE, Intent.VEHICLE_STATUS, Intent.VEHICLE_LOCATION}
    ),
    "payroll": frozenset({Intent.LIST_PAYROLL, Intent.VIEW_PAYSLIP, Intent.DRIVER_SALARY}),
    "report": frozenset({Intent.VIEW_REPORT, Intent.REVENUE_SUMMARY, Intent.EXPENSE_SUMMARY}),
    "utility": frozenset({Intent.HELP, Intent.CANCEL, Intent.CONFIRM}),
}

SUPPORTED_LANGUAGES = {"en", "ha", "ig", "yo", "pidgin"}


def parse_intent(value: Optional[str]) -> Optional[Intent]:
    """Map a stored or LLM-produced value onto the taxonomy; unknown strings become UNKNOWN."""
    if not value:
        return None
    try:
        return Intent(value.strip().lower())
    except ValueError:
        return Intent.UNKNOWN


def intent_domain(intent: Intent) -> Optional[str]:
    for domain, members in INTENT_DOMAINS.items():
        if intent in members:
            return domain
    return None


@dataclass
class IntentResult:
    intent: Intent
    confidence: float
    entities: dict[str, Any] = field(default_factory=dict)
    language: str = "en"
    raw_text: str = ""

    @classmethod
    def unknown(cls, text: str, confidence: float = 0.0) -> "IntentResult":
        return cls(intent=Intent.UNKNOWN, confidence=confidence, raw_text=text)


class IntentClassifier(ABC):
    """classify(text) -> (intent, confidence, entities)."""

    @abstractmethod
    def classify(self, text: str) -> IntentResult:
        pass


# Ordered keyword fallback used when the LLM is unavailable.
KEYWORD_FALLBACK: tuple[tuple[tuple[str, ...], tuple[str, ...], Intent, float], ...] = (
    (("invoice", "bill"), (), Intent.CREATE_INVOICE, 0.6),
    (("client", "customer"), ("add", "new", "create"), Intent.ADD_CLIENT, 0.6),
    (("client", "customer"), (), Intent.LIST_CLIENTS, 0.6),
    (("balance", "wallet"), (), Intent.VIEW_BALANCE, 0.7),
    (("transaction", "history"), (), Intent.LIST_TRANSACTIONS, 0.7),
    (("route",), (), Intent.LIST_ROUTES, 0.6),
    (("driver",), (), Intent.LIST_DRIVERS, 0.6),
    (("vehicle", "truck", "fleet"), (), Intent.LIST_VEHICLES, 0.6),
    (("help", "menu"), (), Intent.HELP, 0.9),
)


def keyword_fallback(text: str) -> IntentResult:
    normalized = normalize_for_matching(text)
    for keywords, qualifiers, intent, confidence in KEYWORD_FALLBACK:
        if not any(keyword in normalized for keyword in keywords):
            continue
        if qualifiers and not any(qualifier in normalized for qualifier in qualifiers):
            continue
        return IntentResult(intent=intent, confidence=confidence, raw_text=text)
    return IntentResult.unknown(text, confidence=0.3)


CLASSIFY_PROMPT = """You are Amana, the assistant of a Nigerian transport & logistics business.
Understand Nigerian English, Pidgin, Hausa, Igbo, Yoruba and mixed grammar. Matching is case-insensitive.

Examples:
"create invoice for ABC, 50 cement at 5000" -> create_invoice
"preview invoice INV-123" -> preview_invoice
"send invoice INV-123" -> send_invoice
"record payment 50000 for INV-123" -> record_payment
"add client Dangote" -> add_client
"what's my balance" -> view_balance
"send 50000 to driver John" -> transfer_to_driver
"update route RTE-123 to completed" -> update_route_status
"where is John" -> driver_location
"where is AAA123" -> vehicle_location
"John's payslip" -> view_payslip
"revenue this month" -> revenue_summary

Allowed intents: {intents}

Entities: clientName, clientEmail, clientPhone, items[{{description, quantity, unitPrice}}], totalAmount,
template, vatInclusive, vatRate, invoiceNumber, routeId, driverName, plateNumber, recipientName, amount,
status, timeframe.

Answer with JSON only:
{{"intent": "...", "confidence": 0.0-1.0, "language": "en|pidgin|ha|ig|yo", "entities": {{}}}}"""


class LLMIntentClassifier(IntentClassifier):
    """JSON-mode LLM classification with the keyword table as a fallback."""

    def __init__(self, provider: Optional[LLMProvider], model: Optional[str] = None, timeout_seconds: float = 4.0):
        self.provider = provider
        self.model = model
        self.timeout_seconds = timeout_seconds

    def _prompt(self) -> str:
        intents = "|".join(intent.value for intent in Intent)
        return CLASSIFY_PROMPT.format(intents=intents)

    def classify(self, text: str) -> IntentResult:
        if self.provider is None:
            return keyword_fallback(text)

        llm_start = time.monotonic()
        try:
            response = self.provider.generate(
                [
                    {"role": "system", "content": self._prompt()},
                    {"role": "user", "content": text},
                ],
                model=self.model,
                temperature=0.3,
                max_tokens=400,
                response_format={"type": "json_object"},
                timeout_seconds=self.timeout_seconds,
            )
        except (httpx.HTTPError, LLMProviderError) as exc:
            logger.warning(
                "Intent LLM unavailable, using keyword fallback",
                extra={"context": {"error": str(exc), "elapsed_ms": round((time.monotonic() - llm_start) * 1000, 2)}},
            )
            return keyword_fallback(text)

        logger.info(
            "Timing",
            extra={
                "context": {
                    "stage": "intent_llm_ms",
                    "elapsed_ms": round((time.monotonic() - llm_start) * 1000, 2),
                    "model_name": response.model,
                }
            },
        )
        return self._parse(response.content, text)

    def _parse(self, content: str, text: str) -> IntentResult:
        try:
            data = json.loads(content or "{}")
        except json.JSONDecodeError:
            logger.warning(f"Intent LLM returned non-JSON content: {content[:100]!r}")
            return keyword_fallback(text)
        if not isinstance(data, dict):
            return keyword_fallback(text)

        intent = parse_intent(data.get("intent")) or Intent.UNKNOWN
        try:
            confidence = float(data.get("confidence", 0.0))
        except (TypeError, ValueError):
            confidence = 0.0
        entities = data.get("entities") if isinstance(data.get("entities"), dict) else {}
        language = data.get("language") if data.get("language") in SUPPORTED_LANGUAGES else "en"

        return IntentResult(
            intent=intent,
            confidence=max(0.0, min(confidence, 1.0)),
            entities=entities,
            language=language,
            raw_text=text,
        )
