"""Key builders and TTLs for everything kept in the shared store."""

import hashlib

DAY = 24 * 3600

# TTLs in seconds
PAYMENT_INFO_TTL = 30 * DAY
GATEWAY_MAPPING_TTL = 7 * DAY
EXECUTION_CLAIM_TTL = 30 * DAY
WALLET_INDEX_TTL = 90 * DAY
WALLET_CUSTODY_TTL = 90 * DAY
WEBHOOK_EVENT_TTL = DAY


def payment_info(payment_id: str) -> str:
    return f"payment_info:{payment_id}"


def gateway_mapping(gateway_payment_id: str) -> str:
    return f"square_to_frontend:{gateway_payment_id}"


def execution_claim(payment_id: str) -> str:
    return f"execution_claim:{payment_id}"


def wallet_positions(wallet_address: str) -> str:
    return f"wallet_positions:{wallet_address.lower()}"


def wallet_custody(wallet_address: str) -> str:
    return f"wallet_custody:{wallet_address.lower()}"


def rate_limit(endpoint: str, identity: str) -> str:
    return f"rate_limit:{endpoint}:{identity}"


def intake_request(idempotency_key: str) -> str:
    # Client keys are arbitrary strings; hash to keep the keyspace uniform
    digest = hashlib.sha256(idempotency_key.encode()).hexdigest()
    return f"intake_request:{digest}"


def webhook_event(event_id: str) -> str:
    return f"webhook_event:{event_id}"


def metrics_counter(endpoint: str, status: str) -> str:
    return f"metrics:{endpoint}:{status}"


def metrics_samples(endpoint: str) -> str:
    return f"metrics:{endpoint}:samples"


ERROR_REPORTS = "errors:recent"
ALERTS = "alerts:recent"
# Operator attention indexes: payment ids whose last execution failed or is in flight
FAILED_PAYMENTS = "failed_payments"
EXECUTING_PAYMENTS = "executing_payments"
