"""Cache key namespace and TTL policy."""

CHECKOUT_TTL = 3600
SUBSCRIPTION_TTL = 3600
CANCELED_SUBSCRIPTION_TTL = 86400
CUSTOMER_TTL = 86400


def checkout_key(session_id: str) -> str:
    return f"checkout:{session_id}"


def subscription_key(subscription_id: str) -> str:
    return f"subscription:{subscription_id}"


def subscription_by_customer_key(customer_id: str) -> str:
    return f"subscription:customer:{customer_id}"


def customer_key(customer_id: str) -> str:
    return f"customer:{customer_id}"


def customer_by_email_key(email: str) -> str:
    return f"customer:email:{email}"


def customer_by_user_key(user_id: str) -> str:
    return f"customer:userId:{user_id}"
