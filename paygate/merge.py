from paygate.models import PaymentStatus

# Highest first. COMPLETED is sticky: a later FAILED or PENDING never revokes it.
PRIORITY = (PaymentStatus.COMPLETED, PaymentStatus.FAILED, PaymentStatus.PENDING)


def merge_status(current: PaymentStatus, incoming: PaymentStatus) -> PaymentStatus:
    """Combine a stored status with a newly observed one.

    Commutative, associative and idempotent, so duplicate or reordered
    observations always converge to the same result.
    """
    for status in PRIORITY:
        if status in (current, incoming):
            return status
    return PaymentStatus.PENDING
