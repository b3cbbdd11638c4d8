import logging
from typing import Sequence

from paygate.repository import PaymentRepository

logger = logging.getLogger(__name__)


class EntitlementGranter:
    def __init__(self, repository: PaymentRepository):
        self.repository = repository

    def grant(self, uid: str, payment_id: int, resources: Sequence[str]) -> Sequence[str]:
        """Ensure ``uid`` holds every resource, linked to ``payment_id``.

        Safe to call any number of times: existing grants only get their
        origin payment refreshed.
        """
        resources = tuple(dict.fromkeys(resources))
        if not resources:
            return resources
        self.repository.upsert_entitlements(uid, resources, payment_id)
        logger.info("Entitlements ensured uid=%s payment=%s resources=%s", uid, payment_id, resources)
        return resources
