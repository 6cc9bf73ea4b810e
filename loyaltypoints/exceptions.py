from rest_framework import status
from core.exceptions import ShopError


class IneligibleSpin(ShopError):
    ALREADY_SPUN_TODAY = 'already_spun_today'
    NO_PENDING_SPIN = 'no_pending_spin'

    MESSAGES = {
        ALREADY_SPUN_TODAY: "You have already spun the wheel today. Come back tomorrow!",
        NO_PENDING_SPIN: "Place an order to earn a spin of the wheel.",
    }

    status_code = status.HTTP_409_CONFLICT
    default_code = NO_PENDING_SPIN

    def __init__(self, reason):
        self.reason = reason
        super().__init__(message=self.MESSAGES.get(reason), code=reason)


class LedgerWriteFailure(ShopError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_code = 'ledger_write_failure'
    default_message = "Your points could not be updated right now. Please try again."
