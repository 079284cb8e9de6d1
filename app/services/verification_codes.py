import logging
import secrets
import time

logger = logging.getLogger(__name__)


class VerificationCodeStore:
    """Time-boxed, single-use SMS codes keyed by phone number.

    Lives in process memory; a restart drops every outstanding code.
    """

    def __init__(self, clock=time.monotonic):
        self._clock = clock
        self._codes = {}

    def put(self, phone, code, ttl):
        self._purge()
        self._codes[phone] = (code, self._clock() + ttl)

    def consume(self, phone, code):
        entry = self._codes.get(phone)
        if entry is None:
            return False
        stored, expires = entry
        if self._clock() > expires:
            self._codes.pop(phone, None)
            return False
        if not secrets.compare_digest(stored, str(code)):
            return False
        self._codes.pop(phone, None)
        return True

    def _purge(self):
        now = self._clock()
        expired = [p for p, (_, exp) in self._codes.items() if now > exp]
        for phone in expired:
            self._codes.pop(phone, None)

    def __len__(self):
        return len(self._codes)


def generate_code():
    return f'{secrets.randbelow(900000) + 100000}'


def deliver_code(phone, code):
    # No SMS gateway is wired in; the code is only written to the log.
    masked = f'{phone[:3]}****{phone[-4:]}'
    logger.info("Verification code for %s: %s", masked, code)
