import logging
from dataclasses import dataclass

from django.core.exceptions import ImproperlyConfigured

logger = logging.getLogger(__name__)

ESEWA_BASE_URLS = {
    'sandbox': 'https://rc-epay.esewa.com.np',
    'production': 'https://epay.esewa.com.np',
}
FORM_PATH = '/api/epay/main/v2/form'
STATUS_PATH = '/api/epay/transaction/status/'


@dataclass(frozen=True)
class EsewaConfig:
    """
    Gateway configuration, built once at startup and handed to EsewaService.
    """
    merchant_code: str
    secret_key: str
    form_url: str
    status_url: str
    success_url: str
    failure_url: str
    status_timeout: float = 10.0

    @classmethod
    def from_settings(cls, settings):
        environment = settings.ESEWA_ENVIRONMENT
        if environment not in ESEWA_BASE_URLS:
            raise ImproperlyConfigured(f"ESEWA_ENVIRONMENT must be one of {sorted(ESEWA_BASE_URLS)}, got {environment!r}.")
        base_url = ESEWA_BASE_URLS[environment]

        config = cls(
            merchant_code=settings.ESEWA_MERCHANT_CODE,
            secret_key=settings.ESEWA_SECRET_KEY,
            form_url=f"{base_url}{FORM_PATH}",
            status_url=f"{base_url}{STATUS_PATH}",
            success_url=settings.ESEWA_SUCCESS_URL,
            failure_url=settings.ESEWA_FAILURE_URL,
            status_timeout=float(settings.ESEWA_STATUS_TIMEOUT),
        )

        # Log presence of the secret only, never its value.
        logger.info("--- Loading eSewa configuration ---")
        logger.info(f"ESEWA environment: {environment}, merchant code: {config.merchant_code}")
        logger.info(f"ESEWA_SECRET_KEY status: {'Loaded' if config.secret_key else 'NOT Loaded'}")

        if not all([config.merchant_code, config.secret_key, config.success_url, config.failure_url]):
            raise ImproperlyConfigured("eSewa settings are not configured properly.")
        if config.status_timeout <= 0:
            raise ImproperlyConfigured("ESEWA_STATUS_TIMEOUT must be a positive number of seconds.")
        return config
