import sentry_sdk
import structlog

from gateway.settings import settings

logger = structlog.stdlib.get_logger(__name__)


def init_sentry():
    if not settings.SENTRY_DSN:
        return

    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        traces_sample_rate=0.01,
        send_default_pii=False,
        environment=settings.SENTRY_ENVIRONMENT,
    )
    sentry_sdk.set_tag("registry", settings.REGISTRY_URL)
    sentry_sdk.set_tag("unauthorized_strategy", settings.REGISTRY_UNAUTHORIZED_STRATEGY)
    logger.info("Sentry error reporting enabled", environment=settings.SENTRY_ENVIRONMENT)
