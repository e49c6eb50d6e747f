"""Run the mail relay: python -m municipal_budget.relay"""

import structlog

from municipal_budget.config import get_settings
from municipal_budget.relay.app import create_app


logger = structlog.get_logger(__name__)


def main() -> None:
    settings = get_settings()
    server = settings.relay_server
    app = create_app(settings=server)

    if not settings.resend.is_configured:
        logger.warning("mail_provider_not_configured", hint="set RESEND_API_KEY in .env")

    logger.info("mail_relay_starting", host=server.host, port=server.port)
    app.run(host=server.host, port=server.port, debug=settings.app.debug_mode)


if __name__ == "__main__":
    main()
