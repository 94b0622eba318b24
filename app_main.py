"""Application entry point for the OneTwoOne session server."""

from __future__ import annotations

from chat_app.constants.about import APP_NAME, APP_VERSION
from chat_app.constants.network_constants import DEFAULT_HOST, DEFAULT_PORT, WEBSOCKET_PATH
from chat_app.core.chat_manager import ChatManager
from chat_app.core.settings import SessionSettings
from chat_app.server.api_server import run_api_server
from chat_app.utils.logging_config import configure_logging


def main() -> None:
    """Initialize logging, build the session store and serve the API."""
    logger = configure_logging()
    settings = SessionSettings.from_env()
    logger.info("Starting %s %s…", APP_NAME, APP_VERSION)
    logger.info(
        "Segments last %ss, skip policy %s",
        settings.segment_duration_seconds,
        settings.skip_policy.value,
    )

    chat_manager = ChatManager(settings=settings)
    logger.info("Session socket available at ws://%s:%s%s", DEFAULT_HOST, DEFAULT_PORT, WEBSOCKET_PATH)
    run_api_server(chat_manager, host=DEFAULT_HOST, port=DEFAULT_PORT)


if __name__ == "__main__":
    main()
