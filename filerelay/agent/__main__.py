"""
Agent entry point.

Usage:
    filerelay-agent
    # or
    python -m filerelay.agent

Configured via FILERELAY_AGENT_ID, FILERELAY_SERVER_URL,
FILERELAY_AGENT_BASE_DIR and the other FILERELAY_* variables.
"""

import asyncio
import logging
import signal

from filerelay.agent.client import AgentClient
from filerelay.config import settings_from_env

logger = logging.getLogger("filerelay.agent")


async def _run(client: AgentClient) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, lambda: asyncio.create_task(client.stop()))
        except NotImplementedError:
            # Windows event loops do not support signal handlers
            pass
    await client.run()


def main() -> None:
    settings = settings_from_env()

    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    logger.info("=" * 32)
    logger.info("File Transfer Agent")
    logger.info("=" * 32)
    logger.info(f"ID: {settings.agent_id}")
    logger.info(f"Server: {settings.server_url}")
    logger.info(f"Serving: {settings.agent_base_dir}")
    logger.info("=" * 32)

    client = AgentClient.from_settings(settings)
    try:
        asyncio.run(_run(client))
    except KeyboardInterrupt:
        pass
    logger.info("Shutting down...")


if __name__ == "__main__":
    main()
