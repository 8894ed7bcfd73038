"""Main application entry point for the EVI bridge."""

import asyncio
import logging
import signal
import sys
from datetime import datetime
from pathlib import Path

import structlog

from evi_bridge.ai.hume_evi import HumeEviClient
from evi_bridge.bridge import BridgeFactory, Listener, ProviderBridge, SessionEvent
from evi_bridge.config import Config, config
from evi_bridge.core.agent_config import AgentConfig
from evi_bridge.tools import ToolRegistry, build_default_registry


__version__ = "0.1.0"


def setup_logging() -> None:
    """Configure structured logging with file output."""
    # Create logs directory
    log_dir = Path(config.system.log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)

    # Generate log filename with timestamp
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    log_file = log_dir / f"evi-bridge_{timestamp}.log"

    log_level = getattr(logging, config.system.log_level.upper(), logging.INFO)

    console_handler = logging.StreamHandler(sys.stdout)
    file_handler = logging.FileHandler(log_file, encoding="utf-8")

    logging.basicConfig(
        format="%(message)s",
        level=log_level,
        handlers=[console_handler, file_handler]
    )

    # websockets logs every frame at DEBUG
    logging.getLogger("websockets").setLevel(max(log_level, logging.INFO))

    processors = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if config.system.log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logger = structlog.get_logger(__name__)
    logger.info(f"Logging to file: {log_file}")


def _load_agent_config(cfg: Config) -> AgentConfig:
    """Resolve prompts: AGENT_PROMPT_FILE wins over the HUME_* variables.

    Relative prompt file paths are resolved against the working directory
    first, then the project root.
    """
    logger = structlog.get_logger(__name__)
    upstream = cfg.upstream

    yaml_path = None
    if upstream.agent_prompt_file:
        yaml_path = Path(upstream.agent_prompt_file)
        if not yaml_path.is_absolute() and not yaml_path.exists():
            yaml_path = Path(__file__).parent.parent / yaml_path

        logger.info(
            "Loading agent prompts from YAML",
            file_path=upstream.agent_prompt_file,
            resolved_path=str(yaml_path),
            exists=yaml_path.exists()
        )

    return AgentConfig.resolve(
        yaml_path,
        instructions=upstream.system_prompt,
        greeting=upstream.greeting,
        voice_id=upstream.voice_id
    )


def create_bridge_factory(
    cfg: Config,
    registry: ToolRegistry,
    agent: AgentConfig
) -> BridgeFactory:
    """Create the per-session bridge factory.

    Each session gets its own Hume client; the tool registry is shared.

    Args:
        cfg: Application configuration
        registry: Tool registry
        agent: Resolved prompts

    Returns:
        Factory called by the session on init
    """

    def factory(session_id: str, inbox: "asyncio.Queue[SessionEvent]") -> ProviderBridge:
        client = HumeEviClient(
            api_key=cfg.upstream.api_key,
            endpoint=cfg.upstream.endpoint,
            config_id=cfg.upstream.config_id,
            connect_timeout=cfg.upstream.connect_timeout
        )
        return ProviderBridge(
            session_id,
            inbox,
            client,
            registry,
            client_sample_rate=cfg.audio.client_sr,
            upstream_sample_rate=cfg.audio.upstream_sr,
            chunk_ms=cfg.audio.chunk_ms,
            instructions=agent.instructions,
            voice_id=agent.voice_id,
            greeting=agent.greeting
        )

    return factory


async def run_server(cfg: Config) -> None:
    """Serve client sessions until SIGINT or SIGTERM."""
    logger = structlog.get_logger(__name__)

    agent = _load_agent_config(cfg)
    registry = build_default_registry(cfg.tools.message_store_path)

    logger.info(
        "Bridge configured",
        endpoint=cfg.upstream.endpoint,
        config_id=cfg.upstream.config_id,
        client_rate=cfg.audio.client_sr,
        upstream_rate=cfg.audio.upstream_sr,
        chunk_ms=cfg.audio.chunk_ms,
        tools=registry.names,
        has_system_prompt=agent.instructions is not None,
        has_greeting=agent.greeting is not None
    )

    listener = Listener(
        create_bridge_factory(cfg, registry, agent),
        host=cfg.server.host,
        port=cfg.server.port,
        client_sample_rate=cfg.audio.client_sr
    )

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    await listener.start()
    try:
        await stop.wait()
        logger.info("Shutdown signal received")
    finally:
        await listener.stop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.remove_signal_handler(sig)


async def main() -> None:
    """Main application entry point."""
    logger = structlog.get_logger(__name__)
    logger.info("EVI bridge starting", version=__version__)

    await run_server(config)

    logger.info("Shutdown complete")


def cli() -> None:
    """CLI entry point."""
    import argparse

    parser = argparse.ArgumentParser(
        description="EVI bridge: streams telephony client audio to Hume EVI and back"
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}"
    )
    parser.parse_args()

    # Setup logging BEFORE anything else
    setup_logging()
    logger = structlog.get_logger(__name__)

    missing = config.missing_required()
    if missing:
        logger.error("Missing required environment variables", missing=missing)
        sys.exit(1)

    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Shutdown complete")
        sys.exit(0)
    except Exception as e:
        logger.error("Fatal error", error=str(e), exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    cli()
