"""Run the relay with uvicorn: ``python -m dmrelay``."""
import uvicorn

from dmrelay.config import get_config


def main() -> None:
    config = get_config()
    uvicorn.run(
        "dmrelay.main:app",
        host=config.server.host,
        port=config.server.port,
        log_level=config.logging.level.lower(),
    )


if __name__ == "__main__":
    main()
