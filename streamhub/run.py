# streamhub/run.py
import uvicorn

from streamhub.app import create_app
from streamhub.hub_config import load_hub_config
from streamhub.logging_config import build_logging_config


def main():
    config = load_hub_config()
    uvicorn.run(
        create_app(config),
        host=config.host,
        port=config.port,
        reload=False,
        log_config=build_logging_config(config.log_level),
        log_level=None,
        access_log=True,
    )


if __name__ == "__main__":
    main()
