import uvicorn  # type: ignore

from flowbit.core import config
from flowbit.utils import get_logger

log = get_logger(__name__)


def main() -> None:
    log.info("Running server on %s:%d (reload=%s)", config.HOST, config.PORT, config.RELOAD)
    uvicorn.run("flowbit.main:app", reload=config.RELOAD, host=config.HOST, port=config.PORT,
                log_level=config.LOG_LEVEL.lower())


if __name__ == "__main__":
    main()
