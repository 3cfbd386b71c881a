import logging
import sys

# Libraries that log every HTTP range request or GDAL call at INFO/DEBUG
NOISY_LOGGERS = ("rasterio", "fiona", "pyogrio", "urllib3", "requests")


def setup_logging(level=logging.INFO, verbose: bool = False):
    """Basic logging configuration."""
    log_level = logging.DEBUG if verbose else level
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stdout,
        force=True,
    )
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
