import sys

from loguru import logger


def setup_logger(service: str, log_file: str = "../logs/importer.log", level: str = "DEBUG"):
    def patch_record(record):
        record["extra"]["service"] = service
        record["extra"]["level"] = record["level"].name
        return True

    logger.remove()
    logger.add(
        log_file,
        rotation="500 MB",
        format="{time:YYYY-MM-DD HH:mm:ss} | {level} | {message} | {extra}",
        level=level,
        filter=patch_record
    )

    logger.add(
        sys.stdout,
        format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level}</level> | <blue>{message}</blue> | {extra}",
        level=level,
        filter=patch_record
    )
    return logger
