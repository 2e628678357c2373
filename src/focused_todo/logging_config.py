import sys

from loguru import logger

from focused_todo.settings import Settings


def setup_logging(settings: Settings) -> None:
    """
    Configure logging for the application.
    """

    # Remove default handler to avoid duplicate logs
    logger.remove()

    logger.add(
        sys.stderr,
        level=settings.logging_level,
        format=settings.logging_format,
        colorize=False,
        backtrace=True,
        diagnose=True,
        enqueue=True,
        catch=True,
    )

    if settings.logging_to_file:
        log_path = settings.log_file_path
        log_path.parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            log_path,
            level=settings.logging_level,
            format=settings.logging_format,
            rotation=settings.logging_rotation,
            retention=settings.logging_retention,
            compression=settings.logging_compression,
            colorize=False,
            backtrace=True,
            diagnose=False,
            enqueue=True,
            catch=True,
        )

    # Configure common context (can be overridden per module)
    logger.configure(extra={"app": settings.app_name, "version": settings.app_version})

    logger.info(
        "Logging system initialized",
        log_level=settings.logging_level,
        log_file=settings.log_file_path.as_posix() if settings.logging_to_file else None,
    )
