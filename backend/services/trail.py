"""Diagnostic trail: every entry goes to both the module logger and the result logs."""

import logging


def note(
    logs: list[str],
    logger: logging.Logger,
    message: str,
    *args: object,
    level: int = logging.INFO,
) -> None:
    text = message % args if args else message
    logger.log(level, text)
    logs.append(text)
