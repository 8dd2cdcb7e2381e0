"""Console status lines and logging setup for the CLI."""

import logging
import sys

from colorama import Fore, Style, init

init(autoreset=True)

logger = logging.getLogger("eksdeploy")

LOG_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"


def configure_logging(level: str = "INFO", log_file: str = "") -> None:
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_file:
        handlers.append(logging.FileHandler(log_file))
    logging.basicConfig(
        level=level.upper(),
        format=LOG_FORMAT,
        handlers=handlers,
        force=True,
    )
    # boto3 is chatty at INFO
    logging.getLogger("botocore").setLevel(logging.WARNING)
    logging.getLogger("boto3").setLevel(logging.WARNING)


def print_header(message: str) -> None:
    print(f"\n{Fore.CYAN}{Style.BRIGHT}{'=' * 60}")
    print(f"{Fore.CYAN}{Style.BRIGHT}{message.center(60)}")
    print(f"{Fore.CYAN}{Style.BRIGHT}{'=' * 60}{Style.RESET_ALL}\n")


def print_success(message: str) -> None:
    print(f"{Fore.GREEN}✓ {message}{Style.RESET_ALL}")
    logger.debug(message)


def print_error(message: str) -> None:
    print(f"{Fore.RED}✗ {message}{Style.RESET_ALL}")
    logger.debug(message)


def print_warning(message: str) -> None:
    print(f"{Fore.YELLOW}⚠ {message}{Style.RESET_ALL}")
    logger.debug(message)


def print_info(message: str) -> None:
    print(f"{Fore.BLUE}ℹ {message}{Style.RESET_ALL}")
    logger.debug(message)
