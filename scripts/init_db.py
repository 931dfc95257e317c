"""Create the back-office audit table."""

from backoffice.config import load_config
from backoffice.logging import configure_logging


def main() -> None:
    config = load_config()
    configure_logging(config.settings.log_level)
    print(f"Database initialized at {config.database_url}.")


if __name__ == "__main__":
    main()
