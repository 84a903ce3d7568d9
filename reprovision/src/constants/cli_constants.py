from rich.text import Text

__version__ = "0.1.0"

APP_DESCRIPTION = "Re-sign and provision iOS apps for your own devices"

BANNER = r"""
 _ __ ___ _ __  _ __ _____   _(_)___(_) ___  _ __
| '__/ _ \ '_ \| '__/ _ \ \ / / / __| |/ _ \| '_ \
| | |  __/ |_) | | | (_) \ V /| \__ \ | (_) | | | |
|_|  \___| .__/|_|  \___/ \_/ |_|___/_|\___/|_| |_|
         |_|
"""


def get_banner_text() -> Text:
    return Text(BANNER.strip("\n"), style="bold cyan")
