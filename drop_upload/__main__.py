"""Entry point for Drop Uploader.

Usage:
    python -m drop_upload [start] [CONFIG_PATH]   Run the upload daemon in the foreground
    python -m drop_upload check [CONFIG_PATH]     Validate the configuration file
"""

import sys


def main() -> None:
    """Run the daemon CLI and exit with its status."""
    from drop_upload.service import main as service_main

    sys.exit(service_main())


if __name__ == "__main__":
    main()
