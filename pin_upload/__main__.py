"""Allow ``python -m pin_upload``."""

from pin_upload.cli import run

run()
