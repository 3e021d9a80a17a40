"""Upload a directory of numbered files to IPFS through a pinning gateway."""

from pin_upload.config import get_package_version

__version__ = get_package_version()
