"""Test package for hatchat unit and integration tests."""

import logging

logging.getLogger("asyncio").setLevel(logging.ERROR)
logging.getLogger("hatchat").setLevel(logging.CRITICAL)
