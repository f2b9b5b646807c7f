"""Allow ``python -m tg_ingest``."""

from tg_ingest.main import run

run()
