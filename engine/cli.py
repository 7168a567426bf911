"""Console entry point.

gevent must patch the standard library before requests and urllib3
are imported, so nothing else may be imported ahead of this.
"""

from gevent import monkey

monkey.patch_all()

from engine.orchestrator import main  # noqa: E402

__all__ = ['main']
