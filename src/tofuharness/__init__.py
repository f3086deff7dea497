"""
tofu-harness — lifecycle coordinator for OpenTofu integration tests.

Copies infrastructure modules into isolated workspaces, applies them,
and guarantees ordered teardown when the test ends, however it ends.

Three pieces do the real work:
  - timeouts: refuse to start a test that cannot finish its own teardown
  - cleanup:  LIFO stack of deferred destroys, run unconditionally
  - adoption: import non-deletable KMS primitives, untrack them on teardown
"""

import os

__version__ = "0.1.0"

HARNESS_HOME = os.environ.get("TOFU_HARNESS_HOME", "~/.tofu-harness")
