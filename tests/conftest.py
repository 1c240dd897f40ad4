import os
import sys


def pytest_configure():
    # `src/` packages (common, fhe, protocol, state, matcher) import as top-level
    root = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))
    src_path = os.path.join(root, "src")
    if src_path not in sys.path:
        sys.path.insert(0, src_path)
