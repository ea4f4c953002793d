"""
Pytest configuration for local imports.
"""

# Standard Library
import os
import sys

#============================================


def _ensure_repo_on_path() -> None:
	"""
	Ensure the repository root and the tests directory are on sys.path.

	Spawned worker processes inherit sys.path, so helpers in this
	directory stay importable there too.
	"""
	tests_dir = os.path.abspath(os.path.dirname(__file__))
	repo_root = os.path.abspath(os.path.join(tests_dir, ".."))
	for path in (tests_dir, repo_root):
		if path not in sys.path:
			sys.path.insert(0, path)


_ensure_repo_on_path()
