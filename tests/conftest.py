"""Pytest configuration for the GGB test suite."""

import sys
from pathlib import Path

# Add src directory to path for ggb imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))
