import sys
from pathlib import Path

tests_path = Path(__file__).parent
sys.path.insert(0, str(tests_path.parent / "src"))
sys.path.insert(0, str(tests_path / "test_adapter"))
