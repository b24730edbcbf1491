from __future__ import annotations
import importlib.util
from typing import Dict, List, Tuple

# import name -> requirement to report when it cannot be found
RUNTIME_REQUIREMENTS: Dict[str, str] = {
    "structlog": "structlog>=23.1",
    "pydantic": "pydantic>=2.0",
}


def missing_requirements(requirements: Dict[str, str] = RUNTIME_REQUIREMENTS) -> List[str]:
    """Requirements whose module cannot be located. Nothing is imported."""
    return [req for module, req in requirements.items() if importlib.util.find_spec(module) is None]


def check_dependencies() -> Tuple[bool, List[str]]:
    missing = missing_requirements()
    return (not missing, missing)
