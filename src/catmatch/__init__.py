from .config import REPO_ROOT


def _read_version() -> str:
    version_file = REPO_ROOT / "VERSION"
    if version_file.exists():
        return version_file.read_text(encoding="utf-8").strip()
    from importlib.metadata import PackageNotFoundError, version
    try:
        return version("catmatch")
    except PackageNotFoundError:
        return "0.0.0"


__version__ = _read_version()

from .batch_processor import CategorizationJob, run_job  # noqa: E402
from .completion_client import CompletionClient  # noqa: E402
from .external_search import ExternalSiteResolver  # noqa: E402
from .resolver import CategoryResolver  # noqa: E402

__all__ = [
    "REPO_ROOT",
    "__version__",
    "CategorizationJob",
    "CategoryResolver",
    "CompletionClient",
    "ExternalSiteResolver",
    "run_job",
]
